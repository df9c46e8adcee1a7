"""TLS context construction for the store connection."""

from __future__ import annotations

import ssl

from auditlog_filters.constants import TLS_MODES


class TLSConfigError(ValueError):
    """Raised when TLS files are missing, unreadable, or inconsistent."""


def build_ssl_context(
    mode: str,
    *,
    ca_file: str | None = None,
    cert_file: str | None = None,
    key_file: str | None = None,
) -> ssl.SSLContext | None:
    """Return an ``SSLContext`` for ``mode``, or ``None`` when TLS is disabled.

    ``true`` verifies the server certificate and host name (against ``ca_file``
    when given, otherwise the system store). ``skip-verify`` and ``preferred``
    encrypt without verification; the driver only negotiates TLS when the
    server offers it.
    """

    if mode not in TLS_MODES:
        allowed = ", ".join(TLS_MODES)
        raise TLSConfigError(f"unsupported TLS mode {mode!r}; expected one of: {allowed}")
    if bool(cert_file) != bool(key_file):
        raise TLSConfigError("tls_cert_file and tls_key_file must be set together")
    if mode == "false":
        return None

    try:
        context = ssl.create_default_context(cafile=ca_file or None)
    except (OSError, ssl.SSLError) as exc:
        raise TLSConfigError(f"read TLS CA file {ca_file}: {exc}") from exc

    if mode != "true":
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if cert_file and key_file:
        try:
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
        except (OSError, ssl.SSLError) as exc:
            raise TLSConfigError(f"load TLS client cert/key: {exc}") from exc

    return context


__all__ = ["TLSConfigError", "TLS_MODES", "build_ssl_context"]
