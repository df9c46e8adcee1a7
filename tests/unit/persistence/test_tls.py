"""Unit tests for store TLS context construction."""

from __future__ import annotations

import ssl
from typing import TYPE_CHECKING

import pytest

from auditlog_filters.persistence import TLSConfigError, build_ssl_context

if TYPE_CHECKING:
    from pathlib import Path


def test_disabled_tls_has_no_context() -> None:
    assert build_ssl_context("false") is None


def test_true_verifies_certificate_and_host_name() -> None:
    context = build_ssl_context("true")

    assert context is not None
    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.check_hostname is True


@pytest.mark.parametrize("mode", ["skip-verify", "preferred"])
def test_unverified_modes_still_encrypt(mode: str) -> None:
    context = build_ssl_context(mode)

    assert context is not None
    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(TLSConfigError, match="unsupported TLS mode 'required'"):
        build_ssl_context("required")


@pytest.mark.parametrize(
    ("cert_file", "key_file"),
    [("client.pem", None), (None, "client.key")],
)
def test_client_cert_and_key_must_be_paired(cert_file: str | None, key_file: str | None) -> None:
    with pytest.raises(TLSConfigError, match="must be set together"):
        build_ssl_context("true", cert_file=cert_file, key_file=key_file)


def test_pairing_is_checked_even_when_tls_is_disabled() -> None:
    with pytest.raises(TLSConfigError):
        build_ssl_context("false", cert_file="client.pem")


def test_missing_ca_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(TLSConfigError, match="read TLS CA file"):
        build_ssl_context("true", ca_file=str(tmp_path / "missing-ca.pem"))


def test_invalid_ca_pem_is_reported(tmp_path: Path) -> None:
    ca_file = tmp_path / "ca.pem"
    ca_file.write_text(
        "-----BEGIN CERTIFICATE-----\nnot a certificate\n-----END CERTIFICATE-----\n",
        encoding="utf-8",
    )

    with pytest.raises(TLSConfigError, match="read TLS CA file"):
        build_ssl_context("true", ca_file=str(ca_file))


def test_unreadable_client_pair_is_reported(tmp_path: Path) -> None:
    cert_file = tmp_path / "client.pem"
    key_file = tmp_path / "client.key"
    cert_file.write_text("garbage", encoding="utf-8")
    key_file.write_text("garbage", encoding="utf-8")

    with pytest.raises(TLSConfigError, match="load TLS client cert/key"):
        build_ssl_context("skip-verify", cert_file=str(cert_file), key_file=str(key_file))
