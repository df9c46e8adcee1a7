"""
auditlog-filters configuration schema and validation.

Defaults follow the connection conventions of a stock MySQL/Percona server
(``localhost:3306``, user ``root``, database ``mysql``, opportunistic TLS,
five minute connection lifetime). Validation never stops at the first
problem: every issue is collected with its dotted path. Secrets are never
accepted inline; the password is named by environment variable
(``store.password_env``).
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from auditlog_filters.constants import CONFIG_SCHEMA_VERSION, TLS_MODES

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "pwd", "credential", "credentials", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "password",
    "secret",
    "private_key",
    "access_token",
    "api_key",
)

# Optional file paths resolved relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("store", "tls_ca_file"),
    ("store", "tls_cert_file"),
    ("store", "tls_key_file"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class StoreConfig(TypedDict):
    endpoint: str
    username: str
    password_env: str
    database: str
    tls: str
    tls_ca_file: str
    tls_cert_file: str
    tls_key_file: str
    connect_timeout_seconds: int
    conn_max_lifetime_seconds: int
    verify_component: bool


class ObservabilityConfig(TypedDict):
    log_level: str
    log_format: str
    log_dir: str
    log_filename: str
    log_to_stdout: bool
    redact_secrets: bool


class AuditLogConfig(TypedDict):
    meta: MetaConfig
    store: StoreConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[AuditLogConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "store": {
        "endpoint": "localhost:3306",
        "username": "root",
        "password_env": "MYSQL_PASSWORD",
        "database": "mysql",
        "tls": "preferred",
        "tls_ca_file": "",
        "tls_cert_file": "",
        "tls_key_file": "",
        "connect_timeout_seconds": 10,
        "conn_max_lifetime_seconds": 300,
        "verify_component": True,
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": "",
        "log_filename": "auditlog-filters.jsonl",
        "log_to_stdout": True,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> AuditLogConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade auditlog.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade auditlog-filters"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; scalars in ``overlay`` win."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config and return every issue with its dotted path."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(config, {"meta", "store", "observability"}, "", issues)
    out: dict[str, Any] = {}
    for key, validator in (
        ("meta", _validate_meta),
        ("store", _validate_store),
        ("observability", _validate_observability),
    ):
        section = config.get(key)
        if section is None:
            issues.add(key, "missing required section")
            continue
        if not isinstance(section, Mapping):
            issues.add(key, f"expected object, got {type(section).__name__}")
            continue
        out[key] = validator(section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a sorted copy with secret-looking values replaced by ``<redacted>``."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        field_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], field_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(field_path, migration_guidance(parsed))
    return out


def _validate_store(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["store"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("username", "database"):
        if key in payload:
            parsed_text = _as_str(payload[key], _join(path, key), issues)
            if parsed_text is not None:
                out[key] = parsed_text

    if "endpoint" in payload:
        parsed_endpoint = _as_endpoint(payload["endpoint"], _join(path, "endpoint"), issues)
        if parsed_endpoint is not None:
            out["endpoint"] = parsed_endpoint

    if "password_env" in payload:
        parsed_env = _as_env_name(payload["password_env"], _join(path, "password_env"), issues)
        if parsed_env is not None:
            out["password_env"] = parsed_env

    if "tls" in payload:
        parsed_tls = _as_enum(payload["tls"], _join(path, "tls"), issues, allowed_values=TLS_MODES)
        if parsed_tls is not None:
            out["tls"] = parsed_tls

    for key in ("tls_ca_file", "tls_cert_file", "tls_key_file"):
        if key in payload:
            parsed_path = _as_optional_path(payload[key], _join(path, key), issues)
            if parsed_path is not None:
                out[key] = parsed_path

    if "connect_timeout_seconds" in payload:
        parsed_timeout = _as_int(
            payload["connect_timeout_seconds"],
            _join(path, "connect_timeout_seconds"),
            issues,
            minimum=1,
        )
        if parsed_timeout is not None:
            out["connect_timeout_seconds"] = parsed_timeout

    if "conn_max_lifetime_seconds" in payload:
        parsed_lifetime = _as_int(
            payload["conn_max_lifetime_seconds"],
            _join(path, "conn_max_lifetime_seconds"),
            issues,
            minimum=0,
        )
        if parsed_lifetime is not None:
            out["conn_max_lifetime_seconds"] = parsed_lifetime

    if "verify_component" in payload:
        parsed_verify = _as_bool(
            payload["verify_component"], _join(path, "verify_component"), issues
        )
        if parsed_verify is not None:
            out["verify_component"] = parsed_verify

    cert_file = out.get("tls_cert_file")
    key_file = out.get("tls_key_file")
    if cert_file is not None and key_file is not None and bool(cert_file) != bool(key_file):
        issues.add(
            _join(path, "tls_cert_file"),
            "tls_cert_file and tls_key_file must be set together",
        )

    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        normalized_level = raw_level.upper() if isinstance(raw_level, str) else raw_level
        parsed_level = _as_enum(
            normalized_level, _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_format" in payload:
        parsed_format = _as_enum(
            payload["log_format"], _join(path, "log_format"), issues, allowed_values=LOG_FORMATS
        )
        if parsed_format is not None:
            out["log_format"] = parsed_format

    if "log_dir" in payload:
        parsed_dir = _as_optional_path(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            out["log_dir"] = parsed_dir

    if "log_filename" in payload:
        field_path = _join(path, "log_filename")
        parsed_filename = _as_str(payload["log_filename"], field_path, issues)
        if parsed_filename is not None:
            if "/" in parsed_filename or "\\" in parsed_filename:
                issues.add(field_path, "must not include path separators")
            else:
                out["log_filename"] = parsed_filename

    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag

    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_optional_path(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    if "\x00" in value:
        issues.add(path, "must not contain NUL bytes")
        return None
    return value.strip()


def _as_endpoint(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    host, separator, port = parsed.rpartition(":")
    if not separator or parsed.endswith("]") or (":" in host and not host.startswith("[")):
        return parsed
    if not host or not port.isdigit() or not 0 < int(port) < 65536:
        issues.add(path, "must be host or host:port with a port in 1..65535")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: MYSQL_PASSWORD)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return any(token in _SENSITIVE_KEY_TOKENS for token in normalized.split("_") if token)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = existing if isinstance(existing, dict) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "AuditLogConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "ObservabilityConfig",
    "PATH_FIELDS",
    "StoreConfig",
    "TLS_MODES",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
