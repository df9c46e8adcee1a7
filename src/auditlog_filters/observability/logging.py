"""Structured logging setup with JSON-lines output and redaction support.

Controller decisions are emitted through ``structlog``; `configure_structlog`
routes those events into the stdlib ``logging`` sinks configured here, so both
paths share one formatter, one redactor and one correlation context.
"""

from __future__ import annotations

import contextvars
import json
import logging
import math
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOGGER_NAME: Final[str] = "auditlog_filters"
_DEFAULT_LOG_FILENAME: Final[str] = "auditlog-filters.jsonl"
_LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

CORRELATION_KEYS: Final[tuple[str, ...]] = ("operation", "filter_name", "username", "userhost")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "password",
    "passwd",
    "secret",
    "token",
    "passphrase",
    "private_key",
    "credential",
    "authorization",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(password|passwd|pwd|token|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_URL_CREDENTIAL_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?<=://)([^:/\s@]+):([^@/\s]+)@")

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)

_CorrelationState = tuple[tuple[str, str], ...]
_CORRELATION_CONTEXT: contextvars.ContextVar[_CorrelationState] = contextvars.ContextVar(
    "auditlog_filters_correlation", default=()
)

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Sink configuration, usually built from the ``[observability]`` section."""

    log_dir: Path | str | None = None
    log_filename: str = _DEFAULT_LOG_FILENAME
    logger_name: str = _DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_format: str = "json"
    log_to_stdout: bool = True
    redact_secrets: bool = True

    @classmethod
    def from_observability(cls, section: Mapping[str, object]) -> LoggingConfig:
        raw_dir = section.get("log_dir")
        raw_level = section.get("log_level", "INFO")
        return cls(
            log_dir=raw_dir if isinstance(raw_dir, (str, Path)) and str(raw_dir) else None,
            log_filename=str(section.get("log_filename", _DEFAULT_LOG_FILENAME)),
            level=raw_level if isinstance(raw_level, (int, str)) else "INFO",
            log_format=str(section.get("log_format", "json")),
            log_to_stdout=bool(section.get("log_to_stdout", True)),
            redact_secrets=bool(section.get("redact_secrets", True)),
        )


class _JsonLineFormatter(logging.Formatter):
    """One canonical JSON object per record."""

    def __init__(self, *, redactor: LogRedactor) -> None:
        super().__init__()
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z_from_epoch(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_message(self._redactor(record.getMessage())),
        }
        for key, value in sorted(_correlation_for(record).items()):
            event[key] = value

        extras = _extract_extra_fields(record)
        if extras:
            event["fields"] = self._redactor(extras)
        if record.exc_info is not None:
            event["exception"] = _as_message(self._redactor(self.formatException(record.exc_info)))

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _TextFormatter(logging.Formatter):
    """Human-oriented single line: timestamp, level, logger, message, then key=value pairs."""

    def __init__(self, *, redactor: LogRedactor) -> None:
        super().__init__()
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            _iso8601z_from_epoch(record.created),
            record.levelname,
            record.name,
            _as_message(self._redactor(record.getMessage())),
        ]
        context: dict[str, JSONValue] = dict(_correlation_for(record))
        context.update(_extract_extra_fields(record))
        redacted = self._redactor(context)
        if isinstance(redacted, dict):
            parts.extend(
                f"{key}={json.dumps(value, ensure_ascii=False)}"
                for key, value in sorted(redacted.items())
            )
        line = " ".join(parts)
        if record.exc_info is not None:
            line = f"{line}\n{_as_message(self._redactor(self.formatException(record.exc_info)))}"
        return line


class LoggingHandle:
    """Active sink configuration; `close` detaches and closes its handlers."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        handlers: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._handlers = handlers
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def close(self) -> None:
        if self._closed:
            return
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.flush()
            handler.close()
        self._closed = True


def setup_logging(config: LoggingConfig | None = None) -> LoggingHandle:
    """Attach JSON-lines (or text) sinks to the package logger.

    Any previously active handle is closed first. Records go to
    ``<log_dir>/<log_filename>`` when ``log_dir`` is set and to stdout when
    ``log_to_stdout`` is true.
    """

    cfg = config if config is not None else LoggingConfig()
    if cfg.log_format not in _LOG_FORMATS:
        raise ValueError(f"log_format must be one of {list(_LOG_FORMATS)}, got {cfg.log_format!r}")
    level = _parse_log_level(cfg.level)
    log_filename = _validate_log_filename(cfg.log_filename)

    shutdown_logging()

    redactor: LogRedactor = default_log_redactor if cfg.redact_secrets else _identity_redactor
    formatter: logging.Formatter = (
        _JsonLineFormatter(redactor=redactor)
        if cfg.log_format == "json"
        else _TextFormatter(redactor=redactor)
    )

    handlers: list[logging.Handler] = []
    log_path: Path | None = None
    if cfg.log_dir is not None:
        log_dir = Path(cfg.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / log_filename
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if cfg.log_to_stdout:
        handlers.append(logging.StreamHandler(sys.stdout))

    logger = logging.getLogger(cfg.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    handle = LoggingHandle(logger=logger, log_path=log_path, handlers=tuple(handlers))
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Close ``handle`` (or the active handle) and its sinks."""

    global _ACTIVE_HANDLE
    with _ACTIVE_HANDLE_LOCK:
        resolved = handle if handle is not None else _ACTIVE_HANDLE
        if resolved is not None and resolved is _ACTIVE_HANDLE:
            _ACTIVE_HANDLE = None
    if resolved is not None:
        resolved.close()


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


def configure_structlog() -> None:
    """Route ``structlog`` events into the stdlib loggers configured by `setup_logging`.

    Event keyword arguments become record extras and end up under ``fields``.
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION_CONTEXT.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields (``operation``, ``filter_name``, ...) for records in scope.

    ``None`` removes a field inherited from an outer scope.
    """

    state = get_correlation_context()
    for key, value in fields.items():
        if not key.strip():
            raise ValueError("correlation key must not be empty")
        if value is None or not str(value).strip():
            state.pop(key, None)
        else:
            state[key] = str(value).strip()
    token = _CORRELATION_CONTEXT.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION_CONTEXT.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Deep redaction of secret-looking keys and inline credentials."""

    return _redact_value(value, key_context=None)


def _identity_redactor(value: JSONValue) -> JSONValue:
    return value


def _redact_value(value: JSONValue, *, key_context: str | None) -> JSONValue:
    if key_context is not None and _is_sensitive_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered.endswith("_env"):
        return False
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    return _URL_CREDENTIAL_PATTERN.sub(lambda match: f"{match.group(1)}:{_REDACTED_VALUE}@", redacted)


def _correlation_for(record: logging.LogRecord) -> dict[str, str]:
    merged = get_correlation_context()
    for key in CORRELATION_KEYS:
        value = getattr(record, key, None)
        if isinstance(value, str) and value.strip():
            merged[key] = value.strip()
    return merged


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    fields: dict[str, JSONValue] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_LOG_RECORD_FIELDS or key in CORRELATION_KEYS or key.startswith("_"):
            continue
        fields[key] = _normalize_json_value(value)
    return fields


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize_json_value(item) for item in value]
        if isinstance(value, (set, frozenset)):
            items.sort(key=lambda item: json.dumps(item, sort_keys=True, ensure_ascii=False))
        return items
    return str(value)


def _as_message(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iso8601z_from_epoch(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _validate_log_filename(log_filename: str) -> str:
    normalized = log_filename.strip()
    if not normalized:
        raise ValueError("log_filename must not be empty")
    if Path(normalized).name != normalized:
        raise ValueError("log_filename must not include path separators")
    return normalized


__all__ = [
    "CORRELATION_KEYS",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "shutdown_logging",
]
