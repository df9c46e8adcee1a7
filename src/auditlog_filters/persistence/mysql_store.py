"""MySQL/Percona store adapter for the ``audit_log_filter`` component.

All access goes through one connection at a time; the controller issues a
single call and waits for it. Every statement is parameterized.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Protocol

import pymysql
import structlog

from auditlog_filters.config.loader import resolve_password
from auditlog_filters.constants import AUDIT_LOG_FILTER_COMPONENT_URN
from auditlog_filters.domain.errors import StoreError
from auditlog_filters.domain.models import FilterRecord, UserAssignment
from auditlog_filters.persistence.tls import build_ssl_context

SQLValue = str | int | None
SQLParams = Sequence[SQLValue]
Row = tuple[Any, ...]

DEFAULT_PORT: Final[int] = 3306

_SET_FILTER_SQL: Final[str] = "SELECT audit_log_filter_set_filter(%s, %s)"
_REMOVE_FILTER_SQL: Final[str] = "SELECT audit_log_filter_remove_filter(%s)"
_SET_USER_SQL: Final[str] = "SELECT audit_log_filter_set_user(%s, %s)"
_REMOVE_USER_SQL: Final[str] = "SELECT audit_log_filter_remove_user(%s)"
_GET_FILTER_SQL: Final[str] = (
    "SELECT filter_id, filter FROM mysql.audit_log_filter WHERE name = %s"
)
_COUNT_FILTER_SQL: Final[str] = "SELECT COUNT(*) FROM mysql.audit_log_filter WHERE name = %s"
_LIST_ASSIGNMENTS_SQL: Final[str] = (
    "SELECT username, userhost FROM mysql.audit_log_user "
    "WHERE filtername = %s ORDER BY username, userhost"
)
_GET_ASSIGNMENT_SQL: Final[str] = (
    "SELECT filtername FROM mysql.audit_log_user WHERE username = %s AND userhost = %s"
)
_COUNT_COMPONENT_SQL: Final[str] = (
    "SELECT COUNT(*) FROM mysql.component WHERE component_urn = %s"
)


class _Cursor(Protocol):
    def __enter__(self) -> _Cursor: ...

    def __exit__(self, *exc: object) -> object: ...

    def execute(self, query: str, args: SQLParams = ...) -> int: ...

    def fetchone(self) -> Row | None: ...

    def fetchall(self) -> Sequence[Row]: ...


class _Connection(Protocol):
    def cursor(self) -> _Cursor: ...

    def ping(self, reconnect: bool = ...) -> object: ...

    def close(self) -> None: ...


ConnectionFactory = Callable[[], _Connection]


@dataclass(frozen=True, slots=True)
class StoreSettings:
    """Connection settings taken from the ``[store]`` config section."""

    endpoint: str = "localhost:3306"
    username: str = "root"
    database: str = "mysql"
    tls: str = "preferred"
    tls_ca_file: str = ""
    tls_cert_file: str = ""
    tls_key_file: str = ""
    connect_timeout_seconds: int = 10
    conn_max_lifetime_seconds: int = 300
    verify_component: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> StoreSettings:
        section = config.get("store", config)
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in section.items() if key in known})

    @property
    def host(self) -> str:
        return split_endpoint(self.endpoint)[0]

    @property
    def port(self) -> int:
        return split_endpoint(self.endpoint)[1]


def split_endpoint(endpoint: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``); the port defaults to 3306."""

    text = endpoint.strip()
    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        host, _, port_text = text.partition(":")
    else:
        host, port_text = text, ""

    if not host:
        raise ValueError(f"endpoint {endpoint!r} has no host")
    if not port_text:
        return host, DEFAULT_PORT
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"endpoint {endpoint!r} has an invalid port") from exc
    if not 0 < port < 65536:
        raise ValueError(f"endpoint {endpoint!r} port must be in 1..65535")
    return host, port


class MySQLFilterStore:
    """Store adapter issuing ``audit_log_filter_*`` calls over a DB-API connection."""

    def __init__(
        self,
        connect: ConnectionFactory,
        *,
        conn_max_lifetime_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        if conn_max_lifetime_seconds < 0:
            raise ValueError("conn_max_lifetime_seconds must be >= 0")
        self._connect = connect
        self._max_lifetime = conn_max_lifetime_seconds
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._conn: _Connection | None = None
        self._opened_at = 0.0

    @classmethod
    def from_settings(cls, settings: StoreSettings, *, password: str = "") -> MySQLFilterStore:
        """Open a store for ``settings``, ping it, and optionally verify the component."""

        host, port = split_endpoint(settings.endpoint)
        ssl_context = build_ssl_context(
            settings.tls,
            ca_file=settings.tls_ca_file or None,
            cert_file=settings.tls_cert_file or None,
            key_file=settings.tls_key_file or None,
        )

        def _open() -> _Connection:
            return pymysql.connect(
                host=host,
                port=port,
                user=settings.username,
                password=password,
                database=settings.database,
                ssl=ssl_context,
                connect_timeout=settings.connect_timeout_seconds,
                charset="utf8mb4",
                autocommit=True,
            )

        store = cls(_open, conn_max_lifetime_seconds=settings.conn_max_lifetime_seconds)
        try:
            store.ping()
            if settings.verify_component:
                store.verify_component()
        except StoreError:
            store.close()
            raise
        return store

    def ping(self) -> None:
        try:
            self._connection().ping(reconnect=True)
        except pymysql.MySQLError as exc:
            self._discard_connection()
            raise StoreError("connect", f"unable to connect to MySQL: {exc}") from exc

    def verify_component(self) -> None:
        count = self._count(
            "verify component", _COUNT_COMPONENT_SQL, (AUDIT_LOG_FILTER_COMPONENT_URN,)
        )
        if count == 0:
            raise StoreError(
                "verify component",
                "the audit_log_filter component is not installed or enabled on this server; "
                "install and enable it before managing filters",
            )

    def create_filter(self, name: str, definition: str) -> str:
        return self._call("create filter", _SET_FILTER_SQL, (name, definition))

    def remove_filter(self, name: str) -> str:
        return self._call("remove filter", _REMOVE_FILTER_SQL, (name,))

    def get_filter(self, name: str) -> FilterRecord | None:
        row = self._fetchone("get filter", _GET_FILTER_SQL, (name,))
        if row is None:
            return None
        return FilterRecord(name=name, filter_id=int(row[0]), stored_text=_as_text(row[1]))

    def filter_exists(self, name: str) -> bool:
        return self._count("check filter", _COUNT_FILTER_SQL, (name,)) > 0

    def list_assignments(self, filter_name: str) -> list[UserAssignment]:
        rows = self._fetchall("list assignments", _LIST_ASSIGNMENTS_SQL, (filter_name,))
        return [
            UserAssignment(
                username=_as_text(row[0]),
                userhost=_as_text(row[1]),
                filter_name=filter_name,
            )
            for row in rows
        ]

    def set_assignment(self, user_spec: str, filter_name: str) -> str:
        return self._call("set assignment", _SET_USER_SQL, (user_spec, filter_name))

    def remove_assignment(self, user_spec: str) -> str:
        return self._call("remove assignment", _REMOVE_USER_SQL, (user_spec,))

    def get_assignment(self, username: str, userhost: str) -> str | None:
        row = self._fetchone("get assignment", _GET_ASSIGNMENT_SQL, (username, userhost))
        if row is None:
            return None
        return _as_text(row[0])

    def close(self) -> None:
        self._discard_connection()

    def __enter__(self) -> MySQLFilterStore:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def _connection(self) -> _Connection:
        now = self._clock()
        if self._conn is not None and self._max_lifetime and now - self._opened_at >= self._max_lifetime:
            self._logger.info("store_connection_recycled", age_seconds=now - self._opened_at)
            self._discard_connection()
        if self._conn is None:
            self._conn = self._connect()
            self._opened_at = now
        return self._conn

    def _discard_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            with contextlib.suppress(pymysql.MySQLError):
                conn.close()

    def _execute(self, operation: str, sql: str, params: SQLParams, *, many: bool) -> Any:
        try:
            with self._connection().cursor() as cursor:
                cursor.execute(sql, tuple(params))
                return cursor.fetchall() if many else cursor.fetchone()
        except pymysql.MySQLError as exc:
            if isinstance(exc, (pymysql.err.OperationalError, pymysql.err.InterfaceError)):
                self._discard_connection()
            self._logger.warning("store_call_failed", operation=operation, error=str(exc))
            raise StoreError(operation, str(exc)) from exc
        except (UnicodeError, ValueError, TypeError) as exc:
            # Raised while PyMySQL escapes or encodes the statement, before anything is sent.
            self._logger.warning("store_call_failed", operation=operation, error=str(exc))
            raise StoreError(operation, f"cannot send statement: {exc}") from exc

    def _fetchone(self, operation: str, sql: str, params: SQLParams) -> Row | None:
        row: Row | None = self._execute(operation, sql, params, many=False)
        return row

    def _fetchall(self, operation: str, sql: str, params: SQLParams) -> Sequence[Row]:
        rows: Sequence[Row] = self._execute(operation, sql, params, many=True)
        return rows

    def _call(self, operation: str, sql: str, params: SQLParams) -> str:
        row = self._fetchone(operation, sql, params)
        if row is None:
            raise StoreError(operation, "function call returned no result")
        return _as_text(row[0])

    def _count(self, operation: str, sql: str, params: SQLParams) -> int:
        row = self._fetchone(operation, sql, params)
        return 0 if row is None else int(row[0])


def open_store(
    config: Mapping[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
) -> MySQLFilterStore:
    """Open a store from a loaded config; the password comes from ``store.password_env``."""

    return MySQLFilterStore.from_settings(
        StoreSettings.from_config(config),
        password=resolve_password(config, environ),
    )


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


__all__ = ["DEFAULT_PORT", "MySQLFilterStore", "StoreSettings", "open_store", "split_endpoint"]
