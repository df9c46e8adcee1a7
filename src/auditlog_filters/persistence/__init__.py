"""Store adapters: the contract the controllers consume and its MySQL implementation."""

from auditlog_filters.persistence.mysql_store import (
    MySQLFilterStore,
    StoreSettings,
    open_store,
    split_endpoint,
)
from auditlog_filters.persistence.store import FilterStore, is_ok, require_ok
from auditlog_filters.persistence.tls import TLS_MODES, TLSConfigError, build_ssl_context

__all__ = [
    "FilterStore",
    "MySQLFilterStore",
    "StoreSettings",
    "TLSConfigError",
    "TLS_MODES",
    "build_ssl_context",
    "is_ok",
    "open_store",
    "require_ok",
    "split_endpoint",
]
