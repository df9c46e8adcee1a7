"""Stable constants shared by the validator, store adapter, and controllers."""

from __future__ import annotations

from typing import Final

# Reserved logical-condition keys, in the order they are reported.
LOGICAL_OPERATORS: Final[tuple[str, ...]] = ("and", "or", "not", "field")
FILTER_ROOT_KEY: Final[str] = "filter"
JSON_PATH_ROOT: Final[str] = "$"
MAX_FILTER_NAME_LENGTH: Final[int] = 255

# Store function results.
STORE_RESULT_OK: Final[str] = "OK"

# Assignment sentinel for "every user without an explicit assignment".
DEFAULT_USER: Final[str] = "%"
DEFAULT_USERHOST: Final[str] = "%"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Store connection TLS modes.
TLS_MODES: Final[tuple[str, ...]] = ("true", "false", "skip-verify", "preferred")

# Component that must be installed on the server.
AUDIT_LOG_FILTER_COMPONENT_URN: Final[str] = "file://component_audit_log_filter"

__all__ = [
    "AUDIT_LOG_FILTER_COMPONENT_URN",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_USER",
    "DEFAULT_USERHOST",
    "FILTER_ROOT_KEY",
    "JSON_PATH_ROOT",
    "LOGICAL_OPERATORS",
    "MAX_FILTER_NAME_LENGTH",
    "STORE_RESULT_OK",
    "TLS_MODES",
]
