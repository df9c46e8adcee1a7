"""Store adapter contract consumed by the filter and assignment controllers.

Implementations wrap transport/driver failures in ``StoreError``. Mutating
calls return the raw function result; anything other than ``"OK"`` is a
failure that the caller turns into ``StoreResultError`` via ``require_ok``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from auditlog_filters.constants import STORE_RESULT_OK
from auditlog_filters.domain.errors import StoreResultError
from auditlog_filters.domain.models import FilterRecord, UserAssignment


@runtime_checkable
class FilterStore(Protocol):
    def create_filter(self, name: str, definition: str) -> str:
        """Call the set-filter function; ``"OK"`` on success."""
        ...

    def remove_filter(self, name: str) -> str:
        """Call the remove-filter function. The server drops the filter's assignments too."""
        ...

    def get_filter(self, name: str) -> FilterRecord | None: ...

    def filter_exists(self, name: str) -> bool: ...

    def list_assignments(self, filter_name: str) -> Sequence[UserAssignment]:
        """Assignments bound to ``filter_name``, ordered by ``(username, userhost)``."""
        ...

    def set_assignment(self, user_spec: str, filter_name: str) -> str:
        """Bind ``user_spec`` to an existing filter; ``"OK"`` on success."""
        ...

    def remove_assignment(self, user_spec: str) -> str: ...

    def get_assignment(self, username: str, userhost: str) -> str | None:
        """Name of the filter bound to ``(username, userhost)``, or ``None``."""
        ...


def is_ok(result: object) -> bool:
    return result == STORE_RESULT_OK


def require_ok(operation: str, result: object) -> None:
    """Raise ``StoreResultError`` unless ``result`` is the success marker."""

    if not is_ok(result):
        raise StoreResultError(operation, result)


__all__ = ["FilterStore", "is_ok", "require_ok"]
