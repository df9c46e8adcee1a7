"""
User-assignment handling for the control plane.

`AssignmentReconciler` captures the assignments bound to a filter before a
destructive replace and re-issues them afterwards. Restoration is best effort:
each binding is attempted, failures are collected as `RestoreOutcome` values,
and the caller decides whether the overall operation completed with warnings.

`AssignmentController` manages a single user-to-filter binding as its own
resource (create/read/update/delete/import).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from auditlog_filters.constants import DEFAULT_USERHOST
from auditlog_filters.domain.errors import (
    AssignmentAlreadyExistsError,
    AssignmentNotFoundError,
    FilterNotFoundError,
    StoreError,
)
from auditlog_filters.domain.models import (
    RestoreOutcome,
    UserAssignment,
    build_user_spec,
    parse_user_spec,
)
from auditlog_filters.persistence.store import is_ok, require_ok

if TYPE_CHECKING:
    from collections.abc import Iterable

    from auditlog_filters.persistence.store import FilterStore


class AssignmentReconciler:
    """Snapshot and best-effort restoration of a filter's user assignments."""

    def __init__(self, store: FilterStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def snapshot(self, filter_name: str) -> tuple[UserAssignment, ...]:
        assignments = tuple(self._store.list_assignments(filter_name))
        self._logger.info(
            "assignment_snapshot_captured",
            filter_name=filter_name,
            assignment_count=len(assignments),
            user_specs=[item.user_spec for item in assignments],
        )
        return assignments

    def restore(
        self,
        assignments: Iterable[UserAssignment],
        filter_name: str,
    ) -> list[RestoreOutcome]:
        """Re-bind every assignment to ``filter_name``.

        Never raises for a single binding: a `StoreError` or a non-``"OK"``
        result becomes a failed outcome and the remaining bindings are still
        attempted.
        """

        outcomes: list[RestoreOutcome] = []
        for assignment in assignments:
            target = assignment.with_filter(filter_name)
            error: str | None = None
            try:
                result = self._store.set_assignment(target.user_spec, filter_name)
            except StoreError as exc:
                error = str(exc)
            else:
                if not is_ok(result):
                    error = f"server returned an error: {result}"

            if error is None:
                self._logger.info(
                    "assignment_restored",
                    filter_name=filter_name,
                    user_spec=target.user_spec,
                )
                outcomes.append(RestoreOutcome(assignment=target, ok=True))
            else:
                self._logger.warning(
                    "assignment_restore_failed",
                    filter_name=filter_name,
                    user_spec=target.user_spec,
                    error=error,
                )
                outcomes.append(RestoreOutcome(assignment=target, ok=False, error=error))
        return outcomes


class AssignmentController:
    """Lifecycle of a single ``(username, userhost) -> filter`` binding."""

    def __init__(self, store: FilterStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def create(self, username: str, userhost: str, filter_name: str) -> UserAssignment:
        host = userhost or DEFAULT_USERHOST
        self._require_filter(filter_name)
        if self._store.get_assignment(username, host) is not None:
            raise AssignmentAlreadyExistsError(username, host)

        assignment = UserAssignment(username=username, userhost=host, filter_name=filter_name)
        require_ok("create assignment", self._store.set_assignment(assignment.user_spec, filter_name))
        self._logger.info(
            "assignment_created",
            user_spec=assignment.user_spec,
            filter_name=filter_name,
        )
        return assignment

    def read(self, username: str, userhost: str) -> UserAssignment:
        host = userhost or DEFAULT_USERHOST
        filter_name = self._store.get_assignment(username, host)
        if filter_name is None:
            raise AssignmentNotFoundError(build_user_spec(username, host))
        return UserAssignment(username=username, userhost=host, filter_name=filter_name)

    def update(self, username: str, userhost: str, filter_name: str) -> UserAssignment:
        """Re-point an assignment; the set-user call replaces any existing binding."""

        host = userhost or DEFAULT_USERHOST
        self._require_filter(filter_name)
        assignment = UserAssignment(username=username, userhost=host, filter_name=filter_name)
        require_ok("update assignment", self._store.set_assignment(assignment.user_spec, filter_name))
        self._logger.info(
            "assignment_updated",
            user_spec=assignment.user_spec,
            filter_name=filter_name,
        )
        return assignment

    def delete(self, username: str, userhost: str) -> None:
        host = userhost or DEFAULT_USERHOST
        user_spec = build_user_spec(username, host)
        try:
            require_ok("delete assignment", self._store.remove_assignment(user_spec))
        except StoreError:
            if self._store.get_assignment(username, host) is None:
                raise AssignmentNotFoundError(user_spec) from None
            raise
        self._logger.info("assignment_deleted", user_spec=user_spec)

    def import_assignment(self, user_spec: str) -> UserAssignment:
        username, userhost = parse_user_spec(user_spec)
        filter_name = self._store.get_assignment(username, userhost)
        if filter_name is None:
            raise AssignmentNotFoundError(user_spec)
        return UserAssignment(
            username=username,
            userhost=userhost or DEFAULT_USERHOST,
            filter_name=filter_name,
        )

    def _require_filter(self, filter_name: str) -> None:
        if not self._store.filter_exists(filter_name):
            raise FilterNotFoundError(filter_name)


__all__ = ["AssignmentController", "AssignmentReconciler"]
