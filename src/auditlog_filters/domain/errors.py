"""Error taxonomy for filter validation, store access, and lifecycle operations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auditlog_filters.domain.models import Diagnostic, UpdatePlan, UpdateState


class AuditLogFilterError(Exception):
    """Base class for every error raised by this package.

    ``diagnostics`` holds caller-visible advisories collected before the error
    was raised (for example the recreation advisory of a filter update).
    """

    diagnostics: tuple[Diagnostic, ...] = ()


class DefinitionValidationError(AuditLogFilterError, ValueError):
    """A filter definition was rejected before any store call was made."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidFilterNameError(DefinitionValidationError):
    """The filter name is empty, not a string, or longer than the server allows."""


class MalformedJSONError(DefinitionValidationError):
    """The definition text is not parseable JSON."""


class NotAnObjectError(DefinitionValidationError):
    """The definition parsed, but its root is not a JSON object."""


class MissingFilterRootError(DefinitionValidationError):
    """The root object has no ``filter`` key, or its value is not an object."""


class MultipleLogicalOperatorsError(DefinitionValidationError):
    """A condition object defines more than one of ``and``/``or``/``not``/``field``."""

    def __init__(self, message: str, *, path: str, operators: Sequence[str]) -> None:
        self.operators = tuple(operators)
        super().__init__(message, path=path)


class InvalidConditionError(DefinitionValidationError):
    """A logical operator has the wrong shape (empty array, non-object operand, ...)."""


class ConflictError(AuditLogFilterError):
    """The target already exists; the caller must choose another name or target."""


class FilterAlreadyExistsError(ConflictError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"a filter with name {name!r} already exists")


class AssignmentAlreadyExistsError(ConflictError):
    def __init__(self, username: str, userhost: str) -> None:
        self.username = username
        self.userhost = userhost
        super().__init__(f"user assignment already exists for '{username}@{userhost}'")


class NotFoundError(AuditLogFilterError):
    """The filter or assignment is absent on the server."""


class FilterNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"no audit log filter found with name {name!r}")


class AssignmentNotFoundError(NotFoundError):
    def __init__(self, user_spec: str) -> None:
        self.user_spec = user_spec
        super().__init__(f"no user assignment found for {user_spec!r}")


class StoreError(AuditLogFilterError):
    """Transport or SQL failure while talking to the store. Never retried."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.detail = message
        super().__init__(f"{operation}: {message}")


class StoreResultError(StoreError):
    """A store function answered with something other than ``"OK"``."""

    def __init__(self, operation: str, result: object) -> None:
        self.result = result
        super().__init__(operation, f"server returned an error: {result}")


class UpdateFailedError(AuditLogFilterError):
    """A filter update stopped in a failure state; see ``state`` and ``diagnostics``."""

    def __init__(
        self,
        message: str,
        *,
        state: UpdateState,
        plan: UpdatePlan | None,
        cause: StoreError | None = None,
        diagnostics: Sequence[Diagnostic] = (),
    ) -> None:
        self.state = state
        self.plan = plan
        self.cause = cause
        self.diagnostics = tuple(diagnostics)
        super().__init__(message)


class RemoveFailedError(UpdateFailedError):
    """Removing the existing filter failed; nothing was changed on the server."""


class RecreateFailedError(UpdateFailedError):
    """Recreating with the new definition failed and the old definition was restored."""


class RollbackFailedError(RecreateFailedError):
    """Recreation and rollback both failed: the filter is gone and needs manual restoration."""

    def __init__(
        self,
        message: str,
        *,
        state: UpdateState,
        plan: UpdatePlan | None,
        cause: StoreError,
        rollback_cause: StoreError,
        diagnostics: Sequence[Diagnostic] = (),
    ) -> None:
        self.rollback_cause = rollback_cause
        super().__init__(message, state=state, plan=plan, cause=cause, diagnostics=diagnostics)


__all__ = [
    "AssignmentAlreadyExistsError",
    "AssignmentNotFoundError",
    "AuditLogFilterError",
    "ConflictError",
    "DefinitionValidationError",
    "FilterAlreadyExistsError",
    "FilterNotFoundError",
    "InvalidConditionError",
    "InvalidFilterNameError",
    "MalformedJSONError",
    "MissingFilterRootError",
    "MultipleLogicalOperatorsError",
    "NotAnObjectError",
    "NotFoundError",
    "RecreateFailedError",
    "RemoveFailedError",
    "RollbackFailedError",
    "StoreError",
    "StoreResultError",
    "UpdateFailedError",
]
