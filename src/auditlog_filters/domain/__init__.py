"""Domain types shared by the validator, the store adapter, and the controllers.

The domain layer is free of IO side effects.
"""

from auditlog_filters.domain.errors import (
    AssignmentAlreadyExistsError,
    AssignmentNotFoundError,
    AuditLogFilterError,
    ConflictError,
    DefinitionValidationError,
    FilterAlreadyExistsError,
    FilterNotFoundError,
    InvalidConditionError,
    InvalidFilterNameError,
    MalformedJSONError,
    MissingFilterRootError,
    MultipleLogicalOperatorsError,
    NotAnObjectError,
    NotFoundError,
    RecreateFailedError,
    RemoveFailedError,
    RollbackFailedError,
    StoreError,
    StoreResultError,
    UpdateFailedError,
)
from auditlog_filters.domain.models import (
    TERMINAL_UPDATE_STATES,
    Diagnostic,
    FilterDefinition,
    FilterReadResult,
    FilterRecord,
    RestoreOutcome,
    Severity,
    UpdatePlan,
    UpdateResult,
    UpdateState,
    UserAssignment,
    build_user_spec,
    parse_user_spec,
)

__all__ = [
    "AssignmentAlreadyExistsError",
    "AssignmentNotFoundError",
    "AuditLogFilterError",
    "ConflictError",
    "DefinitionValidationError",
    "Diagnostic",
    "FilterAlreadyExistsError",
    "FilterDefinition",
    "FilterNotFoundError",
    "FilterReadResult",
    "FilterRecord",
    "InvalidConditionError",
    "InvalidFilterNameError",
    "MalformedJSONError",
    "MissingFilterRootError",
    "MultipleLogicalOperatorsError",
    "NotAnObjectError",
    "NotFoundError",
    "RecreateFailedError",
    "RemoveFailedError",
    "RestoreOutcome",
    "RollbackFailedError",
    "Severity",
    "StoreError",
    "StoreResultError",
    "TERMINAL_UPDATE_STATES",
    "UpdateFailedError",
    "UpdatePlan",
    "UpdateResult",
    "UpdateState",
    "UserAssignment",
    "build_user_spec",
    "parse_user_spec",
]
