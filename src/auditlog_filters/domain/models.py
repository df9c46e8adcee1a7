"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, StrEnum
from typing import NoReturn, cast

from auditlog_filters.constants import DEFAULT_USER, DEFAULT_USERHOST, MAX_FILTER_NAME_LENGTH

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_NAME = MAX_FILTER_NAME_LENGTH


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


class UpdateState(StrEnum):
    """States of one filter update. Terminal states are listed in ``TERMINAL_UPDATE_STATES``."""

    REQUESTED = "requested"
    VALIDATING = "validating"
    REJECTED = "rejected"
    CAPTURING_SNAPSHOT = "capturing_snapshot"
    REMOVING = "removing"
    ABORTED = "aborted"
    RECREATING = "recreating"
    RECREATE_FAILED = "recreate_failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK_OK = "rolled_back_ok"
    ROLLED_BACK_FAILED = "rolled_back_failed"
    RESTORING_ASSIGNMENTS = "restoring_assignments"
    COMPLETED_CLEAN = "completed_clean"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"


TERMINAL_UPDATE_STATES: frozenset[UpdateState] = frozenset(
    {
        UpdateState.REJECTED,
        UpdateState.ABORTED,
        UpdateState.ROLLED_BACK_OK,
        UpdateState.ROLLED_BACK_FAILED,
        UpdateState.COMPLETED_CLEAN,
        UpdateState.COMPLETED_WITH_WARNINGS,
    }
)


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int | None = None) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if max_len is not None and len(value) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return value


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _serialize_value(value: object, path: str) -> JSONValue:
    if isinstance(value, Enum):
        return cast("str", value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


def build_user_spec(username: str, userhost: str) -> str:
    """Render the ``user@host`` spec the store functions expect.

    The default-user sentinel ``%`` is always rendered bare; an empty host
    means any host.
    """

    if username == DEFAULT_USER:
        return DEFAULT_USER
    return f"{username}@{userhost or DEFAULT_USERHOST}"


def parse_user_spec(user_spec: str) -> tuple[str, str]:
    """Split a user spec into ``(username, userhost)``; the inverse of ``build_user_spec``."""

    if user_spec == DEFAULT_USER:
        return DEFAULT_USER, ""
    username, separator, userhost = user_spec.partition("@")
    if not separator:
        return username, DEFAULT_USERHOST
    return username, userhost


@dataclass(frozen=True, slots=True)
class Diagnostic(CanonicalModel):
    """Caller-visible warning or error attached to an operation result."""

    severity: Severity
    summary: str
    detail: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "severity", Severity(self.severity))
        _as_str(self.summary, "Diagnostic.summary")
        _as_str(self.detail, "Diagnostic.detail", min_len=0)


@dataclass(frozen=True, slots=True)
class FilterDefinition(CanonicalModel):
    name: str
    raw_text: str
    normalized_text: str

    def __post_init__(self) -> None:
        _as_str(self.name, "FilterDefinition.name", max_len=_MAX_NAME)
        _as_str(self.raw_text, "FilterDefinition.raw_text")
        _as_str(self.normalized_text, "FilterDefinition.normalized_text")


@dataclass(frozen=True, slots=True)
class FilterRecord(CanonicalModel):
    """Server materialization of a filter; ``filter_id`` may change across a replace."""

    name: str
    filter_id: int
    stored_text: str

    def __post_init__(self) -> None:
        _as_str(self.name, "FilterRecord.name", max_len=_MAX_NAME)
        _as_int(self.filter_id, "FilterRecord.filter_id", minimum=0)
        _as_str(self.stored_text, "FilterRecord.stored_text", min_len=0)


@dataclass(frozen=True, slots=True)
class UserAssignment(CanonicalModel):
    username: str
    userhost: str
    filter_name: str

    def __post_init__(self) -> None:
        _as_str(self.username, "UserAssignment.username")
        _as_str(self.userhost, "UserAssignment.userhost", min_len=0)
        _as_str(self.filter_name, "UserAssignment.filter_name", max_len=_MAX_NAME)

    @property
    def key(self) -> tuple[str, str]:
        return (self.username, self.userhost)

    @property
    def user_spec(self) -> str:
        return build_user_spec(self.username, self.userhost)

    @property
    def is_default(self) -> bool:
        return self.username == DEFAULT_USER

    def with_filter(self, filter_name: str) -> UserAssignment:
        return UserAssignment(self.username, self.userhost, filter_name)


@dataclass(frozen=True, slots=True)
class UpdatePlan(CanonicalModel):
    """Snapshot carried through one update; never persisted."""

    filter_name: str
    old_text: str
    new_text: str
    affected_assignments: tuple[UserAssignment, ...] = ()

    def __post_init__(self) -> None:
        _as_str(self.filter_name, "UpdatePlan.filter_name", max_len=_MAX_NAME)
        _as_str(self.old_text, "UpdatePlan.old_text", min_len=0)
        _as_str(self.new_text, "UpdatePlan.new_text")
        object.__setattr__(self, "affected_assignments", tuple(self.affected_assignments))


@dataclass(frozen=True, slots=True)
class RestoreOutcome(CanonicalModel):
    assignment: UserAssignment
    ok: bool
    error: str | None = None

    def __post_init__(self) -> None:
        if self.ok and self.error is not None:
            _fail("RestoreOutcome.error", "must be None when ok is true")
        if not self.ok and not self.error:
            _fail("RestoreOutcome.error", "is required when ok is false")


@dataclass(frozen=True, slots=True)
class UpdateResult(CanonicalModel):
    """Result of an update that reached a completed state."""

    state: UpdateState
    record: FilterRecord
    plan: UpdatePlan
    restore_outcomes: tuple[RestoreOutcome, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    transitions: tuple[UpdateState, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.state not in (UpdateState.COMPLETED_CLEAN, UpdateState.COMPLETED_WITH_WARNINGS):
            _fail("UpdateResult.state", f"not a completed state: {self.state}")
        object.__setattr__(self, "restore_outcomes", tuple(self.restore_outcomes))
        object.__setattr__(self, "diagnostics", tuple(self.diagnostics))
        object.__setattr__(self, "transitions", tuple(self.transitions))

    @property
    def failed_restorations(self) -> tuple[UserAssignment, ...]:
        return tuple(outcome.assignment for outcome in self.restore_outcomes if not outcome.ok)

    @property
    def warnings(self) -> tuple[Diagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.severity is Severity.WARNING)


@dataclass(frozen=True, slots=True)
class FilterReadResult(CanonicalModel):
    """Faithful read-back of a filter. ``drifted`` is None when no known text was supplied."""

    record: FilterRecord
    canonical_text: str
    drifted: bool | None = None


def failed_bindings(outcomes: Sequence[RestoreOutcome]) -> tuple[tuple[str, str], ...]:
    return tuple(outcome.assignment.key for outcome in outcomes if not outcome.ok)


__all__ = [
    "CanonicalModel",
    "Diagnostic",
    "FilterDefinition",
    "FilterReadResult",
    "FilterRecord",
    "JSONScalar",
    "JSONValue",
    "RestoreOutcome",
    "Severity",
    "TERMINAL_UPDATE_STATES",
    "UpdatePlan",
    "UpdateResult",
    "UpdateState",
    "UserAssignment",
    "build_user_spec",
    "failed_bindings",
    "parse_user_spec",
]
