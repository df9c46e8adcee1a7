"""
Filter lifecycle controller.

The server has no in-place update for audit log filters, so `update` is a
replace: snapshot the stored text and the bound assignments, remove the filter
(which also drops its assignments), recreate it with the new text, then
re-issue every assignment. The steps run as an explicit state machine carried
by an `UpdatePlan`; every transition is logged and recorded on the result.

If recreation fails the previous stored text is recreated verbatim
(rollback). A failed rollback is the one unrecoverable case: the filter is
gone from the server and `RollbackFailedError` asks for manual restoration.

Create's existence check and update's snapshot-then-remove window are not
atomic with respect to other writers of the same filter name.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final, NoReturn

import structlog

from auditlog_filters.control_plane.assignments import AssignmentReconciler
from auditlog_filters.domain.errors import (
    AuditLogFilterError,
    DefinitionValidationError,
    FilterAlreadyExistsError,
    FilterNotFoundError,
    RecreateFailedError,
    RemoveFailedError,
    RollbackFailedError,
    StoreError,
)
from auditlog_filters.domain.models import (
    Diagnostic,
    FilterReadResult,
    FilterRecord,
    RestoreOutcome,
    Severity,
    UpdatePlan,
    UpdateResult,
    UpdateState,
    failed_bindings,
)
from auditlog_filters.observability.logging import correlation_scope
from auditlog_filters.persistence.store import require_ok
from auditlog_filters.validation.definition import build_filter_definition, canonicalize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from auditlog_filters.persistence.store import FilterStore

RECREATION_ADVISORY: Final[Diagnostic] = Diagnostic(
    severity=Severity.WARNING,
    summary="Filter Update Requires Recreation",
    detail=(
        "MySQL audit log filters cannot be updated in-place. The existing filter is removed "
        "and recreated with the new definition, which may temporarily affect active sessions "
        "using this filter. Sessions may need to reconnect to pick up the new filter rules."
    ),
)

_UPDATE_TRANSITIONS: Final[Mapping[UpdateState, frozenset[UpdateState]]] = {
    UpdateState.REQUESTED: frozenset({UpdateState.VALIDATING}),
    UpdateState.VALIDATING: frozenset({UpdateState.REJECTED, UpdateState.CAPTURING_SNAPSHOT}),
    UpdateState.CAPTURING_SNAPSHOT: frozenset({UpdateState.REMOVING, UpdateState.ABORTED}),
    UpdateState.REMOVING: frozenset({UpdateState.RECREATING, UpdateState.ABORTED}),
    UpdateState.RECREATING: frozenset(
        {UpdateState.RESTORING_ASSIGNMENTS, UpdateState.RECREATE_FAILED}
    ),
    UpdateState.RECREATE_FAILED: frozenset({UpdateState.ROLLING_BACK}),
    UpdateState.ROLLING_BACK: frozenset(
        {UpdateState.ROLLED_BACK_OK, UpdateState.ROLLED_BACK_FAILED}
    ),
    UpdateState.RESTORING_ASSIGNMENTS: frozenset(
        {UpdateState.COMPLETED_CLEAN, UpdateState.COMPLETED_WITH_WARNINGS}
    ),
}


class _UpdateRun:
    """Mutable bookkeeping for one update: current state, history, diagnostics."""

    def __init__(self, filter_name: str, logger: Any) -> None:
        self.filter_name = filter_name
        self.state = UpdateState.REQUESTED
        self.transitions: list[UpdateState] = [UpdateState.REQUESTED]
        self.diagnostics: list[Diagnostic] = [RECREATION_ADVISORY]
        self.restore_outcomes: list[RestoreOutcome] = []
        self.plan: UpdatePlan | None = None
        self._logger = logger

    def advance(self, target: UpdateState) -> None:
        allowed = _UPDATE_TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise RuntimeError(f"illegal update transition {self.state} -> {target}")
        self._logger.info(
            "filter_update_transition",
            filter_name=self.filter_name,
            from_state=self.state.value,
            to_state=target.value,
        )
        self.state = target
        self.transitions.append(target)

    def add(self, severity: Severity, summary: str, detail: str) -> None:
        self.diagnostics.append(Diagnostic(severity=severity, summary=summary, detail=detail))

    def record_restorations(self, outcomes: Sequence[RestoreOutcome]) -> None:
        self.restore_outcomes.extend(outcomes)
        for outcome in outcomes:
            if outcome.ok:
                continue
            self.add(
                Severity.WARNING,
                "Failed to Restore User Assignment",
                f"Could not restore user assignment for '{outcome.assignment.user_spec}': "
                f"{outcome.error}. You may need to manually reassign this user to the filter "
                f"'{outcome.assignment.filter_name}'.",
            )

    def surface(self, exc: AuditLogFilterError) -> None:
        exc.diagnostics = tuple(self.diagnostics)


class FilterLifecycleController:
    """Create, update, delete, import and read audit log filters through a store."""

    def __init__(self, store: FilterStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._reconciler = AssignmentReconciler(store, logger=self._logger)

    def create(self, name: str, text: str) -> FilterRecord:
        with correlation_scope(operation="filter_create", filter_name=name):
            definition = build_filter_definition(name, text)
            if self._store.filter_exists(name):
                raise FilterAlreadyExistsError(name)

            require_ok("create filter", self._store.create_filter(name, definition.normalized_text))
            record = self._read_back(name, "read created filter")
            self._logger.info(
                "filter_create_completed",
                filter_name=name,
                filter_id=record.filter_id,
            )
            return record

    def update(self, name: str, new_text: str) -> UpdateResult:
        """Replace the definition of ``name`` and restore its assignments.

        Returns an `UpdateResult` in ``COMPLETED_CLEAN`` or
        ``COMPLETED_WITH_WARNINGS`` (one warning per binding that could not be
        restored). Every outcome, success or failure, carries the recreation
        advisory in its diagnostics.

        Raises:
            DefinitionValidationError: ``name`` or ``new_text`` was rejected (state REJECTED).
            FilterNotFoundError: there is no filter to update (state ABORTED).
            StoreError: the snapshot could not be read (state ABORTED).
                Also raised, with the advisory attached, when the updated filter
                cannot be read back after a completed update.
            RemoveFailedError: removal failed; nothing changed (state ABORTED).
            RecreateFailedError: recreation failed and the previous definition
                was restored (state ROLLED_BACK_OK).
            RollbackFailedError: recreation and rollback both failed
                (state ROLLED_BACK_FAILED); manual intervention is required.
        """

        run = _UpdateRun(name, self._logger)
        with correlation_scope(operation="filter_update", filter_name=name):
            run.advance(UpdateState.VALIDATING)
            try:
                definition = build_filter_definition(name, new_text)
            except DefinitionValidationError as exc:
                run.advance(UpdateState.REJECTED)
                run.surface(exc)
                raise

            run.advance(UpdateState.CAPTURING_SNAPSHOT)
            try:
                plan = self._capture_plan(name, definition.normalized_text)
            except (FilterNotFoundError, StoreError) as exc:
                run.advance(UpdateState.ABORTED)
                run.surface(exc)
                raise
            run.plan = plan

            run.advance(UpdateState.REMOVING)
            try:
                require_ok("remove filter", self._store.remove_filter(name))
            except StoreError as exc:
                run.advance(UpdateState.ABORTED)
                run.add(
                    Severity.ERROR,
                    "Filter Removal Failed",
                    f"Could not remove the existing filter during update: {exc}. "
                    "The filter and its assignments were left unchanged.",
                )
                raise RemoveFailedError(
                    f"update of filter {name!r} aborted: {exc}",
                    state=run.state,
                    plan=plan,
                    cause=exc,
                    diagnostics=run.diagnostics,
                ) from exc

            run.advance(UpdateState.RECREATING)
            try:
                require_ok("recreate filter", self._store.create_filter(name, plan.new_text))
            except Exception as exc:
                run.advance(UpdateState.RECREATE_FAILED)
                self._roll_back(run, plan, _as_store_error("recreate filter", exc))

            run.advance(UpdateState.RESTORING_ASSIGNMENTS)
            if plan.affected_assignments:
                count = len(plan.affected_assignments)
                run.add(
                    Severity.WARNING,
                    "Restoring User Assignments",
                    f"Restoring {count} user assignment(s) that were affected by the filter "
                    "update. These users may experience a brief interruption in audit logging.",
                )
            run.record_restorations(self._reconciler.restore(plan.affected_assignments, name))
            failed = failed_bindings(run.restore_outcomes)
            run.advance(
                UpdateState.COMPLETED_WITH_WARNINGS if failed else UpdateState.COMPLETED_CLEAN
            )

            try:
                record = self._read_back(name, "read updated filter")
            except StoreError as exc:
                run.surface(exc)
                raise
            self._logger.info(
                "filter_update_completed",
                filter_name=name,
                state=run.state.value,
                filter_id=record.filter_id,
                restored=len(run.restore_outcomes) - len(failed),
                failed_bindings=[list(binding) for binding in failed],
            )
            return UpdateResult(
                state=run.state,
                record=record,
                plan=plan,
                restore_outcomes=tuple(run.restore_outcomes),
                diagnostics=tuple(run.diagnostics),
                transitions=tuple(run.transitions),
            )

    def delete(self, name: str) -> None:
        """Remove ``name``; the server drops its assignments with it."""

        with correlation_scope(operation="filter_delete", filter_name=name):
            try:
                require_ok("delete filter", self._store.remove_filter(name))
            except StoreError:
                if not self._store.filter_exists(name):
                    raise FilterNotFoundError(name) from None
                raise
            self._logger.info("filter_delete_completed", filter_name=name)

    def import_filter(self, name: str) -> FilterReadResult:
        with correlation_scope(operation="filter_import", filter_name=name):
            record = self._require_record(name)
            return FilterReadResult(
                record=record,
                canonical_text=self._canonical_or_raw(name, record.stored_text),
            )

    def read(self, name: str, *, known_text: str | None = None) -> FilterReadResult:
        """Faithful read-back of ``name``.

        When ``known_text`` (the last desired definition) is given, ``drifted``
        reports whether its canonical form differs from the stored one.
        """

        with correlation_scope(operation="filter_read", filter_name=name):
            record = self._require_record(name)
            canonical_text = self._canonical_or_raw(name, record.stored_text)
            drifted: bool | None = None
            if known_text is not None:
                drifted = self._canonical_or_raw(name, known_text) != canonical_text
                if drifted:
                    self._logger.info("filter_drift_detected", filter_name=name)
            return FilterReadResult(record=record, canonical_text=canonical_text, drifted=drifted)

    def _capture_plan(self, name: str, new_text: str) -> UpdatePlan:
        record = self._require_record(name)
        assignments = self._reconciler.snapshot(name)
        return UpdatePlan(
            filter_name=name,
            old_text=record.stored_text,
            new_text=new_text,
            affected_assignments=assignments,
        )

    def _roll_back(self, run: _UpdateRun, plan: UpdatePlan, cause: StoreError) -> NoReturn:
        name = plan.filter_name
        run.advance(UpdateState.ROLLING_BACK)
        try:
            require_ok("rollback filter", self._store.create_filter(name, plan.old_text))
        except Exception as exc:
            rollback_exc = _as_store_error("rollback filter", exc)
            run.advance(UpdateState.ROLLED_BACK_FAILED)
            lost = ", ".join(item.user_spec for item in plan.affected_assignments) or "none"
            run.add(
                Severity.ERROR,
                "Filter Rollback Failed",
                f"Could not recreate filter {name!r} with the new definition ({cause}) and could "
                f"not restore the previous definition ({rollback_exc}). The filter no longer "
                f"exists on the server and must be restored manually; assignments lost: {lost}.",
            )
            self._logger.error(
                "filter_update_rollback_failed",
                filter_name=name,
                recreate_error=str(cause),
                rollback_error=str(rollback_exc),
            )
            raise RollbackFailedError(
                f"update of filter {name!r} failed and rollback failed; manual intervention "
                f"required: recreate error: {cause}; rollback error: {rollback_exc}",
                state=run.state,
                plan=plan,
                cause=cause,
                rollback_cause=rollback_exc,
                diagnostics=run.diagnostics,
            ) from cause

        run.record_restorations(self._reconciler.restore(plan.affected_assignments, name))
        run.advance(UpdateState.ROLLED_BACK_OK)
        run.add(
            Severity.ERROR,
            "Filter Recreation Failed",
            f"Could not recreate filter {name!r} with the new definition: {cause}. "
            "The previous definition was restored.",
        )
        self._logger.warning(
            "filter_update_rolled_back",
            filter_name=name,
            recreate_error=str(cause),
        )
        raise RecreateFailedError(
            f"recreate of filter {name!r} failed: {cause}; previous definition restored",
            state=run.state,
            plan=plan,
            cause=cause,
            diagnostics=run.diagnostics,
        ) from cause

    def _require_record(self, name: str) -> FilterRecord:
        record = self._store.get_filter(name)
        if record is None:
            raise FilterNotFoundError(name)
        return record

    def _read_back(self, name: str, operation: str) -> FilterRecord:
        record = self._store.get_filter(name)
        if record is None:
            raise StoreError(operation, f"filter {name!r} was not found after a successful call")
        return record

    def _canonical_or_raw(self, name: str, text: str) -> str:
        try:
            return canonicalize(text)
        except DefinitionValidationError as exc:
            self._logger.warning("filter_text_not_canonicalizable", filter_name=name, error=str(exc))
            return text


def _as_store_error(operation: str, exc: Exception) -> StoreError:
    """Report any failure of a post-removal store call as a `StoreError` so rollback still runs."""

    if isinstance(exc, StoreError):
        return exc
    wrapped = StoreError(operation, f"{type(exc).__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


__all__ =["FilterLifecycleController", "RECREATION_ADVISORY"]
