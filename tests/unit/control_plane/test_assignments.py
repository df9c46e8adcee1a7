"""Unit tests for assignment snapshot/restore and the single-assignment controller."""

from __future__ import annotations

import pytest

from auditlog_filters.control_plane import AssignmentController, AssignmentReconciler
from auditlog_filters.domain.errors import (
    AssignmentAlreadyExistsError,
    AssignmentNotFoundError,
    FilterNotFoundError,
    StoreError,
    StoreResultError,
)
from auditlog_filters.domain.models import UserAssignment

from . import FakeFilterStore, RecordingLogger

FILTER_TEXT = '{"filter":{"log":true}}'


def _seeded() -> FakeFilterStore:
    store = FakeFilterStore()
    store.seed_filter("f", FILTER_TEXT)
    store.seed_filter("g", FILTER_TEXT)
    return store


def test_snapshot_lists_only_bindings_of_the_filter() -> None:
    store = _seeded()
    store.seed_assignment("bob", "localhost", "f")
    store.seed_assignment("alice", "%", "f")
    store.seed_assignment("carol", "%", "g")
    logger = RecordingLogger()

    snapshot = AssignmentReconciler(store, logger=logger).snapshot("f")

    assert [item.key for item in snapshot] == [("alice", "%"), ("bob", "localhost")]
    assert all(item.filter_name == "f" for item in snapshot)
    _, name, payload = logger.events[-1]
    assert name == "assignment_snapshot_captured"
    assert payload["assignment_count"] == 2
    assert payload["user_specs"] == ["alice@%", "bob@localhost"]


def test_snapshot_of_unbound_filter_is_empty() -> None:
    assert AssignmentReconciler(_seeded(), logger=RecordingLogger()).snapshot("f") == ()


def test_restore_attempts_every_binding_despite_failures() -> None:
    store = _seeded()
    store.fail("set_assignment", StoreError("set assignment", "Lock wait timeout exceeded"),
               when=lambda user_spec, _f: user_spec == "alice@%")
    store.fail("set_assignment", "ERROR: Unknown user",
               when=lambda user_spec, _f: user_spec == "bob@localhost")
    logger = RecordingLogger()
    assignments = [
        UserAssignment("alice", "%", "f"),
        UserAssignment("bob", "localhost", "f"),
        UserAssignment("carol", "10.0.%", "f"),
    ]

    outcomes = AssignmentReconciler(store, logger=logger).restore(assignments, "f")

    assert [outcome.ok for outcome in outcomes] == [False, False, True]
    assert outcomes[0].error == "set assignment: Lock wait timeout exceeded"
    assert outcomes[1].error == "server returned an error: ERROR: Unknown user"
    assert outcomes[2].error is None
    assert store.assignments == {("carol", "10.0.%"): "f"}
    assert logger.names("warning") == ["assignment_restore_failed", "assignment_restore_failed"]
    assert logger.names("info") == ["assignment_restored"]


def test_restore_rebinds_to_the_given_filter() -> None:
    store = _seeded()

    outcomes = AssignmentReconciler(store, logger=RecordingLogger()).restore(
        [UserAssignment("alice", "%", "f")], "g"
    )

    assert outcomes[0].assignment.filter_name == "g"
    assert store.assignments == {("alice", "%"): "g"}


def test_restore_does_not_swallow_unexpected_errors() -> None:
    store = _seeded()
    store.fail("set_assignment", RuntimeError("bug"))

    with pytest.raises(RuntimeError, match="bug"):
        AssignmentReconciler(store, logger=RecordingLogger()).restore(
            [UserAssignment("alice", "%", "f")], "f"
        )


def test_create_defaults_empty_host_to_any_host() -> None:
    store = _seeded()
    logger = RecordingLogger()

    assignment = AssignmentController(store, logger=logger).create("alice", "", "f")

    assert assignment == UserAssignment("alice", "%", "f")
    assert store.called("set_assignment") == [("alice@%", "f")]
    assert logger.names() == ["assignment_created"]


def test_create_requires_existing_filter() -> None:
    store = _seeded()

    with pytest.raises(FilterNotFoundError):
        AssignmentController(store, logger=RecordingLogger()).create("alice", "%", "missing")

    assert store.called("set_assignment") == []


def test_create_rejects_existing_binding() -> None:
    store = _seeded()
    store.seed_assignment("alice", "%", "g")

    with pytest.raises(AssignmentAlreadyExistsError, match="alice@%"):
        AssignmentController(store, logger=RecordingLogger()).create("alice", "%", "f")

    assert store.assignments == {("alice", "%"): "g"}


def test_create_surfaces_non_ok_result() -> None:
    store = _seeded()
    store.fail("set_assignment", "ERROR: Invalid character in the user name")

    with pytest.raises(StoreResultError) as excinfo:
        AssignmentController(store, logger=RecordingLogger()).create("al ice", "%", "f")

    assert excinfo.value.operation == "create assignment"


def test_read_and_missing_read() -> None:
    store = _seeded()
    store.seed_assignment("alice", "localhost", "f")
    controller = AssignmentController(store, logger=RecordingLogger())

    assert controller.read("alice", "localhost") == UserAssignment("alice", "localhost", "f")
    with pytest.raises(AssignmentNotFoundError, match="bob@%"):
        controller.read("bob", "")


def test_update_repoints_binding() -> None:
    store = _seeded()
    store.seed_assignment("alice", "%", "f")

    updated = AssignmentController(store, logger=RecordingLogger()).update("alice", "%", "g")

    assert updated.filter_name == "g"
    assert store.assignments == {("alice", "%"): "g"}


def test_update_requires_target_filter() -> None:
    store = _seeded()
    store.seed_assignment("alice", "%", "f")

    with pytest.raises(FilterNotFoundError):
        AssignmentController(store, logger=RecordingLogger()).update("alice", "%", "missing")

    assert store.assignments == {("alice", "%"): "f"}


def test_delete_removes_binding() -> None:
    store = _seeded()
    store.seed_assignment("alice", "%", "f")
    controller = AssignmentController(store, logger=RecordingLogger())

    controller.delete("alice", "")

    assert store.assignments == {}


def test_delete_of_absent_binding_is_not_found() -> None:
    store = _seeded()
    controller = AssignmentController(store, logger=RecordingLogger())

    with pytest.raises(AssignmentNotFoundError, match="ghost@%") as excinfo:
        controller.delete("ghost", "%")

    assert excinfo.value.user_spec == "ghost@%"
    assert excinfo.value.__cause__ is None


def test_delete_failure_of_existing_binding_propagates() -> None:
    store = _seeded()
    store.seed_assignment("alice", "%", "f")
    store.fail("remove_assignment", "ERROR: lock wait timeout")
    controller = AssignmentController(store, logger=RecordingLogger())

    with pytest.raises(StoreResultError, match="lock wait timeout"):
        controller.delete("alice", "%")

    assert store.assignments == {("alice", "%"): "f"}


def test_import_parses_user_spec_forms() -> None:
    store = _seeded()
    store.seed_assignment("alice", "10.0.0.1", "f")
    store.seed_assignment("bob", "%", "g")
    store.seed_assignment("%", "", "g")
    controller = AssignmentController(store, logger=RecordingLogger())

    assert controller.import_assignment("alice@10.0.0.1") == UserAssignment("alice", "10.0.0.1", "f")
    assert controller.import_assignment("bob") == UserAssignment("bob", "%", "g")
    default = controller.import_assignment("%")
    assert default.is_default
    assert default.user_spec == "%"


def test_import_missing_assignment_raises_not_found() -> None:
    with pytest.raises(AssignmentNotFoundError, match="nobody@%"):
        AssignmentController(_seeded(), logger=RecordingLogger()).import_assignment("nobody@%")
