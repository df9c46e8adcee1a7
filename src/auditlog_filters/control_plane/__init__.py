"""Control-plane public API."""

from auditlog_filters.control_plane.assignments import AssignmentController, AssignmentReconciler
from auditlog_filters.control_plane.controller import (
    RECREATION_ADVISORY,
    FilterLifecycleController,
)

__all__ = [
    "AssignmentController",
    "AssignmentReconciler",
    "FilterLifecycleController",
    "RECREATION_ADVISORY",
]
