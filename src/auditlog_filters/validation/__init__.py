"""Filter definition validation and canonicalization."""

from auditlog_filters.validation.definition import (
    build_filter_definition,
    canonicalize,
    check_definition,
    check_filter_name,
    classify_node,
    parse_definition,
    validate_definition,
)

__all__ = [
    "build_filter_definition",
    "canonicalize",
    "check_definition",
    "check_filter_name",
    "classify_node",
    "parse_definition",
    "validate_definition",
]
