"""Structural validation and canonicalization of audit log filter definitions.

A definition is a JSON document whose root object holds a single ``filter``
object. Anywhere inside the document, an object that uses one of the reserved
logical keys (``and``, ``or``, ``not``, ``field``) must use exactly one of them,
and the operand must have the right shape:

- ``and`` / ``or``: non-empty array of condition objects
- ``not``: a condition object
- ``field``: an object (its contents are not inspected)

Objects without reserved keys (``class``, ``event``, ``log``, ...) are plain
metadata and are descended into. Validation is pure: it never touches the store.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final, NoReturn, TypeAlias

from auditlog_filters.constants import (
    FILTER_ROOT_KEY,
    JSON_PATH_ROOT,
    LOGICAL_OPERATORS,
    MAX_FILTER_NAME_LENGTH,
)
from auditlog_filters.domain.errors import (
    DefinitionValidationError,
    InvalidConditionError,
    InvalidFilterNameError,
    MalformedJSONError,
    MissingFilterRootError,
    MultipleLogicalOperatorsError,
    NotAnObjectError,
)
from auditlog_filters.domain.models import FilterDefinition, JSONValue

_MAX_DEPTH: Final[int] = 256
_STRUCTURE_PREFIX: Final[str] = "the filter definition must follow MySQL logical condition structure"


@dataclass(frozen=True, slots=True)
class ScalarNode:
    path: str
    value: JSONValue


@dataclass(frozen=True, slots=True)
class ArrayNode:
    path: str
    items: list[JSONValue]


@dataclass(frozen=True, slots=True)
class PlainNode:
    """Object without reserved keys; every member is descended into."""

    path: str
    members: dict[str, JSONValue]


@dataclass(frozen=True, slots=True)
class LogicalNode:
    """Object carrying exactly one reserved operator key."""

    path: str
    operator: str
    operand: JSONValue


ConditionNode: TypeAlias = ScalarNode | ArrayNode | PlainNode | LogicalNode


def classify_node(value: JSONValue, path: str = JSON_PATH_ROOT) -> ConditionNode:
    """Tag a parsed JSON value with its structural variant.

    Raises ``MultipleLogicalOperatorsError`` for an object that defines more than
    one reserved operator key.
    """

    if isinstance(value, list):
        return ArrayNode(path=path, items=value)
    if not isinstance(value, dict):
        return ScalarNode(path=path, value=value)

    present = [key for key in LOGICAL_OPERATORS if key in value]
    if not present:
        return PlainNode(path=path, members=value)
    if len(present) > 1:
        raise MultipleLogicalOperatorsError(
            f"{_STRUCTURE_PREFIX}: {path} contains multiple logical operators "
            f"({', '.join(present)}); each condition object must contain exactly one of "
            f"{', '.join(LOGICAL_OPERATORS)}",
            path=path,
            operators=present,
        )
    operator = present[0]
    return LogicalNode(path=path, operator=operator, operand=value[operator])


def parse_definition(text: str) -> dict[str, JSONValue]:
    """Parse and structurally validate ``text``; return the parsed document."""

    parsed = _parse_json(text)
    if not isinstance(parsed, dict):
        raise NotAnObjectError(
            "the filter definition must be a JSON object", path=JSON_PATH_ROOT
        )

    if FILTER_ROOT_KEY not in parsed:
        raise MissingFilterRootError(
            f'the filter definition must include a top-level "{FILTER_ROOT_KEY}" object',
            path=JSON_PATH_ROOT,
        )
    if not isinstance(parsed[FILTER_ROOT_KEY], dict):
        raise MissingFilterRootError(
            f'the "{FILTER_ROOT_KEY}" value must be a JSON object',
            path=f"{JSON_PATH_ROOT}.{FILTER_ROOT_KEY}",
        )

    _walk(parsed, JSON_PATH_ROOT, depth=0)
    return parsed


def validate_definition(text: str) -> None:
    """Raise a ``DefinitionValidationError`` subclass when ``text`` is not a valid definition."""

    parse_definition(text)


def check_definition(text: str) -> DefinitionValidationError | None:
    """Return the validation error for ``text``, or ``None`` when it is valid."""

    try:
        parse_definition(text)
    except DefinitionValidationError as exc:
        return exc
    return None


def canonicalize(text: str) -> str:
    """Re-serialize JSON text into its canonical form.

    Canonical text has sorted keys and no insignificant whitespace, so two
    definitions that differ only in key order or formatting canonicalize to the
    same string. Canonicalizing canonical text returns it unchanged.
    """

    return canonicalize_document(_parse_json(text))


def canonicalize_document(document: Mapping[str, object] | JSONValue) -> str:
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_filter_definition(name: str, text: str) -> FilterDefinition:
    """Validate ``text`` and bind it to ``name`` together with its canonical form."""

    check_filter_name(name)
    document = parse_definition(text)
    return FilterDefinition(
        name=name,
        raw_text=text,
        normalized_text=canonicalize_document(document),
    )


def check_filter_name(name: object) -> None:
    """Reject names the server would refuse before any store call is made."""

    if not isinstance(name, str):
        raise InvalidFilterNameError(f"the filter name must be a string, got {type(name).__name__}")
    if not name:
        raise InvalidFilterNameError("the filter name must not be empty")
    if len(name) > MAX_FILTER_NAME_LENGTH:
        raise InvalidFilterNameError(
            f"the filter name must be at most {MAX_FILTER_NAME_LENGTH} characters, got {len(name)}"
        )


def _parse_json(text: str) -> JSONValue:
    if not isinstance(text, str):
        raise MalformedJSONError(
            f"the filter definition must be a JSON string, got {type(text).__name__}"
        )
    try:
        document = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise MalformedJSONError(f"the filter definition must be valid JSON: {exc}") from exc
    _reject_unpaired_surrogates(document)
    return document


def _reject_unpaired_surrogates(document: JSONValue) -> None:
    # json.loads keeps a lone \udXXX escape as a surrogate code point, which has no UTF-8 form.
    try:
        json.dumps(document, ensure_ascii=False).encode("utf-8")
    except UnicodeEncodeError as exc:
        raise MalformedJSONError(
            "the filter definition must be valid JSON: "
            f"string contains an unpaired surrogate {exc.object[exc.start]!r}"
        ) from exc


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"non-standard JSON constant {name!r}")


def _walk(value: JSONValue, path: str, *, depth: int) -> None:
    if depth > _MAX_DEPTH:
        raise InvalidConditionError(
            f"{_STRUCTURE_PREFIX}: {path} exceeds the maximum nesting depth of {_MAX_DEPTH}",
            path=path,
        )

    node = classify_node(value, path)
    if isinstance(node, ArrayNode):
        for index, item in enumerate(node.items):
            _walk(item, f"{path}[{index}]", depth=depth + 1)
    elif isinstance(node, PlainNode):
        for key, child in node.members.items():
            _walk(child, f"{path}.{key}", depth=depth + 1)
    elif isinstance(node, LogicalNode):
        _check_operator(node, depth=depth)


def _check_operator(node: LogicalNode, *, depth: int) -> None:
    operand_path = f"{node.path}.{node.operator}"

    if node.operator in ("and", "or"):
        if not isinstance(node.operand, list):
            _invalid(f"{operand_path} must be an array of condition objects", operand_path)
        if not node.operand:
            _invalid(f"{operand_path} must contain at least one condition object", operand_path)
        for index, expression in enumerate(node.operand):
            expression_path = f"{operand_path}[{index}]"
            if not isinstance(expression, dict):
                _invalid(f"{expression_path} must be a condition object", expression_path)
            _walk(expression, expression_path, depth=depth + 1)
        return

    if node.operator == "not":
        if not isinstance(node.operand, dict):
            _invalid(f"{operand_path} must be a condition object", operand_path)
        _walk(node.operand, operand_path, depth=depth + 1)
        return

    # field: leaf comparison, contents are server-defined.
    if not isinstance(node.operand, dict):
        _invalid(f"{operand_path} must be an object", operand_path)


def _invalid(message: str, path: str) -> NoReturn:
    raise InvalidConditionError(f"{_STRUCTURE_PREFIX}: {message}", path=path)


__all__ = [
    "ArrayNode",
    "ConditionNode",
    "LogicalNode",
    "PlainNode",
    "ScalarNode",
    "build_filter_definition",
    "canonicalize",
    "canonicalize_document",
    "check_definition",
    "check_filter_name",
    "classify_node",
    "parse_definition",
    "validate_definition",
]
