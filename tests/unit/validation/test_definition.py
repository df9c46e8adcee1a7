"""Unit tests for filter definition validation and canonicalization."""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from auditlog_filters.domain.errors import (
    DefinitionValidationError,
    InvalidConditionError,
    InvalidFilterNameError,
    MalformedJSONError,
    MissingFilterRootError,
    MultipleLogicalOperatorsError,
    NotAnObjectError,
)
from auditlog_filters.validation import (
    build_filter_definition,
    canonicalize,
    check_definition,
    classify_node,
    parse_definition,
    validate_definition,
)
from auditlog_filters.validation.definition import (
    ArrayNode,
    LogicalNode,
    PlainNode,
    ScalarNode,
    canonicalize_document,
)

CONNECTION_FILTER = '{"filter":{"class":{"name":"connection"}}}'
NESTED_FILTER = (
    '{"filter":{"class":{"name":"t","event":{"log":{"and":[{"field":{"name":"a","value":"x"}},'
    '{"or":[{"field":{"name":"b","value":"y"}},{"field":{"name":"b","value":"z"}}]}]}}}}}'
)


def test_accepts_plain_class_filter() -> None:
    validate_definition(CONNECTION_FILTER)
    assert check_definition(CONNECTION_FILTER) is None


def test_accepts_nested_and_or_conditions() -> None:
    document = parse_definition(NESTED_FILTER)
    assert document["filter"]["class"]["name"] == "t"


def test_rejects_object_with_two_logical_operators() -> None:
    text = (
        '{"filter":{"class":{"name":"t","event":{"log":'
        '{"field":{"name":"a"},"or":[{"field":{"name":"b"}}]}}}}}'
    )

    with pytest.raises(MultipleLogicalOperatorsError) as excinfo:
        validate_definition(text)

    error = excinfo.value
    assert error.path == "$.filter.class.event.log"
    assert error.operators == ("or", "field")
    assert "field" in str(error)
    assert "or" in str(error)
    assert "$.filter.class.event.log" in str(error)


def test_rejects_unbalanced_braces_as_malformed_json() -> None:
    with pytest.raises(MalformedJSONError, match="valid JSON"):
        validate_definition('{"filter":{"class":{"name":"connection"}}')


@pytest.mark.parametrize(
    ("text", "error_type", "path"),
    [
        ("[]", NotAnObjectError, "$"),
        ('"filter"', NotAnObjectError, "$"),
        ("{}", MissingFilterRootError, "$"),
        ('{"class":{"name":"connection"}}', MissingFilterRootError, "$"),
        ('{"filter":true}', MissingFilterRootError, "$.filter"),
        ('{"filter":[]}', MissingFilterRootError, "$.filter"),
    ],
)
def test_rejects_wrong_document_shape(
    text: str, error_type: type[DefinitionValidationError], path: str
) -> None:
    with pytest.raises(error_type) as excinfo:
        validate_definition(text)
    assert excinfo.value.path == path


@pytest.mark.parametrize(
    ("log_value", "path"),
    [
        ('{"and":[]}', "$.filter.log.and"),
        ('{"or":{"field":{"name":"a"}}}', "$.filter.log.or"),
        ('{"or":[{"field":{"name":"a"}},"b"]}', "$.filter.log.or[1]"),
        ('{"not":[{"field":{"name":"a"}}]}', "$.filter.log.not"),
        ('{"field":"user"}', "$.filter.log.field"),
        ('{"not":{"and":[{"field":{}}, {"or":[]}]}}', "$.filter.log.not.and[1].or"),
    ],
)
def test_rejects_misshapen_operands_with_path(log_value: str, path: str) -> None:
    with pytest.raises(InvalidConditionError) as excinfo:
        validate_definition(f'{{"filter":{{"log":{log_value}}}}}')
    assert excinfo.value.path == path
    assert path in str(excinfo.value)


def test_rejects_ambiguous_object_inside_array() -> None:
    text = '{"filter":{"log":{"and":[{"field":{"name":"a"}},{"not":{"field":{}},"and":[{}]}]}}}'

    with pytest.raises(MultipleLogicalOperatorsError) as excinfo:
        validate_definition(text)

    assert excinfo.value.path == "$.filter.log.and[1]"
    assert excinfo.value.operators == ("and", "not")


def test_rejects_non_standard_constants() -> None:
    with pytest.raises(MalformedJSONError):
        validate_definition('{"filter":{"threshold":NaN}}')


@pytest.mark.parametrize(
    "text",
    [
        '{"filter":{"class":{"name":"\\ud800"}}}',
        '{"filter":{"class":{"\\udfff":"connection"}}}',
        '{"filter":{"log":{"field":{"name":"a","value":["ok","\\ude00x"]}}}}',
    ],
)
def test_rejects_unpaired_surrogate_escapes(text: str) -> None:
    with pytest.raises(MalformedJSONError, match="unpaired surrogate"):
        validate_definition(text)


def test_accepts_escaped_surrogate_pair() -> None:
    definition = build_filter_definition("f", '{"filter":{"class":{"name":"\\ud83d\\ude00"}}}')
    assert definition.normalized_text == '{"filter":{"class":{"name":"\U0001f600"}}}'


def test_rejects_non_string_input() -> None:
    with pytest.raises(MalformedJSONError, match="JSON string"):
        validate_definition(b'{"filter":{}}')  # type: ignore[arg-type]


def test_rejects_excessive_nesting() -> None:
    depth = 300
    chain = '{"not":' * depth + '{"field":{"name":"a"}}' + "}" * depth
    with pytest.raises(InvalidConditionError, match="maximum nesting depth"):
        validate_definition(f'{{"filter":{{"log":{chain}}}}}')


def test_check_definition_returns_the_error() -> None:
    error = check_definition('{"filter":{"log":{"and":[]}}}')
    assert isinstance(error, InvalidConditionError)


def test_classify_node_variants() -> None:
    assert isinstance(classify_node(1), ScalarNode)
    assert isinstance(classify_node([1]), ArrayNode)
    assert isinstance(classify_node({"name": "x"}), PlainNode)
    node = classify_node({"not": {"field": {}}}, "$.filter.log")
    assert isinstance(node, LogicalNode)
    assert node.operator == "not"
    assert node.path == "$.filter.log"


def test_canonicalize_sorts_keys_and_strips_whitespace() -> None:
    text = '{\n  "filter": { "log": true, "class": { "name": "connection" } }\n}'
    assert canonicalize(text) == '{"filter":{"class":{"name":"connection"},"log":true}}'


def test_canonicalize_keeps_non_ascii_text() -> None:
    assert canonicalize('{"filter":{"user":"jos\\u00e9"}}') == '{"filter":{"user":"josé"}}'


def test_build_filter_definition_binds_name_and_canonical_text() -> None:
    definition = build_filter_definition("log_all", '{ "filter": { "log": true } }')
    assert definition.name == "log_all"
    assert definition.raw_text == '{ "filter": { "log": true } }'
    assert definition.normalized_text == '{"filter":{"log":true}}'


@pytest.mark.parametrize(
    ("name", "message"),
    [("x" * 256, "at most 255 characters"), ("", "must not be empty"), (7, "must be a string")],
)
def test_build_filter_definition_rejects_bad_names(name: object, message: str) -> None:
    with pytest.raises(InvalidFilterNameError, match=message) as excinfo:
        build_filter_definition(name, CONNECTION_FILTER)  # type: ignore[arg-type]
    assert isinstance(excinfo.value, DefinitionValidationError)
    assert excinfo.value.path is None


def test_build_filter_definition_accepts_name_at_length_limit() -> None:
    assert build_filter_definition("x" * 255, CONNECTION_FILTER).name == "x" * 255


_NAMES = st.sampled_from(("user", "host", "table_name", "status", "query"))
_VALUES = st.one_of(st.text(max_size=12), st.integers(-5, 5), st.booleans())
_LEAF = st.builds(lambda name, value: {"field": {"name": name, "value": value}}, _NAMES, _VALUES)
_CONDITIONS = st.recursive(
    _LEAF,
    lambda children: st.one_of(
        st.lists(children, min_size=1, max_size=3).map(lambda items: {"and": items}),
        st.lists(children, min_size=1, max_size=3).map(lambda items: {"or": items}),
        children.map(lambda item: {"not": item}),
    ),
    max_leaves=10,
)
_DOCUMENTS = _CONDITIONS.map(
    lambda condition: {"filter": {"class": {"name": "table_access", "event": {"log": condition}}}}
)


@settings(max_examples=80, deadline=None)
@given(document=_DOCUMENTS)
def test_property_valid_trees_are_accepted_and_canonicalize_stably(document: dict) -> None:
    pretty = json.dumps(document, indent=2)
    validate_definition(pretty)

    canonical = canonicalize(pretty)
    assert canonicalize(canonical) == canonical
    assert canonical == canonicalize_document(document)
    assert json.loads(canonical) == document


@settings(max_examples=80, deadline=None)
@given(condition=_CONDITIONS)
def test_property_second_operator_is_rejected_at_the_condition_path(condition: dict) -> None:
    (operator,) = condition
    extra = ("or", [{"field": {"name": "user"}}]) if operator == "field" else ("field", {})
    ambiguous = {**condition, extra[0]: extra[1]}
    text = json.dumps({"filter": {"log": ambiguous}})

    with pytest.raises(MultipleLogicalOperatorsError) as excinfo:
        validate_definition(text)

    assert excinfo.value.path == "$.filter.log"
    assert set(excinfo.value.operators) == {operator, extra[0]}


@settings(max_examples=40, deadline=None)
@given(depth=st.integers(min_value=0, max_value=60))
def test_property_invalid_leaf_is_found_at_any_depth(depth: int) -> None:
    text = '{"filter":{"log":' + '{"not":' * depth + '{"or":[]}' + "}" * depth + "}}"
    expected_path = "$.filter.log" + ".not" * depth + ".or"

    with pytest.raises(InvalidConditionError) as excinfo:
        validate_definition(text)

    assert excinfo.value.path == expected_path
