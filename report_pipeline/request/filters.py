# report_pipeline/request/filters.py
#
# Parser for the compact filter grammar stored in DIMENSION_FILTERS /
# METRIC_FILTERS configuration columns.
#
# Grammar:
#   filters   := segment (";" segment)*
#   segment   := field ":" operator ":" value
#              | "customEvent" ":" parameter ":" operator ":" value
#
# Design decisions:
#   - The value is the remainder of the segment (maxsplit), so regex values
#     and URLs containing ":" survive intact.
#   - Operators are matched strictly against MatchOperator; an unknown operator
#     aborts the parse and no partial filter list is returned.
#   - Quote escaping is not done here: the request builder serialises through
#     the json module, which escapes embedded quotes.
#
# Invariant: parse_filters(format_filters(filters)) == filters.
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from report_pipeline.errors import FilterFormatError, UnknownOperatorError

CUSTOM_EVENT_TOKEN = "customEvent"

_SEGMENT_SEPARATOR = ";"
_FIELD_SEPARATOR = ":"


class MatchOperator(StrEnum):
    EXACT = "EXACT"
    BEGINS_WITH = "BEGINS_WITH"
    ENDS_WITH = "ENDS_WITH"
    CONTAINS = "CONTAINS"
    FULL_REGEXP = "FULL_REGEXP"
    PARTIAL_REGEXP = "PARTIAL_REGEXP"


@dataclass(frozen=True)
class FieldFilter:
    """Predicate on a dimension or metric field."""

    field: str
    operator: MatchOperator
    value: str


@dataclass(frozen=True)
class CustomParameterFilter:
    """Predicate on a custom event parameter."""

    parameter_name: str
    operator: MatchOperator
    value: str


FilterExpression = FieldFilter | CustomParameterFilter


def parse_filters(text: str | None) -> tuple[FilterExpression, ...]:
    """Parse a filter string into an ordered tuple of predicates.

    Args:
        text: Raw filter string, e.g. ``"country:EXACT:BR;page:CONTAINS:/blog"``.
            None, empty or blank input means "no filters".

    Returns:
        Predicates in the order they appear in *text*.

    Raises:
        FilterFormatError: a segment has too few fields or an empty field.
        UnknownOperatorError: an operator is not a MatchOperator member.
    """
    if text is None or not text.strip():
        return ()

    filters: list[FilterExpression] = []
    for segment in text.split(_SEGMENT_SEPARATOR):
        if not segment.strip():
            continue
        filters.append(_parse_segment(segment))
    return tuple(filters)


def _parse_segment(segment: str) -> FilterExpression:
    head = segment.split(_FIELD_SEPARATOR, 1)[0].strip()

    if head == CUSTOM_EVENT_TOKEN:
        fields = _split_fields(segment, expected=4)
        _, parameter_name, operator, value = fields
        return CustomParameterFilter(parameter_name, _parse_operator(operator, segment), value)

    field, operator, value = _split_fields(segment, expected=3)
    return FieldFilter(field, _parse_operator(operator, segment), value)


def _split_fields(segment: str, expected: int) -> list[str]:
    fields = [part.strip() for part in segment.split(_FIELD_SEPARATOR, expected - 1)]
    if len(fields) != expected or not all(fields):
        raise FilterFormatError(
            f"Invalid filter segment {segment.strip()!r}: expected {expected} non-empty "
            f"':'-separated fields",
            {"segment": segment},
        )
    return fields


def _parse_operator(raw: str, segment: str) -> MatchOperator:
    try:
        return MatchOperator(raw)
    except ValueError:
        allowed = ", ".join(op.value for op in MatchOperator)
        raise UnknownOperatorError(
            f"Unknown filter operator {raw!r} in {segment.strip()!r}. Allowed: {allowed}",
            {"operator": raw},
        ) from None


def format_filters(filters: tuple[FilterExpression, ...] | list[FilterExpression]) -> str:
    """Render predicates back into the canonical filter grammar."""
    segments: list[str] = []
    for expression in filters:
        if isinstance(expression, CustomParameterFilter):
            parts = [CUSTOM_EVENT_TOKEN, expression.parameter_name, expression.operator.value, expression.value]
        else:
            parts = [expression.field, expression.operator.value, expression.value]
        segments.append(_FIELD_SEPARATOR.join(parts))
    return _SEGMENT_SEPARATOR.join(segments)
