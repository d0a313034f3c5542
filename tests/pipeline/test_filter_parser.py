# tests/pipeline/test_filter_parser.py
#
# Tests for the DIMENSION_FILTERS / METRIC_FILTERS grammar parser.
#
# Strategy: each test feeds one raw filter string to parse_filters and checks
# the resulting predicates (or the error family). Formatting is covered
# through the canonical-form property rather than per-field string checks.
from __future__ import annotations

import pytest

from report_pipeline.errors import FilterFormatError, RequestConstructionError, UnknownOperatorError
from report_pipeline.request.filters import (
    CustomParameterFilter,
    FieldFilter,
    MatchOperator,
    format_filters,
    parse_filters,
)

# ---------------------------------------------------------------------------
# Empty input
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw", [None, "", "   ", ";", " ; ;"])
def test_empty_input_means_no_filters(raw: str | None) -> None:
    assert parse_filters(raw) == ()


# ---------------------------------------------------------------------------
# Valid segments
# ---------------------------------------------------------------------------


def test_single_field_filter() -> None:
    assert parse_filters("country:EXACT:Brazil") == (FieldFilter("country", MatchOperator.EXACT, "Brazil"),)


def test_custom_event_filter() -> None:
    result = parse_filters("customEvent:campaign:CONTAINS:summer")
    assert result == (CustomParameterFilter("campaign", MatchOperator.CONTAINS, "summer"),)


def test_mixed_segments_keep_order() -> None:
    result = parse_filters("pagePath:BEGINS_WITH:/blog;customEvent:label:EXACT:promo;city:ENDS_WITH:Paulo")
    assert result == (
        FieldFilter("pagePath", MatchOperator.BEGINS_WITH, "/blog"),
        CustomParameterFilter("label", MatchOperator.EXACT, "promo"),
        FieldFilter("city", MatchOperator.ENDS_WITH, "Paulo"),
    )


def test_value_may_contain_colons() -> None:
    """The value is the rest of the segment, so URLs survive intact."""
    result = parse_filters("pageLocation:FULL_REGEXP:https://example.com/a:b")
    assert result == (FieldFilter("pageLocation", MatchOperator.FULL_REGEXP, "https://example.com/a:b"),)


def test_empty_segments_are_skipped() -> None:
    result = parse_filters("country:EXACT:BR;;city:CONTAINS:Rio;")
    assert [f.value for f in result] == ["BR", "Rio"]


def test_surrounding_whitespace_is_trimmed() -> None:
    assert parse_filters(" country : EXACT : BR ") == (FieldFilter("country", MatchOperator.EXACT, "BR"),)


def test_value_with_quotes_is_kept_verbatim() -> None:
    result = parse_filters('title:CONTAINS:say "hi"')
    assert result[0].value == 'say "hi"'


# ---------------------------------------------------------------------------
# Invalid segments
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw", ["country:EXACT", "country", "country::BR", ":EXACT:BR"])
def test_too_few_or_empty_fields_raise(raw: str) -> None:
    with pytest.raises(FilterFormatError, match="expected 3"):
        parse_filters(raw)


def test_custom_event_needs_four_fields() -> None:
    with pytest.raises(FilterFormatError, match="expected 4"):
        parse_filters("customEvent:label:EXACT")


def test_unknown_operator_raises() -> None:
    with pytest.raises(UnknownOperatorError, match="LIKE"):
        parse_filters("country:LIKE:BR")


def test_operator_match_is_case_sensitive() -> None:
    with pytest.raises(UnknownOperatorError):
        parse_filters("country:exact:BR")


def test_one_bad_segment_fails_the_whole_parse() -> None:
    with pytest.raises(RequestConstructionError):
        parse_filters("country:EXACT:BR;city:NOPE:Rio")


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------


def test_format_then_parse_restores_filters() -> None:
    filters = (
        FieldFilter("country", MatchOperator.EXACT, "BR"),
        CustomParameterFilter("label", MatchOperator.PARTIAL_REGEXP, "^a:b$"),
    )
    assert format_filters(filters) == "country:EXACT:BR;customEvent:label:PARTIAL_REGEXP:^a:b$"
    assert parse_filters(format_filters(filters)) == filters
