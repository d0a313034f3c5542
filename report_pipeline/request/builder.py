# report_pipeline/request/builder.py
#
# Assembles the outbound report request (URL, method, JSON body).
#
# Design decisions:
#   - Bodies are plain dicts serialised with the json module and parsed back
#     once as a well-formedness check. Nothing is concatenated by hand.
#   - Two wire shapes share one RequestEnvelope:
#       GENERIC:   flat object with configurable date parameter names, as
#                  consumed by the in-house /data/<api_id> endpoints.
#       ANALYTICS: runReport body (dateRanges, {name} objects, andGroup
#                  filter expressions).
#   - Optional keys are omitted when their source is empty; no null or []
#     placeholders are sent.
#   - Dimension and metric order is the caller's order. Some reports use the
#     first metric as the primary sort key.
#   - Dates and filters are validated here, before credentials are resolved,
#     so a bad invocation never reaches the network.
from __future__ import annotations

import datetime
import json
import re
from dataclasses import dataclass
from typing import Any

import httpx

from report_pipeline.config import ApiVariant, SourceConfig
from report_pipeline.errors import DateRangeError, MalformedRequestError
from report_pipeline.request.filters import (
    CUSTOM_EVENT_TOKEN,
    CustomParameterFilter,
    FilterExpression,
    parse_filters,
)

_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range. Invariant: start <= end."""

    start: datetime.date
    end: datetime.date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise DateRangeError(
                f"End date {self.end.isoformat()} must not be before start date {self.start.isoformat()}"
            )


@dataclass(frozen=True)
class RequestEnvelope:
    date_range: DateRange
    dimensions: tuple[str, ...] = ()
    metrics: tuple[str, ...] = ()
    dimension_filters: tuple[FilterExpression, ...] = ()
    metric_filters: tuple[FilterExpression, ...] = ()


@dataclass(frozen=True)
class PreparedRequest:
    url: str
    method: str
    body: bytes


def parse_date(raw: str) -> datetime.date:
    """Parse a strict ``YYYY-MM-DD`` calendar date.

    Raises:
        DateRangeError: not ISO-8601 or not a real calendar date.
    """
    try:
        if not _ISO_DATE_RE.fullmatch(raw):
            raise ValueError(raw)
        return datetime.date.fromisoformat(raw)
    except ValueError:
        raise DateRangeError(f"Invalid date format for {raw!r}. Please use YYYY-MM-DD format.") from None


def parse_date_range(start: str, end: str) -> DateRange:
    """Validate two ISO date strings and build an inclusive DateRange."""
    return DateRange(parse_date(start), parse_date(end))


def envelope_for(source: SourceConfig, date_range: DateRange) -> RequestEnvelope:
    """Build the envelope for *source*, parsing its filter specifications."""
    return RequestEnvelope(
        date_range=date_range,
        dimensions=source.dimensions,
        metrics=source.metrics,
        dimension_filters=parse_filters(source.dimension_filters),
        metric_filters=parse_filters(source.metric_filters),
    )


# ---------------------------------------------------------------------------
# Generic variant
# ---------------------------------------------------------------------------


def _generic_predicate(expression: FilterExpression) -> dict[str, str]:
    if isinstance(expression, CustomParameterFilter):
        return {
            "parameterName": expression.parameter_name,
            "operator": expression.operator.value,
            "value": expression.value,
        }
    return {"field": expression.field, "operator": expression.operator.value, "value": expression.value}


def build_generic_body(
    envelope: RequestEnvelope,
    start_param: str = "start_date",
    end_param: str = "end_date",
) -> dict[str, Any]:
    body: dict[str, Any] = {
        start_param: envelope.date_range.start.isoformat(),
        end_param: envelope.date_range.end.isoformat(),
    }
    if envelope.dimensions:
        body["dimensions"] = list(envelope.dimensions)
    if envelope.metrics:
        body["metrics"] = list(envelope.metrics)
    if envelope.dimension_filters:
        body["dimension_filter"] = {"and": [_generic_predicate(f) for f in envelope.dimension_filters]}
    if envelope.metric_filters:
        body["metric_filter"] = {"and": [_generic_predicate(f) for f in envelope.metric_filters]}
    return body


# ---------------------------------------------------------------------------
# Analytics (runReport) variant
# ---------------------------------------------------------------------------


def _analytics_expression(expression: FilterExpression) -> dict[str, Any]:
    if isinstance(expression, CustomParameterFilter):
        field_name = f"{CUSTOM_EVENT_TOKEN}:{expression.parameter_name}"
    else:
        field_name = expression.field
    return {
        "filter": {
            "fieldName": field_name,
            "stringFilter": {"matchType": expression.operator.value, "value": expression.value},
        }
    }


def _analytics_filter(filters: tuple[FilterExpression, ...]) -> dict[str, Any]:
    return {"andGroup": {"expressions": [_analytics_expression(f) for f in filters]}}


def build_analytics_body(envelope: RequestEnvelope) -> dict[str, Any]:
    body: dict[str, Any] = {
        "dateRanges": [
            {
                "startDate": envelope.date_range.start.isoformat(),
                "endDate": envelope.date_range.end.isoformat(),
            }
        ],
    }
    if envelope.dimensions:
        body["dimensions"] = [{"name": name} for name in envelope.dimensions]
    if envelope.metrics:
        body["metrics"] = [{"name": name} for name in envelope.metrics]
    if envelope.dimension_filters:
        body["dimensionFilter"] = _analytics_filter(envelope.dimension_filters)
    if envelope.metric_filters:
        body["metricFilter"] = _analytics_filter(envelope.metric_filters)
    return body


# ---------------------------------------------------------------------------
# Serialisation and URL
# ---------------------------------------------------------------------------


def serialize_body(body: dict[str, Any]) -> bytes:
    """Serialise a request body and verify it parses back.

    Raises:
        MalformedRequestError: the body cannot be encoded as JSON or the
            encoded text does not decode to an object.
    """
    try:
        text = json.dumps(body, ensure_ascii=False)
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedRequestError(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedRequestError("Request body must be a JSON object")
    return text.encode("utf-8")


def build_url(source: SourceConfig) -> str:
    if source.variant is ApiVariant.ANALYTICS:
        property_id = source.property_id or source.api_id
        return f"{source.base_url}/properties/{property_id}:runReport"

    base = httpx.URL(source.base_url)
    if source.port is not None:
        base = base.copy_with(port=source.port)
    return f"{str(base).rstrip('/')}/data/{source.api_id}"


def build_request(source: SourceConfig, date_range: DateRange) -> PreparedRequest:
    """Build the full outbound request for *source* over *date_range*.

    Raises:
        FilterFormatError, UnknownOperatorError: invalid filter specification.
        MalformedRequestError: body failed the JSON round-trip check.
    """
    envelope = envelope_for(source, date_range)
    if source.variant is ApiVariant.ANALYTICS:
        body = build_analytics_body(envelope)
    else:
        body = build_generic_body(envelope, source.start_date_param, source.end_date_param)
    return PreparedRequest(url=build_url(source), method=source.http_method, body=serialize_body(body))
