# report_pipeline/transport/classify.py
#
# Interprets the final HttpOutcome: error taxonomy for non-2xx statuses,
# payload shape detection and structural checks for 2xx bodies.
#
# Design decisions:
#   - No retry here; by the time an outcome arrives, the client has already
#     spent the retry budget.
#   - Non-2xx statuses raise ApiError with a fixed kind and the response body
#     attached for diagnostics.
#   - A JSON body is checked in this order: top-level type (object/array),
#     nesting depth, then the application-level error fields. A JSON object
#     with a non-empty "error" or "error_code" is a failure even under 2xx;
#     null, false and "" count as absent.
#   - The nesting depth is measured iteratively; deeply nested adversarial
#     input must not exhaust the interpreter stack a second time after
#     json.loads already survived it.
#   - CSV detection is loose: more than one line and at least one
#     line with a comma. The CSV body is stored as received.
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from report_pipeline.errors import (
    ApiError,
    ApiErrorKind,
    ApplicationError,
    EmptyResponseError,
    InvalidStructureError,
    UnsupportedFormatError,
)
from report_pipeline.transport.http_client import HttpOutcome

_STATUS_KINDS: dict[int, ApiErrorKind] = {
    400: ApiErrorKind.BAD_REQUEST,
    401: ApiErrorKind.UNAUTHORIZED,
    403: ApiErrorKind.FORBIDDEN,
    404: ApiErrorKind.NOT_FOUND,
    429: ApiErrorKind.RATE_LIMITED,
    500: ApiErrorKind.SERVER_ERROR,
    502: ApiErrorKind.GATEWAY_ERROR,
    503: ApiErrorKind.GATEWAY_ERROR,
    504: ApiErrorKind.GATEWAY_ERROR,
}

_STATUS_DESCRIPTIONS: dict[int, str] = {
    400: "Bad Request - The API request was malformed.",
    401: "Unauthorized - Authentication failed. Please check your credentials.",
    403: "Forbidden - You don't have permission to access this resource.",
    404: "Not Found - The requested resource was not found.",
    429: "Too Many Requests - API rate limit exceeded. Please try again later.",
    500: "Internal Server Error - The API server encountered an error.",
    502: "Bad Gateway - The API server received an invalid response.",
    503: "Service Unavailable - The API server is temporarily unavailable.",
    504: "Gateway Timeout - The API server timed out.",
}


class ResponseFormat(StrEnum):
    JSON = "json"
    CSV = "csv"


@dataclass(frozen=True)
class ClassifiedResponse:
    format: ResponseFormat
    text: str
    payload: Any = None

    def describe(self) -> str:
        """Short structure summary for logging."""
        if self.format is ResponseFormat.CSV:
            lines = self.text.splitlines()
            columns = len(lines[0].split(",")) if lines else 0
            return f"CSV with {len(lines)} rows, {columns} columns"
        if isinstance(self.payload, list):
            return f"Array with {len(self.payload)} elements"
        return f"Object with {len(self.payload)} keys"


def error_kind(status_code: int) -> ApiErrorKind:
    return _STATUS_KINDS.get(status_code, ApiErrorKind.UNKNOWN)


def json_depth(value: Any) -> int:
    """Nesting depth of a decoded JSON value (scalars are depth 0)."""
    deepest = 0
    stack: list[tuple[Any, int]] = [(value, 0)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        depth += 1
        deepest = max(deepest, depth)
        stack.extend((child, depth) for child in children)
    return deepest


def _raise_for_status(outcome: HttpOutcome) -> None:
    body = outcome.body.decode("utf-8", errors="replace")
    description = _STATUS_DESCRIPTIONS.get(
        outcome.status_code,
        f"API Error (HTTP {outcome.status_code}) - Unexpected error occurred.",
    )
    raise ApiError(
        f"{description} Response: {body}",
        status_code=outcome.status_code,
        body=body,
        kind=error_kind(outcome.status_code),
    )


def _looks_like_csv(text: str) -> bool:
    lines = text.rstrip("\r\n").splitlines()
    return len(lines) > 1 and any("," in line for line in lines)


def _present(value: Any) -> Any:
    # null, false and "" mean "no error"; 0 is a real error code.
    if value is None or value is False or value == "":
        return None
    return value


def _check_application_error(payload: Any, outcome: HttpOutcome, text: str) -> None:
    if not isinstance(payload, dict):
        return
    error_message = _present(payload.get("error"))
    error_code = _present(payload.get("error_code"))
    if error_message is None and error_code is None:
        return
    code = None if error_code is None else str(error_code)
    message = None if error_message is None else str(error_message)
    raise ApplicationError(
        f"API Error - Code: {code or ''}, Message: {message or ''}",
        status_code=outcome.status_code,
        body=text,
        error_code=code,
        error_message=message,
    )


def classify_response(outcome: HttpOutcome, max_depth: int = 100) -> ClassifiedResponse:
    """Validate an outcome and detect its payload format.

    Args:
        outcome:   Final outcome from ResilientHttpClient.
        max_depth: Maximum accepted JSON nesting depth.

    Returns:
        ClassifiedResponse with format JSON (payload decoded) or CSV.

    Raises:
        ApiError: non-2xx status.
        ApplicationError: 2xx JSON object carrying ``error``/``error_code``.
        EmptyResponseError: 2xx with a blank body.
        InvalidStructureError: JSON scalar, or nesting deeper than max_depth.
        UnsupportedFormatError: neither JSON nor CSV.
    """
    if not outcome.is_success:
        _raise_for_status(outcome)

    try:
        text = outcome.body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnsupportedFormatError(f"Response body is not UTF-8 text: {exc}") from exc

    if not text.strip():
        raise EmptyResponseError("Empty response received from API")

    try:
        payload = json.loads(text)
    except RecursionError as exc:
        raise InvalidStructureError(f"JSON response nests deeper than {max_depth} levels") from exc
    except json.JSONDecodeError:
        if _looks_like_csv(text):
            return ClassifiedResponse(format=ResponseFormat.CSV, text=text)
        preview = text[:200].replace("\n", "\\n")
        raise UnsupportedFormatError(
            f"Invalid or unsupported response format. Body starts with: {preview!r}"
        ) from None

    if not isinstance(payload, (dict, list)):
        raise InvalidStructureError(
            f"Invalid JSON structure in response: top-level {type(payload).__name__}, expected object or array"
        )

    if json_depth(payload) > max_depth:
        raise InvalidStructureError(f"JSON response nests deeper than {max_depth} levels")

    _check_application_error(payload, outcome, text)
    return ClassifiedResponse(format=ResponseFormat.JSON, text=text, payload=payload)
