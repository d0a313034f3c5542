# report_pipeline/errors.py
#
# Exception taxonomy for a single extraction run.
#
# Design decisions:
#   - Every error derives from ExtractionError so the CLI can turn any
#     expected failure into one diagnostic line and a non-zero exit status.
#   - Families follow the stage that detects the problem: configuration,
#     credentials, request construction, transport, API, response format.
#   - Only TransportError is ever retried (inside the HTTP client). The other
#     families are deterministic and abort the run where they are raised.
#   - ApiError keeps the HTTP status and the raw body so the operator can see
#     exactly what the server answered.
from __future__ import annotations

from enum import StrEnum
from typing import Any


class ExtractionError(Exception):
    """Base class for all extraction failures.

    Attributes:
        message: Human-readable description, suitable for the operator.
        context: Extra key/value pairs that help diagnose the failure.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ExtractionError):
    """Missing or invalid configuration (required column, auth type, number)."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialError(ExtractionError):
    """Credential material is unusable. Never retried."""


class CredentialFileError(CredentialError):
    """A credential file is missing, unreadable, malformed or incomplete."""


class TokenExchangeError(CredentialError):
    """The token endpoint refused the JWT assertion or answered garbage."""


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------


class RequestConstructionError(ExtractionError):
    """The outbound request cannot be built from the given inputs."""


class FilterFormatError(RequestConstructionError):
    """A filter segment does not have the expected number of fields."""


class UnknownOperatorError(RequestConstructionError):
    """A filter uses an operator outside the supported set."""


class DateRangeError(RequestConstructionError):
    """A date is not ISO-8601 or the range is inverted."""


class MalformedRequestError(RequestConstructionError):
    """The assembled request body is not valid JSON."""


# ---------------------------------------------------------------------------
# Transport / API
# ---------------------------------------------------------------------------


class TransportError(ExtractionError):
    """Network-level failure that persisted through every retry."""


class ApiErrorKind(StrEnum):
    BAD_REQUEST = "BadRequest"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    SERVER_ERROR = "ServerError"
    GATEWAY_ERROR = "GatewayError"
    UNKNOWN = "Unknown"
    APPLICATION = "Application"


class ApiError(ExtractionError):
    """The API answered with a failure (HTTP level or inside a 2xx body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str,
        kind: ApiErrorKind = ApiErrorKind.UNKNOWN,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.kind = kind
        super().__init__(message, {"status_code": status_code, "kind": str(kind)})


class ApplicationError(ApiError):
    """A 2xx response whose JSON body carries an ``error``/``error_code`` field."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str,
        error_code: str | None,
        error_message: str | None,
    ) -> None:
        self.error_code = error_code
        self.error_message = error_message
        super().__init__(message, status_code=status_code, body=body, kind=ApiErrorKind.APPLICATION)


# ---------------------------------------------------------------------------
# Response format
# ---------------------------------------------------------------------------


class FormatError(ExtractionError):
    """The response cannot be interpreted or projected."""


class EmptyResponseError(FormatError):
    """A successful response arrived with no body."""


class InvalidStructureError(FormatError):
    """JSON body that is a bare scalar or nests deeper than allowed."""


class UnsupportedFormatError(FormatError):
    """Body is neither JSON nor CSV."""


class NotTabularError(FormatError):
    """JSON value that cannot be projected into rows and columns."""
