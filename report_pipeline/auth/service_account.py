# report_pipeline/auth/service_account.py
#
# Service-account JWT bearer flow (RFC 7523) for the analytics variant.
#
# Design decisions:
#   - The JWT is assembled from dicts serialised by the json module; nothing
#     is built by string concatenation except the final dot-joined token.
#   - Signing uses google-auth's RSASigner (RSA-SHA256 over "header.claim"),
#     the same key handling google.oauth2.service_account uses internally.
#     The header is kept to {alg, typ} exactly; google.auth.jwt.encode would
#     add a "kid" field.
#   - The key file is validated before anything else: all eight service-account
#     fields must be present and type must be "service_account".
#   - The token exchange is a single POST with httpx. It is not retried:
#     a rejected assertion will be rejected again.
#   - `now` is injectable so tests can pin iat/exp.
from __future__ import annotations

import base64
import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from google.auth import crypt

from report_pipeline.errors import CredentialFileError, TokenExchangeError

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600

REQUIRED_FIELDS: tuple[str, ...] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "auth_uri",
    "token_uri",
)


def load_service_account(path: Path) -> dict[str, Any]:
    """Read and validate a service-account key file.

    Raises:
        CredentialFileError: file missing/unreadable, not a JSON object, a
            required field absent, or ``type`` is not ``service_account``.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CredentialFileError(f"Cannot read service account file {path}: {exc}") from exc

    try:
        info = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialFileError(f"Service account file {path} is not valid JSON: {exc}") from exc

    if not isinstance(info, dict):
        raise CredentialFileError(f"Service account file {path} must contain a JSON object")

    missing = [name for name in REQUIRED_FIELDS if name not in info]
    if missing:
        raise CredentialFileError(
            f"Service account file {path} is missing required fields: {', '.join(missing)}",
            {"missing": missing},
        )

    if info["type"] != "service_account":
        raise CredentialFileError(
            f"Service account file {path} has type {info['type']!r}, expected 'service_account'"
        )
    return info


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _segment(payload: dict[str, Any]) -> str:
    return _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))


def build_assertion(
    info: dict[str, Any],
    scope: str,
    audience: str,
    now: Callable[[], float] = time.time,
) -> str:
    """Build a signed ``header.claim.signature`` JWT for the token endpoint.

    Args:
        info:     Validated service-account fields (see load_service_account).
        scope:    OAuth scope requested for the access token.
        audience: Token endpoint the assertion is addressed to.
        now:      Clock returning epoch seconds.

    Raises:
        CredentialFileError: the private key cannot be loaded.
    """
    issued_at = int(now())
    header = {"alg": "RS256", "typ": "JWT"}
    claims = {
        "iss": info["client_email"],
        "scope": scope,
        "aud": audience,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        "iat": issued_at,
    }
    signing_input = f"{_segment(header)}.{_segment(claims)}"

    try:
        signer = crypt.RSASigner.from_string(info["private_key"], info["private_key_id"])
    except (ValueError, TypeError, IndexError) as exc:
        raise CredentialFileError(f"Service account private key is unusable: {exc}") from exc

    signature = signer.sign(signing_input.encode("ascii"))
    return f"{signing_input}.{_b64url(signature)}"


def exchange_assertion(
    assertion: str,
    token_uri: str,
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> str:
    """Exchange a signed assertion for an access token.

    Raises:
        TokenExchangeError: endpoint unreachable, non-JSON answer, ``error``
            field present, or no ``access_token`` returned.
    """
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(
                token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token endpoint {token_uri} unreachable: {exc}") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise TokenExchangeError(
            f"Token endpoint returned non-JSON response (HTTP {response.status_code})",
            {"body": response.text[:500]},
        ) from exc

    if not isinstance(payload, dict):
        raise TokenExchangeError("Token endpoint returned an unexpected JSON value")

    if payload.get("error"):
        description = payload.get("error_description", "")
        raise TokenExchangeError(
            f"Token exchange failed: {payload['error']} {description}".strip(),
            {"status_code": response.status_code},
        )

    token = payload.get("access_token")
    if not token:
        raise TokenExchangeError(
            f"Token endpoint response has no access_token (HTTP {response.status_code})"
        )
    return str(token)
