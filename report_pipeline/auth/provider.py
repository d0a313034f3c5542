# report_pipeline/auth/provider.py
#
# Resolves an AuthDescriptor into a Credential before any request is sent.
#
# Design decisions:
#   - One handler per descriptor variant, dispatched with a match statement
#     whose fallthrough raises; adding a variant without a handler fails loudly.
#   - Resolution fails closed: a broken credential source raises and the run
#     aborts. There is no fallback from one variant to another.
#   - JSON credential files are read through one helper so missing file,
#     unreadable file, invalid JSON and non-object content all produce the
#     same CredentialFileError family.
from __future__ import annotations

import base64
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from report_pipeline.auth.descriptors import (
    AuthDescriptor,
    BasicAuth,
    BearerFromFile,
    Credential,
    HeaderPair,
    ServiceAccountJWT,
)
from report_pipeline.auth.service_account import (
    build_assertion,
    exchange_assertion,
    load_service_account,
)
from report_pipeline.config import PipelineConfig
from report_pipeline.errors import CredentialError, CredentialFileError
from report_pipeline.log import log


def read_json_credentials(path: Path) -> dict[str, Any]:
    """Read a JSON object from a credential file.

    Raises:
        CredentialFileError: the file is absent, unreadable, not JSON, or
            not a JSON object.
    """
    if not path.is_file():
        raise CredentialFileError(f"Authentication JSON file not found at: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CredentialFileError(f"Cannot read credential file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CredentialFileError(f"Credential file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CredentialFileError(f"Credential file {path} must contain a JSON object")
    return payload


def _required_field(payload: dict[str, Any], name: str, path: Path) -> str:
    value = payload.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise CredentialFileError(f"Credential file {path} has no '{name}' field")
    return str(value)


class AuthProvider:
    """Turns AuthDescriptors into request headers.

    Args:
        config:    Pipeline configuration; supplies the default Basic pair and
                   the connect timeout used for the token exchange.
        transport: Optional httpx transport for the token exchange (tests).
        now:       Clock for JWT iat/exp.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._now = now

    def resolve(self, descriptor: AuthDescriptor) -> Credential:
        match descriptor:
            case BasicAuth():
                return self._basic(descriptor)
            case BearerFromFile():
                return self._bearer_from_file(descriptor)
            case HeaderPair():
                return self._header_pair(descriptor)
            case ServiceAccountJWT():
                return self._service_account(descriptor)
            case _:
                raise CredentialError(f"Unsupported auth descriptor: {type(descriptor).__name__}")

    def _basic(self, descriptor: BasicAuth) -> Credential:
        user = descriptor.user if descriptor.user is not None else self._config.default_api_user
        secret = descriptor.secret if descriptor.secret is not None else self._config.default_api_secret
        if not user or secret is None:
            raise CredentialError(
                "Basic authentication needs AUTH_USER/AUTH_PASSWORD or the "
                "EXTRACT_API_USER/EXTRACT_API_SECRET defaults"
            )
        token = base64.b64encode(f"{user}:{secret}".encode("utf-8")).decode("ascii")
        log("Using Basic authentication for API request")
        return Credential(headers=(("Authorization", f"Basic {token}"),), scheme="basic")

    def _bearer_from_file(self, descriptor: BearerFromFile) -> Credential:
        payload = read_json_credentials(descriptor.path)
        token = _required_field(payload, "access_token", descriptor.path)
        log(f"Using bearer token file from: {descriptor.path}")
        return Credential(headers=(("Authorization", f"Bearer {token}"),), scheme="bearer")

    def _header_pair(self, descriptor: HeaderPair) -> Credential:
        payload = read_json_credentials(descriptor.path)
        key = _required_field(payload, descriptor.key_name, descriptor.path)
        secret = _required_field(payload, descriptor.secret_name, descriptor.path)
        log(f"Using JSON authentication file from: {descriptor.path}")
        return Credential(
            headers=((descriptor.key_header, key), (descriptor.secret_header, secret)),
            scheme="header-pair",
        )

    def _service_account(self, descriptor: ServiceAccountJWT) -> Credential:
        info = load_service_account(descriptor.path)
        audience = descriptor.audience or info["token_uri"]
        if self._now is not None:
            assertion = build_assertion(info, descriptor.scope, audience, now=self._now)
        else:
            assertion = build_assertion(info, descriptor.scope, audience)
        log(f"Exchanging service account JWT for {info['client_email']}")
        token = exchange_assertion(
            assertion,
            info["token_uri"],
            timeout=self._config.connect_timeout,
            transport=self._transport,
        )
        return Credential(headers=(("Authorization", f"Bearer {token}"),), scheme="service-account")
