# report_pipeline/auth/descriptors.py
#
# Tagged variant describing where a source's credentials come from, and the
# resolved Credential handed to the HTTP client.
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ANALYTICS_READONLY_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"


@dataclass(frozen=True)
class BasicAuth:
    """Static user/secret pair. None means "use the pipeline default pair"."""

    user: str | None = None
    secret: str | None = None


@dataclass(frozen=True)
class BearerFromFile:
    """JSON file holding an ``access_token`` field."""

    path: Path


@dataclass(frozen=True)
class HeaderPair:
    """JSON file holding a key/secret pair sent as two custom headers."""

    path: Path
    key_name: str = "auth_key"
    secret_name: str = "auth_secret"
    key_header: str = "X-Auth-Key"
    secret_header: str = "X-Auth-Secret"


@dataclass(frozen=True)
class ServiceAccountJWT:
    """Service-account key file exchanged for an access token (JWT bearer grant).

    ``audience`` defaults to the key file's ``token_uri`` when None.
    """

    path: Path
    scope: str = ANALYTICS_READONLY_SCOPE
    audience: str | None = None


AuthDescriptor = BasicAuth | BearerFromFile | HeaderPair | ServiceAccountJWT


@dataclass(frozen=True)
class Credential:
    """Ready-to-send authentication headers, in order."""

    headers: tuple[tuple[str, str], ...]
    scheme: str

    def as_dict(self) -> dict[str, str]:
        return dict(self.headers)

    def redacted(self) -> str:
        """Header names only, for logging."""
        return ", ".join(name for name, _ in self.headers)
