# report_pipeline/config.py
#
# Run-wide pipeline settings and per-source configuration.
#
# Design decisions:
#   - Uses frozen dataclasses: configuration is loaded once per run and
#     passed explicitly into every component. No module reads os.environ
#     after load_config() returns.
#   - PipelineConfig holds the environment-derived knobs (retry budget,
#     timeouts, JSON depth cap, default Basic pair, config-store location).
#   - SourceConfig is built from one row of the external config store. The
#     row is a plain str→str mapping using the store's column names
#     (API_BASE_URL, AUTH_TYPE, ...). The narrow 7-column legacy row is just
#     a row where the optional columns are absent.
#   - All required columns are checked together so the operator sees every
#     missing column in one error, not one per run.
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from dotenv import load_dotenv

from report_pipeline.auth.descriptors import (
    ANALYTICS_READONLY_SCOPE,
    AuthDescriptor,
    BasicAuth,
    BearerFromFile,
    HeaderPair,
    ServiceAccountJWT,
)
from report_pipeline.errors import ConfigurationError

DEFAULT_OUTPUT_TEMPLATE = "api_data_{API_ID}_{START_DATE}_{END_DATE}"
DEFAULT_START_DATE_PARAM = "start_date"
DEFAULT_END_DATE_PARAM = "end_date"

REQUIRED_COLUMNS: tuple[str, ...] = ("API_BASE_URL", "OUTPUT_DIR", "AUTH_TYPE")


class AuthType(StrEnum):
    BASIC = "BASIC"
    OAUTH = "OAUTH"
    JSON = "JSON"
    SERVICE_ACCOUNT = "SERVICE_ACCOUNT"


class ApiVariant(StrEnum):
    GENERIC = "GENERIC"
    ANALYTICS = "ANALYTICS"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded fixed-delay retry settings for the HTTP client.

    Invariants:
      - max_retries >= 1 (it is the total attempt budget).
      - retry_delay, connect_timeout and total_timeout are non-negative.
    """

    max_retries: int = 3
    retry_delay: float = 5.0
    connect_timeout: float = 30.0
    total_timeout: float = 60.0


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable run-wide configuration.

    Invariants:
      - retry.max_retries is a positive integer.
      - json_max_depth is a positive integer.
    """

    config_store_path: Path
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    json_max_depth: int = 100
    default_api_user: str | None = None
    default_api_secret: str | None = None

    @property
    def connect_timeout(self) -> float:
        return self.retry.connect_timeout


@dataclass(frozen=True)
class ProxySettings:
    host: str
    port: int | None = None

    @property
    def url(self) -> str:
        authority = f"{self.host}:{self.port}" if self.port is not None else self.host
        if "://" in authority:
            return authority
        return f"http://{authority}"


@dataclass(frozen=True)
class SourceConfig:
    """Configuration for one logical API source. Immutable for the run."""

    api_id: str
    base_url: str
    output_dir: Path
    auth: AuthDescriptor
    port: int | None = None
    proxy: ProxySettings | None = None
    variant: ApiVariant = ApiVariant.GENERIC
    http_method: str = "GET"
    property_id: str | None = None
    dimensions: tuple[str, ...] = ()
    metrics: tuple[str, ...] = ()
    dimension_filters: str = ""
    metric_filters: str = ""
    start_date_param: str = DEFAULT_START_DATE_PARAM
    end_date_param: str = DEFAULT_END_DATE_PARAM
    output_file_template: str = DEFAULT_OUTPUT_TEMPLATE
    json_to_csv: bool = False


def _env_number(name: str, default: str, kind: type[int] | type[float]) -> int | float:
    raw = os.environ.get(name, default)
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value


def load_config() -> PipelineConfig:
    """Build PipelineConfig from environment variables (and a .env file).

    Raises:
        ConfigurationError: EXTRACT_CONFIG_STORE is unset, or a numeric
            variable does not parse.
    """
    load_dotenv()

    store = os.environ.get("EXTRACT_CONFIG_STORE")
    if not store:
        raise ConfigurationError(
            "EXTRACT_CONFIG_STORE environment variable is required. "
            "Point it at the source configuration table (.csv, .parquet or .json)."
        )

    max_retries = int(_env_number("EXTRACT_MAX_RETRIES", "3", int))
    if max_retries < 1:
        raise ConfigurationError("EXTRACT_MAX_RETRIES must be at least 1")
    json_max_depth = int(_env_number("EXTRACT_JSON_MAX_DEPTH", "100", int))
    if json_max_depth < 1:
        raise ConfigurationError("EXTRACT_JSON_MAX_DEPTH must be at least 1")

    retry = RetryPolicy(
        max_retries=max_retries,
        retry_delay=float(_env_number("EXTRACT_RETRY_DELAY", "5", float)),
        connect_timeout=float(_env_number("EXTRACT_CONNECT_TIMEOUT", "30", float)),
        total_timeout=float(_env_number("EXTRACT_TOTAL_TIMEOUT", "60", float)),
    )

    return PipelineConfig(
        config_store_path=Path(store),
        retry=retry,
        json_max_depth=json_max_depth,
        default_api_user=os.environ.get("EXTRACT_API_USER") or None,
        default_api_secret=os.environ.get("EXTRACT_API_SECRET") or None,
    )


# ---------------------------------------------------------------------------
# Source rows
# ---------------------------------------------------------------------------


def _get(row: Mapping[str, object], name: str) -> str | None:
    value = row.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _port(row: Mapping[str, object], name: str) -> int | None:
    raw = _get(row, name)
    if raw is None:
        return None
    try:
        port = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer port, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"{name} out of range: {port}")
    return port


def _name_list(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return ()
    return tuple(name.strip() for name in raw.split(",") if name.strip())


def _auth_descriptor(row: Mapping[str, object], auth_type: AuthType) -> AuthDescriptor:
    if auth_type is AuthType.BASIC:
        return BasicAuth(user=_get(row, "AUTH_USER"), secret=_get(row, "AUTH_PASSWORD"))

    file_path = _get(row, "AUTH_FILE_PATH")
    if file_path is None:
        raise ConfigurationError(f"AUTH_FILE_PATH is required for AUTH_TYPE={auth_type.value}")
    path = Path(file_path)

    if auth_type is AuthType.OAUTH:
        return BearerFromFile(path)
    if auth_type is AuthType.JSON:
        return HeaderPair(
            path=path,
            key_name=_get(row, "AUTH_KEY_FIELD") or "auth_key",
            secret_name=_get(row, "AUTH_SECRET_FIELD") or "auth_secret",
            key_header=_get(row, "AUTH_KEY_HEADER") or "X-Auth-Key",
            secret_header=_get(row, "AUTH_SECRET_HEADER") or "X-Auth-Secret",
        )
    return ServiceAccountJWT(
        path=path,
        scope=_get(row, "AUTH_SCOPE") or ANALYTICS_READONLY_SCOPE,
        audience=_get(row, "AUTH_AUDIENCE"),
    )


def source_config_from_row(api_id: str, row: Mapping[str, object]) -> SourceConfig:
    """Validate one config-store row and build its SourceConfig.

    Args:
        api_id: Identifier the row was looked up with.
        row:    Column name → value mapping from the config store.

    Raises:
        ConfigurationError: required columns missing, unknown AUTH_TYPE /
            API_VARIANT / HTTP_METHOD, or malformed port numbers.
    """
    missing = [name for name in REQUIRED_COLUMNS if _get(row, name) is None]
    if missing:
        raise ConfigurationError(f"Missing required configurations: {' '.join(missing)}")

    raw_auth = str(_get(row, "AUTH_TYPE")).upper()
    try:
        auth_type = AuthType(raw_auth)
    except ValueError:
        raise ConfigurationError(f"Invalid authentication type: {raw_auth}") from None

    raw_variant = (_get(row, "API_VARIANT") or ApiVariant.GENERIC.value).upper()
    try:
        variant = ApiVariant(raw_variant)
    except ValueError:
        raise ConfigurationError(f"Invalid API variant: {raw_variant}") from None

    method = (_get(row, "HTTP_METHOD") or "GET").upper()
    if method not in ("GET", "POST"):
        raise ConfigurationError(f"HTTP_METHOD must be GET or POST, got {method}")
    if variant is ApiVariant.ANALYTICS:
        method = "POST"

    proxy_host = _get(row, "PROXY_HOST")
    proxy = ProxySettings(proxy_host, _port(row, "PROXY_PORT")) if proxy_host else None

    return SourceConfig(
        api_id=api_id,
        base_url=str(_get(row, "API_BASE_URL")).rstrip("/"),
        output_dir=Path(str(_get(row, "OUTPUT_DIR"))),
        auth=_auth_descriptor(row, auth_type),
        port=_port(row, "API_BASE_URL_PORT"),
        proxy=proxy,
        variant=variant,
        http_method=method,
        property_id=_get(row, "PROPERTY_ID"),
        dimensions=_name_list(_get(row, "DIMENSIONS")),
        metrics=_name_list(_get(row, "METRICS")),
        dimension_filters=_get(row, "DIMENSION_FILTERS") or "",
        metric_filters=_get(row, "METRIC_FILTERS") or "",
        start_date_param=_get(row, "START_DATE_PARAM") or DEFAULT_START_DATE_PARAM,
        end_date_param=_get(row, "END_DATE_PARAM") or DEFAULT_END_DATE_PARAM,
        output_file_template=_get(row, "OUTPUT_FILE_NAME") or DEFAULT_OUTPUT_TEMPLATE,
        json_to_csv=(_get(row, "JSON_TO_CSV") or "N").upper() == "Y",
    )
