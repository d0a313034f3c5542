# report_pipeline/sources/config_store.py
#
# Adapters for the external source-configuration store.
#
# Design decisions:
#   - ConfigStore is a typing.Protocol (structural subtyping), so any object
#     with a fetch(api_id) method can back the pipeline: a warehouse query, a
#     key/value service, or the two file-based stores shipped here.
#   - TableConfigStore mirrors the relational API_CONFIG table: one row per
#     API_ID, read with polars from CSV or Parquet. Every column is read as a
#     string so ports and flags reach source_config_from_row unchanged.
#   - JsonConfigStore is a {api_id: {COLUMN: value}} document, convenient for
#     local runs and tests.
#   - fetch() returns None for an unknown API_ID; the orchestrator turns that
#     into a ConfigurationError so the message names the id.
from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

import polars as pl

from report_pipeline.errors import ConfigurationError

API_ID_COLUMN = "API_ID"


@runtime_checkable
class ConfigStore(Protocol):
    """Contract for configuration sources.

    Invariant: the returned mapping uses the store's column names
    (API_BASE_URL, OUTPUT_DIR, AUTH_TYPE, ...) as keys.
    """

    def fetch(self, api_id: str) -> Mapping[str, object] | None:
        """Return the configuration row for *api_id*, or None if absent."""
        ...


class TableConfigStore:
    """Config rows stored in a CSV or Parquet table keyed by API_ID."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> pl.DataFrame:
        suffix = self.path.suffix.lower()
        try:
            if suffix == ".parquet":
                df = pl.read_parquet(self.path)
                return df.with_columns(pl.all().cast(pl.Utf8))
            return pl.read_csv(self.path, infer_schema=False)
        except (OSError, pl.exceptions.PolarsError) as exc:
            raise ConfigurationError(f"Cannot read configuration table {self.path}: {exc}") from exc

    def fetch(self, api_id: str) -> Mapping[str, object] | None:
        df = self._read()
        if API_ID_COLUMN not in df.columns:
            raise ConfigurationError(f"Configuration table {self.path} has no {API_ID_COLUMN} column")
        rows = df.filter(pl.col(API_ID_COLUMN).str.strip_chars() == api_id).to_dicts()
        if not rows:
            return None
        if len(rows) > 1:
            raise ConfigurationError(f"Configuration table {self.path} has {len(rows)} rows for API ID {api_id}")
        return rows[0]


class JsonConfigStore:
    """Config rows stored as ``{api_id: {COLUMN: value}}`` in a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def fetch(self, api_id: str) -> Mapping[str, object] | None:
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read configuration file {self.path}: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigurationError(f"Configuration file {self.path} must contain a JSON object")
        row = document.get(api_id)
        if row is None:
            return None
        if not isinstance(row, dict):
            raise ConfigurationError(f"Configuration for API ID {api_id} must be a JSON object")
        return row


def open_config_store(path: Path) -> ConfigStore:
    """Pick a store implementation from the file suffix."""
    suffix = path.suffix.lower()
    if suffix in (".csv", ".parquet"):
        return TableConfigStore(path)
    if suffix == ".json":
        return JsonConfigStore(path)
    raise ConfigurationError(f"Unsupported configuration store {path} (expected .csv, .parquet or .json)")
