# report_pipeline/transform/flatten.py
#
# JSON → table projection: one level of nested-object expansion, schema
# unification across heterogeneous records, and CSV serialisation.
#
# Design decisions:
#   - Only direct child objects are expanded ("parent.child"). Arrays and
#     grandchild objects stay as values and are written as their JSON text.
#   - Objects in an array need not share a schema. The header is the sorted
#     union of every flattened record's keys; each row is projected onto it
#     with null for absent keys, so every row has the same column count.
#   - The Table is rendered into a polars DataFrame of Utf8 columns and
#     written with DataFrame.write_csv (standard quoting, null → empty cell).
#     Cells are converted to text before polars sees them, so mixed-type
#     columns never trip schema inference.
#   - Pure functions; the only I/O is in write_csv / read_csv.
#
# Invariants:
#   - len(row) == len(header) for every row.
#   - The header is sorted and free of duplicates.
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import polars as pl

from report_pipeline.errors import NotTabularError

FlatRecord = dict[str, Any]


@dataclass(frozen=True)
class Table:
    header: tuple[str, ...]
    records: tuple[FlatRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def rows(self) -> list[tuple[str | None, ...]]:
        """Records projected onto the header as cell text (None for empty)."""
        return [tuple(cell_text(record.get(column)) for column in self.header) for record in self.records]

    def to_frame(self) -> pl.DataFrame:
        rows = self.rows()
        return pl.DataFrame(
            {
                column: pl.Series(column, [row[index] for row in rows], dtype=pl.Utf8)
                for index, column in enumerate(self.header)
            }
        )


def cell_text(value: Any) -> str | None:
    """Textual form of a cell value: strings as-is, None stays None, JSON text otherwise."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def flatten_record(record: Mapping[str, Any]) -> FlatRecord:
    """Expand one level of nested objects into dot-joined keys.

    ``{"a": 1, "b": {"c": 2}}`` becomes ``{"a": 1, "b.c": 2}``.
    """
    flat: FlatRecord = {}
    for key, value in record.items():
        if isinstance(value, Mapping):
            for child_key, child_value in value.items():
                flat[f"{key}.{child_key}"] = child_value
        else:
            flat[key] = value
    return flat


def unified_header(records: list[FlatRecord] | tuple[FlatRecord, ...]) -> tuple[str, ...]:
    columns: set[str] = set()
    for record in records:
        columns.update(record)
    return tuple(sorted(columns))


def flatten_payload(payload: Any) -> Table:
    """Project a decoded JSON value into a Table.

    Args:
        payload: A JSON object (one row) or a non-empty array of objects.

    Raises:
        NotTabularError: scalars, empty arrays, arrays holding anything other
            than objects, or objects that yield no columns at all.
    """
    if isinstance(payload, Mapping):
        if not payload:
            raise NotTabularError("JSON object has no fields to convert")
        records = [flatten_record(payload)]
    elif isinstance(payload, list):
        if not payload:
            raise NotTabularError("JSON array is empty")
        if not all(isinstance(item, Mapping) for item in payload):
            raise NotTabularError("JSON array does not contain only objects")
        records = [flatten_record(item) for item in payload]
    else:
        raise NotTabularError(f"JSON {type(payload).__name__} is not suitable for CSV conversion")

    header = unified_header(records)
    if not header:
        raise NotTabularError("JSON objects have no fields to convert")
    return Table(header=header, records=tuple(records))


def write_csv(table: Table, path: Path) -> Path:
    """Write *table* as CSV (header line first), creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    table.to_frame().write_csv(path)
    return path


def read_csv(path: Path) -> Table:
    """Read a CSV written by write_csv back into a Table of string cells."""
    df = pl.read_csv(path, infer_schema=False)
    records = tuple(
        {column: value for column, value in row.items() if value is not None} for row in df.to_dicts()
    )
    return Table(header=tuple(df.columns), records=records)
