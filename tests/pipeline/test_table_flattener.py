# tests/pipeline/test_table_flattener.py
#
# Tests for the JSON → table projection and its CSV serialisation.
#
# The CSV checks read files back with read_csv (polars, all-string schema) so
# they assert on cell values rather than on quoting details.
from __future__ import annotations

from pathlib import Path

import pytest

from report_pipeline.errors import NotTabularError
from report_pipeline.transform.flatten import (
    Table,
    cell_text,
    flatten_payload,
    flatten_record,
    read_csv,
    unified_header,
    write_csv,
)

# ---------------------------------------------------------------------------
# Record flattening
# ---------------------------------------------------------------------------


def test_flatten_record_expands_one_level() -> None:
    record = {"id": 1, "geo": {"country": "BR", "city": {"name": "Rio"}}, "tags": ["a", "b"]}
    assert flatten_record(record) == {
        "id": 1,
        "geo.country": "BR",
        "geo.city": {"name": "Rio"},
        "tags": ["a", "b"],
    }


def test_unified_header_is_sorted_union() -> None:
    assert unified_header([{"b": 1}, {"a": 2, "b": 3}, {"c": 4}]) == ("a", "b", "c")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("text", "text"),
        (3, "3"),
        (1.5, "1.5"),
        (True, "true"),
        ([1, "x"], '[1,"x"]'),
        ({"k": "ç"}, '{"k":"ç"}'),
    ],
)
def test_cell_text(value: object, expected: str | None) -> None:
    assert cell_text(value) == expected


# ---------------------------------------------------------------------------
# Payload projection
# ---------------------------------------------------------------------------


def test_heterogeneous_array() -> None:
    table = flatten_payload([{"a": 1, "b": {"c": 2}}, {"a": 3, "d": "x"}])
    assert table.header == ("a", "b.c", "d")
    assert table.rows() == [("1", "2", None), ("3", None, "x")]


def test_single_object_is_one_row() -> None:
    table = flatten_payload({"total": 10, "meta": {"page": 1}})
    assert len(table) == 1
    assert table.header == ("meta.page", "total")


def test_every_row_matches_header_width() -> None:
    table = flatten_payload([{"a": 1}, {"b": 2}, {"c": {"d": 3, "e": 4}}])
    assert all(len(row) == len(table.header) for row in table.rows())


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ([], "empty"),
        ({}, "no fields"),
        ([1, 2], "only objects"),
        ([{"a": 1}, "x"], "only objects"),
        ("scalar", "not suitable"),
        (7, "not suitable"),
    ],
)
def test_non_tabular_payloads(payload: object, message: str) -> None:
    with pytest.raises(NotTabularError, match=message):
        flatten_payload(payload)


@pytest.mark.parametrize("payload", [[{}, {"a": {}}], [{}], {"a": {}}])
def test_objects_without_columns_are_not_tabular(payload: object) -> None:
    """Rows that flatten to no columns at all would be lost in a header-less CSV."""
    with pytest.raises(NotTabularError, match="no fields to convert"):
        flatten_payload(payload)


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def test_csv_one_row(tmp_path: Path) -> None:
    path = write_csv(flatten_payload({"name": "Ana, Maria", "score": 9}), tmp_path / "one.csv")
    table = read_csv(path)
    assert table.header == ("name", "score")
    assert table.records == ({"name": "Ana, Maria", "score": "9"},)


def test_csv_many_rows_with_nulls(tmp_path: Path) -> None:
    payload = [{"a": 1, "b": None}, {"a": 2, "c": 'say "hi"'}, {"b": {"x": 1}}]
    path = write_csv(flatten_payload(payload), tmp_path / "many.csv")

    table = read_csv(path)
    assert table.header == ("a", "b", "b.x", "c")
    assert len(table) == 3
    assert table.records[0] == {"a": "1"}
    assert table.records[1] == {"a": "2", "c": 'say "hi"'}
    assert table.records[2] == {"b.x": "1"}


def test_csv_header_only_for_empty_table(tmp_path: Path) -> None:
    path = write_csv(Table(header=("a", "b"), records=()), tmp_path / "empty.csv")
    assert path.read_text(encoding="utf-8").splitlines() == ["a,b"]
    assert len(read_csv(path)) == 0


def test_write_csv_creates_parent_dirs(tmp_path: Path) -> None:
    path = write_csv(flatten_payload([{"a": 1}]), tmp_path / "nested" / "dir" / "t.csv")
    assert path.exists()
