from __future__ import annotations

from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from form_changelog.excel.reader import (
    SheetHeaderError,
    WorkbookReadError,
    normalize_sheet,
    read_workbook,
)


def _df(rows: list[list[object]]) -> pd.DataFrame:
    return pd.DataFrame(rows)


def test_normalize_sheet_basic():
    df = _df([
        ["formNbr", "formName", "srtKey"],
        ["100", " Test ", np.int64(20500200)],
        [None, None, None],
        ["101", "Other", np.nan],
    ])
    sd = normalize_sheet(df, "Forms")
    assert sd.columns == ["formNbr", "formName", "srtKey"]
    assert [r.row_number for r in sd.rows] == [2, 4]
    first = sd.rows[0]
    assert first.get("formName") == "Test"
    assert first.get("srtKey") == 20500200
    assert type(first.get("srtKey")) is int
    assert sd.rows[1].get("srtKey") is None
    assert first.sheet_name == "Forms"


def test_normalize_sheet_header_row_offset():
    df = _df([
        ["title", None],
        ["formNbr", "lob"],
        ["100", "AUTO"],
    ])
    sd = normalize_sheet(df, "Forms", header_row=2)
    assert sd.columns == ["formNbr", "lob"]
    assert sd.rows[0].row_number == 3
    assert sd.rows[0].as_dict() == {"formNbr": "100", "lob": "AUTO"}


def test_normalize_sheet_keeps_duplicate_headers():
    df = _df([["formNbr", "color", "color"], ["100", "red", "blue"]])
    row = normalize_sheet(df, "Forms").rows[0]
    assert row.headers == ["formNbr", "color", "color"]
    assert row.get("color") == "red"


def test_normalize_sheet_ignores_blank_header_columns():
    df = _df([["formNbr", None, "lob"], ["100", "stray", "AUTO"]])
    row = normalize_sheet(df, "Forms").rows[0]
    assert row.headers == ["formNbr", "lob"]


def test_normalize_sheet_null_sentinels():
    df = _df([["formNbr", "lob"], ["100", "null"], ["101", "-"]])
    sd = normalize_sheet(df, "Forms", null_sentinels={"NULL", "-"})
    assert sd.rows[0].get("lob") is None
    assert sd.rows[1].get("lob") is None


def test_normalize_sheet_timestamp_converted():
    df = _df([["effectiveDate"], [pd.Timestamp("2024-01-01")]])
    value = normalize_sheet(df, "Forms").rows[0].get("effectiveDate")
    assert isinstance(value, datetime) and not isinstance(value, pd.Timestamp)


def test_normalize_sheet_missing_header_row():
    with pytest.raises(SheetHeaderError):
        normalize_sheet(_df([["formNbr"]]), "Forms", header_row=3)


def test_normalize_sheet_blank_header_row():
    with pytest.raises(SheetHeaderError, match="blank"):
        normalize_sheet(_df([[None, "  "], ["100", "x"]]), "Forms")


def test_read_workbook_missing_file(tmp_path: Path):
    with pytest.raises(WorkbookReadError, match="not found"):
        read_workbook(tmp_path / "nope.xlsx")


def test_read_workbook_not_a_workbook(tmp_path: Path):
    path = tmp_path / "broken.xlsx"
    path.write_text("not a zip", encoding="utf-8")
    with pytest.raises(WorkbookReadError, match="cannot read"):
        read_workbook(path)


def test_read_workbook_sheet_filter(make_workbook):
    path = make_workbook("two.xlsx", {"A": [["formNbr"], ["1"]], "B": [["formNbr"], ["2"]]})
    assert list(read_workbook(path)) == ["A", "B"]
    assert list(read_workbook(path, target_sheets=["B"])) == ["B"]
    with pytest.raises(WorkbookReadError, match="worksheet not found"):
        read_workbook(path, target_sheets=["C"])


def test_read_workbook_round_trip_values(make_workbook):
    path = make_workbook(
        "forms.xlsx",
        {"Forms": [["formNbr", "srtKey", "effectiveDate"], ["100", 20500200, datetime(2024, 1, 1)]]},
    )
    df = read_workbook(path)["Forms"]
    row = normalize_sheet(df, "Forms").rows[0]
    assert row.get("formNbr") == "100"
    assert row.get("srtKey") == 20500200
    assert row.get("effectiveDate") == datetime(2024, 1, 1)
