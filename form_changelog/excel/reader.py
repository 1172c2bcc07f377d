from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from form_changelog.models.row_data import RowData

"""Spreadsheet reader.

The workbook is read raw (header=None) with pandas/openpyxl, the configured
header row (1st row by default) supplies column names and every following
non-empty row becomes a RowData. Headers are not deduplicated here: a
repeated header is reported later as a duplicate attribute.

Anything that prevents reading the workbook at all is a StructuralError and
aborts the batch before any row is looked at.
"""


class StructuralError(Exception):
    """Workbook cannot be processed at all (missing, unreadable, no sheet)."""


class WorkbookReadError(StructuralError):
    """Raised when the file is missing or is not a readable workbook."""


class SheetHeaderError(StructuralError):
    """Raised when the header row is missing or blank."""


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]
    rows: list[RowData]


def read_workbook(path: Path, target_sheets: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
    """Read a workbook returning raw DataFrames keyed by sheet name.

    Parameters
    ----------
    path: workbook path
    target_sheets: 対象シート制限 (None なら全シート)

    Raises
    ------
    WorkbookReadError: file missing / unreadable, or no requested sheet present
    """
    if not path.exists():
        raise WorkbookReadError(f"workbook not found: {path}")

    wanted = {s for s in target_sheets} if target_sheets is not None else None
    dfs: dict[str, pd.DataFrame] = {}
    try:
        with pd.ExcelFile(path, engine="openpyxl") as xls:
            for name in xls.sheet_names:
                if wanted is not None and str(name) not in wanted:
                    continue
                # ヘッダなしで生読み (後で header_row を列名として適用)
                df = xls.parse(name, header=None)
                dfs[str(name)] = df
    except Exception as e:  # openpyxl / zipfile raise assorted types for corrupt files
        raise WorkbookReadError(f"cannot read workbook {path.name}: {e}") from e

    if not dfs:
        if wanted is not None:
            raise WorkbookReadError(f"worksheet not found in {path.name}: {sorted(wanted)}")
        raise WorkbookReadError(f"no worksheet found in {path.name}")
    return dfs


def _to_python(val: Any) -> Any:
    """Convert a pandas/numpy cell to a plain Python value (NaN/NaT -> None)."""
    if val is None:
        return None
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):  # list-like cells
        return val
    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()
    if isinstance(val, np.generic):
        return val.item()
    return val


def _is_blank(val: Any) -> bool:
    return val is None or (isinstance(val, str) and val.strip() == "")


def normalize_sheet(
    df: pd.DataFrame,
    sheet_name: str,
    header_row: int = 1,
    null_sentinels: set[str] | None = None,
) -> SheetData:
    """Turn a raw DataFrame into RowData using ``header_row`` (1-based) as header.

    Steps:
    1. Validate the header row exists and is not blank
    2. Columns with a blank header are ignored
    3. Fully blank rows are skipped
    4. Null sentinels (upper-cased, e.g. 'N/A') become None
    """
    header_idx = header_row - 1
    if df.shape[0] <= header_idx:
        raise SheetHeaderError(f"sheet '{sheet_name}' lacks header row {header_row}")
    header_values = [_to_python(v) for v in df.iloc[header_idx].tolist()]
    columns = ["" if v is None else str(v).strip() for v in header_values]
    if all(c == "" for c in columns):
        raise SheetHeaderError(f"sheet '{sheet_name}' header row {header_row} is blank")

    rows: list[RowData] = []
    data_part = df.iloc[header_idx + 1:]
    for offset, raw in enumerate(data_part.itertuples(index=False, name=None)):
        cells: list[tuple[str, Any]] = []
        for col, val in zip(columns, raw, strict=False):
            if col == "":
                continue
            value = _to_python(val)
            if isinstance(value, str):
                value = value.strip()
                # NULL サニタイズ
                if null_sentinels and value.upper() in null_sentinels:
                    value = None
            cells.append((col, value))
        if all(_is_blank(v) for _, v in cells):
            continue
        rows.append(
            RowData(
                row_number=header_row + 1 + offset,
                cells=cells,
                sheet_name=sheet_name,
            )
        )
    return SheetData(sheet_name=sheet_name, columns=[c for c in columns if c], rows=rows)


def describe_value(value: Any) -> Any:
    """JSON-friendly representation used by --inspect-data."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value
