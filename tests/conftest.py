# Shared pytest fixtures
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest

FORM_HEADERS = [
    "fileName",
    "changeSetId",
    "formNbr",
    "formName",
    "effectiveDate",
    "expirationDate",
    "rcpType",
    "srtKey",
]


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CHANGELOG_OUTPUT_DIR", raising=False)
    monkeypatch.delenv("CHANGELOG_LEDGER_PATH", raising=False)
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """output_directory: ./output
ledger_path: ./processed-keys.log
sheet_operations:
  Inserts: insert
  Updates: update
default_operation: insert
null_sentinels: ["N/A"]
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "changelog.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def make_workbook(temp_workdir: Path) -> Callable[..., Path]:
    """Build a real .xlsx file; first list of each sheet is the header row."""
    def _make(name: str, sheets: dict[str, list[list[object]]]) -> Path:
        path = temp_workdir / "data" / name
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet_name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
        return path
    return _make


@pytest.fixture()
def form_row() -> Callable[..., list[object]]:
    """Row values in FORM_HEADERS order, defaults taken from a valid insert."""
    def _row(**overrides: object) -> list[object]:
        values: dict[str, object] = {
            "fileName": "F1",
            "changeSetId": "CS1",
            "formNbr": "100",
            "formName": "Test",
            "effectiveDate": "01/01/2024",
            "expirationDate": "12/31/2024",
            "rcpType": "A,B",
            "srtKey": "20500200",
        }
        values.update(overrides)
        return [values[h] for h in FORM_HEADERS]
    return _row


@pytest.fixture()
def form_headers() -> list[str]:
    return list(FORM_HEADERS)
