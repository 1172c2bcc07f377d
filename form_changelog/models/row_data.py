from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RowData model for the changelog compiler.

RowData represents a single non-empty spreadsheet row after header
processing, before any field validation. Cells are kept as an ordered list of
(header, value) pairs so that repeated headers are still visible to the
duplicate-attribute check.
"""

__all__ = [
    "RowData",
]


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single raw row.

    The row_number refers to the original 1-based spreadsheet row number
    (header row = 1 by default, so the first data row is 2).
    """
    row_number: int
    cells: list[tuple[str, Any]]  # (header, value) in column order
    sheet_name: str = ""

    @property
    def headers(self) -> list[str]:
        return [h for h, _ in self.cells]

    def get(self, header: str, default: Any = None) -> Any:
        """Return the value of the first cell under ``header``."""
        for h, value in self.cells:
            if h == header:
                return value
        return default

    def as_dict(self) -> dict[str, Any]:
        """First-occurrence mapping of header to value (debug / inspect use)."""
        values: dict[str, Any] = {}
        for h, value in self.cells:
            values.setdefault(h, value)
        return values
