from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from form_changelog.models.records import SortKey

"""Cell value formatting helpers used by the row normalizer.

None of these raise on bad input except parse_sort_key, whose failure is a
row validation error.
"""

__all__ = [
    "SortKeyError",
    "cell_to_text",
    "format_date",
    "is_canonical_date",
    "split_multi_value",
    "parse_sort_key",
    "parse_loose_pairs",
]

CANONICAL_DATE_FMT = "%m/%d/%Y"
CANONICAL_DATE_RE = re.compile(r"^(0[1-9]|1[0-2])/(0[1-9]|[12]\d|3[01])/\d{4}$")

# 受け付ける入力書式 (先頭から順に試行)
_DATE_INPUT_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
)

SORT_KEY_DIGITS = 8
SORT_KEY_ERROR = "Invalid srtKey format: must be exactly 8 digits (e.g., 20500200)"


class SortKeyError(ValueError):
    pass


def cell_to_text(value: Any) -> str:
    """Render a raw cell as trimmed text ('' for empty).

    Integral floats lose their '.0' so that numeric form numbers read back as
    typed (100.0 -> '100').
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date)):
        return format_date(value)
    return str(value).strip()


def format_date(value: Any) -> str:
    """Format a date cell as MM/DD/YYYY.

    Values that cannot be read as a date are returned as text unchanged.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime(CANONICAL_DATE_FMT)
    text = cell_to_text(value)
    for fmt in _DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime(CANONICAL_DATE_FMT)
        except ValueError:
            continue
    return text  # fallback for non-date values


def is_canonical_date(text: str) -> bool:
    return bool(CANONICAL_DATE_RE.match(text))


def split_multi_value(value: Any) -> list[str]:
    """Split a comma separated cell, trimming and dropping empty entries.

    Order and duplicates are kept as given.
    """
    text = cell_to_text(value)
    return [part.strip() for part in text.split(",") if part.strip()]


def parse_sort_key(value: Any) -> SortKey:
    """Decompose an 8-digit sort key into LEVEL1 (2) / LEVEL2 (3) / LEVEL3 (3).

    Non-digit characters are stripped first, so '20-500-200' is accepted.

    Raises:
        SortKeyError: the value does not reduce to exactly 8 digits
    """
    digits = re.sub(r"\D", "", cell_to_text(value))
    if len(digits) != SORT_KEY_DIGITS:
        raise SortKeyError(SORT_KEY_ERROR)
    return SortKey(level1=digits[0:2], level2=digits[2:5], level3=digits[5:8])


def parse_loose_pairs(value: Any) -> dict[str, str]:
    """Parse 'key: value, key2; value2' into a dict.

    Pairs are separated by ',', key and value by ':' or ';'. Pairs missing a
    key or a value are ignored.
    """
    text = cell_to_text(value)
    pairs: dict[str, str] = {}
    if not text:
        return pairs
    for chunk in text.split(","):
        parts = [p.strip() for p in re.split(r"[:;]", chunk)]
        if len(parts) < 2:
            continue
        key, val = parts[0], parts[1]
        if key and val:
            pairs[key] = val
    return pairs
