from __future__ import annotations

from datetime import date, datetime

import pytest

from form_changelog.services.formatting import (
    SortKeyError,
    cell_to_text,
    format_date,
    is_canonical_date,
    parse_loose_pairs,
    parse_sort_key,
    split_multi_value,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("20500200", ("20", "500", "200")),
        ("20-500-200", ("20", "500", "200")),
        (" 12 345 678 ", ("12", "345", "678")),
        (20500200, ("20", "500", "200")),
        (20500200.0, ("20", "500", "200")),
    ],
)
def test_parse_sort_key_decomposes_levels(raw, expected):
    key = parse_sort_key(raw)
    assert (key.level1, key.level2, key.level3) == expected
    assert key.as_dict() == {"LEVEL1": expected[0], "LEVEL2": expected[1], "LEVEL3": expected[2]}


@pytest.mark.parametrize("raw", ["2050020", "205002001", "", None, "abc", "2050-020"])
def test_parse_sort_key_rejects_wrong_digit_count(raw):
    with pytest.raises(SortKeyError, match="exactly 8 digits"):
        parse_sort_key(raw)


def test_split_multi_value_trims_and_drops_empty():
    assert split_multi_value(" A, B ,,C ,") == ["A", "B", "C"]


def test_split_multi_value_keeps_order_and_duplicates():
    assert split_multi_value("B,A,B") == ["B", "A", "B"]
    assert split_multi_value(None) == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        (datetime(2024, 1, 5, 13, 30), "01/05/2024"),
        (date(2024, 12, 31), "12/31/2024"),
        ("2024-01-05", "01/05/2024"),
        ("1/5/2024", "01/05/2024"),
        ("01/05/2024", "01/05/2024"),
        ("2024-01-05 00:00:00", "01/05/2024"),
    ],
)
def test_format_date_canonical(raw, expected):
    assert format_date(raw) == expected


def test_format_date_unparseable_passes_through():
    assert format_date("next tuesday") == "next tuesday"
    assert format_date("13/45/2024") == "13/45/2024"
    assert format_date(None) == ""
    assert format_date("") == ""


def test_is_canonical_date():
    assert is_canonical_date("01/31/2024")
    assert not is_canonical_date("2024-01-31")
    assert not is_canonical_date("13/01/2024")


def test_cell_to_text():
    assert cell_to_text(100.0) == "100"
    assert cell_to_text(1.5) == "1.5"
    assert cell_to_text("  x ") == "x"
    assert cell_to_text(None) == ""
    assert cell_to_text(True) == "true"


def test_parse_loose_pairs():
    pairs = parse_loose_pairs("formName: Renamed, lob; AUTO, broken, : nokey")
    assert pairs == {"formName": "Renamed", "lob": "AUTO"}
    assert parse_loose_pairs(None) == {}
