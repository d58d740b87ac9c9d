from __future__ import annotations

from datetime import date

import pytest

from chartquery.api.models.visualization import TextFormatType
from chartquery.utils.formatting import (
    category_label,
    format_value,
    humanize_column_name,
    infer_unit,
    is_boolean_like,
    parse_numeric_label,
    to_number,
)


@pytest.mark.parametrize(
    "label, expected",
    [("30", 30.0), ("$1,200", 1200.0), ("€ 3.5", 3.5), ("-2", -2.0), ("abc", None), ("", None)],
)
def test_parse_numeric_label(label, expected):
    assert parse_numeric_label(label) == expected


def test_to_number_ignores_booleans():
    assert to_number(True) is None
    assert to_number("12.5") == 12.5
    assert to_number("12 apples") is None


def test_category_label():
    assert category_label(None) == "Unknown"
    assert category_label(False) == "false"
    assert category_label(date(2024, 2, 1)) == "2024-02-01"


def test_is_boolean_like():
    assert is_boolean_like(["Yes", "no", None])
    assert is_boolean_like([True, False])
    assert not is_boolean_like(["yes", "maybe"])
    assert not is_boolean_like([None, None])


def test_humanize_column_name():
    assert humanize_column_name("FilingStatusCode") == "Filing Status Code"
    assert humanize_column_name("total_amount") == "total amount"


def test_infer_unit():
    assert infer_unit("OrderCount") == "items"
    assert infer_unit("UnitPrice") == "USD"
    assert infer_unit("GrowthPercent") == "%"
    # "count" is checked first, so it wins over later keywords
    assert infer_unit("DiscountPercent") == "items"
    assert infer_unit("AmountCount") == "items"
    assert infer_unit("Name") is None


def test_format_value_large_number():
    assert format_value(1234567, TextFormatType.NUMBER) == "1,234,567"
    assert format_value(1234.567, TextFormatType.NUMBER) == "1,234.57"
    assert format_value("n/a", TextFormatType.CURRENCY) == "n/a"
