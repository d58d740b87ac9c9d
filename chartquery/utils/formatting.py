# chartquery/utils/formatting.py
"""
Value helpers for building visualizations from raw result cells.
"""

import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from chartquery.api.models.visualization import ColumnDataType, TextFormatType

_RE_NUMBER = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
_RE_LABEL_NOISE = re.compile(r'[,$€£¥\s]')
_RE_NAME_BREAK = re.compile(r'(\B[A-Z]|_[a-z])')

BOOLEAN_WORDS = {'true', 'false', 'yes', 'no'}


def is_number(value: Any) -> bool:
    """True for int/float cells; booleans are not numbers here."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_numeric_label(label: str) -> Optional[float]:
    """Parse a category label such as '$1,200' or '30'; None when not numeric."""
    if label is None:
        return None
    cleaned = _RE_LABEL_NOISE.sub('', str(label))
    if not _RE_NUMBER.match(cleaned):
        return None
    return float(cleaned)


def to_number(value: Any) -> Optional[float]:
    """Numeric value of a cell, accepting numeric strings."""
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if _RE_NUMBER.match(cleaned):
            return float(cleaned)
    return None


def category_label(value: Any) -> str:
    if value is None:
        return 'Unknown'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def all_numeric_labels(labels: Iterable[str]) -> bool:
    labels = list(labels)
    return bool(labels) and all(parse_numeric_label(label) is not None for label in labels)


def is_boolean_like(values: Iterable[Any]) -> bool:
    seen = False
    for value in values:
        if value is None:
            continue
        if category_label(value).strip().lower() not in BOOLEAN_WORDS:
            return False
        seen = True
    return seen


def humanize_column_name(name: str) -> str:
    """'UserCount' -> 'User Count', 'user_count' -> 'user count'."""
    return _RE_NAME_BREAK.sub(r' \1', name).strip().replace('_', '')


def infer_column_type(name: str, first_value: Any) -> ColumnDataType:
    lower = name.lower()
    if 'date' in lower or 'time' in lower:
        return ColumnDataType.DATETIME
    if any(word in lower for word in ('price', 'cost', 'amount', 'salary')):
        return ColumnDataType.CURRENCY
    if 'percent' in lower or 'rate' in lower:
        return ColumnDataType.PERCENTAGE
    if 'url' in lower or 'link' in lower:
        return ColumnDataType.LINK

    if isinstance(first_value, bool):
        return ColumnDataType.BOOLEAN
    if is_number(first_value):
        return ColumnDataType.NUMBER
    if isinstance(first_value, (datetime, date)):
        return ColumnDataType.DATETIME
    return ColumnDataType.STRING


def infer_unit(column_name: str) -> Optional[str]:
    lower = column_name.lower()
    if 'count' in lower:
        return 'items'
    if any(word in lower for word in ('amount', 'price', 'cost')):
        return 'USD'
    if 'percent' in lower:
        return '%'
    return None


def _group_digits(number: float) -> str:
    if float(number).is_integer():
        return f'{int(number):,}'
    return f'{number:,.2f}'


def format_value(value: Any, format_type: TextFormatType) -> str:
    if value is None:
        return 'N/A'
    number = to_number(value)
    if number is None:
        return category_label(value)

    if format_type is TextFormatType.NUMBER:
        return _group_digits(number)
    if format_type is TextFormatType.CURRENCY:
        return f'${number:,.2f}'
    if format_type is TextFormatType.PERCENTAGE:
        return f'{number:.1f}%'
    return category_label(value)
