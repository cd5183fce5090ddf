"""
SignalGrade — Shared Formatters

Human-readable formatting for prices, percentages, and pattern labels.
Used by scan notifications and rationale strings.
"""

from __future__ import annotations

import math
from datetime import datetime


def _missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def format_currency(value: float | int, decimals: int = 2) -> str:
    """Price with thousands separators; the sign goes before the dollar.

    >>> format_currency(190.5)
    '$190.50'
    >>> format_currency(-12500)
    '-$12,500.00'
    """
    if _missing(value):
        return "N/A"
    text = f"${abs(value):,.{decimals}f}"
    return "-" + text if value < 0 else text


def format_pct(value: float | int, decimals: int = 2, show_sign: bool = True) -> str:
    """Percentage (value already on a 0–100 scale).

    >>> format_pct(0.456)
    '+0.46%'
    >>> format_pct(82.0, decimals=0, show_sign=False)
    '82%'
    """
    if _missing(value):
        return "N/A"
    spec = f"+.{decimals}f" if show_sign else f".{decimals}f"
    return f"{value:{spec}}%"


def format_label(raw: str) -> str:
    """Turn an enum value into a display label.

    >>> format_label('inverse_head_and_shoulders')
    'Inverse Head And Shoulders'
    >>> format_label('1wk')
    '1wk'
    """
    if "_" not in raw and not raw.isalpha():
        return raw
    return " ".join(part.capitalize() for part in raw.split("_"))


def format_timestamp(dt: datetime) -> str:
    """Format a bar timestamp for notifications.

    >>> format_timestamp(datetime(2024, 3, 1, 14, 30))
    '2024-03-01 14:30'
    """
    return dt.strftime("%Y-%m-%d %H:%M")
