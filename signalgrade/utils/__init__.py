# Shared utilities: formatters, validators
from signalgrade.utils.formatters import (
    format_currency,
    format_label,
    format_pct,
    format_timestamp,
)
from signalgrade.utils.validators import validate_symbol, validate_timeframe

__all__ = [
    "format_currency",
    "format_label",
    "format_pct",
    "format_timestamp",
    "validate_symbol",
    "validate_timeframe",
]
