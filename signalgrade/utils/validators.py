"""
SignalGrade — Input Validators

Reusable validation helpers for symbols and timeframe labels.
Raise ValueError on invalid input so batch callers can report it per symbol.
"""

from __future__ import annotations

import re

# Equities (AAPL, BRK.B), crypto pairs (BTC-USD, ETH/USDT), futures roots (ES1!)
_SYMBOL_RE = re.compile(r"^[A-Z0-9]{1,10}([.\-/][A-Z0-9]{1,10})?!?$")


def validate_symbol(raw: str) -> str:
    """Clean and validate a symbol.

    Returns the normalized symbol or raises ValueError.

    >>> validate_symbol('aapl')
    'AAPL'
    >>> validate_symbol(' btc-usd ')
    'BTC-USD'
    """
    symbol = raw.strip().upper()
    if not symbol:
        raise ValueError("Symbol cannot be empty")
    if not _SYMBOL_RE.match(symbol):
        raise ValueError(
            f"Invalid symbol '{symbol}'. Expected 1-10 letters/digits, "
            f"optionally followed by a class or quote suffix (e.g. BRK.B, BTC-USD)"
        )
    return symbol


def validate_timeframe(label: str, known: dict[str, float]) -> str:
    """Normalize a timeframe label and check it has a configured weight.

    >>> validate_timeframe(' 1D ', {'1d': 2.0})
    '1d'
    """
    tf = label.strip().lower()
    if tf not in known:
        raise ValueError(
            f"Unknown timeframe '{label}'. Configured: {', '.join(sorted(known))}"
        )
    return tf
