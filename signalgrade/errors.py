"""
SignalGrade — Domain Errors

Engines raise these; batch boundaries (multi-symbol scans, Celery tasks)
catch them and turn them into ``ScanOutcome`` values so one bad symbol
never aborts the whole batch.
"""

from __future__ import annotations


class SignalGradeError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"


class InsufficientDataError(SignalGradeError):
    """Raised when a candle sequence is shorter than a required window.

    Recoverable by requesting more history. Never padded with fabricated bars.
    """

    kind = "insufficient_data"

    def __init__(self, required: int, available: int, symbol: str = "", what: str = "analysis"):
        self.required = required
        self.available = available
        self.symbol = symbol
        self.what = what
        label = f" for {symbol}" if symbol else ""
        super().__init__(
            f"{what}{label} needs at least {required} candles, got {available}"
        )


class RiskValidationError(SignalGradeError, ValueError):
    """Raised when a risk request is malformed (no partial result is produced)."""

    kind = "validation"


class ConfigurationError(SignalGradeError):
    """Raised when risk limits or scanner settings are missing or invalid."""

    kind = "configuration"
