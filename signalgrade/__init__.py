"""
SignalGrade — OHLCV analysis pipeline

Feature extraction, pattern detection, regime classification, risk sizing
and multi-timeframe synthesis over candle series.
"""

__version__ = "0.1.0"
