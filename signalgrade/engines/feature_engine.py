"""
SignalGrade — Feature Engine

Computes the fixed indicator vector (RSI, MACD, Bollinger Bands, ATR,
SMA/EMA, VWAP, volume average, SMA20 slope) from a candle sequence.

Uses the `ta` library for indicator calculations on pandas DataFrames.
Pure function of its input: no I/O, no clock, no hidden state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import structlog
from ta.momentum import RSIIndicator
from ta.trend import MACD, EMAIndicator, SMAIndicator
from ta.volatility import AverageTrueRange, BollingerBands

from signalgrade.errors import InsufficientDataError
from signalgrade.models import Candle, FeatureVector

log = structlog.get_logger(__name__)

MIN_BARS = 50
SMA200_BARS = 200


def candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert candles to a positionally indexed DataFrame."""
    return pd.DataFrame({
        "timestamp": [c.timestamp for c in candles],
        "open": [c.open for c in candles],
        "high": [c.high for c in candles],
        "low": [c.low for c in candles],
        "close": [c.close for c in candles],
        "volume": [float(c.volume) for c in candles],
    })


class FeatureEngine:
    """Technical indicator vector for the last bar of a series.

    Usage:
        engine = FeatureEngine()
        features = engine.compute("AAPL", candles)
    """

    def compute(
        self,
        symbol: str,
        candles: Sequence[Candle],
        as_of: Optional[datetime] = None,
        frame: Optional[pd.DataFrame] = None,
    ) -> FeatureVector:
        """Compute the feature vector.

        Args:
            symbol: Symbol label carried on the result.
            candles: Oldest-first candles, at least ``MIN_BARS`` of them.
            as_of: Calculation timestamp; defaults to the last candle's.
            frame: Pre-computed ``indicator_frame`` for these candles.

        Raises:
            InsufficientDataError: fewer than ``MIN_BARS`` candles.
        """
        if len(candles) < MIN_BARS:
            raise InsufficientDataError(
                required=MIN_BARS, available=len(candles), symbol=symbol, what="feature vector",
            )

        if frame is None:
            frame = self.indicator_frame(candles)
        last = frame.iloc[-1]

        features = FeatureVector(
            symbol=symbol,
            calculated_at=as_of or candles[-1].timestamp,
            bar_count=len(candles),
            price=_round(last["close"]),
            rsi=_round(last["rsi"]),
            macd=_round(last["macd"]),
            macd_signal=_round(last["macd_signal"]),
            macd_histogram=_round(last["macd_histogram"]),
            bb_upper=_round(last["bb_upper"]),
            bb_middle=_round(last["bb_middle"]),
            bb_lower=_round(last["bb_lower"]),
            bb_width=_round(last["bb_width"]),
            atr=_round(last["atr"]),
            atr_pct=_round(last["atr_pct"]),
            sma20=_round(last["sma20"]),
            sma50=_round(last["sma50"]),
            sma200=_round(last["sma200"]) if len(candles) >= SMA200_BARS else None,
            ema12=_round(last["ema12"]),
            ema26=_round(last["ema26"]),
            vwap=_round(last["vwap"]),
            volume_avg20=_round(last["volume_avg20"]),
            sma20_slope=_round(last["sma20_slope"]),
        )
        log.debug("features.computed", symbol=symbol, bars=len(candles), rsi=features.rsi)
        return features

    def indicator_frame(self, candles: Sequence[Candle]) -> pd.DataFrame:
        """Per-bar indicator columns for the whole series.

        Columns that need a longer window than the series provides are NaN.
        """
        df = candles_to_dataframe(candles)
        close, high, low, volume = df["close"], df["high"], df["low"], df["volume"]

        # ── Trend ──
        df["sma20"] = SMAIndicator(close, window=20).sma_indicator()
        df["sma50"] = SMAIndicator(close, window=50).sma_indicator()
        df["sma200"] = SMAIndicator(close, window=SMA200_BARS).sma_indicator()
        df["ema12"] = EMAIndicator(close, window=12).ema_indicator()
        df["ema26"] = EMAIndicator(close, window=26).ema_indicator()

        # ── MACD ──
        macd = MACD(close, window_slow=26, window_fast=12, window_sign=9)
        df["macd"] = macd.macd()
        df["macd_signal"] = macd.macd_signal()
        df["macd_histogram"] = macd.macd_diff()

        # ── Momentum ──
        df["rsi"] = RSIIndicator(close, window=14).rsi()
        # No close-to-close movement over the window: gain/loss is 0/0, read as neutral
        still = close.diff().abs().rolling(14).sum() == 0
        df.loc[still, "rsi"] = 50.0

        # ── Volatility ──
        bb = BollingerBands(close, window=20, window_dev=2)
        df["bb_upper"] = bb.bollinger_hband()
        df["bb_middle"] = bb.bollinger_mavg()
        df["bb_lower"] = bb.bollinger_lband()
        df["bb_width"] = (df["bb_upper"] - df["bb_lower"]) / df["bb_middle"].replace(0, np.nan)

        if len(df) >= 14:
            df["atr"] = AverageTrueRange(high, low, close, window=14).average_true_range()
        else:
            df["atr"] = np.nan
        df["atr_pct"] = df["atr"] / close.replace(0, np.nan) * 100

        # ── Volume ──
        typical = (high + low + close) / 3
        cum_volume = volume.cumsum()
        cum_pv = (typical * volume).cumsum()
        df["vwap"] = np.where(cum_volume > 0, cum_pv / cum_volume.replace(0, np.nan), typical)
        df["volume_avg20"] = volume.rolling(20).mean()

        # SMA20 slope in % of price per bar
        df["sma20_slope"] = df["sma20"].diff() / close.replace(0, np.nan) * 100

        return df


def _round(value, decimals: int = 4) -> float:
    """Round an indicator value; zero-priced series yield 0.0 rather than NaN."""
    value = float(value)
    if np.isnan(value) or np.isinf(value):
        return 0.0
    return round(value, decimals)
