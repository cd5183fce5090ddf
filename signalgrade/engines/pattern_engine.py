"""
SignalGrade — Pattern Detection Engine

Rule-based detection of candlestick, chart, and technical-setup patterns
from OHLCV candles. Deterministic analysis: no ML, no I/O.

Candlestick (1–3 bar):
  Single:  Doji, Hammer, Inverted Hammer, Shooting Star, Marubozu (Bull/Bear)
  Double:  Engulfing (Bull/Bear), Harami (Bull/Bear), Piercing Line,
           Dark Cloud Cover
  Triple:  Morning/Evening Star, Three White Soldiers, Three Black Crows

Chart (swing geometry):
  V-Bottom/V-Top pivots, Double Top/Bottom, Head & Shoulders (& Inverse),
  Ascending/Descending/Symmetrical Triangle, Rising/Falling Wedge,
  Bull/Bear Flag

Technical setups (indicator-driven):
  Golden/Death Cross, RSI Divergence, RSI Oversold/Overbought,
  Bollinger Squeeze, Volume Breakout, MACD Cross,
  Support Bounce / Resistance Rejection

Every scan returns results ordered by end index (oldest first), then by
confidence (highest first). An empty list means nothing matched. A result
whose stop and target do not sit on opposite sides of its entry is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from signalgrade.engines.feature_engine import MIN_BARS, SMA200_BARS, FeatureEngine
from signalgrade.models import (
    Candle,
    CandlestickPattern,
    ChartPattern,
    Direction,
    PatternResult,
    PatternStatus,
    PatternType,
    TechnicalSetup,
)
from signalgrade.utils.formatters import format_label

MIN_CANDLESTICK_BARS = 5
MIN_CHART_BARS = 30
SWING_ORDER = 5

# Historical win rates (%) used when no performance data is injected
_WIN_RATES: dict[PatternType, float] = {
    CandlestickPattern.DOJI: 50.0,
    CandlestickPattern.HAMMER: 60.0,
    CandlestickPattern.INVERTED_HAMMER: 55.0,
    CandlestickPattern.SHOOTING_STAR: 59.0,
    CandlestickPattern.BULLISH_MARUBOZU: 62.0,
    CandlestickPattern.BEARISH_MARUBOZU: 62.0,
    CandlestickPattern.BULLISH_ENGULFING: 63.0,
    CandlestickPattern.BEARISH_ENGULFING: 63.0,
    CandlestickPattern.BULLISH_HARAMI: 53.0,
    CandlestickPattern.BEARISH_HARAMI: 53.0,
    CandlestickPattern.PIERCING_LINE: 57.0,
    CandlestickPattern.DARK_CLOUD_COVER: 57.0,
    CandlestickPattern.MORNING_STAR: 65.0,
    CandlestickPattern.EVENING_STAR: 65.0,
    CandlestickPattern.THREE_WHITE_SOLDIERS: 66.0,
    CandlestickPattern.THREE_BLACK_CROWS: 66.0,
    ChartPattern.V_BOTTOM: 55.0,
    ChartPattern.V_TOP: 55.0,
    ChartPattern.DOUBLE_TOP: 65.0,
    ChartPattern.DOUBLE_BOTTOM: 65.0,
    ChartPattern.HEAD_AND_SHOULDERS: 70.0,
    ChartPattern.INVERSE_HEAD_AND_SHOULDERS: 70.0,
    ChartPattern.ASCENDING_TRIANGLE: 63.0,
    ChartPattern.DESCENDING_TRIANGLE: 62.0,
    ChartPattern.SYMMETRICAL_TRIANGLE: 54.0,
    ChartPattern.RISING_WEDGE: 60.0,
    ChartPattern.FALLING_WEDGE: 62.0,
    ChartPattern.BULL_FLAG: 64.0,
    ChartPattern.BEAR_FLAG: 63.0,
    TechnicalSetup.GOLDEN_CROSS: 64.0,
    TechnicalSetup.DEATH_CROSS: 62.0,
    TechnicalSetup.BULLISH_RSI_DIVERGENCE: 60.0,
    TechnicalSetup.BEARISH_RSI_DIVERGENCE: 59.0,
    TechnicalSetup.RSI_OVERSOLD: 56.0,
    TechnicalSetup.RSI_OVERBOUGHT: 55.0,
    TechnicalSetup.BOLLINGER_SQUEEZE: 52.0,
    TechnicalSetup.VOLUME_BREAKOUT: 58.0,
    TechnicalSetup.BULLISH_MACD_CROSS: 55.0,
    TechnicalSetup.BEARISH_MACD_CROSS: 54.0,
    TechnicalSetup.SUPPORT_BOUNCE: 58.0,
    TechnicalSetup.RESISTANCE_REJECTION: 57.0,
}


@dataclass(frozen=True)
class _Bars:
    """Column arrays over a candle sequence."""
    o: np.ndarray
    h: np.ndarray
    l: np.ndarray
    c: np.ndarray
    v: np.ndarray
    ts: list[datetime]
    timeframe: str

    @classmethod
    def of(cls, candles: Sequence[Candle], timeframe: str) -> "_Bars":
        return cls(
            o=np.array([b.open for b in candles], dtype=float),
            h=np.array([b.high for b in candles], dtype=float),
            l=np.array([b.low for b in candles], dtype=float),
            c=np.array([b.close for b in candles], dtype=float),
            v=np.array([b.volume for b in candles], dtype=float),
            ts=[b.timestamp for b in candles],
            timeframe=timeframe,
        )

    @property
    def n(self) -> int:
        return len(self.c)

    def avg_range(self, i: int, lookback: int = 14) -> float:
        """Mean high-low range of the bars before ``i``."""
        start = max(0, i - lookback)
        if start == i:
            return float(self.h[i] - self.l[i])
        return float(np.mean(self.h[start:i] - self.l[start:i]))


class PatternEngine:
    """Rule-based candlestick, chart, and technical-setup detector.

    Usage:
        engine = PatternEngine()
        patterns = engine.detect_all(candles, timeframe="1d")

    ``performance`` optionally maps pattern values (e.g. ``"hammer"``) to
    observed win rates; it is read, never written.
    """

    def __init__(
        self,
        feature_engine: Optional[FeatureEngine] = None,
        performance: Optional[Mapping[str, float]] = None,
    ):
        self._features = feature_engine or FeatureEngine()
        self._performance = dict(performance or {})

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def detect_all(
        self,
        candles: Sequence[Candle],
        timeframe: str = "",
        frame: Optional[pd.DataFrame] = None,
    ) -> list[PatternResult]:
        """Candlestick + chart + technical scan, merged and ordered."""
        return order_patterns(
            self.detect_candlestick_patterns(candles, timeframe)
            + self.detect_chart_patterns(candles, timeframe)
            + self.detect_technical_setups(candles, timeframe, frame=frame)
        )

    def detect_candlestick_patterns(
        self, candles: Sequence[Candle], timeframe: str = "",
    ) -> list[PatternResult]:
        """Scan every bar (from the third onward) for 1–3 bar formations."""
        if len(candles) < MIN_CANDLESTICK_BARS:
            return []

        bars = _Bars.of(candles, timeframe)
        patterns: list[PatternResult] = []
        for i in range(2, bars.n):
            avg_range = bars.avg_range(i)
            patterns.extend(self._single_bar(bars, i, avg_range))
            patterns.extend(self._double_bar(bars, i))
            patterns.extend(self._triple_bar(bars, i, avg_range))
        return order_patterns(_tradeable(patterns))

    def detect_chart_patterns(
        self, candles: Sequence[Candle], timeframe: str = "",
    ) -> list[PatternResult]:
        """Detect structural chart patterns using swing highs/lows."""
        if len(candles) < MIN_CANDLESTICK_BARS:
            return []

        bars = _Bars.of(candles, timeframe)
        patterns = self._detect_v_pivots(bars)

        if bars.n >= MIN_CHART_BARS:
            swing_highs = find_swings(bars.h, mode="high", order=SWING_ORDER)
            swing_lows = find_swings(bars.l, mode="low", order=SWING_ORDER)

            patterns.extend(self._detect_double_top(bars, swing_highs))
            patterns.extend(self._detect_double_bottom(bars, swing_lows))
            patterns.extend(self._detect_head_and_shoulders(bars, swing_highs))
            patterns.extend(self._detect_inverse_head_and_shoulders(bars, swing_lows))
            patterns.extend(self._detect_converging_lines(bars, swing_highs, swing_lows))
            patterns.extend(self._detect_flags(bars))

        return order_patterns(_tradeable(patterns))

    def detect_technical_setups(
        self,
        candles: Sequence[Candle],
        timeframe: str = "",
        frame: Optional[pd.DataFrame] = None,
    ) -> list[PatternResult]:
        """Indicator-driven setups at the latest bars.

        Args:
            candles: Oldest-first candles (needs ``MIN_BARS``).
            timeframe: Label carried on each result.
            frame: Pre-computed ``FeatureEngine.indicator_frame`` for these
                candles, to avoid recomputing it.
        """
        if len(candles) < MIN_BARS:
            return []

        bars = _Bars.of(candles, timeframe)
        if frame is None:
            frame = self._features.indicator_frame(candles)

        patterns: list[PatternResult] = []
        patterns.extend(self._detect_ma_cross(bars, frame))
        patterns.extend(self._detect_rsi_divergence(bars, frame))
        patterns.extend(self._detect_rsi_extremes(bars, frame))
        patterns.extend(self._detect_bollinger_squeeze(bars, frame))
        patterns.extend(self._detect_volume_breakout(bars))
        patterns.extend(self._detect_macd_cross(bars, frame))
        patterns.extend(self._detect_level_reactions(bars))
        return order_patterns(_tradeable(patterns))

    def evaluate_outcome(
        self,
        pattern: PatternResult,
        later_candles: Sequence[Candle],
        max_bars: int = 20,
    ) -> PatternStatus:
        """Lifecycle of a pattern given the candles that followed it.

        The stop is checked before the target within a bar. A stop hit before
        the entry ever traded counts as invalidation rather than a loss.
        """
        window = list(later_candles[:max_bars])
        if pattern.direction == Direction.NEUTRAL:
            return PatternStatus.EXPIRED if len(window) >= max_bars else PatternStatus.ACTIVE

        bullish = pattern.direction == Direction.BULLISH
        triggered = False
        for bar in window:
            if bullish:
                if bar.low <= pattern.stop:
                    return PatternStatus.HIT_STOP if triggered else PatternStatus.INVALIDATED
                triggered = triggered or bar.high >= pattern.entry
                if triggered and bar.high >= pattern.target:
                    return PatternStatus.HIT_TARGET
            else:
                if bar.high >= pattern.stop:
                    return PatternStatus.HIT_STOP if triggered else PatternStatus.INVALIDATED
                triggered = triggered or bar.low <= pattern.entry
                if triggered and bar.low <= pattern.target:
                    return PatternStatus.HIT_TARGET

        if len(window) >= max_bars:
            return PatternStatus.EXPIRED
        return PatternStatus.PLAYING_OUT if triggered else PatternStatus.ACTIVE

    def win_rate(self, pattern: PatternType) -> float:
        """Observed win rate if injected, else the built-in historical rate."""
        return float(self._performance.get(pattern.value, _WIN_RATES[pattern]))

    # ──────────────────────────────────────────
    # Single-Bar Candlestick Patterns
    # ──────────────────────────────────────────

    def _single_bar(self, bars: _Bars, i: int, avg_range: float) -> list[PatternResult]:
        o, h, l, c = bars.o, bars.h, bars.l, bars.c
        patterns: list[PatternResult] = []
        body = abs(c[i] - o[i])
        rng = h[i] - l[i]
        if rng <= 0:
            return patterns

        upper = h[i] - max(o[i], c[i])
        lower = min(o[i], c[i]) - l[i]
        prev_bearish = c[i - 1] < o[i - 1]
        prev_bullish = c[i - 1] > o[i - 1]

        # Doji: tiny body relative to range
        if body / rng < 0.10:
            patterns.append(self._result(
                bars, CandlestickPattern.DOJI, Direction.NEUTRAL,
                confidence=60 + (1 - body / rng) * 30,
                description="Doji — indecision, potential reversal",
                entry=c[i], stop=l[i], target=h[i], start=i, end=i,
            ))
            return patterns

        if body > 0 and rng > 0.5 * avg_range:
            # Hammer: long lower wick after a down bar
            if prev_bearish and lower >= 2 * body and upper < 0.5 * body:
                patterns.append(self._result(
                    bars, CandlestickPattern.HAMMER, Direction.BULLISH,
                    confidence=65 + min(lower / body * 5, 25),
                    description="Hammer — buyers rejected lower prices",
                    entry=h[i], stop=l[i], target=h[i] + rng, start=i, end=i,
                ))
            # Inverted Hammer
            elif prev_bearish and upper >= 2 * body and lower < 0.5 * body:
                patterns.append(self._result(
                    bars, CandlestickPattern.INVERTED_HAMMER, Direction.BULLISH,
                    confidence=60 + min(upper / body * 5, 20),
                    description="Inverted hammer — potential bullish reversal",
                    entry=h[i], stop=l[i], target=h[i] + rng, start=i, end=i,
                ))
            # Shooting Star: long upper wick after an up bar
            elif prev_bullish and upper >= 2 * body and lower < 0.5 * body:
                patterns.append(self._result(
                    bars, CandlestickPattern.SHOOTING_STAR, Direction.BEARISH,
                    confidence=65 + min(upper / body * 5, 25),
                    description="Shooting star — sellers rejected higher prices",
                    entry=l[i], stop=h[i], target=l[i] - rng, start=i, end=i,
                ))

        # Marubozu: full body, almost no wicks
        if avg_range > 0 and body > 0.8 * avg_range and upper < 0.05 * body and lower < 0.05 * body:
            conf = 75 + min(10.0, (body / avg_range - 0.8) * 10)
            if c[i] > o[i]:
                patterns.append(self._result(
                    bars, CandlestickPattern.BULLISH_MARUBOZU, Direction.BULLISH,
                    confidence=conf, description="Bullish marubozu — strong buying conviction",
                    entry=c[i], stop=l[i], target=c[i] + body, start=i, end=i,
                ))
            else:
                patterns.append(self._result(
                    bars, CandlestickPattern.BEARISH_MARUBOZU, Direction.BEARISH,
                    confidence=conf, description="Bearish marubozu — strong selling conviction",
                    entry=c[i], stop=h[i], target=c[i] - body, start=i, end=i,
                ))

        return patterns

    # ──────────────────────────────────────────
    # Double-Bar Candlestick Patterns
    # ──────────────────────────────────────────

    def _double_bar(self, bars: _Bars, i: int) -> list[PatternResult]:
        o, h, l, c = bars.o, bars.h, bars.l, bars.c
        prev = i - 1
        body = abs(c[i] - o[i])
        body_prev = abs(c[prev] - o[prev])
        if body == 0 or body_prev == 0:
            return []

        bull_now, bear_now = c[i] > o[i], c[i] < o[i]
        bull_prev, bear_prev = c[prev] > o[prev], c[prev] < o[prev]
        low2 = min(l[i], l[prev])
        high2 = max(h[i], h[prev])
        mid_prev = (o[prev] + c[prev]) / 2

        # Bullish Engulfing: green body swallows the red body before it
        if bear_prev and bull_now and o[i] <= c[prev] and c[i] >= o[prev] and body > body_prev:
            return [self._result(
                bars, CandlestickPattern.BULLISH_ENGULFING, Direction.BULLISH,
                confidence=70 + min(body / body_prev * 5, 20),
                description="Bullish engulfing — strong reversal signal",
                entry=c[i], stop=low2, target=c[i] + (c[i] - low2) * 2, start=prev, end=i,
            )]

        # Bearish Engulfing
        if bull_prev and bear_now and o[i] >= c[prev] and c[i] <= o[prev] and body > body_prev:
            return [self._result(
                bars, CandlestickPattern.BEARISH_ENGULFING, Direction.BEARISH,
                confidence=70 + min(body / body_prev * 5, 20),
                description="Bearish engulfing — strong reversal signal",
                entry=c[i], stop=high2, target=c[i] - (high2 - c[i]) * 2, start=prev, end=i,
            )]

        # Bullish Harami: small green body inside the prior red body
        if bear_prev and bull_now and o[i] > c[prev] and c[i] < o[prev] and body < body_prev * 0.5:
            return [self._result(
                bars, CandlestickPattern.BULLISH_HARAMI, Direction.BULLISH,
                confidence=58 + (1 - body / body_prev) * 10,
                description="Bullish harami — selling pressure stalling, needs confirmation",
                entry=h[i], stop=low2, target=h[i] + (h[i] - low2) * 2, start=prev, end=i,
            )]

        # Bearish Harami
        if bull_prev and bear_now and o[i] < c[prev] and c[i] > o[prev] and body < body_prev * 0.5:
            return [self._result(
                bars, CandlestickPattern.BEARISH_HARAMI, Direction.BEARISH,
                confidence=58 + (1 - body / body_prev) * 10,
                description="Bearish harami — buying pressure stalling, needs confirmation",
                entry=l[i], stop=high2, target=l[i] - (high2 - l[i]) * 2, start=prev, end=i,
            )]

        # Piercing Line: opens below prior close, closes above its midpoint
        if bear_prev and bull_now and o[i] < c[prev] and mid_prev < c[i] < o[prev]:
            return [self._result(
                bars, CandlestickPattern.PIERCING_LINE, Direction.BULLISH,
                confidence=60 + (c[i] - c[prev]) / body_prev * 10,
                description="Piercing line — gap-down recovered past the prior midpoint",
                entry=c[i], stop=low2, target=c[i] + (c[i] - low2) * 2, start=prev, end=i,
            )]

        # Dark Cloud Cover
        if bull_prev and bear_now and o[i] > c[prev] and o[prev] < c[i] < mid_prev:
            return [self._result(
                bars, CandlestickPattern.DARK_CLOUD_COVER, Direction.BEARISH,
                confidence=60 + (c[prev] - c[i]) / body_prev * 10,
                description="Dark cloud cover — gap-up rejected below the prior midpoint",
                entry=c[i], stop=high2, target=c[i] - (high2 - c[i]) * 2, start=prev, end=i,
            )]

        return []

    # ──────────────────────────────────────────
    # Triple-Bar Candlestick Patterns
    # ──────────────────────────────────────────

    def _triple_bar(self, bars: _Bars, i: int, avg_range: float) -> list[PatternResult]:
        o, h, l, c = bars.o, bars.h, bars.l, bars.c
        a, b = i - 2, i - 1
        body_a = abs(c[a] - o[a])
        body_b = abs(c[b] - o[b])
        body_c = abs(c[i] - o[i])
        low3 = float(np.min(l[a:i + 1]))
        high3 = float(np.max(h[a:i + 1]))

        # Morning Star: large red, small star at/below its close, green recovery
        if (c[a] < o[a] and body_a > 0.5 * avg_range and body_b < 0.3 * body_a
                and max(o[b], c[b]) <= c[a] and c[i] > o[i] and body_c > 0.5 * avg_range
                and c[i] > (o[a] + c[a]) / 2):
            return [self._result(
                bars, CandlestickPattern.MORNING_STAR, Direction.BULLISH,
                confidence=74 + min(8.0, (c[i] - c[a]) / body_a * 6),
                description="Morning star — three-bar bullish reversal",
                entry=c[i], stop=low3, target=c[i] + (c[i] - low3) * 2, start=a, end=i,
            )]

        # Evening Star
        if (c[a] > o[a] and body_a > 0.5 * avg_range and body_b < 0.3 * body_a
                and min(o[b], c[b]) >= c[a] and c[i] < o[i] and body_c > 0.5 * avg_range
                and c[i] < (o[a] + c[a]) / 2):
            return [self._result(
                bars, CandlestickPattern.EVENING_STAR, Direction.BEARISH,
                confidence=74 + min(8.0, (c[a] - c[i]) / body_a * 6),
                description="Evening star — three-bar bearish reversal",
                entry=c[i], stop=high3, target=c[i] - (high3 - c[i]) * 2, start=a, end=i,
            )]

        if avg_range <= 0:
            return []
        min_body = min(body_a, body_b, body_c)

        # Three White Soldiers: rising closes, each opening inside the prior body
        if (c[a] > o[a] and c[b] > o[b] and c[i] > o[i]
                and c[a] < c[b] < c[i]
                and o[a] < o[b] <= c[a] and o[b] < o[i] <= c[b]
                and min_body > 0.4 * avg_range):
            return [self._result(
                bars, CandlestickPattern.THREE_WHITE_SOLDIERS, Direction.BULLISH,
                confidence=78 + min(6.0, (min_body / avg_range - 0.4) * 10),
                description="Three white soldiers — sustained buying",
                entry=c[i], stop=l[a], target=c[i] + (c[i] - l[a]), start=a, end=i,
            )]

        # Three Black Crows
        if (c[a] < o[a] and c[b] < o[b] and c[i] < o[i]
                and c[a] > c[b] > c[i]
                and c[a] <= o[b] < o[a] and c[b] <= o[i] < o[b]
                and min_body > 0.4 * avg_range):
            return [self._result(
                bars, CandlestickPattern.THREE_BLACK_CROWS, Direction.BEARISH,
                confidence=78 + min(6.0, (min_body / avg_range - 0.4) * 10),
                description="Three black crows — sustained selling",
                entry=c[i], stop=h[a], target=c[i] - (h[a] - c[i]), start=a, end=i,
            )]

        return []

    # ──────────────────────────────────────────
    # Chart Patterns
    # ──────────────────────────────────────────

    def _detect_v_pivots(self, bars: _Bars) -> list[PatternResult]:
        """Five-bar V-bottom / V-top: two bars into a pivot, two bars out."""
        o, h, l, c = bars.o, bars.h, bars.l, bars.c
        patterns: list[PatternResult] = []

        for i in range(2, bars.n - 2):
            span = slice(i - 2, i + 3)
            avg_range = float(np.mean(h[span] - l[span]))
            if avg_range <= 0:
                continue

            # V-Bottom
            if (l[i - 2] > l[i - 1] > l[i] < l[i + 1] < l[i + 2]
                    and c[i - 2] > c[i - 1] and c[i + 1] < c[i + 2]):
                left, right = c[i - 2] - l[i], c[i + 2] - l[i]
                if min(left, right) >= avg_range:
                    symmetry = min(left, right) / max(left, right)
                    if symmetry >= 0.6:
                        patterns.append(self._result(
                            bars, ChartPattern.V_BOTTOM, Direction.BULLISH,
                            confidence=45 + 30 * symmetry,
                            description=f"V-bottom pivot at {l[i]:.2f} ({symmetry:.0%} leg symmetry)",
                            entry=c[i + 2], stop=l[i], target=c[i + 2] + left,
                            start=i - 2, end=i + 2,
                        ))

            # V-Top
            if (h[i - 2] < h[i - 1] < h[i] > h[i + 1] > h[i + 2]
                    and c[i - 2] < c[i - 1] and c[i + 1] > c[i + 2]):
                left, right = h[i] - c[i - 2], h[i] - c[i + 2]
                if min(left, right) >= avg_range:
                    symmetry = min(left, right) / max(left, right)
                    if symmetry >= 0.6:
                        patterns.append(self._result(
                            bars, ChartPattern.V_TOP, Direction.BEARISH,
                            confidence=45 + 30 * symmetry,
                            description=f"V-top pivot at {h[i]:.2f} ({symmetry:.0%} leg symmetry)",
                            entry=c[i + 2], stop=h[i], target=c[i + 2] - left,
                            start=i - 2, end=i + 2,
                        ))

        return patterns

    def _detect_double_top(self, bars: _Bars, swing_highs) -> list[PatternResult]:
        """Double top: two comparable peaks with a meaningful trough between."""
        for j in range(len(swing_highs) - 1, 0, -1):
            idx1, val1 = swing_highs[j - 1]
            idx2, val2 = swing_highs[j]
            if not 10 <= idx2 - idx1 <= 60:
                continue
            if val1 <= 0:
                continue
            diff = abs(val2 - val1) / val1
            if diff > 0.02:
                continue
            peak = max(val1, val2)
            neckline = float(np.min(bars.l[idx1:idx2 + 1]))
            height = peak - neckline
            if height / peak < 0.03:
                continue
            # Last close must be near or through the neckline
            if bars.c[-1] > neckline + 0.2 * height:
                continue
            return [self._result(
                bars, ChartPattern.DOUBLE_TOP, Direction.BEARISH,
                confidence=60 + 15 * (1 - diff / 0.02) + min(10.0, height / peak * 100),
                description=f"Double top at ~{peak:.2f}, neckline ~{neckline:.2f}",
                entry=neckline, stop=peak, target=neckline - height, start=idx1, end=idx2,
            )]
        return []

    def _detect_double_bottom(self, bars: _Bars, swing_lows) -> list[PatternResult]:
        """Double bottom: two comparable troughs with a meaningful peak between."""
        for j in range(len(swing_lows) - 1, 0, -1):
            idx1, val1 = swing_lows[j - 1]
            idx2, val2 = swing_lows[j]
            if not 10 <= idx2 - idx1 <= 60:
                continue
            if val1 <= 0:
                continue
            diff = abs(val2 - val1) / val1
            if diff > 0.02:
                continue
            trough = min(val1, val2)
            neckline = float(np.max(bars.h[idx1:idx2 + 1]))
            height = neckline - trough
            if height / neckline < 0.03:
                continue
            if bars.c[-1] < neckline - 0.2 * height:
                continue
            return [self._result(
                bars, ChartPattern.DOUBLE_BOTTOM, Direction.BULLISH,
                confidence=60 + 15 * (1 - diff / 0.02) + min(10.0, height / neckline * 100),
                description=f"Double bottom at ~{trough:.2f}, neckline ~{neckline:.2f}",
                entry=neckline, stop=trough, target=neckline + height, start=idx1, end=idx2,
            )]
        return []

    def _detect_head_and_shoulders(self, bars: _Bars, swing_highs) -> list[PatternResult]:
        """Head & Shoulders: left shoulder, higher head, right shoulder ≈ left."""
        for j in range(len(swing_highs) - 1, 1, -1):
            ls_i, ls_v = swing_highs[j - 2]
            hd_i, hd_v = swing_highs[j - 1]
            rs_i, rs_v = swing_highs[j]
            if hd_v <= ls_v or hd_v <= rs_v:
                continue
            shoulder_diff = abs(ls_v - rs_v) / ls_v
            if shoulder_diff > 0.03:
                continue
            neckline = float(np.min(bars.l[ls_i:rs_i + 1]))
            height = hd_v - neckline
            return [self._result(
                bars, ChartPattern.HEAD_AND_SHOULDERS, Direction.BEARISH,
                confidence=70 + 12 * (1 - shoulder_diff / 0.03),
                description=f"H&S: LS={ls_v:.2f}, Head={hd_v:.2f}, RS={rs_v:.2f}, Neckline={neckline:.2f}",
                entry=neckline, stop=rs_v, target=neckline - height, start=ls_i, end=rs_i,
            )]
        return []

    def _detect_inverse_head_and_shoulders(self, bars: _Bars, swing_lows) -> list[PatternResult]:
        """Inverse H&S: left trough, deeper head, right trough ≈ left."""
        for j in range(len(swing_lows) - 1, 1, -1):
            ls_i, ls_v = swing_lows[j - 2]
            hd_i, hd_v = swing_lows[j - 1]
            rs_i, rs_v = swing_lows[j]
            if hd_v >= ls_v or hd_v >= rs_v:
                continue
            if ls_v <= 0:
                continue
            shoulder_diff = abs(ls_v - rs_v) / ls_v
            if shoulder_diff > 0.03:
                continue
            neckline = float(np.max(bars.h[ls_i:rs_i + 1]))
            height = neckline - hd_v
            return [self._result(
                bars, ChartPattern.INVERSE_HEAD_AND_SHOULDERS, Direction.BULLISH,
                confidence=70 + 12 * (1 - shoulder_diff / 0.03),
                description=f"iH&S: LS={ls_v:.2f}, Head={hd_v:.2f}, RS={rs_v:.2f}, Neckline={neckline:.2f}",
                entry=neckline, stop=rs_v, target=neckline + height, start=ls_i, end=rs_i,
            )]
        return []

    def _detect_converging_lines(self, bars: _Bars, swing_highs, swing_lows) -> list[PatternResult]:
        """Triangles and wedges from least-squares lines through recent swings."""
        window_start = bars.n - 60
        highs = [s for s in swing_highs if s[0] >= window_start][-3:]
        lows = [s for s in swing_lows if s[0] >= window_start][-3:]
        if len(highs) < 2 or len(lows) < 2:
            return []

        price = float(bars.c[-1])
        high_slope = _slope_pct(highs, price)
        low_slope = _slope_pct(lows, price)
        flat = 0.05  # % of price per bar
        high_vals = [v for _, v in highs]
        low_vals = [v for _, v in lows]
        touches = len(highs) + len(lows)
        start = min(highs[0][0], lows[0][0])
        end = max(highs[-1][0], lows[-1][0])

        if abs(high_slope) < flat and low_slope >= flat:
            resistance = float(np.mean(high_vals))
            return [self._result(
                bars, ChartPattern.ASCENDING_TRIANGLE, Direction.BULLISH,
                confidence=66 + 4 * (touches - 4),
                description=f"Ascending triangle with resistance ~{resistance:.2f}",
                entry=resistance, stop=low_vals[-1], target=resistance + (resistance - low_vals[0]),
                start=start, end=end,
            )]

        if abs(low_slope) < flat and high_slope <= -flat:
            support = float(np.mean(low_vals))
            return [self._result(
                bars, ChartPattern.DESCENDING_TRIANGLE, Direction.BEARISH,
                confidence=66 + 4 * (touches - 4),
                description=f"Descending triangle with support ~{support:.2f}",
                entry=support, stop=high_vals[-1], target=support - (high_vals[0] - support),
                start=start, end=end,
            )]

        if high_slope <= -flat and low_slope >= flat:
            return [self._result(
                bars, ChartPattern.SYMMETRICAL_TRIANGLE, Direction.NEUTRAL,
                confidence=58 + 4 * (touches - 4),
                description="Symmetrical triangle — breakout direction unresolved",
                entry=price, stop=low_vals[-1], target=high_vals[-1], start=start, end=end,
            )]

        if high_slope >= flat and low_slope > high_slope:
            return [self._result(
                bars, ChartPattern.RISING_WEDGE, Direction.BEARISH,
                confidence=64 + 4 * (touches - 4),
                description="Rising wedge — converging advance, expect breakdown",
                entry=low_vals[-1], stop=high_vals[-1], target=min(low_vals),
                start=start, end=end,
            )]

        if low_slope <= -flat and high_slope < low_slope:
            return [self._result(
                bars, ChartPattern.FALLING_WEDGE, Direction.BULLISH,
                confidence=64 + 4 * (touches - 4),
                description="Falling wedge — converging decline, expect breakout",
                entry=high_vals[-1], stop=low_vals[-1], target=max(high_vals),
                start=start, end=end,
            )]

        return []

    def _detect_flags(self, bars: _Bars) -> list[PatternResult]:
        """Bull and Bear flags: sharp pole then tight consolidation."""
        h, l, c = bars.h, bars.l, bars.c
        pole = slice(-20, -10)
        flag = slice(-10, None)

        pole_change = (c[-10] - c[-20]) / max(abs(c[-20]), 0.01)
        pole_range = float(np.max(h[pole]) - np.min(l[pole]))
        flag_high = float(np.max(h[flag]))
        flag_low = float(np.min(l[flag]))
        flag_range = flag_high - flag_low
        if pole_range == 0 or flag_range >= pole_range * 0.40:
            return []

        conf = 65 + min(10.0, (1 - flag_range / (pole_range * 0.40)) * 10)
        if pole_change > 0.05:
            return [self._result(
                bars, ChartPattern.BULL_FLAG, Direction.BULLISH, confidence=conf,
                description=f"Bull flag — {pole_change:.1%} pole, tight consolidation",
                entry=flag_high, stop=flag_low, target=flag_high + pole_range,
                start=bars.n - 20, end=bars.n - 1,
            )]
        if pole_change < -0.05:
            return [self._result(
                bars, ChartPattern.BEAR_FLAG, Direction.BEARISH, confidence=conf,
                description=f"Bear flag — {pole_change:.1%} pole, tight consolidation",
                entry=flag_low, stop=flag_high, target=flag_low - pole_range,
                start=bars.n - 20, end=bars.n - 1,
            )]
        return []

    # ──────────────────────────────────────────
    # Technical Setups
    # ──────────────────────────────────────────

    def _detect_ma_cross(self, bars: _Bars, frame: pd.DataFrame) -> list[PatternResult]:
        """Golden/Death cross of SMA50 over SMA200 within the last 5 bars."""
        if bars.n < SMA200_BARS + 1:
            return []
        spread = (frame["sma50"] - frame["sma200"]).to_numpy()
        patterns: list[PatternResult] = []
        for k in range(max(SMA200_BARS, bars.n - 5), bars.n):
            entry = bars.c[k]
            if spread[k - 1] <= 0 < spread[k]:
                patterns.append(self._result(
                    bars, TechnicalSetup.GOLDEN_CROSS, Direction.BULLISH, confidence=75,
                    description="Golden cross — SMA50 crossed above SMA200",
                    entry=entry, stop=entry * 0.95, target=entry * 1.10, start=k - 1, end=k,
                ))
            elif spread[k - 1] >= 0 > spread[k]:
                patterns.append(self._result(
                    bars, TechnicalSetup.DEATH_CROSS, Direction.BEARISH, confidence=75,
                    description="Death cross — SMA50 crossed below SMA200",
                    entry=entry, stop=entry * 1.05, target=entry * 0.90, start=k - 1, end=k,
                ))
        return patterns

    def _detect_rsi_divergence(
        self, bars: _Bars, frame: pd.DataFrame, lookback: int = 20,
    ) -> list[PatternResult]:
        """Price makes a new low/high while RSI does not."""
        offset = bars.n - lookback
        closes = bars.c[offset:]
        rsi = frame["rsi"].to_numpy()[offset:]
        entry = float(bars.c[-1])
        patterns: list[PatternResult] = []

        lows = _local_extrema(closes, mode="min", order=3)
        if len(lows) >= 2:
            p1, p2 = lows[-2], lows[-1]
            if closes[p2] < closes[p1] and rsi[p2] > rsi[p1]:
                stop = float(np.min(bars.l[offset + p2:]))
                if entry > stop:
                    patterns.append(self._result(
                        bars, TechnicalSetup.BULLISH_RSI_DIVERGENCE, Direction.BULLISH,
                        confidence=60 + min(25.0, (rsi[p2] - rsi[p1]) * 1.5),
                        description=f"Price lower low but RSI higher low ({rsi[p1]:.1f} → {rsi[p2]:.1f})",
                        entry=entry, stop=stop, target=entry + (entry - stop) * 2,
                        start=offset + p1, end=offset + p2,
                    ))

        highs = _local_extrema(closes, mode="max", order=3)
        if len(highs) >= 2:
            p1, p2 = highs[-2], highs[-1]
            if closes[p2] > closes[p1] and rsi[p2] < rsi[p1]:
                stop = float(np.max(bars.h[offset + p2:]))
                if stop > entry:
                    patterns.append(self._result(
                        bars, TechnicalSetup.BEARISH_RSI_DIVERGENCE, Direction.BEARISH,
                        confidence=60 + min(25.0, (rsi[p1] - rsi[p2]) * 1.5),
                        description=f"Price higher high but RSI lower high ({rsi[p1]:.1f} → {rsi[p2]:.1f})",
                        entry=entry, stop=stop, target=entry - (stop - entry) * 2,
                        start=offset + p1, end=offset + p2,
                    ))

        return patterns

    def _detect_rsi_extremes(self, bars: _Bars, frame: pd.DataFrame) -> list[PatternResult]:
        rsi = float(frame["rsi"].iloc[-1])
        atr = float(frame["atr"].iloc[-1])
        entry = float(bars.c[-1])
        last = bars.n - 1

        if rsi < 30:
            stop = float(np.min(bars.l[-5:])) - 0.5 * atr
            return [self._result(
                bars, TechnicalSetup.RSI_OVERSOLD, Direction.BULLISH,
                confidence=min(95.0, 60 + (30 - rsi) * 1.5),
                description=f"RSI oversold at {rsi:.1f}",
                entry=entry, stop=stop, target=entry + (entry - stop) * 2, start=last, end=last,
            )]
        if rsi > 70:
            stop = float(np.max(bars.h[-5:])) + 0.5 * atr
            return [self._result(
                bars, TechnicalSetup.RSI_OVERBOUGHT, Direction.BEARISH,
                confidence=min(95.0, 60 + (rsi - 70) * 1.5),
                description=f"RSI overbought at {rsi:.1f}",
                entry=entry, stop=stop, target=entry - (stop - entry) * 2, start=last, end=last,
            )]
        return []

    def _detect_bollinger_squeeze(self, bars: _Bars, frame: pd.DataFrame) -> list[PatternResult]:
        """Band width contracted below 60% of its 20-bar average."""
        width = frame["bb_width"].iloc[-20:]
        avg_width = float(width.mean())
        current = float(width.iloc[-1])
        if avg_width <= 0 or current >= 0.6 * avg_width:
            return []
        last = bars.n - 1
        ratio = current / avg_width
        return [self._result(
            bars, TechnicalSetup.BOLLINGER_SQUEEZE, Direction.NEUTRAL,
            confidence=70 + min(10.0, (0.6 - ratio) * 50),
            description=f"Bollinger squeeze — width at {ratio:.0%} of its 20-bar average",
            entry=bars.c[-1], stop=float(frame["bb_lower"].iloc[-1]),
            target=float(frame["bb_upper"].iloc[-1]), start=bars.n - 20, end=last,
        )]

    def _detect_volume_breakout(self, bars: _Bars, multiple: float = 2.0) -> list[PatternResult]:
        """Volume above ``multiple`` × the prior 20-bar average on a directional bar."""
        avg_volume = float(np.mean(bars.v[-21:-1]))
        if avg_volume <= 0:
            return []
        ratio = bars.v[-1] / avg_volume
        if ratio <= multiple:
            return []

        o, h, l, c = bars.o[-1], bars.h[-1], bars.l[-1], bars.c[-1]
        last = bars.n - 1
        conf = 68 + min(12.0, (ratio - multiple) * 4)
        if c > o:
            return [self._result(
                bars, TechnicalSetup.VOLUME_BREAKOUT, Direction.BULLISH, confidence=conf,
                description=f"Volume breakout — {ratio:.1f}x average volume on an up bar",
                entry=c, stop=l, target=c + (c - l) * 2, start=last, end=last,
            )]
        if c < o:
            return [self._result(
                bars, TechnicalSetup.VOLUME_BREAKOUT, Direction.BEARISH, confidence=conf,
                description=f"Volume breakdown — {ratio:.1f}x average volume on a down bar",
                entry=c, stop=h, target=c - (h - c) * 2, start=last, end=last,
            )]
        return []

    def _detect_macd_cross(self, bars: _Bars, frame: pd.DataFrame) -> list[PatternResult]:
        hist = frame["macd_histogram"].to_numpy()
        atr = float(frame["atr"].iloc[-1])
        if np.isnan(hist[-2]) or np.isnan(hist[-1]) or atr <= 0:
            return []
        entry = float(bars.c[-1])
        last = bars.n - 1
        conf = 62 + min(10.0, abs(hist[-1]) / atr * 20)

        if hist[-2] <= 0 < hist[-1]:
            return [self._result(
                bars, TechnicalSetup.BULLISH_MACD_CROSS, Direction.BULLISH, confidence=conf,
                description="MACD crossed above its signal line",
                entry=entry, stop=entry - 1.5 * atr, target=entry + 3 * atr, start=last - 1, end=last,
            )]
        if hist[-2] >= 0 > hist[-1]:
            return [self._result(
                bars, TechnicalSetup.BEARISH_MACD_CROSS, Direction.BEARISH, confidence=conf,
                description="MACD crossed below its signal line",
                entry=entry, stop=entry + 1.5 * atr, target=entry - 3 * atr, start=last - 1, end=last,
            )]
        return []

    def _detect_level_reactions(self, bars: _Bars, tolerance: float = 0.01) -> list[PatternResult]:
        """Reversal off a previously touched swing level."""
        o, h, l, c = bars.o[-1], bars.h[-1], bars.l[-1], bars.c[-1]
        last = bars.n - 1
        patterns: list[PatternResult] = []

        supports = [
            (level, touches) for level, touches in
            cluster_levels([v for _, v in find_swings(bars.l, mode="low", order=SWING_ORDER)], tolerance)
            if touches >= 2 and level < c
        ]
        if supports and c > o:
            level, touches = max(supports, key=lambda s: s[0])
            if l <= level * (1 + tolerance):
                stop = level * (1 - tolerance)
                patterns.append(self._result(
                    bars, TechnicalSetup.SUPPORT_BOUNCE, Direction.BULLISH,
                    confidence=60 + min(20, 5 * touches),
                    description=f"Bounce off support ~{level:.2f} ({touches} touches)",
                    entry=c, stop=stop, target=c + (c - stop) * 2, start=last, end=last,
                ))

        resistances = [
            (level, touches) for level, touches in
            cluster_levels([v for _, v in find_swings(bars.h, mode="high", order=SWING_ORDER)], tolerance)
            if touches >= 2 and level > c
        ]
        if resistances and c < o:
            level, touches = min(resistances, key=lambda s: s[0])
            if h >= level * (1 - tolerance):
                stop = level * (1 + tolerance)
                patterns.append(self._result(
                    bars, TechnicalSetup.RESISTANCE_REJECTION, Direction.BEARISH,
                    confidence=60 + min(20, 5 * touches),
                    description=f"Rejected at resistance ~{level:.2f} ({touches} touches)",
                    entry=c, stop=stop, target=c - (stop - c) * 2, start=last, end=last,
                ))

        return patterns

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def _result(
        self,
        bars: _Bars,
        pattern: PatternType,
        direction: Direction,
        *,
        confidence: float,
        description: str,
        entry: float,
        stop: float,
        target: float,
        start: int,
        end: int,
    ) -> PatternResult:
        return PatternResult(
            pattern=pattern,
            direction=direction,
            confidence=round(float(min(100.0, max(0.0, confidence))), 1),
            win_rate=self.win_rate(pattern),
            name=format_label(pattern.value),
            description=description,
            entry=round(float(entry), 4),
            stop=round(max(0.0, float(stop)), 4),
            target=round(max(0.0, float(target)), 4),
            start_index=start,
            end_index=end,
            start_date=bars.ts[start],
            end_date=bars.ts[end],
            timeframe=bars.timeframe,
        )


def cluster_levels(levels: list[float], tolerance: float = 0.01) -> list[tuple[float, int]]:
    """Cluster nearby price levels. Returns (mean price, touch count), ascending by price."""
    if not levels:
        return []

    sorted_levels = sorted(levels)
    clusters: list[list[float]] = [[sorted_levels[0]]]
    for level in sorted_levels[1:]:
        anchor = clusters[-1][-1]
        if anchor > 0 and abs(level - anchor) / anchor < tolerance:
            clusters[-1].append(level)
        else:
            clusters.append([level])

    return [(float(np.mean(c)), len(c)) for c in clusters]


def order_patterns(patterns: list[PatternResult]) -> list[PatternResult]:
    return sorted(patterns, key=lambda p: (p.end_index, -p.confidence))


def _tradeable(patterns: list[PatternResult]) -> list[PatternResult]:
    """Keep results whose stop and target sit on opposite sides of entry.

    Long and neutral: stop < entry < target. Short: target < entry < stop.
    """
    kept = []
    for p in patterns:
        if p.direction == Direction.BEARISH:
            ok = p.target < p.entry < p.stop
        else:
            ok = p.stop < p.entry < p.target
        if ok:
            kept.append(p)
    return kept


def _slope_pct(points: list[tuple[int, float]], price: float) -> float:
    """Least-squares slope through (index, value) points, in % of price per bar."""
    xs = np.array([i for i, _ in points], dtype=float)
    ys = np.array([v for _, v in points], dtype=float)
    slope = np.polyfit(xs, ys, 1)[0]
    return float(slope / price * 100) if price > 0 else 0.0


def _local_extrema(values: np.ndarray, mode: str = "min", order: int = 3) -> list[int]:
    """Indices of non-strict local minima/maxima with ``order`` bars each side."""
    found = []
    for i in range(order, len(values) - order):
        window = values[i - order:i + order + 1]
        if mode == "min" and values[i] == window.min():
            found.append(i)
        elif mode == "max" and values[i] == window.max():
            found.append(i)
    return found


def find_swings(data: np.ndarray, mode: str = "high", order: int = 5) -> list[tuple[int, float]]:
    """Strict swing highs or lows. Returns list of (index, value)."""
    swings = []
    for i in range(order, len(data) - order):
        neighbors = np.concatenate([data[i - order:i], data[i + 1:i + order + 1]])
        if mode == "high" and data[i] > neighbors.max():
            swings.append((i, float(data[i])))
        elif mode == "low" and data[i] < neighbors.min():
            swings.append((i, float(data[i])))
    return swings
