"""
SignalGrade — Regime Engine

Classifies the market state from a FeatureVector by scoring four candidate
regimes (bull trend, bear trend, high volatility, range) on trend strength,
volatility, and momentum evidence. The best-scoring candidate wins; the
score is the confidence and its reasons form the rationale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from signalgrade.models import FeatureVector, MarketRegime, RegimeResult, RegimeThresholds


@dataclass
class _Candidate:
    regime: MarketRegime
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add(self, points: float, reason: str) -> None:
        self.score += points
        self.reasons.append(reason)

    @property
    def capped(self) -> float:
        return min(100.0, self.score)


class RegimeEngine:
    """Deterministic market-regime classifier.

    Usage:
        engine = RegimeEngine()
        regime = engine.detect_regime(features)
    """

    def __init__(self, thresholds: Optional[RegimeThresholds] = None):
        self.thresholds = thresholds or RegimeThresholds()

    def detect_regime(self, features: FeatureVector) -> RegimeResult:
        """Classify the regime. Never raises for a valid feature vector."""
        t = self.thresholds
        bull = self._score_trend(features, bullish=True)
        bear = self._score_trend(features, bullish=False)
        volatile = self._score_volatility(features)
        ranging = self._score_range(features)

        # Order breaks ties toward trend readings
        best = max((bull, bear, volatile, ranging), key=lambda cand: cand.capped)

        # Conflicting directional evidence or nothing convincing
        if bull.score >= 30 and bear.score >= 30:
            return self._mixed(
                features,
                f"Conflicting trend signals (bullish {bull.capped:.0f} vs bearish {bear.capped:.0f})",
                confidence=max(10.0, 50.0 - abs(bull.capped - bear.capped)),
            )
        if best.capped < t.min_score:
            return self._mixed(
                features,
                f"No dominant signal (best {best.regime.value} score {best.capped:.0f})",
                confidence=best.capped,
            )

        regime = best.regime
        if best is bull and self._is_strong(features, bullish=True, score=best.capped):
            regime = MarketRegime.STRONG_UPTREND
        elif best is bear and self._is_strong(features, bullish=False, score=best.capped):
            regime = MarketRegime.STRONG_DOWNTREND

        return RegimeResult(
            symbol=features.symbol,
            regime=regime,
            confidence=round(best.capped, 1),
            rationale="; ".join(best.reasons),
            features=features,
        )

    # ──────────────────────────────────────────────
    # Candidate scoring
    # ──────────────────────────────────────────────

    def _score_trend(self, f: FeatureVector, bullish: bool) -> _Candidate:
        t = self.thresholds
        cand = _Candidate(MarketRegime.UPTREND if bullish else MarketRegime.DOWNTREND)
        sign = 1 if bullish else -1
        slope = f.sma20_slope * sign

        if slope >= t.strong_slope:
            cand.add(30, f"SMA20 slope {f.sma20_slope:+.2f}%/bar (strong)")
        elif slope >= t.trend_slope:
            cand.add(20, f"SMA20 slope {f.sma20_slope:+.2f}%/bar")

        if _stacked(f, bullish):
            label = "price > SMA20 > SMA50" if bullish else "price < SMA20 < SMA50"
            if f.sma200 is not None:
                label += " > SMA200" if bullish else " < SMA200"
            cand.add(30, f"moving averages stacked ({label})")

        if bullish and 55 <= f.rsi <= 75:
            cand.add(15, f"RSI {f.rsi:.1f} in bullish zone")
        elif not bullish and 25 <= f.rsi <= 45:
            cand.add(15, f"RSI {f.rsi:.1f} in bearish zone")

        if (f.macd - f.macd_signal) * sign > 0:
            cand.add(10, "MACD confirms" + (" above signal" if bullish else " below signal"))
        if (f.ema12 - f.ema26) * sign > 0:
            cand.add(10, "EMA12 " + ("above" if bullish else "below") + " EMA26")
        return cand

    def _score_volatility(self, f: FeatureVector) -> _Candidate:
        t = self.thresholds
        cand = _Candidate(MarketRegime.HIGH_VOLATILITY)
        if f.atr_pct >= t.high_atr_pct:
            cand.add(35, f"ATR {f.atr_pct:.2f}% of price (extreme)")
        elif f.atr_pct >= t.elevated_atr_pct:
            cand.add(20, f"ATR {f.atr_pct:.2f}% of price (elevated)")

        if f.bb_width >= t.wide_bb_width:
            cand.add(30, f"Bollinger width {f.bb_width:.3f} (expanded)")
        elif f.bb_width >= (t.wide_bb_width + t.narrow_bb_width) / 2:
            cand.add(15, f"Bollinger width {f.bb_width:.3f} (widening)")

        if f.rsi > 75 or f.rsi < 25:
            cand.add(20, f"RSI {f.rsi:.1f} at an extreme")
        if f.price > f.bb_upper or f.price < f.bb_lower:
            cand.add(15, "price outside the Bollinger Bands")
        return cand

    def _score_range(self, f: FeatureVector) -> _Candidate:
        t = self.thresholds
        cand = _Candidate(MarketRegime.RANGE)
        slope = abs(f.sma20_slope)
        if slope < t.flat_slope:
            cand.add(30, f"SMA20 flat ({f.sma20_slope:+.2f}%/bar)")
        elif slope < t.trend_slope:
            cand.add(15, f"SMA20 drifting ({f.sma20_slope:+.2f}%/bar)")

        if 40 <= f.rsi <= 60:
            cand.add(20, f"RSI {f.rsi:.1f} neutral")
        if f.bb_width < t.narrow_bb_width:
            cand.add(20, f"Bollinger width {f.bb_width:.3f} (contracted)")
        if not _stacked(f, bullish=True) and not _stacked(f, bullish=False):
            cand.add(15, "moving averages not stacked")
        if f.price > 0 and abs(f.macd) / f.price * 100 < 0.2:
            cand.add(15, "MACD near zero")
        return cand

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    def _is_strong(self, f: FeatureVector, bullish: bool, score: float) -> bool:
        slope = f.sma20_slope if bullish else -f.sma20_slope
        return slope >= self.thresholds.strong_slope and _stacked(f, bullish) and score >= 75

    @staticmethod
    def _mixed(features: FeatureVector, rationale: str, confidence: float) -> RegimeResult:
        return RegimeResult(
            symbol=features.symbol,
            regime=MarketRegime.MIXED,
            confidence=round(min(50.0, confidence), 1),
            rationale=rationale,
            features=features,
        )


def _stacked(f: FeatureVector, bullish: bool) -> bool:
    """Price and moving averages in strict trend order (SMA200 when available)."""
    if bullish:
        ok = f.price > f.sma20 > f.sma50
        return ok and (f.sma200 is None or f.sma50 > f.sma200)
    ok = f.price < f.sma20 < f.sma50
    return ok and (f.sma200 is None or f.sma50 < f.sma200)
