"""
SignalGrade — Multi-Timeframe Synthesizer

Runs the feature, pattern, regime and context engines on each timeframe
of a symbol, then merges the per-timeframe readings into a single result:
a weighted regime vote, a direction alignment verdict, and the strongest
patterns across all timeframes.

Higher timeframes carry more weight (1h=0.5, 4h=1, 1d=2, 1wk=3 by
default). Timeframes without enough history are skipped and reported,
never fatal, unless every timeframe is skipped.
"""

from __future__ import annotations

import dataclasses
from typing import Mapping, Optional, Sequence

import structlog

from signalgrade.config import Settings, get_settings
from signalgrade.engines.context_engine import ContextEngine
from signalgrade.engines.feature_engine import MIN_BARS, FeatureEngine
from signalgrade.engines.pattern_engine import PatternEngine, order_patterns
from signalgrade.engines.regime_engine import RegimeEngine
from signalgrade.errors import ConfigurationError, InsufficientDataError, SignalGradeError
from signalgrade.models import (
    Alignment,
    Candle,
    Direction,
    MarketRegime,
    MultiTimeframeScanResult,
    PatternResult,
    PatternType,
    RegimeResult,
    ScanNotification,
    ScanOutcome,
    TimeFrame,
    TimeframeBreakdown,
)
from signalgrade.utils import format_label, validate_symbol, validate_timeframe

log = structlog.get_logger(__name__)


class MultiTimeframeSynthesizer:
    """Cross-timeframe scan of one or many symbols.

    Usage:
        synth = MultiTimeframeSynthesizer()
        result = synth.scan("AAPL", {"1d": daily_candles, "1wk": weekly_candles})
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        feature_engine: Optional[FeatureEngine] = None,
        pattern_engine: Optional[PatternEngine] = None,
        regime_engine: Optional[RegimeEngine] = None,
        context_engine: Optional[ContextEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.features = feature_engine or FeatureEngine()
        self.patterns = pattern_engine or PatternEngine(self.features)
        self.regimes = regime_engine or RegimeEngine(self.settings.regime_thresholds())
        self.context = context_engine or ContextEngine()

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    def scan(
        self,
        symbol: str,
        candles_by_timeframe: Mapping[str | TimeFrame, Sequence[Candle]],
    ) -> MultiTimeframeScanResult:
        """Scan one symbol across every supplied timeframe.

        Raises:
            ValueError: malformed symbol.
            ConfigurationError: a timeframe with no configured weight.
            InsufficientDataError: no timeframe had enough history.
        """
        symbol = validate_symbol(symbol)
        weights = self.settings.scanner_timeframe_weights

        frames: dict[str, Sequence[Candle]] = {}
        for label, candles in candles_by_timeframe.items():
            raw = label.value if isinstance(label, TimeFrame) else str(label)
            try:
                frames[validate_timeframe(raw, weights)] = candles
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc

        breakdowns: list[TimeframeBreakdown] = []
        skipped: dict[str, str] = {}
        for tf, candles in frames.items():
            try:
                breakdowns.append(self.analyze_timeframe(symbol, tf, candles))
            except InsufficientDataError as exc:
                skipped[tf] = str(exc)
                log.warning("mtf_scan.timeframe_skipped", symbol=symbol, timeframe=tf, error=str(exc))

        if not breakdowns:
            available = max((len(c) for c in frames.values()), default=0)
            raise InsufficientDataError(
                required=MIN_BARS, available=available, symbol=symbol, what="multi-timeframe scan",
            )

        breakdowns.sort(key=lambda b: b.weight)

        regime, regime_conf, regime_align, regime_score = combine_regimes(
            [(b.weight, b.regime) for b in breakdowns]
        )
        direction, dir_align, dir_score = direction_alignment(
            breakdowns, self.settings.scanner_comparable_weight_ratio,
        )
        top = select_top_patterns(breakdowns, self.settings.scanner_top_patterns)

        daily = next((b for b in breakdowns if b.timeframe == TimeFrame.D1.value), breakdowns[-1])
        finest = frames[breakdowns[0].timeframe]

        result = MultiTimeframeScanResult(
            symbol=symbol,
            current_price=finest[-1].close,
            scanned_at=max(frames[b.timeframe][-1].timestamp for b in breakdowns),
            timeframes=tuple(breakdowns),
            skipped_timeframes=skipped,
            combined_regime=regime,
            regime_confidence=regime_conf,
            regime_alignment=regime_align,
            regime_alignment_score=regime_score,
            dominant_direction=direction,
            direction_alignment=dir_align,
            direction_alignment_score=dir_score,
            top_patterns=tuple(top),
            daily_context=daily.context,
        )
        log.info(
            "mtf_scan.complete",
            symbol=symbol,
            timeframes=[b.timeframe for b in breakdowns],
            skipped=list(skipped),
            regime=regime.value,
            direction=direction.value,
            alignment=dir_align.value,
            patterns=result.pattern_count,
        )
        return result

    def analyze_timeframe(self, symbol: str, timeframe: str, candles: Sequence[Candle]) -> TimeframeBreakdown:
        """Features, patterns, regime and context for a single timeframe."""
        frame = self.features.indicator_frame(candles) if len(candles) >= MIN_BARS else None
        features = self.features.compute(symbol, candles, frame=frame)
        detected = self.patterns.detect_all(candles, timeframe, frame=frame)
        patterns = self._prepare_patterns(detected, timeframe, len(candles))

        bullish = sum(1 for p in patterns if p.direction == Direction.BULLISH)
        bearish = sum(1 for p in patterns if p.direction == Direction.BEARISH)
        neutral = len(patterns) - bullish - bearish

        return TimeframeBreakdown(
            timeframe=timeframe,
            weight=self.settings.scanner_timeframe_weights[timeframe],
            patterns=tuple(patterns),
            regime=self.regimes.detect_regime(features),
            context=self.context.build_context(candles, features),
            dominant_direction=dominant_direction(bullish, bearish, neutral),
            bullish_count=bullish,
            bearish_count=bearish,
            neutral_count=neutral,
        )

    def scan_many(
        self,
        requests: Mapping[str, Mapping[str | TimeFrame, Sequence[Candle]]],
    ) -> list[ScanOutcome]:
        """Scan several symbols; one symbol's failure never aborts the batch."""
        outcomes: list[ScanOutcome] = []
        for symbol, frames in requests.items():
            try:
                result = self.scan(symbol, frames)
            except (SignalGradeError, ValueError) as exc:
                kind = exc.kind if isinstance(exc, SignalGradeError) else "validation"
                log.warning("mtf_scan.symbol_failed", symbol=symbol, error_type=kind, error=str(exc))
                outcomes.append(ScanOutcome(symbol=symbol, error_type=kind, error=str(exc)))
            else:
                outcomes.append(ScanOutcome(symbol=result.symbol, result=result))

        log.info(
            "mtf_scan.batch_complete",
            symbols=len(outcomes),
            failed=sum(1 for o in outcomes if not o.ok),
        )
        return outcomes

    # ──────────────────────────────────────────────
    # Pattern preparation
    # ──────────────────────────────────────────────

    def _prepare_patterns(
        self, patterns: Sequence[PatternResult], timeframe: str, bar_count: int,
    ) -> list[PatternResult]:
        """Scale, filter to recent bars, dedupe and resolve direction conflicts."""
        s = self.settings
        multiplier, cap = s.scanner_confidence_scaling.get(timeframe, (1.0, 100.0))
        cutoff = bar_count - s.scanner_pattern_lookback_bars

        best: dict[tuple[PatternType, Direction], PatternResult] = {}
        for p in patterns:
            if p.end_index < cutoff:
                continue
            scaled = dataclasses.replace(
                p, confidence=round(min(cap, p.confidence * multiplier), 1), timeframe=timeframe,
            )
            key = (scaled.pattern, scaled.direction)
            current = best.get(key)
            if current is None or (scaled.confidence, scaled.end_index) > (current.confidence, current.end_index):
                best[key] = scaled

        kept: list[PatternResult] = []
        for p in sorted(best.values(), key=lambda r: (-r.confidence, -r.end_index)):
            if not any(_conflicts(p, q, s.scanner_conflict_window_bars) for q in kept):
                kept.append(p)
        return order_patterns(kept)


# ──────────────────────────────────────────────
# Combination rules
# ──────────────────────────────────────────────

def dominant_direction(bullish: int, bearish: int, neutral: int) -> Direction:
    """Majority of the counts; any tie resolves to neutral."""
    if bullish > bearish and bullish > neutral:
        return Direction.BULLISH
    if bearish > bullish and bearish > neutral:
        return Direction.BEARISH
    return Direction.NEUTRAL


def combine_regimes(
    weighted: Sequence[tuple[float, RegimeResult]],
) -> tuple[MarketRegime, float, Alignment, float]:
    """Weighted regime vote.

    Each timeframe votes ``weight * confidence`` for its regime. The winner
    is the regime with the largest total; ties go to the regime backed by
    the heaviest timeframe. Returns (regime, confidence, alignment, score)
    where confidence is the winner's votes over the total weight and score
    is the winner's share of all votes.
    """
    if not weighted:
        return MarketRegime.MIXED, 0.0, Alignment.MIXED, 0.0

    votes: dict[MarketRegime, float] = {}
    heaviest: dict[MarketRegime, float] = {}
    for weight, reading in weighted:
        votes[reading.regime] = votes.get(reading.regime, 0.0) + weight * reading.confidence
        heaviest[reading.regime] = max(heaviest.get(reading.regime, 0.0), weight)

    winner = max(votes, key=lambda r: (votes[r], heaviest[r]))
    total_weight = sum(w for w, _ in weighted)
    total_votes = sum(votes.values())

    confidence = round(votes[winner] / total_weight, 1) if total_weight > 0 else 0.0
    distinct = len(votes)
    if distinct == 1:
        alignment = Alignment.ALIGNED
    elif distinct == 2:
        alignment = Alignment.MIXED
    else:
        alignment = Alignment.CONFLICTING

    if total_votes > 0:
        score = round(votes[winner] / total_votes * 100, 1)
    else:
        score = 100.0 if distinct == 1 else 0.0
    return winner, min(100.0, confidence), alignment, score


def direction_alignment(
    breakdowns: Sequence[TimeframeBreakdown],
    comparable_ratio: float = 0.5,
) -> tuple[Direction, Alignment, float]:
    """Agreement of per-timeframe dominant directions.

    Votes are weighted by timeframe weight times regime confidence.
    Aligned when every timeframe agrees; conflicting when bullish and
    bearish both carry comparable weight; mixed otherwise.
    """
    totals = {d: 0.0 for d in Direction}
    for b in breakdowns:
        totals[b.dominant_direction] += b.weight * b.regime.confidence

    bull, bear, neutral = totals[Direction.BULLISH], totals[Direction.BEARISH], totals[Direction.NEUTRAL]
    if bull > bear and bull > neutral:
        dominant = Direction.BULLISH
    elif bear > bull and bear > neutral:
        dominant = Direction.BEARISH
    else:
        dominant = Direction.NEUTRAL

    present = {b.dominant_direction for b in breakdowns}
    if len(present) <= 1:
        alignment = Alignment.ALIGNED
    elif bull > 0 and bear > 0 and min(bull, bear) / max(bull, bear) >= comparable_ratio:
        alignment = Alignment.CONFLICTING
    else:
        alignment = Alignment.MIXED

    total = bull + bear + neutral
    if total > 0:
        score = round(totals[dominant] / total * 100, 1)
    else:
        score = 100.0 if alignment == Alignment.ALIGNED and breakdowns else 0.0
    return dominant, alignment, score


def select_top_patterns(breakdowns: Sequence[TimeframeBreakdown], limit: int = 10) -> list[PatternResult]:
    """Strongest patterns across timeframes, one per pattern type.

    A type seen on several timeframes is represented by its instance on the
    heaviest timeframe (confidence breaks ties).
    """
    best: dict[PatternType, tuple[float, PatternResult]] = {}
    for b in breakdowns:
        for p in b.patterns:
            current = best.get(p.pattern)
            if current is None or (b.weight, p.confidence) > (current[0], current[1].confidence):
                best[p.pattern] = (b.weight, p)

    ranked = sorted(best.values(), key=lambda wp: (-wp[1].confidence, -wp[0], wp[1].pattern.value))
    return [p for _, p in ranked[:limit]]


def build_scan_notification(
    result: MultiTimeframeScanResult,
    settings: Optional[Settings] = None,
) -> ScanNotification:
    """Summarize a scan for delivery; flags an alert when every gate passes."""
    settings = settings or get_settings()
    top = result.top_patterns[0] if result.top_patterns else None
    bias = result.dominant_direction

    aligned = result.direction_alignment == Alignment.ALIGNED
    if bias == Direction.NEUTRAL:
        action = "wait"
    elif aligned:
        action = "buy" if bias == Direction.BULLISH else "sell"
    else:
        action = "watch"

    is_alert = (
        top is not None
        and aligned
        and bias != Direction.NEUTRAL
        and result.regime_confidence >= settings.alert_min_confidence
        and top.confidence >= settings.alert_min_pattern_confidence
    )

    message = None
    if is_alert:
        message = (
            f"{result.symbol}: {top.name} ({top.confidence:.0f}%) on {top.timeframe}, "
            f"{bias.value} across {len(result.timeframes)} timeframes, "
            f"regime {format_label(result.combined_regime.value)} ({result.regime_confidence:.0f}%)"
        )

    return ScanNotification(
        symbol=result.symbol,
        pattern_count=result.pattern_count,
        current_price=result.current_price,
        overall_bias=bias,
        confidence=result.regime_confidence,
        recommended_action=action,
        top_pattern=top.name if top else None,
        top_pattern_confidence=top.confidence if top else None,
        scanned_at=result.scanned_at,
        is_alert=is_alert,
        alert_message=message,
    )


def _conflicts(a: PatternResult, b: PatternResult, window: int) -> bool:
    directional = {Direction.BULLISH, Direction.BEARISH}
    return (
        a.direction in directional
        and b.direction in directional
        and a.direction != b.direction
        and abs(a.end_index - b.end_index) <= window
    )
