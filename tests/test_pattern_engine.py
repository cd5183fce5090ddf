"""
SignalGrade — Pattern Engine Tests

Candlestick, chart, and technical-setup detection on constructed bars,
plus pattern lifecycle evaluation.
"""

from __future__ import annotations

import numpy as np
import pytest

from conftest import V_BOTTOM_ROWS, candles_from_closes, candles_from_ohlc, segment, uptrend_closes, zero_low_candles


def _find(patterns, kind):
    return [p for p in patterns if p.pattern == kind]


def _assert_levels(p):
    from signalgrade.models import Direction
    if p.direction == Direction.BEARISH:
        assert p.target < p.entry < p.stop
    else:
        assert p.stop < p.entry < p.target


# Three quiet bars (range 1.0) ahead of each constructed formation
_LEAD = [
    (101.0, 101.5, 100.5, 101.0),
    (101.0, 101.5, 100.5, 100.8),
    (100.8, 101.0, 100.0, 100.2),
]
_DOWN_BAR = (100.2, 100.4, 99.4, 99.6)
_UP_BAR = (99.6, 100.4, 99.4, 100.2)
_RED_BODY = (101.0, 101.2, 98.8, 99.0)
_GREEN_BODY = (99.0, 101.2, 98.8, 101.0)

CANDLESTICK_CASES = {
    "hammer": (_LEAD + [_DOWN_BAR, (99.6, 100.1, 98.6, 100.0)], "hammer", "bullish"),
    "inverted_hammer": (_LEAD + [_DOWN_BAR, (99.6, 101.0, 99.55, 100.0)], "inverted_hammer", "bullish"),
    "shooting_star": (_LEAD + [_UP_BAR, (100.2, 101.2, 99.75, 99.8)], "shooting_star", "bearish"),
    "bullish_marubozu": (_LEAD + [_DOWN_BAR, (100.0, 101.52, 99.99, 101.5)], "bullish_marubozu", "bullish"),
    "bearish_marubozu": (_LEAD + [_DOWN_BAR, (101.0, 101.01, 99.48, 99.5)], "bearish_marubozu", "bearish"),
    "bullish_harami": (_LEAD + [_RED_BODY, (99.5, 100.2, 99.3, 100.0)], "bullish_harami", "bullish"),
    "bearish_harami": (_LEAD + [_GREEN_BODY, (100.5, 100.7, 99.8, 100.0)], "bearish_harami", "bearish"),
    "piercing_line": (_LEAD + [_RED_BODY, (98.5, 100.6, 98.3, 100.5)], "piercing_line", "bullish"),
    "dark_cloud_cover": (_LEAD + [_GREEN_BODY, (101.5, 101.7, 99.4, 99.5)], "dark_cloud_cover", "bearish"),
    "morning_star": ([
        (103.0, 103.5, 102.5, 103.0),
        (103.0, 103.5, 102.5, 103.0),
        (103.0, 103.2, 100.8, 101.0),
        (100.8, 101.0, 100.3, 100.6),
        (100.8, 102.7, 100.7, 102.5),
    ], "morning_star", "bullish"),
    "evening_star": ([
        (97.0, 97.5, 96.5, 97.0),
        (97.0, 97.5, 96.5, 97.0),
        (97.0, 99.2, 96.8, 99.0),
        (99.2, 99.7, 99.0, 99.4),
        (99.2, 99.3, 97.3, 97.5),
    ], "evening_star", "bearish"),
    "three_white_soldiers": ([
        (100.0, 100.5, 99.5, 100.0),
        (100.0, 100.5, 99.5, 100.0),
        (100.0, 101.1, 99.9, 101.0),
        (100.5, 102.1, 100.4, 102.0),
        (101.5, 103.1, 101.4, 103.0),
    ], "three_white_soldiers", "bullish"),
    "three_black_crows": ([
        (103.0, 103.5, 102.5, 103.0),
        (103.0, 103.5, 102.5, 103.0),
        (103.0, 103.1, 101.9, 102.0),
        (102.5, 102.6, 100.9, 101.0),
        (101.5, 101.6, 99.9, 100.0),
    ], "three_black_crows", "bearish"),
}


def _zigzag(start, *pivots, step=6):
    """Closes walking from ``start`` through each pivot, ``step`` bars per leg."""
    closes = [start]
    for pivot in pivots:
        closes += segment(closes[-1], pivot, step)
    return closes


CHART_CASES = {
    "double_top": (_zigzag(100.0, 110, 100, 110, step=10) + segment(110, 100, 9), "double_top", "bearish"),
    "head_and_shoulders": (_zigzag(100.0, 110, 100, 120, 100, 110, 95, step=10), "head_and_shoulders", "bearish"),
    "inverse_head_and_shoulders": (
        _zigzag(110.0, 100, 110, 90, 110, 100, 115, step=10), "inverse_head_and_shoulders", "bullish",
    ),
    "ascending_triangle": (_zigzag(100.0, 110, 95, 110, 100, 110, 105, 109), "ascending_triangle", "bullish"),
    "descending_triangle": (_zigzag(100.0, 90, 105, 90, 100, 90, 95, 91), "descending_triangle", "bearish"),
    "symmetrical_triangle": (_zigzag(100.0, 110, 90, 107, 93, 104, 96, 100), "symmetrical_triangle", "neutral"),
    "rising_wedge": (_zigzag(100.0, 110, 90, 112, 96, 114, 102, 108), "rising_wedge", "bearish"),
    "falling_wedge": (_zigzag(100.0, 90, 110, 88, 104, 86, 98, 92), "falling_wedge", "bullish"),
}

FLAG_CASES = {
    "bull_flag": ([100.0] * 10 + segment(100, 120, 10) + [119.5, 120.0] * 5, "bull_flag", "bullish"),
    "bear_flag": ([120.0] * 10 + segment(120, 100, 10) + [100.5, 100.0] * 5, "bear_flag", "bearish"),
}

TECHNICAL_CASES = {
    "golden_cross": ([100.0] * 201 + [110.0], "golden_cross", "bullish"),
    "death_cross": ([100.0] * 201 + [90.0], "death_cross", "bearish"),
    "bullish_rsi_divergence": (
        [130 - 0.5 * i for i in range(40)]
        + [109, 107, 105, 103, 101, 99, 101, 103, 105, 103, 101, 99.5, 98.5, 100, 101.5, 103, 104, 105, 106, 107],
        "bullish_rsi_divergence", "bullish",
    ),
    "bearish_rsi_divergence": (
        [70 + 0.5 * i for i in range(40)]
        + [91, 93, 95, 97, 99, 101, 99, 97, 95, 97, 99, 100.5, 101.5, 100, 98.5, 97, 96, 95, 94, 93],
        "bearish_rsi_divergence", "bearish",
    ),
    "bollinger_squeeze": ([95.0, 105.0] * 20 + [99.9, 100.1] * 10, "bollinger_squeeze", "neutral"),
    "bullish_macd_cross": ([130 - 0.5 * i for i in range(59)] + [111.0], "bullish_macd_cross", "bullish"),
    "bearish_macd_cross": ([70 + 0.5 * i for i in range(59)] + [89.0], "bearish_macd_cross", "bearish"),
    "support_bounce": (
        [110.0] * 20 + _zigzag(110.0, 100, 110, 100, 110, 99.5)[1:] + [101.0], "support_bounce", "bullish",
    ),
    "resistance_rejection": (
        [100.0] * 20 + _zigzag(100.0, 110, 100, 110, 100, 110.5)[1:] + [109.0], "resistance_rejection", "bearish",
    ),
}


# ════════════════════════════════════════════════
#  CANDLESTICK PATTERNS
# ════════════════════════════════════════════════


class TestCandlestickPatterns:

    def test_too_few_bars_returns_empty(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        engine = PatternEngine()
        assert engine.detect_all([]) == []
        assert engine.detect_candlestick_patterns(candles_from_ohlc(V_BOTTOM_ROWS[:4])) == []

    def test_doji(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern, Direction
        rows = V_BOTTOM_ROWS[:4] + [(105.0, 107.0, 103.0, 105.0)]
        dojis = _find(PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows)), CandlestickPattern.DOJI)
        assert len(dojis) == 1
        assert dojis[0].direction == Direction.NEUTRAL
        assert dojis[0].end_index == 4
        assert dojis[0].confidence == 90.0

    def test_bullish_engulfing(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern, Direction
        rows = [
            (101.0, 101.5, 100.5, 101.0),
            (101.0, 101.5, 100.5, 101.2),
            (101.2, 102.2, 101.0, 102.0),
            (102.0, 102.5, 99.5, 100.0),
            (99.8, 103.0, 99.5, 102.6),
        ]
        found = _find(PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows)),
                      CandlestickPattern.BULLISH_ENGULFING)
        assert len(found) == 1
        p = found[0]
        assert p.direction == Direction.BULLISH
        assert (p.start_index, p.end_index) == (3, 4)
        assert p.confidence == 77.0
        assert p.stop == 99.5
        assert p.entry == 102.6
        assert p.name == "Bullish Engulfing"

    def test_bearish_engulfing(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern, Direction
        rows = [
            (101.0, 101.5, 100.5, 101.0),
            (101.0, 101.5, 100.5, 100.8),
            (100.8, 101.0, 99.8, 100.0),
            (100.0, 102.5, 99.5, 102.0),
            (102.2, 102.5, 99.0, 99.4),
        ]
        found = _find(PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows)),
                      CandlestickPattern.BEARISH_ENGULFING)
        assert len(found) == 1
        assert found[0].direction == Direction.BEARISH
        assert found[0].stop == 102.5

    @pytest.mark.parametrize("name", sorted(CANDLESTICK_CASES))
    def test_constructed_formation(self, name):
        from signalgrade.engines.pattern_engine import PatternEngine
        rows, kind, direction = CANDLESTICK_CASES[name]
        patterns = PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows))
        found = [p for p in patterns if p.pattern.value == kind and p.end_index == len(rows) - 1]
        assert len(found) == 1
        assert found[0].direction.value == direction
        _assert_levels(found[0])

    def test_morning_star_needs_a_full_third_body(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern
        rows = CANDLESTICK_CASES["morning_star"][0][:4] + [(101.7, 102.3, 101.6, 102.1)]
        found = PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows))
        assert _find(found, CandlestickPattern.MORNING_STAR) == []

    def test_evening_star_needs_a_full_third_body(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern
        rows = CANDLESTICK_CASES["evening_star"][0][:4] + [(98.3, 98.4, 97.7, 97.9)]
        found = PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows))
        assert _find(found, CandlestickPattern.EVENING_STAR) == []

    def test_doji_closing_on_its_low_is_dropped(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern
        rows = V_BOTTOM_ROWS[:4] + [(105.0, 107.0, 105.0, 105.0)]
        found = PatternEngine().detect_candlestick_patterns(candles_from_ohlc(rows))
        assert [p for p in _find(found, CandlestickPattern.DOJI) if p.end_index == 4] == []

    def test_results_ordered_by_end_then_confidence(self, uptrend_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        patterns = PatternEngine().detect_all(uptrend_candles, "1d")
        keys = [(p.end_index, -p.confidence) for p in patterns]
        assert keys == sorted(keys)

    def test_results_are_bounded(self, uptrend_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        for p in PatternEngine().detect_all(uptrend_candles, "1d"):
            assert 0 <= p.confidence <= 100
            assert p.stop >= 0 and p.target >= 0
            assert 0 <= p.start_index <= p.end_index < len(uptrend_candles)
            assert p.timeframe == "1d"

    def test_every_result_has_trade_levels(self, uptrend_candles, double_bottom_candles, v_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        engine = PatternEngine()
        for candles in (uptrend_candles, double_bottom_candles, v_bottom_candles):
            for p in engine.detect_all(candles):
                _assert_levels(p)


# ════════════════════════════════════════════════
#  CHART PATTERNS
# ════════════════════════════════════════════════


class TestChartPatterns:

    def test_v_bottom(self, v_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern, Direction
        found = _find(PatternEngine().detect_chart_patterns(v_bottom_candles), ChartPattern.V_BOTTOM)
        assert len(found) == 1
        p = found[0]
        assert p.direction == Direction.BULLISH
        assert p.confidence == 75.0
        assert (p.start_index, p.end_index) == (0, 4)
        assert (p.entry, p.stop, p.target) == (110.0, 99.0, 121.0)
        assert p.win_rate == 55.0

    def test_v_top_not_reported_for_v_bottom(self, v_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern
        assert _find(PatternEngine().detect_chart_patterns(v_bottom_candles), ChartPattern.V_TOP) == []

    def test_double_bottom(self, double_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern, Direction
        found = _find(PatternEngine().detect_chart_patterns(double_bottom_candles), ChartPattern.DOUBLE_BOTTOM)
        assert len(found) == 1
        p = found[0]
        assert p.direction == Direction.BULLISH
        assert (p.start_index, p.end_index) == (10, 30)
        assert p.stop == pytest.approx(99.0)
        assert p.entry == pytest.approx(111.1)
        assert p.confidence == 85.0

    def test_swing_patterns_need_thirty_bars(self, double_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern
        found = PatternEngine().detect_chart_patterns(double_bottom_candles[:29])
        assert _find(found, ChartPattern.DOUBLE_BOTTOM) == []

    @pytest.mark.parametrize("name", sorted(CHART_CASES))
    def test_constructed_structure(self, name):
        from signalgrade.engines.pattern_engine import PatternEngine
        closes, kind, direction = CHART_CASES[name]
        patterns = PatternEngine().detect_chart_patterns(candles_from_closes(closes))
        found = [p for p in patterns if p.pattern.value == kind]
        assert len(found) == 1
        assert found[0].direction.value == direction
        _assert_levels(found[0])

    @pytest.mark.parametrize("name", sorted(FLAG_CASES))
    def test_flag(self, name):
        from signalgrade.engines.pattern_engine import PatternEngine
        closes, kind, direction = FLAG_CASES[name]
        patterns = PatternEngine().detect_chart_patterns(candles_from_closes(closes, spread=0.002))
        found = [p for p in patterns if p.pattern.value == kind]
        assert len(found) == 1
        p = found[0]
        assert p.direction.value == direction
        assert (p.start_index, p.end_index) == (10, 29)
        _assert_levels(p)

    def test_zero_swing_low_is_skipped(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern
        candles = zero_low_candles()
        found = PatternEngine().detect_chart_patterns(candles)
        assert _find(found, ChartPattern.DOUBLE_BOTTOM) == []
        assert _find(found, ChartPattern.INVERSE_HEAD_AND_SHOULDERS) == []
        PatternEngine().detect_all(candles)


# ════════════════════════════════════════════════
#  TECHNICAL SETUPS
# ════════════════════════════════════════════════


class TestTechnicalSetups:

    def test_needs_fifty_bars(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        candles = candles_from_closes(uptrend_closes(49))
        assert PatternEngine().detect_technical_setups(candles) == []

    def test_volume_breakout(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import Direction, TechnicalSetup
        closes = [100 + 0.1 * i for i in range(60)]
        volumes = [1_000_000] * 59 + [5_000_000]
        candles = candles_from_closes(closes, volumes=volumes)
        found = _find(PatternEngine().detect_technical_setups(candles), TechnicalSetup.VOLUME_BREAKOUT)
        assert len(found) == 1
        assert found[0].direction == Direction.BULLISH
        assert found[0].confidence == 80.0
        assert found[0].end_index == 59

    def test_rsi_oversold(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import Direction, TechnicalSetup
        candles = candles_from_closes([130 - 0.5 * i for i in range(60)])
        found = _find(PatternEngine().detect_technical_setups(candles), TechnicalSetup.RSI_OVERSOLD)
        assert len(found) == 1
        p = found[0]
        assert p.direction == Direction.BULLISH
        assert p.stop < p.entry < p.target

    def test_precomputed_frame_is_used(self, uptrend_candles):
        from signalgrade.engines.feature_engine import FeatureEngine
        from signalgrade.engines.pattern_engine import PatternEngine
        engine = PatternEngine()
        frame = FeatureEngine().indicator_frame(uptrend_candles)
        assert engine.detect_technical_setups(uptrend_candles, frame=frame) == \
            engine.detect_technical_setups(uptrend_candles)

    @pytest.mark.parametrize("name", sorted(TECHNICAL_CASES))
    def test_constructed_setup(self, name):
        from signalgrade.engines.pattern_engine import PatternEngine
        closes, kind, direction = TECHNICAL_CASES[name]
        candles = candles_from_closes(closes)
        found = [p for p in PatternEngine().detect_technical_setups(candles) if p.pattern.value == kind]
        assert len(found) == 1
        assert found[0].direction.value == direction
        _assert_levels(found[0])

    def test_flat_series_reports_no_rsi_extreme(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import TechnicalSetup
        found = PatternEngine().detect_technical_setups(candles_from_closes([100.0] * 60))
        assert _find(found, TechnicalSetup.RSI_OVERBOUGHT) == []
        assert _find(found, TechnicalSetup.RSI_OVERSOLD) == []


# ════════════════════════════════════════════════
#  LIFECYCLE & WIN RATES
# ════════════════════════════════════════════════


class TestPatternLifecycle:

    @pytest.fixture
    def v_bottom(self, v_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern
        return _find(PatternEngine().detect_chart_patterns(v_bottom_candles), ChartPattern.V_BOTTOM)[0]

    def _later(self, rows):
        from datetime import datetime
        return candles_from_ohlc(rows, start=datetime(2024, 2, 1))

    def test_hit_target(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        later = self._later([(110, 111, 105, 109), (109, 122, 108, 121)])
        assert PatternEngine().evaluate_outcome(v_bottom, later) == PatternStatus.HIT_TARGET

    def test_hit_stop_after_entry(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        later = self._later([(110, 111, 105, 109), (105, 106, 98, 99)])
        assert PatternEngine().evaluate_outcome(v_bottom, later) == PatternStatus.HIT_STOP

    def test_stop_before_entry_invalidates(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        later = self._later([(105, 106, 98, 99)])
        assert PatternEngine().evaluate_outcome(v_bottom, later) == PatternStatus.INVALIDATED

    def test_stop_checked_before_target_in_same_bar(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        later = self._later([(110, 111, 105, 109), (109, 125, 95, 110)])
        assert PatternEngine().evaluate_outcome(v_bottom, later) == PatternStatus.HIT_STOP

    def test_playing_out_and_active(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        engine = PatternEngine()
        assert engine.evaluate_outcome(v_bottom, self._later([(110, 111, 105, 109)])) == PatternStatus.PLAYING_OUT
        assert engine.evaluate_outcome(v_bottom, self._later([(105, 108, 102, 106)])) == PatternStatus.ACTIVE
        assert engine.evaluate_outcome(v_bottom, []) == PatternStatus.ACTIVE

    def test_expired(self, v_bottom):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import PatternStatus
        later = self._later([(105, 108, 102, 106)] * 20)
        assert PatternEngine().evaluate_outcome(v_bottom, later) == PatternStatus.EXPIRED

    def test_performance_override(self, v_bottom_candles):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import ChartPattern
        engine = PatternEngine(performance={"v_bottom": 80.0})
        assert engine.win_rate(ChartPattern.V_BOTTOM) == 80.0
        p = _find(engine.detect_chart_patterns(v_bottom_candles), ChartPattern.V_BOTTOM)[0]
        assert p.win_rate == 80.0

    def test_default_win_rate(self):
        from signalgrade.engines.pattern_engine import PatternEngine
        from signalgrade.models import CandlestickPattern
        assert PatternEngine().win_rate(CandlestickPattern.HAMMER) == 60.0


# ════════════════════════════════════════════════
#  HELPERS
# ════════════════════════════════════════════════


class TestPatternHelpers:

    def test_cluster_levels(self):
        from signalgrade.engines.pattern_engine import cluster_levels
        assert cluster_levels([110.0, 100.0, 100.5]) == [(100.25, 2), (110.0, 1)]
        assert cluster_levels([]) == []

    def test_find_swings(self):
        from signalgrade.engines.pattern_engine import find_swings
        data = np.array([1, 2, 3, 2, 1, 2, 3, 4, 3], dtype=float)
        assert find_swings(data, mode="high", order=2) == [(2, 3.0)]
        assert find_swings(data, mode="low", order=2) == [(4, 1.0)]

    def test_find_swings_is_strict(self):
        from signalgrade.engines.pattern_engine import find_swings
        data = np.array([1, 2, 3, 3, 2, 1, 0], dtype=float)
        assert find_swings(data, mode="high", order=2) == []
