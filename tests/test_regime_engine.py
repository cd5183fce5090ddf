"""
SignalGrade — Regime Engine Tests

Hand-built feature vectors pin each scoring branch; one end-to-end case
runs real candles through the feature engine.
"""

from __future__ import annotations

from datetime import datetime


def _features(**overrides):
    """Neutral, flat market; override fields to push a regime."""
    from signalgrade.models import FeatureVector
    fields = dict(
        symbol="TEST", calculated_at=datetime(2024, 6, 3), bar_count=120, price=100.0,
        rsi=50.0, macd=0.0, macd_signal=0.0, macd_histogram=0.0,
        bb_upper=104.0, bb_middle=100.0, bb_lower=96.0, bb_width=0.08,
        atr=2.0, atr_pct=2.0, sma20=100.0, sma50=100.0, sma200=None,
        ema12=100.0, ema26=100.0, vwap=100.0, volume_avg20=1_000_000.0, sma20_slope=0.0,
    )
    fields.update(overrides)
    return FeatureVector(**fields)


STRONG_UP = dict(
    price=110.0, sma20=105.0, sma50=100.0, sma20_slope=0.4, rsi=65.0,
    macd=1.5, macd_signal=1.0, macd_histogram=0.5, ema12=108.0, ema26=105.0,
    bb_upper=112.0, bb_middle=105.0, bb_lower=98.0, bb_width=0.133,
)

STRONG_DOWN = dict(
    price=90.0, sma20=95.0, sma50=100.0, sma20_slope=-0.4, rsi=35.0,
    macd=-1.5, macd_signal=-1.0, macd_histogram=-0.5, ema12=92.0, ema26=95.0,
    bb_upper=102.0, bb_middle=95.0, bb_lower=88.0, bb_width=0.147,
)


class TestRegimeEngine:

    def test_flat_market_is_range(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        r = RegimeEngine().detect_regime(_features())
        assert r.regime == MarketRegime.RANGE
        assert r.confidence == 80.0
        assert "SMA20 flat" in r.rationale

    def test_strong_uptrend(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        r = RegimeEngine().detect_regime(_features(**STRONG_UP))
        assert r.regime == MarketRegime.STRONG_UPTREND
        assert r.confidence == 95.0
        assert "moving averages stacked" in r.rationale

    def test_moderate_slope_is_plain_uptrend(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        r = RegimeEngine().detect_regime(_features(**{**STRONG_UP, "sma20_slope": 0.1}))
        assert r.regime == MarketRegime.UPTREND
        assert r.confidence == 85.0

    def test_strong_downtrend(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        r = RegimeEngine().detect_regime(_features(**STRONG_DOWN))
        assert r.regime == MarketRegime.STRONG_DOWNTREND
        assert r.confidence == 95.0

    def test_high_volatility(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        f = _features(
            price=120.0, sma20=118.0, sma50=119.0, rsi=80.0, atr_pct=5.0,
            bb_upper=115.0, bb_middle=100.0, bb_lower=85.0, bb_width=0.2,
        )
        r = RegimeEngine().detect_regime(f)
        assert r.regime == MarketRegime.HIGH_VOLATILITY
        assert r.confidence == 100.0

    def test_conflicting_trend_evidence_is_mixed(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        f = _features(
            price=100.0, sma20=99.0, sma50=98.0, sma20_slope=0.4, rsi=35.0,
            macd=-1.0, macd_signal=-0.5, ema12=99.0, ema26=99.5,
        )
        r = RegimeEngine().detect_regime(f)
        assert r.regime == MarketRegime.MIXED
        assert r.confidence <= 50
        assert "Conflicting" in r.rationale

    def test_weak_evidence_is_mixed(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        f = _features(rsi=65.0, macd=1.0, sma20_slope=0.06)
        r = RegimeEngine().detect_regime(f)
        assert r.regime == MarketRegime.MIXED
        assert r.confidence == 30.0
        assert "No dominant signal" in r.rationale

    def test_thresholds_are_injected(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime, RegimeThresholds
        engine = RegimeEngine(RegimeThresholds(strong_slope=1.0))
        assert engine.detect_regime(_features(**STRONG_UP)).regime == MarketRegime.UPTREND

    def test_result_carries_features(self):
        from signalgrade.engines.regime_engine import RegimeEngine
        f = _features()
        r = RegimeEngine().detect_regime(f)
        assert r.features == f
        assert r.symbol == "TEST"

    def test_real_uptrend_candles(self, uptrend_candles):
        from signalgrade.engines.feature_engine import FeatureEngine
        from signalgrade.engines.regime_engine import RegimeEngine
        from signalgrade.models import MarketRegime
        features = FeatureEngine().compute("AAPL", uptrend_candles)
        r = RegimeEngine().detect_regime(features)
        assert r.regime in (MarketRegime.UPTREND, MarketRegime.STRONG_UPTREND)
        assert r.confidence >= 70
