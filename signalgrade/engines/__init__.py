# Analysis engines: features, patterns, regime, risk, context, multi-timeframe synthesis
from signalgrade.engines.context_engine import ContextEngine
from signalgrade.engines.feature_engine import FeatureEngine
from signalgrade.engines.pattern_engine import PatternEngine
from signalgrade.engines.regime_engine import RegimeEngine
from signalgrade.engines.risk_engine import RiskEngine, build_trade_signal
from signalgrade.engines.synthesis_engine import (
    MultiTimeframeSynthesizer,
    build_scan_notification,
    combine_regimes,
    direction_alignment,
)

__all__ = [
    "ContextEngine",
    "FeatureEngine",
    "MultiTimeframeSynthesizer",
    "PatternEngine",
    "RegimeEngine",
    "RiskEngine",
    "build_scan_notification",
    "build_trade_signal",
    "combine_regimes",
    "direction_alignment",
]
