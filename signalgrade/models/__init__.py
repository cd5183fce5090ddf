"""
SignalGrade — Models

All I/O schemas for the pipeline. Engines return these, the synthesizer
aggregates them, and the notification/task layers serialize them.
Every model is immutable once constructed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class TimeFrame(str, Enum):
    """Supported scan timeframes."""
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1wk"


class Direction(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class MarketRegime(str, Enum):
    """Coarse classification of current market behavior."""
    STRONG_UPTREND = "strong_uptrend"
    UPTREND = "uptrend"
    RANGE = "range"
    DOWNTREND = "downtrend"
    STRONG_DOWNTREND = "strong_downtrend"
    HIGH_VOLATILITY = "high_volatility"
    MIXED = "mixed"


class Alignment(str, Enum):
    ALIGNED = "aligned"
    MIXED = "mixed"
    CONFLICTING = "conflicting"


class PatternFamily(str, Enum):
    CANDLESTICK = "candlestick"
    CHART = "chart"
    TECHNICAL = "technical"


class CandlestickPattern(str, Enum):
    """One- to three-bar candlestick formations."""
    # Single
    DOJI = "doji"
    HAMMER = "hammer"
    INVERTED_HAMMER = "inverted_hammer"
    SHOOTING_STAR = "shooting_star"
    BULLISH_MARUBOZU = "bullish_marubozu"
    BEARISH_MARUBOZU = "bearish_marubozu"
    # Double
    BULLISH_ENGULFING = "bullish_engulfing"
    BEARISH_ENGULFING = "bearish_engulfing"
    BULLISH_HARAMI = "bullish_harami"
    BEARISH_HARAMI = "bearish_harami"
    PIERCING_LINE = "piercing_line"
    DARK_CLOUD_COVER = "dark_cloud_cover"
    # Triple
    MORNING_STAR = "morning_star"
    EVENING_STAR = "evening_star"
    THREE_WHITE_SOLDIERS = "three_white_soldiers"
    THREE_BLACK_CROWS = "three_black_crows"


class ChartPattern(str, Enum):
    """Multi-bar geometric structures built from swing points."""
    V_BOTTOM = "v_bottom"
    V_TOP = "v_top"
    DOUBLE_TOP = "double_top"
    DOUBLE_BOTTOM = "double_bottom"
    HEAD_AND_SHOULDERS = "head_and_shoulders"
    INVERSE_HEAD_AND_SHOULDERS = "inverse_head_and_shoulders"
    ASCENDING_TRIANGLE = "ascending_triangle"
    DESCENDING_TRIANGLE = "descending_triangle"
    SYMMETRICAL_TRIANGLE = "symmetrical_triangle"
    RISING_WEDGE = "rising_wedge"
    FALLING_WEDGE = "falling_wedge"
    BULL_FLAG = "bull_flag"
    BEAR_FLAG = "bear_flag"


class TechnicalSetup(str, Enum):
    """Indicator-driven setups."""
    GOLDEN_CROSS = "golden_cross"
    DEATH_CROSS = "death_cross"
    BULLISH_RSI_DIVERGENCE = "bullish_rsi_divergence"
    BEARISH_RSI_DIVERGENCE = "bearish_rsi_divergence"
    RSI_OVERSOLD = "rsi_oversold"
    RSI_OVERBOUGHT = "rsi_overbought"
    BOLLINGER_SQUEEZE = "bollinger_squeeze"
    VOLUME_BREAKOUT = "volume_breakout"
    BULLISH_MACD_CROSS = "bullish_macd_cross"
    BEARISH_MACD_CROSS = "bearish_macd_cross"
    SUPPORT_BOUNCE = "support_bounce"
    RESISTANCE_REJECTION = "resistance_rejection"


PatternType = Union[CandlestickPattern, ChartPattern, TechnicalSetup]

_FAMILY_BY_ENUM: dict[type, PatternFamily] = {
    CandlestickPattern: PatternFamily.CANDLESTICK,
    ChartPattern: PatternFamily.CHART,
    TechnicalSetup: PatternFamily.TECHNICAL,
}

REVERSAL_PATTERNS: frozenset = frozenset({
    CandlestickPattern.HAMMER,
    CandlestickPattern.INVERTED_HAMMER,
    CandlestickPattern.SHOOTING_STAR,
    CandlestickPattern.BULLISH_ENGULFING,
    CandlestickPattern.BEARISH_ENGULFING,
    CandlestickPattern.BULLISH_HARAMI,
    CandlestickPattern.BEARISH_HARAMI,
    CandlestickPattern.PIERCING_LINE,
    CandlestickPattern.DARK_CLOUD_COVER,
    CandlestickPattern.MORNING_STAR,
    CandlestickPattern.EVENING_STAR,
    ChartPattern.V_BOTTOM,
    ChartPattern.V_TOP,
    ChartPattern.DOUBLE_TOP,
    ChartPattern.DOUBLE_BOTTOM,
    ChartPattern.HEAD_AND_SHOULDERS,
    ChartPattern.INVERSE_HEAD_AND_SHOULDERS,
    ChartPattern.RISING_WEDGE,
    ChartPattern.FALLING_WEDGE,
})


def pattern_family(pattern: PatternType) -> PatternFamily:
    """Family of a pattern type, derived from its enum class."""
    return _FAMILY_BY_ENUM[type(pattern)]


class PatternStatus(str, Enum):
    """Lifecycle of a detected pattern once later bars arrive."""
    ACTIVE = "active"
    PLAYING_OUT = "playing_out"
    HIT_TARGET = "hit_target"
    HIT_STOP = "hit_stop"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


class VolumeProfile(str, Enum):
    BREAKOUT = "breakout"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class MAAlignment(str, Enum):
    BULLISH_STACK = "bullish_stack"
    BEARISH_STACK = "bearish_stack"
    MIXED = "mixed"


class RsiZone(str, Enum):
    OVERSOLD = "oversold"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    BULLISH = "bullish"
    OVERBOUGHT = "overbought"


# ──────────────────────────────────────────────
# Market Data
# ──────────────────────────────────────────────

class Candle(BaseModel):
    """Single OHLCV bar."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float = Field(ge=0)
    high: float = Field(ge=0)
    low: float = Field(ge=0)
    close: float = Field(ge=0)
    volume: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def check_price_bounds(self) -> "Candle":
        if self.high < max(self.open, self.close):
            raise ValueError(f"high {self.high} is below max(open, close)")
        if self.low > min(self.open, self.close):
            raise ValueError(f"low {self.low} is above min(open, close)")
        return self

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def is_doji(self) -> bool:
        return self.range > 0 and self.body / self.range < 0.1

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3


# ──────────────────────────────────────────────
# Features & Regime
# ──────────────────────────────────────────────

class FeatureVector(BaseModel):
    """Indicator snapshot at the last bar of a candle sequence."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    calculated_at: datetime
    bar_count: int
    price: float

    rsi: float = Field(ge=0, le=100)
    macd: float
    macd_signal: float
    macd_histogram: float

    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_width: float  # (upper - lower) / SMA20

    atr: float
    atr_pct: float

    sma20: float
    sma50: float
    sma200: Optional[float] = None  # only with >= 200 bars
    ema12: float
    ema26: float

    vwap: float
    volume_avg20: float
    sma20_slope: float  # % of price per bar, signed


class RegimeThresholds(BaseModel):
    """Cut-offs the regime classifier scores against."""
    model_config = ConfigDict(frozen=True)

    strong_slope: float = 0.25
    trend_slope: float = 0.08
    flat_slope: float = 0.05
    high_atr_pct: float = 4.0
    elevated_atr_pct: float = 3.0
    wide_bb_width: float = 0.12
    narrow_bb_width: float = 0.06
    min_score: float = 35.0


class RegimeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    regime: MarketRegime
    confidence: float = Field(ge=0, le=100)
    rationale: str
    features: FeatureVector


# ──────────────────────────────────────────────
# Patterns
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class PatternResult:
    """A single detected pattern occurrence."""
    pattern: PatternType
    direction: Direction
    confidence: float      # 0 – 100
    win_rate: float        # historical, 0 – 100
    name: str
    description: str
    entry: float
    stop: float
    target: float
    start_index: int
    end_index: int
    start_date: datetime
    end_date: datetime
    timeframe: str = ""

    @property
    def family(self) -> PatternFamily:
        return pattern_family(self.pattern)

    @property
    def is_reversal(self) -> bool:
        return self.pattern in REVERSAL_PATTERNS

    def to_dict(self) -> dict:
        d = asdict(self)
        d["pattern"] = self.pattern.value
        d["family"] = self.family.value
        d["direction"] = self.direction.value
        d["start_date"] = self.start_date.isoformat()
        d["end_date"] = self.end_date.isoformat()
        return d


# ──────────────────────────────────────────────
# Risk
# ──────────────────────────────────────────────

class RiskLimits(BaseModel):
    """Externally supplied risk configuration (percent values are 0–100)."""
    model_config = ConfigDict(frozen=True)

    default_risk_percent: float = 1.0
    max_risk_percent: float = 2.0
    max_position_percent: float = 25.0
    min_risk_reward: float = 1.5
    kelly_cap_percent: float = 25.0
    max_position_value: Optional[float] = None


class RiskInput(BaseModel):
    """A sizing request. Validated by the Risk Engine, not by the schema."""
    model_config = ConfigDict(frozen=True)

    symbol: str = ""
    entry: float
    stop: float
    target1: float
    target2: Optional[float] = None
    portfolio_size: float
    risk_percent: Optional[float] = None   # falls back to limits.default_risk_percent
    dollar_risk: Optional[float] = None    # explicit budget overrides risk_percent
    win_rate: Optional[float] = None       # 0 – 100
    is_short: Optional[bool] = None        # inferred from stop vs entry when omitted


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: RiskInput
    is_short: bool

    risk_per_share: float
    reward_per_share1: float
    reward_per_share2: Optional[float] = None

    risk_amount: float
    risk_percent: float
    shares: int
    position_value: float
    position_percent: float
    max_loss: float
    potential_gain1: float
    potential_gain2: Optional[float] = None

    risk_reward_ratio1: float
    risk_reward_ratio2: Optional[float] = None

    kelly_percent: Optional[float] = None
    kelly_position_value: Optional[float] = None
    kelly_shares: Optional[int] = None

    passes_risk_check: bool
    warnings: tuple[str, ...] = ()
    violations: tuple[str, ...] = ()


class TradeSignal(BaseModel):
    """Persistence-facing projection of a pattern and its risk sizing."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    timeframe: str
    pattern: str
    pattern_name: str
    direction: Direction
    confidence: float
    win_rate: float
    entry: float
    stop: float
    target: float
    shares: int
    position_value: float
    risk_reward_ratio: float
    kelly_percent: Optional[float] = None
    passes_risk_check: bool
    detected_at: datetime


# ──────────────────────────────────────────────
# Market Context
# ──────────────────────────────────────────────

class KeyLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float
    touches: int = Field(ge=1)
    level_type: str  # "support" | "resistance"
    source: str      # "swing" | "round_number"


class MarketContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float
    volume_ratio: float
    volume_profile: VolumeProfile
    distance_sma20_pct: float
    distance_sma50_pct: float
    distance_sma200_pct: Optional[float] = None
    ma_alignment: MAAlignment
    rsi: float
    rsi_zone: RsiZone
    atr_pct: float
    consecutive_up: int
    consecutive_down: int
    trend_slope: float
    key_levels: tuple[KeyLevel, ...] = ()
    nearest_support: Optional[float] = None
    nearest_resistance: Optional[float] = None


# ──────────────────────────────────────────────
# Multi-Timeframe Scan
# ──────────────────────────────────────────────

class TimeframeBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeframe: str
    weight: float
    patterns: tuple[PatternResult, ...] = ()
    regime: RegimeResult
    context: MarketContext
    dominant_direction: Direction
    bullish_count: int = 0
    bearish_count: int = 0
    neutral_count: int = 0


class MultiTimeframeScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    current_price: float
    scanned_at: datetime
    timeframes: tuple[TimeframeBreakdown, ...]
    skipped_timeframes: dict[str, str] = Field(default_factory=dict)

    combined_regime: MarketRegime
    regime_confidence: float
    regime_alignment: Alignment
    regime_alignment_score: float

    dominant_direction: Direction
    direction_alignment: Alignment
    direction_alignment_score: float

    top_patterns: tuple[PatternResult, ...] = ()
    daily_context: Optional[MarketContext] = None

    @property
    def pattern_count(self) -> int:
        return sum(len(tf.patterns) for tf in self.timeframes)


class ScanOutcome(BaseModel):
    """Value-level result of one symbol in a batch scan."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    result: Optional[MultiTimeframeScanResult] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class ScanNotification(BaseModel):
    """Summary handed to the notification collaborator."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    pattern_count: int
    current_price: float
    overall_bias: Direction
    confidence: float
    recommended_action: str
    top_pattern: Optional[str] = None
    top_pattern_confidence: Optional[float] = None
    scanned_at: datetime
    is_alert: bool = False
    alert_message: Optional[str] = None
