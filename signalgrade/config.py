"""
SignalGrade — Configuration Management

Pydantic Settings: loads from .env, validates all configuration at startup.
Risk limits, regime thresholds, and scanner weights are all injected from
here; the engines never hard-code them.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from signalgrade.models import RegimeThresholds, RiskLimits


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Background scans (Redis is Celery broker + result backend) ──
    redis_url: str = "redis://localhost:6379/0"
    scan_queue: str = "scans"
    scan_soft_time_limit: int = 120  # seconds
    scan_time_limit: int = 180
    scan_result_ttl: int = 3600

    # ── Risk Limits ──
    risk_default_percent: float = 1.0
    risk_max_percent: float = 2.0
    risk_max_position_percent: float = 25.0
    risk_min_reward_ratio: float = 1.5
    risk_kelly_cap_percent: float = 25.0
    risk_max_position_value: Optional[float] = None

    # ── Regime Thresholds (slope in % of price per bar) ──
    regime_strong_slope: float = 0.25
    regime_trend_slope: float = 0.08
    regime_flat_slope: float = 0.05
    regime_high_atr_pct: float = 4.0
    regime_elevated_atr_pct: float = 3.0
    regime_wide_bb_width: float = 0.12
    regime_narrow_bb_width: float = 0.06
    regime_min_score: float = 35.0

    # ── Multi-Timeframe Scanner ──
    scanner_timeframe_weights: dict[str, float] = {
        "1h": 0.5,
        "4h": 1.0,
        "1d": 2.0,
        "1wk": 3.0,
    }
    # (multiplier, cap) applied to pattern confidence per timeframe
    scanner_confidence_scaling: dict[str, tuple[float, float]] = {
        "1h": (0.85, 100.0),
        "4h": (0.90, 95.0),
        "1d": (1.00, 100.0),
        "1wk": (1.05, 98.0),
    }
    scanner_pattern_lookback_bars: int = 30
    scanner_conflict_window_bars: int = 5
    scanner_top_patterns: int = 10
    scanner_comparable_weight_ratio: float = 0.5

    # ── Alerting ──
    alert_min_confidence: float = 70.0
    alert_min_pattern_confidence: float = 75.0

    # ── Notifications ──
    discord_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    def risk_limits(self) -> RiskLimits:
        return RiskLimits(
            default_risk_percent=self.risk_default_percent,
            max_risk_percent=self.risk_max_percent,
            max_position_percent=self.risk_max_position_percent,
            min_risk_reward=self.risk_min_reward_ratio,
            kelly_cap_percent=self.risk_kelly_cap_percent,
            max_position_value=self.risk_max_position_value,
        )

    def regime_thresholds(self) -> RegimeThresholds:
        return RegimeThresholds(
            strong_slope=self.regime_strong_slope,
            trend_slope=self.regime_trend_slope,
            flat_slope=self.regime_flat_slope,
            high_atr_pct=self.regime_high_atr_pct,
            elevated_atr_pct=self.regime_elevated_atr_pct,
            wide_bb_width=self.regime_wide_bb_width,
            narrow_bb_width=self.regime_narrow_bb_width,
            min_score=self.regime_min_score,
        )


@lru_cache
def get_settings() -> Settings:
    """Cached singleton for application settings."""
    return Settings()
