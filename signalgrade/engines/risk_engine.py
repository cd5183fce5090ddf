"""
SignalGrade — Risk Engine

Position sizing, Kelly criterion, risk/reward analysis, and pass/fail
checks against configured risk limits. Pure arithmetic, no I/O.
"""

from __future__ import annotations

import math
from typing import Optional

import structlog

from signalgrade.errors import ConfigurationError, RiskValidationError
from signalgrade.models import (
    PatternResult,
    RiskAssessment,
    RiskInput,
    RiskLimits,
    TradeSignal,
)

log = structlog.get_logger(__name__)

# Fraction of a limit at which a warning is raised before it becomes a violation
_NEAR_LIMIT = 0.8
# R:R headroom above the minimum that still warrants a warning
_RR_HEADROOM = 0.5


class _Findings:
    """Accumulates warnings and violations, then freezes them once."""

    def __init__(self):
        self._warnings: list[str] = []
        self._violations: list[str] = []

    def warn(self, message: str) -> None:
        self._warnings.append(message)

    def violate(self, message: str) -> None:
        self._violations.append(message)

    def freeze(self) -> tuple[tuple[str, ...], tuple[str, ...]]:
        return tuple(self._warnings), tuple(self._violations)


class RiskEngine:
    """Position sizing and risk management calculations.

    Usage:
        engine = RiskEngine(get_settings().risk_limits())
        assessment = engine.calculate_risk(RiskInput(entry=100, stop=95, target1=115,
                                                     portfolio_size=100_000))
    """

    def __init__(self, limits: Optional[RiskLimits] = None):
        self.limits = limits or RiskLimits()

    def calculate_risk(self, request: RiskInput, limits: Optional[RiskLimits] = None) -> RiskAssessment:
        """Size a trade and check it against risk limits.

        Args:
            request: Entry/stop/targets and portfolio state.
            limits: Per-call override of the engine's limits.

        Raises:
            RiskValidationError: malformed request.
            ConfigurationError: invalid limits.
        """
        limits = limits or self.limits
        _check_limits(limits)
        is_short = _validate(request)

        entry, stop = request.entry, request.stop
        risk_per_share = abs(entry - stop)
        reward1 = abs(request.target1 - entry)
        reward2 = abs(request.target2 - entry) if request.target2 is not None else None

        # ── Sizing ──
        if request.dollar_risk is not None:
            risk_amount = request.dollar_risk
        else:
            pct = request.risk_percent if request.risk_percent is not None else limits.default_risk_percent
            risk_amount = request.portfolio_size * pct / 100
        risk_percent = risk_amount / request.portfolio_size * 100

        shares = math.floor(risk_amount / risk_per_share)
        position_value = shares * entry
        position_percent = position_value / request.portfolio_size * 100

        rr1 = round(reward1 / risk_per_share, 2)
        rr2 = round(reward2 / risk_per_share, 2) if reward2 is not None else None

        findings = _Findings()

        # ── Kelly Criterion ──
        kelly_percent = kelly_value = kelly_shares = None
        if request.win_rate is not None:
            w = request.win_rate / 100
            kelly_raw = (w - (1 - w) / (reward1 / risk_per_share)) * 100
            kelly_percent = round(min(max(kelly_raw, 0.0), limits.kelly_cap_percent), 2)
            kelly_value = round(kelly_percent / 100 * request.portfolio_size, 2)
            kelly_shares = math.floor(kelly_value / entry)
            if kelly_raw <= 0:
                findings.warn(
                    f"Kelly criterion shows no edge at {request.win_rate:.1f}% win rate and {rr1:.2f}R"
                )
            elif kelly_raw > limits.kelly_cap_percent:
                findings.warn(
                    f"Kelly fraction {kelly_raw:.1f}% capped at {limits.kelly_cap_percent:.1f}%"
                )

        # ── Limit checks ──
        if risk_percent > limits.max_risk_percent:
            findings.violate(
                f"Risk {risk_percent:.2f}% of portfolio exceeds maximum {limits.max_risk_percent:.2f}%"
            )
        elif risk_percent > limits.max_risk_percent * _NEAR_LIMIT:
            findings.warn(
                f"Risk {risk_percent:.2f}% is near the {limits.max_risk_percent:.2f}% maximum"
            )

        if position_percent > limits.max_position_percent:
            findings.violate(
                f"Position {position_percent:.2f}% of portfolio exceeds cap {limits.max_position_percent:.2f}%"
            )
        elif position_percent > limits.max_position_percent * _NEAR_LIMIT:
            findings.warn(
                f"Position {position_percent:.2f}% is near the {limits.max_position_percent:.2f}% cap"
            )

        if limits.max_position_value is not None and position_value > limits.max_position_value:
            findings.violate(
                f"Position value {position_value:,.2f} exceeds maximum {limits.max_position_value:,.2f}"
            )

        if rr1 < limits.min_risk_reward:
            findings.violate(f"Risk/reward 1:{rr1:.2f} is below minimum 1:{limits.min_risk_reward:.2f}")
        elif rr1 < limits.min_risk_reward + _RR_HEADROOM:
            findings.warn(f"Risk/reward 1:{rr1:.2f} is close to minimum 1:{limits.min_risk_reward:.2f}")

        if shares < 1:
            findings.warn("Risk budget is too small to buy a single share at this stop distance")

        warnings, violations = findings.freeze()
        assessment = RiskAssessment(
            input=request,
            is_short=is_short,
            risk_per_share=round(risk_per_share, 4),
            reward_per_share1=round(reward1, 4),
            reward_per_share2=round(reward2, 4) if reward2 is not None else None,
            risk_amount=round(risk_amount, 2),
            risk_percent=round(risk_percent, 2),
            shares=shares,
            position_value=round(position_value, 2),
            position_percent=round(position_percent, 2),
            max_loss=round(shares * risk_per_share, 2),
            potential_gain1=round(shares * reward1, 2),
            potential_gain2=round(shares * reward2, 2) if reward2 is not None else None,
            risk_reward_ratio1=rr1,
            risk_reward_ratio2=rr2,
            kelly_percent=kelly_percent,
            kelly_position_value=kelly_value,
            kelly_shares=kelly_shares,
            passes_risk_check=not violations,
            warnings=warnings,
            violations=violations,
        )
        log.debug(
            "risk.assessed",
            symbol=request.symbol,
            shares=shares,
            rr=rr1,
            passes=assessment.passes_risk_check,
            violations=len(violations),
        )
        return assessment

    def assess_pattern(
        self,
        pattern: PatternResult,
        portfolio_size: float,
        symbol: str = "",
        risk_percent: Optional[float] = None,
        limits: Optional[RiskLimits] = None,
    ) -> RiskAssessment:
        """Size a detected pattern using its entry/stop/target and win rate."""
        request = RiskInput(
            symbol=symbol,
            entry=pattern.entry,
            stop=pattern.stop,
            target1=pattern.target,
            portfolio_size=portfolio_size,
            risk_percent=risk_percent,
            win_rate=pattern.win_rate,
        )
        return self.calculate_risk(request, limits)


def build_trade_signal(symbol: str, pattern: PatternResult, assessment: RiskAssessment) -> TradeSignal:
    """Project a pattern and its sizing into the persistence-facing shape."""
    return TradeSignal(
        symbol=symbol,
        timeframe=pattern.timeframe,
        pattern=pattern.pattern.value,
        pattern_name=pattern.name,
        direction=pattern.direction,
        confidence=pattern.confidence,
        win_rate=pattern.win_rate,
        entry=pattern.entry,
        stop=pattern.stop,
        target=pattern.target,
        shares=assessment.shares,
        position_value=assessment.position_value,
        risk_reward_ratio=assessment.risk_reward_ratio1,
        kelly_percent=assessment.kelly_percent,
        passes_risk_check=assessment.passes_risk_check,
        detected_at=pattern.end_date,
    )


# ──────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────

def _check_limits(limits: RiskLimits) -> None:
    if limits.default_risk_percent <= 0 or limits.max_risk_percent <= 0:
        raise ConfigurationError("Risk percentages must be positive")
    if not 0 < limits.max_position_percent <= 100:
        raise ConfigurationError(
            f"max_position_percent must be in (0, 100], got {limits.max_position_percent}"
        )
    if limits.min_risk_reward < 0:
        raise ConfigurationError(f"min_risk_reward must be >= 0, got {limits.min_risk_reward}")
    if not 0 <= limits.kelly_cap_percent <= 100:
        raise ConfigurationError(
            f"kelly_cap_percent must be in [0, 100], got {limits.kelly_cap_percent}"
        )
    if limits.max_position_value is not None and limits.max_position_value <= 0:
        raise ConfigurationError("max_position_value must be positive when set")


def _validate(request: RiskInput) -> bool:
    """Validate a risk request; returns whether it is a short trade."""
    prices = {"entry": request.entry, "stop": request.stop, "target1": request.target1}
    if request.target2 is not None:
        prices["target2"] = request.target2
    for name, value in prices.items():
        if not value > 0:
            raise RiskValidationError(f"{name} price must be positive, got {value}")
    if not request.portfolio_size > 0:
        raise RiskValidationError(f"Portfolio size must be positive, got {request.portfolio_size}")
    if request.stop == request.entry:
        raise RiskValidationError("Stop equals entry: risk per share is undefined")
    if request.risk_percent is not None and not request.risk_percent > 0:
        raise RiskValidationError(f"Risk percent must be positive, got {request.risk_percent}")
    if request.dollar_risk is not None and not request.dollar_risk > 0:
        raise RiskValidationError(f"Dollar risk must be positive, got {request.dollar_risk}")
    if request.win_rate is not None and not 0 <= request.win_rate <= 100:
        raise RiskValidationError(f"Win rate must be between 0 and 100, got {request.win_rate}")

    is_short = request.is_short if request.is_short is not None else request.stop > request.entry
    targets = [t for t in (request.target1, request.target2) if t is not None]
    if is_short:
        if request.stop < request.entry:
            raise RiskValidationError("Short trade requires stop above entry")
        if any(t >= request.entry for t in targets):
            raise RiskValidationError("Short trade requires targets below entry")
    else:
        if request.stop > request.entry:
            raise RiskValidationError("Long trade requires stop below entry")
        if any(t <= request.entry for t in targets):
            raise RiskValidationError("Long trade requires targets above entry")
    return is_short
