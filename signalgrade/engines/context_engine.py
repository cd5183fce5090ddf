"""
SignalGrade — Market Context Engine

Summarizes where price sits relative to its averages, volume, momentum,
and nearby key levels (swing clusters and round numbers). Feeds the
per-timeframe breakdown of a multi-timeframe scan.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from signalgrade.engines.pattern_engine import cluster_levels, find_swings
from signalgrade.errors import InsufficientDataError
from signalgrade.models import (
    Candle,
    FeatureVector,
    KeyLevel,
    MAAlignment,
    MarketContext,
    RsiZone,
    VolumeProfile,
)

MIN_CONTEXT_BARS = 20
MAX_KEY_LEVELS = 10


class ContextEngine:
    """Market context for the latest bar of a series.

    Usage:
        ctx = ContextEngine().build_context(candles, features)
    """

    def build_context(self, candles: Sequence[Candle], features: FeatureVector) -> MarketContext:
        if len(candles) < MIN_CONTEXT_BARS:
            raise InsufficientDataError(
                required=MIN_CONTEXT_BARS, available=len(candles),
                symbol=features.symbol, what="market context",
            )

        price = features.price
        volume_ratio = candles[-1].volume / features.volume_avg20 if features.volume_avg20 > 0 else 0.0
        up, down = _consecutive_closes(candles)
        levels = self.detect_key_levels(candles)

        supports = [lv.price for lv in levels if lv.level_type == "support"]
        resistances = [lv.price for lv in levels if lv.level_type == "resistance"]

        return MarketContext(
            price=price,
            volume_ratio=round(volume_ratio, 2),
            volume_profile=_volume_profile(volume_ratio),
            distance_sma20_pct=_distance_pct(price, features.sma20),
            distance_sma50_pct=_distance_pct(price, features.sma50),
            distance_sma200_pct=_distance_pct(price, features.sma200) if features.sma200 else None,
            ma_alignment=_ma_alignment(features),
            rsi=features.rsi,
            rsi_zone=_rsi_zone(features.rsi),
            atr_pct=features.atr_pct,
            consecutive_up=up,
            consecutive_down=down,
            trend_slope=features.sma20_slope,
            key_levels=tuple(levels),
            nearest_support=max(supports) if supports else None,
            nearest_resistance=min(resistances) if resistances else None,
        )

    def detect_key_levels(
        self,
        candles: Sequence[Candle],
        tolerance: float = 0.01,
        max_levels: int = MAX_KEY_LEVELS,
    ) -> list[KeyLevel]:
        """Swing highs/lows plus nearby round numbers, clustered and ranked by touches."""
        if not candles:
            return []
        highs = np.array([c.high for c in candles], dtype=float)
        lows = np.array([c.low for c in candles], dtype=float)
        price = candles[-1].close

        swings = [v for _, v in find_swings(highs, mode="high", order=3)]
        swings += [v for _, v in find_swings(lows, mode="low", order=3)]

        levels: list[KeyLevel] = []
        for level, touches in cluster_levels(swings, tolerance):
            levels.append(KeyLevel(
                price=round(level, 4),
                touches=touches,
                level_type="support" if level < price else "resistance",
                source="swing",
            ))

        lo, hi = float(lows.min()), float(highs.max())
        for level in _round_numbers(price):
            if level > 0 and lo <= level <= hi and not any(abs(lv.price - level) / level < tolerance for lv in levels):
                levels.append(KeyLevel(
                    price=level,
                    touches=1,
                    level_type="support" if level < price else "resistance",
                    source="round_number",
                ))

        levels.sort(key=lambda lv: (-lv.touches, abs(lv.price - price)))
        return levels[:max_levels]


def _round_numbers(price: float) -> list[float]:
    """Round numbers bracketing price at its order of magnitude."""
    if price <= 0:
        return []
    step = 10 ** math.floor(math.log10(price))
    if price / step < 2:
        step /= 2
    base = math.floor(price / step) * step
    return [round(base - step, 4), round(base, 4), round(base + step, 4), round(base + 2 * step, 4)]


def _consecutive_closes(candles: Sequence[Candle]) -> tuple[int, int]:
    up = down = 0
    for prev, cur in zip(reversed(candles[:-1]), reversed(candles[1:])):
        if cur.close > prev.close and down == 0:
            up += 1
        elif cur.close < prev.close and up == 0:
            down += 1
        else:
            break
    return up, down


def _distance_pct(price: float, average: float) -> float:
    return round((price - average) / average * 100, 2) if average else 0.0


def _volume_profile(ratio: float) -> VolumeProfile:
    if ratio > 2.0:
        return VolumeProfile.BREAKOUT
    if ratio > 1.3:
        return VolumeProfile.HIGH
    if ratio > 0.7:
        return VolumeProfile.NORMAL
    return VolumeProfile.LOW


def _ma_alignment(f: FeatureVector) -> MAAlignment:
    if f.price > f.sma20 > f.sma50 and (f.sma200 is None or f.sma50 > f.sma200):
        return MAAlignment.BULLISH_STACK
    if f.price < f.sma20 < f.sma50 and (f.sma200 is None or f.sma50 < f.sma200):
        return MAAlignment.BEARISH_STACK
    return MAAlignment.MIXED


def _rsi_zone(rsi: float) -> RsiZone:
    if rsi >= 70:
        return RsiZone.OVERBOUGHT
    if rsi >= 55:
        return RsiZone.BULLISH
    if rsi <= 30:
        return RsiZone.OVERSOLD
    if rsi <= 45:
        return RsiZone.BEARISH
    return RsiZone.NEUTRAL
