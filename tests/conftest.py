"""
SignalGrade — shared test fixtures

Candle factories. Every series is oldest-first; opens chain from the
prior close so bodies and gaps behave like real bars.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

import pytest

BASE_TIME = datetime(2024, 1, 1)


def candles_from_closes(
    closes: Sequence[float],
    spread: float = 0.01,
    volumes: Optional[Sequence[float]] = None,
    step: timedelta = timedelta(days=1),
    start: datetime = BASE_TIME,
):
    """OHLCV bars whose open is the previous close and whose wicks extend ``spread``."""
    from signalgrade.models import Candle

    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(Candle(
            timestamp=start + i * step,
            open=prev,
            high=max(prev, close * (1 + spread)),
            low=min(prev, close * (1 - spread)),
            close=close,
            volume=volumes[i] if volumes is not None else 1_000_000,
        ))
        prev = close
    return candles


def candles_from_ohlc(rows: Sequence[tuple[float, float, float, float]], start: datetime = BASE_TIME):
    """Bars from explicit (open, high, low, close) tuples."""
    from signalgrade.models import Candle

    return [
        Candle(timestamp=start + timedelta(days=i), open=o, high=h, low=l, close=c, volume=1_000_000)
        for i, (o, h, l, c) in enumerate(rows)
    ]


def uptrend_closes(n: int = 120, start: float = 100.0) -> list[float]:
    """Rising series with a pullback every third bar (+2%, +2%, -2.2%)."""
    closes = [start]
    moves = (1.02, 1.02, 0.978)
    for i in range(1, n):
        closes.append(closes[-1] * moves[(i - 1) % 3])
    return closes


def segment(a: float, b: float, k: int) -> list[float]:
    """``k`` evenly spaced values after ``a`` ending exactly at ``b``."""
    return [a + (b - a) * j / k for j in range(1, k + 1)]


# Five-bar symmetric V: two lower lows into 99, two higher closes out
V_BOTTOM_ROWS = [
    (112.0, 112.5, 109.5, 110.0),
    (110.0, 110.5, 104.5, 105.0),
    (105.0, 105.5, 99.0, 100.5),
    (100.5, 105.5, 100.0, 105.0),
    (105.0, 110.5, 104.5, 110.0),
]


@pytest.fixture
def uptrend_candles():
    return candles_from_closes(uptrend_closes(120), spread=0.002)


@pytest.fixture
def v_bottom_candles():
    return candles_from_ohlc(V_BOTTOM_ROWS)


@pytest.fixture
def double_bottom_candles():
    closes = [110.0] + segment(110, 100, 10) + segment(100, 110, 10) + segment(110, 100, 10) + segment(100, 110, 9)
    return candles_from_closes(closes)


def zero_low_candles(n: int = 60, at: Sequence[int] = (15, 30)):
    """Flat bars at 10 whose low prints 0 at the ``at`` indices."""
    rows = [(10.0, 10.1, 0.0 if i in at else 9.9, 10.0) for i in range(n)]
    return candles_from_ohlc(rows)
