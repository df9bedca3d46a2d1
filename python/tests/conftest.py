from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from ta_grid.data_manager import CandleSeries


def make_candles(closes, volume=1000.0, start="2024-01-01", freq="D") -> CandleSeries:
    """Candles whose open is the previous close and whose wicks extend 1 beyond the body."""
    close = np.asarray(closes, dtype=float)
    n = len(close)
    open_ = np.concatenate([[close[0]], close[:-1]])
    vol = np.full(n, float(volume)) if np.isscalar(volume) else np.asarray(volume, dtype=float)
    return CandleSeries(
        timestamps=pd.date_range(start, periods=n, freq=freq),
        open=open_,
        high=np.maximum(open_, close) + 1.0,
        low=np.minimum(open_, close) - 1.0,
        close=close,
        volume=vol,
    )


def forced_buy_closes() -> list[float]:
    """56 flat candles at 100, then five 2-point drops down to 90 at index 60."""
    return [100.0] * 56 + [98.0, 96.0, 94.0, 92.0, 90.0]


def long_decline_closes() -> list[float]:
    """The forced-buy dip carried on down to 60: a buy signal on every candle from 57."""
    return forced_buy_closes() + [88.0 - 2 * k for k in range(15)]


def cycle_closes() -> list[float]:
    """Long decline, a steady climb to 150, then a 25-candle plateau where the downturn detector fires."""
    return long_decline_closes() + [62.0 + 2 * k for k in range(45)] + [150.0] * 25


def wave_closes(n: int = 400, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    return 30_000 + 4_000 * np.sin(t / 15.0) + 1_500 * np.sin(t / 47.0) + rng.normal(0, 250, n).cumsum() * 0.2


@pytest.fixture
def flat_candles() -> CandleSeries:
    return make_candles([100.0] * 100)


@pytest.fixture
def forced_buy_candles() -> CandleSeries:
    return make_candles(forced_buy_closes())


@pytest.fixture
def cycle_candles() -> CandleSeries:
    return make_candles(cycle_closes())
