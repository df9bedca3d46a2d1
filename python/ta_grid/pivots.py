"""Fibonacci pivot levels per chunk of the candle series."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from .data_manager import CandleSeries

FIB_RATIOS = (0.236, 0.382, 0.618)


@dataclass(frozen=True)
class PivotLevels:
    start: str
    end: str
    pivot: float
    resistance1: float
    resistance2: float
    resistance3: float
    support1: float
    support2: float
    support3: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": f"{self.start} - {self.end}",
            "pivot": self.pivot,
            "resistance1": self.resistance1,
            "resistance2": self.resistance2,
            "resistance3": self.resistance3,
            "support1": self.support1,
            "support2": self.support2,
            "support3": self.support3,
        }


def fibonacci_pivots(candles: Any, periods: int = 10) -> list[PivotLevels]:
    """Split the series into chunks of ``max(1, n // periods)`` candles and compute levels.

    ``pivot = (high + low + last close) / 3``; resistances and supports sit at
    pivot +/- 0.236, 0.382 and 0.618 times the chunk range. A trailing partial
    chunk gets its own row.
    """
    if periods <= 0:
        raise ValueError("periods must be positive")
    series = CandleSeries.coerce(candles)
    n = len(series)
    size = max(1, n // periods)

    out: list[PivotLevels] = []
    for start in range(0, n, size):
        stop = min(start + size, n)
        high = float(np.max(series.high[start:stop]))
        low = float(np.min(series.low[start:stop]))
        close = float(series.close[stop - 1])
        pivot = (high + low + close) / 3.0
        r1, r2, r3 = (pivot + (high - low) * f for f in FIB_RATIOS)
        s1, s2, s3 = (pivot - (high - low) * f for f in FIB_RATIOS)
        out.append(
            PivotLevels(
                start=series.label(start),
                end=series.label(stop - 1),
                pivot=pivot,
                resistance1=r1,
                resistance2=r2,
                resistance3=r3,
                support1=s1,
                support2=s2,
                support3=s3,
            )
        )
    return out
