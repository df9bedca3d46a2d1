"""Data manager: holds the candle columns and their indicator series.

A run converts its input once into a :class:`CandleSeries` (validated numpy
columns) and a :class:`MarketData` (series + indicators). Every strategy
component reads from these by index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd

from .config import IndicatorConfig
from .indicators import IndicatorSet, compute_indicators
from .types import Candle, IndicatorSnapshot

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class CandleSeries:
    """Column view of an ordered candle series."""

    timestamps: pd.DatetimeIndex
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.timestamps)
        if n == 0:
            raise ValueError("Candle series is empty")
        for name in OHLCV_COLUMNS:
            col = getattr(self, name)
            if len(col) != n:
                raise ValueError(f"Column '{name}' has {len(col)} values, expected {n}")
            if not np.all(np.isfinite(col)):
                bad = int(np.argmax(~np.isfinite(col)))
                raise ValueError(f"Column '{name}' has a non-finite value at index {bad}")

    def __len__(self) -> int:
        return len(self.timestamps)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "CandleSeries":
        """Build from a DataFrame with timestamp/open/high/low/close/volume columns.

        Column names are matched case-insensitively. A DatetimeIndex is used
        as the timestamp when no timestamp column exists.
        """
        cols = {str(c).strip().lower(): c for c in df.columns}
        missing = [c for c in OHLCV_COLUMNS if c not in cols]
        if missing:
            raise ValueError(f"Missing required OHLCV columns: {missing}")

        if "timestamp" in cols:
            ts = pd.DatetimeIndex(pd.to_datetime(df[cols["timestamp"]]))
        elif isinstance(df.index, pd.DatetimeIndex):
            ts = df.index
        else:
            raise ValueError("Candles need a 'timestamp' column or a DatetimeIndex")

        arrays = {}
        for name in OHLCV_COLUMNS:
            try:
                arrays[name] = pd.to_numeric(df[cols[name]], errors="raise").to_numpy(dtype=float, copy=True)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Column '{name}' is not numeric: {exc}") from exc
        return cls(timestamps=ts, **arrays)

    @classmethod
    def from_records(cls, records: Iterable[Candle | dict[str, Any]]) -> "CandleSeries":
        """Build from Candle objects or plain dicts with the same field names."""
        rows = []
        for r in records:
            if isinstance(r, Candle):
                rows.append(
                    {
                        "timestamp": r.timestamp,
                        "open": r.open,
                        "high": r.high,
                        "low": r.low,
                        "close": r.close,
                        "volume": r.volume,
                    }
                )
            else:
                rows.append(dict(r))
        if not rows:
            raise ValueError("Candle series is empty")
        return cls.from_frame(pd.DataFrame(rows))

    @classmethod
    def coerce(cls, candles: "CandleSeries | pd.DataFrame | Sequence[Candle | dict[str, Any]]") -> "CandleSeries":
        if isinstance(candles, CandleSeries):
            return candles
        if isinstance(candles, pd.DataFrame):
            return cls.from_frame(candles)
        return cls.from_records(candles)

    def label(self, i: int) -> str:
        """ISO timestamp string of candle ``i``."""
        return self.timestamps[i].isoformat()

    def to_candles(self) -> list[Candle]:
        return [
            Candle(
                timestamp=self.timestamps[i].to_pydatetime(),
                open=float(self.open[i]),
                high=float(self.high[i]),
                low=float(self.low[i]),
                close=float(self.close[i]),
                volume=float(self.volume[i]),
            )
            for i in range(len(self))
        ]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {name: getattr(self, name) for name in OHLCV_COLUMNS},
            index=self.timestamps.rename("timestamp"),
        )


class MarketData:
    """Holds a candle series and its indicator series for a single symbol."""

    def __init__(self, candles: CandleSeries, ind_cfg: IndicatorConfig):
        self.candles = candles
        self.ind_cfg = ind_cfg
        self.indicators: IndicatorSet = compute_indicators(candles, ind_cfg)

    def __len__(self) -> int:
        return len(self.candles)

    def close(self, i: int) -> float:
        return float(self.candles.close[i])

    def snapshot(self, i: int) -> IndicatorSnapshot:
        return self.indicators.snapshot(i)
