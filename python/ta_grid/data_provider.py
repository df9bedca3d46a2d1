"""Data providers (CSV / yfinance) and a standardized OHLCV schema."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from loguru import logger

from .data_manager import OHLCV_COLUMNS, CandleSeries

DEFAULT_SYMBOL = "BTC-USD"
TIMESTAMP_ALIASES = ["timestamp", "date", "datetime", "time", "open_time", "open time"]


@dataclass(frozen=True)
class OhlcvFrame:
    """Standard OHLCV dataframe wrapper."""

    df: pd.DataFrame  # columns: open, high, low, close, volume; index: DatetimeIndex named 'timestamp'
    symbol: str

    def to_series(self) -> CandleSeries:
        return CandleSeries.from_frame(self.df)


def _standardize_ohlcv_columns(df: pd.DataFrame) -> pd.DataFrame:
    # yfinance can return MultiIndex columns (field, ticker) depending on version.
    if isinstance(df.columns, pd.MultiIndex):
        tickers = list(dict.fromkeys(df.columns.get_level_values(-1)))
        if len(tickers) == 1:
            df = df.copy()
            df.columns = df.columns.get_level_values(0)
        else:
            df = df.xs(tickers[0], axis=1, level=-1, drop_level=True)

    rename_map = {}
    for col in df.columns:
        c = str(col).strip().lower()
        if c in OHLCV_COLUMNS:
            rename_map[col] = c
        elif c in {"adj close", "adjclose", "adj_close"}:
            rename_map[col] = "adj_close"
    df = df.rename(columns=rename_map).copy()

    if "close" not in df.columns and "adj_close" in df.columns:
        df = df.rename(columns={"adj_close": "close"})

    missing = [c for c in OHLCV_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required OHLCV columns: {missing}")
    return df[OHLCV_COLUMNS]


def _drop_malformed_rows(df: pd.DataFrame, source: str) -> pd.DataFrame:
    """Coerce OHLCV to numbers and drop rows with a missing timestamp or a non-finite value."""
    numeric = df.apply(pd.to_numeric, errors="coerce")
    bad = ~np.isfinite(numeric.to_numpy(dtype=float)).all(axis=1) | np.asarray(df.index.isna())
    if bad.any():
        logger.warning("{}: dropping {} malformed row(s) of {}", source, int(bad.sum()), len(df))
    return numeric[~bad].astype(float)


class CsvProvider:
    """Load OHLCV candles from a CSV file with a header row."""

    def fetch(self, csv_path: str | Path, symbol: str = DEFAULT_SYMBOL, datetime_col: Optional[str] = None) -> OhlcvFrame:
        path = Path(csv_path)
        if not path.exists():
            raise FileNotFoundError(str(path))

        df = pd.read_csv(path)
        cols = {str(c).strip().lower(): c for c in df.columns}
        if datetime_col is None:
            for cand in TIMESTAMP_ALIASES:
                if cand in cols:
                    datetime_col = cols[cand]
                    break
        if datetime_col is None or datetime_col not in df.columns:
            raise ValueError(f"CSV must contain a timestamp column. Tried {TIMESTAMP_ALIASES}.")

        ts = pd.to_datetime(df[datetime_col], errors="coerce")
        df = df.drop(columns=[datetime_col])
        df.index = pd.DatetimeIndex(ts, name="timestamp")

        df = _drop_malformed_rows(_standardize_ohlcv_columns(df), str(path))
        df = df.sort_index(kind="stable")
        df = df[~df.index.duplicated(keep="last")]
        if df.empty:
            raise ValueError(f"{path}: no valid candles")

        logger.info("{}: loaded {} candles {} -> {}", path, len(df), df.index[0], df.index[-1])
        return OhlcvFrame(df=df, symbol=symbol)


class YfinanceProvider:
    """Fetch candles from yfinance (optional dependency)."""

    def fetch(
        self,
        symbol: str = DEFAULT_SYMBOL,
        start: Optional[str] = None,
        end: Optional[str] = None,
        interval: str = "1d",
        auto_adjust: bool = False,
    ) -> OhlcvFrame:
        import yfinance as yf  # local import: only needed when downloading

        df = yf.download(
            tickers=symbol,
            start=start,
            end=end,
            interval=interval,
            auto_adjust=auto_adjust,
            progress=False,
        )
        if df is None or len(df) == 0:
            raise RuntimeError(f"yfinance returned empty data for symbol={symbol}")

        df = _standardize_ohlcv_columns(df)
        df.index = pd.DatetimeIndex(df.index, name="timestamp")
        df = _drop_malformed_rows(df, f"yfinance:{symbol}")
        df = df.sort_index(kind="stable")
        df = df[~df.index.duplicated(keep="last")]
        if df.empty:
            raise RuntimeError(f"yfinance returned no usable candles for symbol={symbol}")
        logger.info("yfinance {} {}: {} candles", symbol, interval, len(df))
        return OhlcvFrame(df=df, symbol=symbol)
