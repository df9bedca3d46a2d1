"""Indicator computation utilities.

Every function returns an array of the same length as its input. Leading
entries without enough history hold NaN (never zero) so that "not yet
defined" stays distinguishable from a real value. Inputs are never modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from .config import IndicatorConfig
from .types import IndicatorSnapshot

if TYPE_CHECKING:
    from .data_manager import CandleSeries


def _as_array(prices: Any) -> np.ndarray:
    return np.array(prices, dtype=float, copy=True)


def _check_period(period: int, name: str = "period") -> None:
    if period <= 0:
        raise ValueError(f"{name} must be positive")


def _hlc(candles: Any) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """High/low/close arrays from a CandleSeries or a DataFrame."""
    if isinstance(candles, pd.DataFrame):
        cols = {str(c).lower(): c for c in candles.columns}
        return (
            candles[cols["high"]].to_numpy(dtype=float),
            candles[cols["low"]].to_numpy(dtype=float),
            candles[cols["close"]].to_numpy(dtype=float),
        )
    return (
        np.asarray(candles.high, dtype=float),
        np.asarray(candles.low, dtype=float),
        np.asarray(candles.close, dtype=float),
    )


def _trailing_mean(x: np.ndarray, period: int) -> np.ndarray:
    """Mean of each trailing window; NaN until a full window exists.

    Each window is averaged directly (no running sum) so an all-zero window
    gives exactly zero.
    """
    out = np.full(len(x), np.nan)
    if len(x) >= period:
        out[period - 1 :] = sliding_window_view(x, period).mean(axis=1)
    return out


def sma(prices: Sequence[float] | np.ndarray | pd.Series, period: int) -> np.ndarray:
    """Simple moving average over the trailing ``period`` values."""
    _check_period(period)
    return _trailing_mean(_as_array(prices), period)


def ema(prices: Sequence[float] | np.ndarray | pd.Series, period: int) -> np.ndarray:
    """Exponential moving average seeded with the first price.

    Uses pandas ewm with adjust=False (recursive form, multiplier 2/(period+1)),
    so the series is defined from index 0.
    """
    _check_period(period)
    x = pd.Series(_as_array(prices))
    return x.ewm(span=period, adjust=False, min_periods=1).mean().to_numpy(dtype=float)


def rsi(prices: Sequence[float] | np.ndarray | pd.Series, period: int = 14) -> np.ndarray:
    """Relative strength index from the mean gain/loss of the trailing ``period`` deltas.

    Index 0 has no delta, so the first defined value is at index ``period``.
    A window without losses saturates at 100.
    """
    _check_period(period)
    x = _as_array(prices)
    out = np.full(len(x), np.nan)
    if len(x) < 2:
        return out
    delta = np.diff(x)
    avg_gain = _trailing_mean(np.where(delta > 0, delta, 0.0), period)
    avg_loss = _trailing_mean(np.where(delta < 0, -delta, 0.0), period)

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        values = 100.0 - 100.0 / (1.0 + rs)
    values = np.where(avg_loss == 0.0, 100.0, values)
    values[np.isnan(avg_loss)] = np.nan
    out[1:] = values
    return out


def macd(
    prices: Sequence[float] | np.ndarray | pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """MACD line, signal line, and histogram."""
    x = _as_array(prices)
    macd_line = ema(x, fast) - ema(x, slow)
    signal_line = ema(macd_line, signal_period)
    hist = macd_line - signal_line
    return macd_line, signal_line, hist


def bollinger_bands(
    prices: Sequence[float] | np.ndarray | pd.Series,
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Upper, middle (SMA) and lower bands using the population standard deviation."""
    _check_period(period)
    x = _as_array(prices)
    middle = _trailing_mean(x, period)
    sd = np.full(len(x), np.nan)
    if len(x) >= period:
        sd[period - 1 :] = sliding_window_view(x, period).std(axis=1)
    return middle + std_dev * sd, middle, middle - std_dev * sd


def true_range(candles: "CandleSeries | pd.DataFrame") -> np.ndarray:
    """True range; NaN at index 0 where no previous close exists."""
    high, low, close = _hlc(candles)
    tr = np.full(len(close), np.nan)
    if len(close) > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum.reduce(
            [
                high[1:] - low[1:],
                np.abs(high[1:] - prev_close),
                np.abs(low[1:] - prev_close),
            ]
        )
    return tr


def atr(candles: "CandleSeries | pd.DataFrame", period: int = 14) -> np.ndarray:
    """Average True Range (simple moving average of TR)."""
    _check_period(period)
    tr = pd.Series(true_range(candles))
    return tr.rolling(window=period, min_periods=period).mean().to_numpy(dtype=float)


def adx(candles: "CandleSeries | pd.DataFrame", period: int = 14) -> np.ndarray:
    """Directional index of the trailing-mean directional movement over ATR.

    ``DX = |DI+ - DI-| / (DI+ + DI-) * 100`` with ``DI = mean(DM) / ATR * 100``.
    NaN where the ATR is undefined or both directional indices are zero.
    """
    _check_period(period)
    high, low, _ = _hlc(candles)
    n = len(high)
    dm_plus = np.full(n, np.nan)
    dm_minus = np.full(n, np.nan)
    if n > 1:
        up = high[1:] - high[:-1]
        down = low[:-1] - low[1:]
        dm_plus[1:] = np.where((up > down) & (up > 0), up, 0.0)
        dm_minus[1:] = np.where((down > up) & (down > 0), down, 0.0)

    avg_plus = pd.Series(dm_plus).rolling(window=period, min_periods=period).mean().to_numpy()
    avg_minus = pd.Series(dm_minus).rolling(window=period, min_periods=period).mean().to_numpy()
    cur_atr = atr(candles, period)

    with np.errstate(divide="ignore", invalid="ignore"):
        di_plus = avg_plus / cur_atr * 100.0
        di_minus = avg_minus / cur_atr * 100.0
        dx = np.abs(di_plus - di_minus) / (di_plus + di_minus) * 100.0
    dx[~np.isfinite(dx)] = np.nan
    return dx


def volume_profile(candles: "CandleSeries | pd.DataFrame", bins: int = 20) -> list[dict[str, float]]:
    """Traded volume per close-price bin, highest volume first."""
    _check_period(bins, "bins")
    _, _, close = _hlc(candles)
    if isinstance(candles, pd.DataFrame):
        cols = {str(c).lower(): c for c in candles.columns}
        volume = candles[cols["volume"]].to_numpy(dtype=float)
    else:
        volume = np.asarray(candles.volume, dtype=float)
    if len(close) == 0:
        return []
    hist, edges = np.histogram(close, bins=bins, range=(close.min(), close.max()), weights=volume)
    profile = [{"price": float(edges[k]), "volume": float(hist[k])} for k in range(bins)]
    return sorted(profile, key=lambda p: p["volume"], reverse=True)


def detect_candle_pattern(candles: "CandleSeries", index: int) -> Optional[str]:
    """Classify candle ``index`` as 'hammer', 'bullish_engulfing', 'bearish_engulfing' or None."""
    if index < 2:
        return None
    o, h, l, c = (
        float(candles.open[index]),
        float(candles.high[index]),
        float(candles.low[index]),
        float(candles.close[index]),
    )
    po, pc = float(candles.open[index - 1]), float(candles.close[index - 1])

    body = abs(c - o)
    lower_shadow = min(o, c) - l
    upper_shadow = h - max(o, c)

    if lower_shadow > body * 2 and upper_shadow < body * 0.5 and c < pc:
        return "hammer"
    if c > o and pc < po and o < pc and c > po:
        return "bullish_engulfing"
    if c < o and pc > po and o > pc and c < po:
        return "bearish_engulfing"
    return None


@dataclass(frozen=True)
class IndicatorSet:
    """Indicator series aligned index-for-index with the candle series."""

    sma_short: np.ndarray
    sma_long: np.ndarray
    rsi: np.ndarray
    macd_line: np.ndarray
    macd_signal: np.ndarray
    macd_hist: np.ndarray
    bollinger_upper: np.ndarray
    bollinger_middle: np.ndarray
    bollinger_lower: np.ndarray
    atr: np.ndarray
    adx: np.ndarray

    def snapshot(self, i: int) -> IndicatorSnapshot:
        return IndicatorSnapshot(
            rsi=float(self.rsi[i]),
            sma_short=float(self.sma_short[i]),
            sma_long=float(self.sma_long[i]),
            macd_line=float(self.macd_line[i]),
            macd_signal=float(self.macd_signal[i]),
            bollinger_lower=float(self.bollinger_lower[i]),
            bollinger_upper=float(self.bollinger_upper[i]),
        )


def compute_indicators(candles: "CandleSeries", cfg: IndicatorConfig) -> IndicatorSet:
    close = np.asarray(candles.close, dtype=float)
    macd_line, macd_sig, macd_hist = macd(close, cfg.ema_fast, cfg.ema_slow, cfg.macd_signal)
    upper, middle, lower = bollinger_bands(close, cfg.bollinger_period, cfg.bollinger_std_dev)
    return IndicatorSet(
        sma_short=sma(close, cfg.sma_short),
        sma_long=sma(close, cfg.sma_long),
        rsi=rsi(close, cfg.rsi_period),
        macd_line=macd_line,
        macd_signal=macd_sig,
        macd_hist=macd_hist,
        bollinger_upper=upper,
        bollinger_middle=middle,
        bollinger_lower=lower,
        atr=atr(candles, cfg.atr_period),
        adx=adx(candles, cfg.adx_period),
    )
