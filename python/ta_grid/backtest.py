"""Backtest runner utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import GridConfig, SmartDcaConfig, get_grid_preset
from .data_manager import CandleSeries
from .data_provider import DEFAULT_SYMBOL, CsvProvider, YfinanceProvider
from .grid import run_grid_strategy
from .smart_dca import run_smart_dca_strategy
from .types import StrategyMetrics

STRATEGIES = ("grid", "smart_dca")


def _grid_config(grid_cfg: Optional[GridConfig], preset: Optional[str]) -> GridConfig:
    if grid_cfg is not None and preset is not None:
        raise ValueError("Pass either grid_cfg or preset, not both")
    if grid_cfg is not None:
        return grid_cfg
    return get_grid_preset(preset or "default")


def run_backtest(
    candles: Any,
    strategy: str = "grid",
    grid_cfg: Optional[GridConfig] = None,
    dca_cfg: Optional[SmartDcaConfig] = None,
    preset: Optional[str] = None,
    timeframe: Optional[str] = None,
) -> StrategyMetrics:
    """Run one strategy over ``candles`` (CandleSeries, DataFrame, or list of candles/dicts)."""
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy {strategy!r}. Available: {list(STRATEGIES)}")
    series = CandleSeries.coerce(candles)
    if strategy == "grid":
        return run_grid_strategy(series, _grid_config(grid_cfg, preset))
    return run_smart_dca_strategy(series, dca_cfg or SmartDcaConfig(), timeframe=timeframe)


def compare_strategies(
    candles: Any,
    grid_cfg: Optional[GridConfig] = None,
    dca_cfg: Optional[SmartDcaConfig] = None,
    preset: Optional[str] = None,
    timeframe: Optional[str] = None,
) -> dict[str, StrategyMetrics]:
    """Run every strategy on the same candles; each run keeps its own ledger."""
    series = CandleSeries.coerce(candles)
    results = {
        name: run_backtest(series, name, grid_cfg=grid_cfg, dca_cfg=dca_cfg, preset=preset, timeframe=timeframe)
        for name in STRATEGIES
    }
    for name, r in results.items():
        logger.info("{:<10} return={:>8.2f}% max_dd={:>6.2f}% trades={}", name, r.total_return, r.max_drawdown, r.total_trades)
    return results


def run_from_csv(csv_path: str | Path, strategy: str = "grid", **kwargs: Any) -> StrategyMetrics:
    frame = CsvProvider().fetch(csv_path=csv_path)
    return run_backtest(frame.to_series(), strategy, **kwargs)


def run_from_yfinance(
    symbol: str = DEFAULT_SYMBOL,
    start: Optional[str] = None,
    end: Optional[str] = None,
    interval: str = "1d",
    strategy: str = "grid",
    **kwargs: Any,
) -> StrategyMetrics:
    """Convenience runner using yfinance."""
    frame = YfinanceProvider().fetch(symbol=symbol, start=start, end=end, interval=interval)
    return run_backtest(frame.to_series(), strategy, **kwargs)
