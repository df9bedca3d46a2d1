"""Performance metrics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .types import DecisionLog, EquityPoint, Position, StrategyMetrics, Trade

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365.25


def total_return(initial: float, final: float) -> float:
    """Total return in percent."""
    return (final - initial) / initial * 100.0


def elapsed_years(start: pd.Timestamp, end: pd.Timestamp) -> float:
    return (end - start) / pd.Timedelta(days=DAYS_PER_YEAR)


def annualized_return(initial: float, final: float, years: float) -> float:
    """Compound annual growth in percent.

    0 when no time has elapsed; -100 when the capital has been wiped out.
    """
    if years <= 0:
        return 0.0
    if final <= 0:
        return -100.0
    return ((final / initial) ** (1.0 / years) - 1.0) * 100.0


def period_returns(equity: Sequence[float]) -> np.ndarray:
    x = np.asarray(equity, dtype=float)
    if len(x) < 2:
        return np.array([], dtype=float)
    prev = x[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.diff(x) / prev
    return r[np.isfinite(r)]


def sharpe_ratio(equity: Sequence[float]) -> float:
    """Annualized mean/std of per-point returns (population std); 0 for zero variance."""
    r = period_returns(equity)
    if len(r) == 0:
        return 0.0
    sd = float(np.std(r))
    if sd == 0.0 or not np.isfinite(sd):
        return 0.0
    return float(np.mean(r)) / sd * float(np.sqrt(TRADING_DAYS_PER_YEAR))


def max_drawdown(curve: Sequence[EquityPoint]) -> float:
    """Largest recorded drawdown (percent); 0 for an empty curve."""
    if not curve:
        return 0.0
    return float(max(p.drawdown for p in curve))


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    """``gross_profit / |gross_loss|``; inf without losses but with profit, 0 without either."""
    if gross_loss != 0:
        return gross_profit / abs(gross_loss)
    return float("inf") if gross_profit > 0 else 0.0


@dataclass(frozen=True)
class TradeStats:
    sells: int
    wins: int
    losses: int
    win_rate: float
    average_win: float
    average_loss: float
    profit_factor: float


def trade_stats(trades: Sequence[Trade]) -> TradeStats:
    """Win/loss statistics over realized (sell) trades."""
    pnls = [t.pnl for t in trades if t.type == "sell" and t.pnl is not None]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_profit = float(sum(wins))
    gross_loss = float(sum(losses))
    return TradeStats(
        sells=len(pnls),
        wins=len(wins),
        losses=len(losses),
        win_rate=len(wins) / len(pnls) * 100.0 if pnls else 0.0,
        average_win=gross_profit / len(wins) if wins else 0.0,
        average_loss=abs(gross_loss) / len(losses) if losses else 0.0,
        profit_factor=profit_factor(gross_profit, gross_loss),
    )


def compute_metrics(
    strategy: str,
    initial_capital: float,
    final_capital: float,
    trades: list[Trade],
    equity_curve: list[EquityPoint],
    years: float,
    decision_logs: Optional[list[DecisionLog]] = None,
    open_positions: Optional[list[Position]] = None,
) -> StrategyMetrics:
    """Assemble the StrategyMetrics of a finished grid run."""
    stats = trade_stats(trades)
    return StrategyMetrics(
        strategy=strategy,
        total_return=total_return(initial_capital, final_capital),
        annualized_return=annualized_return(initial_capital, final_capital, years),
        sharpe_ratio=sharpe_ratio([p.equity for p in equity_curve]),
        max_drawdown=max_drawdown(equity_curve),
        win_rate=stats.win_rate,
        total_trades=len(trades),
        winning_trades=stats.wins,
        losing_trades=stats.losses,
        average_win=stats.average_win,
        average_loss=stats.average_loss,
        profit_factor=stats.profit_factor,
        initial_capital=initial_capital,
        final_capital=final_capital,
        trades=list(trades),
        equity_curve=list(equity_curve),
        decision_logs=list(decision_logs or []),
        open_positions=list(open_positions or []),
    )


def equity_at_trade(
    result: StrategyMetrics,
    trade_index: int,
    tolerance: timedelta = timedelta(hours=1),
) -> float:
    """Equity-curve value closest to the trade's timestamp.

    Falls back to ``initial_capital`` when the trade does not exist, a
    timestamp does not parse, or no point lies within ``tolerance``.
    """
    if not 0 <= trade_index < len(result.trades) or not result.equity_curve:
        return result.initial_capital
    try:
        trade_ts = pd.Timestamp(result.trades[trade_index].timestamp)
        point_ts = pd.DatetimeIndex([pd.Timestamp(p.timestamp) for p in result.equity_curve])
        diffs = np.abs((point_ts - trade_ts).total_seconds().to_numpy())
    except (TypeError, ValueError):
        return result.initial_capital

    k = int(np.argmin(diffs))
    if diffs[k] > tolerance.total_seconds():
        return result.initial_capital
    return result.equity_curve[k].equity
