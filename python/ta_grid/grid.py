"""Grid strategy backtest loop.

Per candle (from index 1):
1. mark the ledger to market and append an equity point
2. open a new grid slot on a ``buy`` signal when cash and a slot are free
3. close positions on the exit rule (profitable positions only when the
   downturn detector fires, or a fixed take-profit in ``take_profit`` mode)

At the end of the data the remaining positions are closed per
``end_of_run_close``; anything left open is reported in ``open_positions``
and still counted in the final capital.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from .config import GridConfig
from .data_manager import CandleSeries, MarketData
from .metrics import compute_metrics, elapsed_years
from .risk import GridRiskManager
from .signals import BUY, generate_decisions, generate_signals
from .trend import analyze_market_trend, detect_market_downturn
from .types import DecisionLog, EquityPoint, Position, StrategyMetrics, Trade

STRATEGY_NAME = "grid"


@dataclass
class GridLedger:
    """Cash plus open positions of a single run. Never shared between runs."""

    cash: float
    leverage: float
    positions: list[Position] = field(default_factory=list)
    grid_level: int = 0
    max_equity: float = 0.0
    _opened: int = 0

    def __post_init__(self) -> None:
        if self.max_equity <= 0:
            self.max_equity = self.cash

    def positions_value(self, price: float) -> float:
        return float(sum(p.market_value(price, self.leverage) for p in self.positions))

    def equity(self, price: float) -> float:
        return self.cash + self.positions_value(price)

    def mark(self, price: float) -> tuple[float, float]:
        """Equity at ``price`` and its drawdown (percent) from the running peak."""
        eq = self.equity(price)
        self.max_equity = max(self.max_equity, eq)
        dd = (self.max_equity - eq) / self.max_equity * 100.0 if self.max_equity > 0 else 0.0
        return eq, max(dd, 0.0)

    def free_slot(self) -> int:
        """Lowest 0-based grid slot not held by an open position."""
        taken = {p.grid_level for p in self.positions}
        slot = 0
        while slot in taken:
            slot += 1
        return slot

    def open_position(self, price: float, quantity: float, entry_time: str) -> Position:
        self._opened += 1
        pos = Position(
            id=f"grid-{self._opened}",
            entry_price=price,
            quantity=quantity,
            entry_time=entry_time,
            grid_level=self.free_slot(),
        )
        self.grid_level += 1
        self.cash -= pos.entry_value(self.leverage)
        self.positions.append(pos)
        return pos

    def close_position(self, pos: Position, price: float) -> float:
        """Remove ``pos`` and return its margin plus P&L to cash. Returns the P&L."""
        pnl = pos.unrealized_pnl(price, self.leverage)
        self.cash += pos.entry_value(self.leverage) + pnl
        self.positions.remove(pos)
        self.grid_level -= 1
        return pnl


def _should_exit(
    pos: Position,
    price: float,
    ledger: GridLedger,
    risk: GridRiskManager,
    sell_signal: bool,
    trend: Optional[str],
) -> bool:
    if risk.cfg.exit_mode == "take_profit":
        return risk.should_take_profit(price, pos.entry_price, trend)
    return sell_signal and pos.unrealized_pnl(price, ledger.leverage) > 0


def run_grid_strategy(
    candles: Any,
    cfg: GridConfig = GridConfig(),
) -> StrategyMetrics:
    """Run the leveraged grid strategy over ``candles`` and return its metrics."""
    md = MarketData(CandleSeries.coerce(candles), cfg.indicators)
    series, ind = md.candles, md.indicators
    n = len(md)

    decision_logs: list[DecisionLog] = []
    if cfg.record_decisions:
        signals, decision_logs = generate_decisions(series, ind, cfg)
    else:
        signals = generate_signals(series, ind, cfg)

    risk = GridRiskManager(cfg)
    ledger = GridLedger(cash=cfg.initial_capital, leverage=cfg.leverage)
    trades: list[Trade] = []
    equity_curve: list[EquityPoint] = []

    logger.info(
        "grid run: {} candles {} -> {}, capital={}, leverage={}, grid_count={}, exit_mode={}",
        n,
        series.label(0),
        series.label(n - 1),
        cfg.initial_capital,
        cfg.leverage,
        cfg.grid_count,
        cfg.exit_mode,
    )

    for i in range(1, n):
        price = md.close(i)
        ts = series.label(i)

        eq, dd = ledger.mark(price)
        equity_curve.append(EquityPoint(timestamp=ts, equity=eq, drawdown=dd))

        if signals[i] == BUY and ledger.cash > cfg.min_capital and ledger.grid_level < cfg.grid_count:
            qty = risk.get_position_size(price, ledger.cash)
            margin = risk.required_margin(qty, price)
            if qty > 0 and margin <= ledger.cash:
                pos = ledger.open_position(price, qty, ts)
                trades.append(Trade(timestamp=ts, type="buy", price=price, quantity=qty))
                logger.debug("{} open {} qty={:.6f} @ {:.2f} slot={}", ts, pos.id, qty, price, pos.grid_level)

        if not ledger.positions:
            continue

        if cfg.exit_mode == "take_profit":
            sell_signal, trend = False, analyze_market_trend(series, ind, i, cfg)
        else:
            sell_signal, trend = detect_market_downturn(series, ind, i, cfg).should_sell, None
            if not sell_signal:
                continue

        for pos in list(ledger.positions):
            if _should_exit(pos, price, ledger, risk, sell_signal, trend):
                pnl = ledger.close_position(pos, price)
                trades.append(Trade(timestamp=ts, type="sell", price=price, quantity=pos.quantity, pnl=pnl))
                logger.debug("{} close {} @ {:.2f} pnl={:.2f}", ts, pos.id, price, pnl)

    last_price = float(series.close[-1])
    last_ts = series.label(n - 1)
    for pos in list(ledger.positions):
        pnl = pos.unrealized_pnl(last_price, ledger.leverage)
        if cfg.end_of_run_close == "all" or pnl > 0:
            ledger.close_position(pos, last_price)
            trades.append(Trade(timestamp=last_ts, type="sell", price=last_price, quantity=pos.quantity, pnl=pnl))
            logger.debug("{} end-of-run close {} pnl={:.2f}", last_ts, pos.id, pnl)

    if ledger.positions:
        logger.info(
            "{} unprofitable position(s) left open at end of run (unrealized {:.2f})",
            len(ledger.positions),
            sum(p.unrealized_pnl(last_price, ledger.leverage) for p in ledger.positions),
        )

    final_capital = ledger.equity(last_price)
    result = compute_metrics(
        strategy=STRATEGY_NAME,
        initial_capital=cfg.initial_capital,
        final_capital=final_capital,
        trades=trades,
        equity_curve=equity_curve,
        years=elapsed_years(series.timestamps[0], series.timestamps[-1]),
        decision_logs=decision_logs,
        open_positions=list(ledger.positions),
    )
    logger.info(
        "grid done: final={:.2f} return={:.2f}% trades={} max_dd={:.2f}% sharpe={:.3f}",
        result.final_capital,
        result.total_return,
        result.total_trades,
        result.max_drawdown,
        result.sharpe_ratio,
    )
    return result
