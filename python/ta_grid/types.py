"""Shared types for the backtesting engine.

The guiding principle is to keep the runtime objects small and explicit.
Output records are plain dataclasses whose ``to_dict()`` produces the
camelCase JSON contract consumed by the presentation layer.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


def _json_float(x: float) -> Any:
    """Map non-finite floats to JSON-safe strings ('Infinity', '-Infinity', 'NaN')."""
    if isinstance(x, float) and not math.isfinite(x):
        if math.isnan(x):
            return "NaN"
        return "Infinity" if x > 0 else "-Infinity"
    return x


@dataclass(frozen=True)
class Candle:
    """OHLCV candle.

    ``high >= max(open, close) >= min(open, close) >= low`` is assumed, not checked.
    """

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Position:
    """An open leveraged long position occupying one grid slot."""

    id: str
    entry_price: float
    quantity: float
    entry_time: str
    grid_level: int

    def entry_value(self, leverage: float) -> float:
        """Margin committed at entry."""
        return self.quantity * self.entry_price / leverage

    def unrealized_pnl(self, price: float, leverage: float) -> float:
        return (price - self.entry_price) * leverage * self.quantity

    def market_value(self, price: float, leverage: float) -> float:
        """Mark-to-market value: margin plus unrealized P&L."""
        return self.entry_value(leverage) + self.unrealized_pnl(price, leverage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entryPrice": self.entry_price,
            "quantity": self.quantity,
            "entryTime": self.entry_time,
            "gridLevel": self.grid_level,
        }


@dataclass(frozen=True)
class Trade:
    """A single executed buy or sell. ``pnl`` is set on sells only."""

    timestamp: str
    type: str  # 'buy' / 'sell'
    price: float
    quantity: float
    pnl: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "timestamp": self.timestamp,
            "type": self.type,
            "price": self.price,
            "quantity": self.quantity,
        }
        if self.pnl is not None:
            d["pnl"] = self.pnl
        return d


@dataclass(frozen=True)
class EquityPoint:
    timestamp: str
    equity: float
    drawdown: float  # percent below the running peak

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "equity": self.equity, "drawdown": self.drawdown}


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at one candle index (NaN where history is insufficient)."""

    rsi: float
    sma_short: float
    sma_long: float
    macd_line: float
    macd_signal: float
    bollinger_lower: float
    bollinger_upper: float

    def is_complete(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (
                self.rsi,
                self.sma_short,
                self.sma_long,
                self.macd_line,
                self.macd_signal,
                self.bollinger_lower,
                self.bollinger_upper,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rsi": _json_float(self.rsi),
            "smaShort": _json_float(self.sma_short),
            "smaLong": _json_float(self.sma_long),
            "macdLine": _json_float(self.macd_line),
            "macdSignal": _json_float(self.macd_signal),
            "bollingerLower": _json_float(self.bollinger_lower),
            "bollingerUpper": _json_float(self.bollinger_upper),
        }


@dataclass(frozen=True)
class DownturnAnalysis:
    should_sell: bool
    reason: str
    confidence: float
    score: int = 0


@dataclass(frozen=True)
class DecisionLog:
    """Human-auditable explanation of one signal evaluation."""

    timestamp: str
    action: str  # 'buy' / 'sell' / 'hold'
    price: float
    market_trend: str
    indicators: IndicatorSnapshot
    signals: dict[str, str]
    buy_score: int
    sell_score: int
    final_decision: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "price": self.price,
            "marketTrend": self.market_trend,
            "indicators": self.indicators.to_dict(),
            "signals": dict(self.signals),
            "buyScore": self.buy_score,
            "sellScore": self.sell_score,
            "finalDecision": self.final_decision,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class StrategyMetrics:
    """Result of one backtest run."""

    strategy: str
    total_return: float
    annualized_return: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    average_win: float
    average_loss: float
    profit_factor: float
    initial_capital: float
    final_capital: float
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    decision_logs: list[DecisionLog] = field(default_factory=list)
    open_positions: list[Position] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "totalReturn": _json_float(self.total_return),
            "annualizedReturn": _json_float(self.annualized_return),
            "sharpeRatio": _json_float(self.sharpe_ratio),
            "maxDrawdown": _json_float(self.max_drawdown),
            "winRate": _json_float(self.win_rate),
            "totalTrades": self.total_trades,
            "winningTrades": self.winning_trades,
            "losingTrades": self.losing_trades,
            "averageWin": _json_float(self.average_win),
            "averageLoss": _json_float(self.average_loss),
            "profitFactor": _json_float(self.profit_factor),
            "initialCapital": self.initial_capital,
            "finalCapital": _json_float(self.final_capital),
            "trades": [t.to_dict() for t in self.trades],
            "equityCurve": [p.to_dict() for p in self.equity_curve],
            "decisionLogs": [d.to_dict() for d in self.decision_logs],
            "openPositions": [p.to_dict() for p in self.open_positions],
        }

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), allow_nan=False, **kwargs)

    def summary(self) -> dict[str, Any]:
        """Scalar metrics only (no logs)."""
        d = self.to_dict()
        for key in ("trades", "equityCurve", "decisionLogs", "openPositions"):
            d.pop(key)
        d["openPositionCount"] = len(self.open_positions)
        return d
