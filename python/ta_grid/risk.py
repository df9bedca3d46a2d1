"""Grid position sizing under fixed leverage."""

from __future__ import annotations

from dataclasses import dataclass

from .config import GridConfig
from .trend import BULLISH


@dataclass(frozen=True)
class GridRiskManager:
    """Sizes grid slots so that no slot exceeds its share of the safe capital.

    ``max_position_per_grid = initial_capital * safe_capital_ratio / grid_count``
    """

    cfg: GridConfig

    @property
    def max_position_per_grid(self) -> float:
        c = self.cfg
        return c.initial_capital * c.safe_capital_ratio / c.grid_count

    def get_position_size(self, price: float, available_capital: float) -> float:
        """Base-asset quantity for a new slot at ``price``."""
        if price <= 0 or available_capital <= 0:
            return 0.0
        notional = min(self.max_position_per_grid, available_capital * self.cfg.position_capital_ratio)
        return notional * self.cfg.leverage / price

    def required_margin(self, quantity: float, price: float) -> float:
        return quantity * price / self.cfg.leverage

    @property
    def safe_entry_price(self) -> float:
        """Lowest entry price that keeps the liquidation level at or below ``liquidation_price``."""
        lev = self.cfg.leverage
        if lev <= 1:
            return 0.0
        return self.cfg.liquidation_price * lev / (lev - 1)

    def is_safe_entry(self, price: float) -> bool:
        return price >= self.safe_entry_price

    def should_take_profit(self, price: float, entry_price: float, trend: str) -> bool:
        """Fixed take-profit exit: 15% in a bullish regime, 8% otherwise (defaults)."""
        if entry_price <= 0:
            return False
        profit_pct = (price - entry_price) / entry_price * 100.0
        target = self.cfg.take_profit_bullish_pct if trend == BULLISH else self.cfg.take_profit_bearish_pct
        return profit_pct >= target
