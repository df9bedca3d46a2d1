import pytest

from ta_grid.config import GridConfig
from ta_grid.risk import GridRiskManager
from ta_grid.trend import BEARISH, BULLISH


def test_max_position_per_grid():
    risk = GridRiskManager(GridConfig(initial_capital=10_000, leverage=2, grid_count=8, safe_capital_ratio=0.8))
    assert risk.max_position_per_grid == pytest.approx(1000.0)


def test_position_size_liquidation_safety():
    risk = GridRiskManager(GridConfig())
    assert risk.get_position_size(50_000, 10_000) == pytest.approx(0.04)


def test_position_size_capped_by_available_capital():
    risk = GridRiskManager(GridConfig())
    # 500 * 0.9 = 450 notional at 2x
    assert risk.get_position_size(100.0, 500.0) == pytest.approx(450.0 * 2 / 100.0)


def test_position_size_degenerate_inputs():
    risk = GridRiskManager(GridConfig())
    assert risk.get_position_size(0.0, 10_000) == 0.0
    assert risk.get_position_size(100.0, 0.0) == 0.0


def test_required_margin_is_notional_over_leverage():
    risk = GridRiskManager(GridConfig())
    qty = risk.get_position_size(50_000, 10_000)
    assert risk.required_margin(qty, 50_000) == pytest.approx(1000.0)


def test_safe_entry_price():
    risk = GridRiskManager(GridConfig(liquidation_price=30_000, leverage=2))
    assert risk.safe_entry_price == pytest.approx(60_000.0)
    assert risk.is_safe_entry(65_000)
    assert not risk.is_safe_entry(55_000)


def test_take_profit_depends_on_trend():
    risk = GridRiskManager(GridConfig(exit_mode="take_profit"))
    assert risk.should_take_profit(109.0, 100.0, BEARISH)
    assert not risk.should_take_profit(109.0, 100.0, BULLISH)
    assert risk.should_take_profit(115.0, 100.0, BULLISH)
    assert not risk.should_take_profit(95.0, 100.0, BEARISH)
