import math

import numpy as np
import pytest

from conftest import make_candles
from ta_grid.config import DcaAllocationConfig, SmartDcaConfig
from ta_grid.indicators import compute_indicators
from ta_grid.smart_dca import (
    EXCELLENT,
    GOLDEN,
    GOOD,
    POOR,
    SKIP,
    DcaPools,
    calculate_deal_attractiveness,
    calculate_investment_amount,
    classify_deal,
    run_smart_dca_strategy,
)


def test_invalid_timeframe_raises(flat_candles):
    with pytest.raises(ValueError, match="Invalid timeframe"):
        run_smart_dca_strategy(flat_candles, timeframe="10years")


def test_pool_split():
    pools = DcaPools.split(10_000, 0.6, 0.10)
    assert pools.reserved == pytest.approx(6_000)
    assert pools.immediate == pytest.approx(1_000)
    assert pools.regular == pytest.approx(3_000)
    assert pools.cash == pytest.approx(10_000)


def test_fund_order_and_reserve_cap():
    pools = DcaPools(reserved=1_000.0, immediate=100.0, regular=50.0)
    # poor deals never touch the reserve
    assert pools.fund(500.0, POOR, 0.3) == pytest.approx(150.0)
    assert pools.regular == 0 and pools.immediate == 0
    assert pools.reserved == pytest.approx(1_000.0)
    # excellent deals may take at most 30% of the remaining reserve
    assert pools.fund(500.0, EXCELLENT, 0.3) == pytest.approx(300.0)
    assert pools.reserved == pytest.approx(700.0)


def test_classify_deal_boundaries():
    alloc = DcaAllocationConfig()
    assert classify_deal(29.9, alloc) == SKIP
    assert classify_deal(30.0, alloc) == POOR
    assert classify_deal(50.0, alloc) == GOOD
    assert classify_deal(80.0, alloc) == EXCELLENT
    assert classify_deal(90.0, alloc) == GOLDEN


def test_investment_amount_by_tier():
    assert calculate_investment_amount(20.0, 100.0, 5_000.0).amount == 0.0
    assert calculate_investment_amount(40.0, 100.0, 5_000.0).amount == pytest.approx(30.0)
    assert calculate_investment_amount(60.0, 100.0, 5_000.0).amount == pytest.approx(60.0)
    assert calculate_investment_amount(85.0, 100.0, 5_000.0).amount == pytest.approx(100.0)
    golden = calculate_investment_amount(95.0, 100.0, 5_000.0)
    assert golden.tier == GOLDEN
    assert golden.reserve_bonus == pytest.approx(1_500.0)
    assert golden.amount == pytest.approx(1_600.0)


def test_attractiveness_zero_before_warmup(flat_candles):
    cfg = SmartDcaConfig()
    ind = compute_indicators(flat_candles, cfg.indicators)
    assert calculate_deal_attractiveness(flat_candles, ind, 49, cfg).score == 0


def test_attractiveness_flat_market(flat_candles):
    cfg = SmartDcaConfig()
    ind = compute_indicators(flat_candles, cfg.indicators)
    deal = calculate_deal_attractiveness(flat_candles, ind, 60, cfg)
    # RSI 100 -> 20, on the lower band -> 100, 1% under the high -> 30,
    # volume at its average -> 60, price not below the SMA -> 40
    expected_without_macd = (20 * 25 + 100 * 20 + 30 * 20 + 60 * 10 + 40 * 10) / 100
    assert deal.factors["rsi"] == 20
    assert deal.factors["bollinger"] == 100
    assert deal.factors["volume"] == 60
    assert deal.score == pytest.approx(expected_without_macd + deal.factors["macd"] * 15 / 100)
    assert 0 <= deal.score <= 100


def _falling_candles(n=200):
    closes = 40_000 * np.exp(-np.linspace(0, 0.6, n))
    return make_candles(closes, start="2023-01-01", freq="D")


def test_buy_only_run():
    candles = _falling_candles()
    result = run_smart_dca_strategy(candles, SmartDcaConfig(), timeframe="1year")
    assert result.strategy == "smart_dca"
    # the first scheduled buy lands on the first evaluated candle, then every 15 days
    assert len(result.trades) >= 10
    assert all(t.type == "buy" and t.pnl is None for t in result.trades)
    assert result.trades[0].timestamp == candles.label(50)
    assert result.win_rate == 100
    assert math.isinf(result.profit_factor)
    assert result.losing_trades == 0
    assert len(result.equity_curve) == len(candles)
    assert len(result.open_positions) == len(result.trades)

    last = float(candles.close[-1])
    holdings = sum(t.quantity for t in result.trades)
    invested = sum(t.quantity * t.price for t in result.trades)
    cash = result.initial_capital - invested
    assert cash >= -1e-6
    assert result.final_capital == pytest.approx(holdings * last + cash)
    assert result.average_win == pytest.approx((holdings * last - invested) / len(result.trades))


def test_reserve_kept_for_weak_deals():
    candles = _falling_candles()
    cfg = SmartDcaConfig(timeframe="1year")
    result = run_smart_dca_strategy(candles, cfg)
    invested = sum(t.quantity * t.price for t in result.trades)
    reserved = cfg.initial_capital * cfg.timeframe_preset.capital_reservation_ratio
    # the reserve is only ever drawn in slices of 30%
    assert cfg.initial_capital - invested >= reserved * (0.7 ** len(result.trades)) - 1e-6


def test_no_buys_on_short_history():
    candles = make_candles([100.0] * 40)
    result = run_smart_dca_strategy(candles)
    assert result.trades == []
    assert result.win_rate == 0
    assert result.profit_factor == 0
    assert result.final_capital == pytest.approx(result.initial_capital)
    assert result.sharpe_ratio == 0


def test_deterministic():
    candles = _falling_candles()
    assert run_smart_dca_strategy(candles).to_json() == run_smart_dca_strategy(candles).to_json()


def _crash_candles():
    """120 flat candles, then a 4%-per-candle crash on volume growing 4x per candle."""
    closes = [100.0] * 120 + [100.0 * 0.96**k for k in range(1, 21)]
    volume = [1000.0] * 120 + [1000.0 * 4.0**k for k in range(1, 21)]
    return make_candles(closes, volume=volume)


def test_opportunistic_and_golden_buys_in_a_crash():
    candles = _crash_candles()
    cfg = SmartDcaConfig(timeframe="3months")
    preset = cfg.timeframe_preset
    ind = compute_indicators(candles, cfg.indicators)
    scores = [calculate_deal_attractiveness(candles, ind, i, cfg).score for i in range(len(candles))]

    # every flat candle clears the minimum score, so the 12 scheduled buys run weekly from index 50
    scheduled = list(range(50, 50 + 7 * preset.total_investments, 7))
    assert scheduled[-1] == 127
    crossings = [
        i
        for i in range(1, len(candles))
        if scores[i - 1] < cfg.allocation.opportunity_score <= scores[i] and i not in scheduled
    ]
    assert crossings and crossings[0] == 121
    assert classify_deal(scores[127]) == GOLDEN

    result = run_smart_dca_strategy(candles, cfg)
    buy_idx = sorted(scheduled + crossings)
    assert [t.timestamp for t in result.trades] == [candles.label(i) for i in buy_idx]

    # the regular pool covers every buy here, so the reserve stays whole
    pools = DcaPools.split(cfg.initial_capital, preset.capital_reservation_ratio, preset.immediate_ratio)
    base = pools.regular / preset.total_investments
    expected = [calculate_investment_amount(scores[i], base, pools.reserved).amount for i in buy_idx]
    assert [t.quantity * t.price for t in result.trades] == pytest.approx(expected)

    golden = result.trades[buy_idx.index(127)]
    assert golden.quantity * golden.price == pytest.approx(base + 0.3 * pools.reserved)

    cash = cfg.initial_capital - sum(expected)
    assert cash > pools.reserved
    holdings = sum(t.quantity for t in result.trades)
    assert result.final_capital == pytest.approx(holdings * float(candles.close[-1]) + cash)


def test_opportunistic_buys_can_be_disabled():
    candles = _crash_candles()
    cfg = SmartDcaConfig(timeframe="3months", enable_opportunistic_buys=False)
    result = run_smart_dca_strategy(candles, cfg)
    assert [t.timestamp for t in result.trades] == [candles.label(i) for i in range(50, 128, 7)]
