"""Smart DCA: buy-only dollar-cost averaging sized by deal attractiveness.

Capital is split into three pools:

- reserved: ``initial * capital_reservation_ratio``, kept for excellent and
  golden deals
- immediate: ``initial * immediate_ratio``
- regular: the remainder, spent in ``total_investments`` scheduled buys

Nothing is ever sold. Holdings are valued at the last close.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

import numpy as np
import pandas as pd
from loguru import logger

from .config import DcaAllocationConfig, SmartDcaConfig
from .data_manager import CandleSeries, MarketData
from .indicators import IndicatorSet
from .metrics import annualized_return, elapsed_years, max_drawdown, sharpe_ratio, total_return
from .types import EquityPoint, Position, StrategyMetrics, Trade

STRATEGY_NAME = "smart_dca"

SKIP = "skip"
POOR = "poor"
GOOD = "good"
EXCELLENT = "excellent"
GOLDEN = "golden"


@dataclass(frozen=True)
class DealAttractiveness:
    score: float
    factors: dict[str, float] = field(default_factory=dict)
    reason: str = ""


def calculate_deal_attractiveness(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: SmartDcaConfig = SmartDcaConfig(),
) -> DealAttractiveness:
    """Weighted 0-100 score of how attractive a buy at candle ``i`` is.

    Each factor scores 0-100 and is weighted by its percentage weight:
    RSI depth, proximity to the lower Bollinger band, drop from the recent
    high, MACD state, volume versus its recent average, and price versus the
    long SMA.
    """
    if i < cfg.min_data_points:
        return DealAttractiveness(score=0.0, reason="insufficient data")

    a = cfg.attractiveness
    price = float(candles.close[i])
    cur_rsi = float(ind.rsi[i])
    lower = float(ind.bollinger_lower[i])
    sma_long = float(ind.sma_long[i])
    macd_line, macd_sig = float(ind.macd_line[i]), float(ind.macd_signal[i])

    factors: dict[str, float] = {}
    reasons: list[str] = []

    if cur_rsi <= a.rsi_extreme_oversold:
        rsi_score = 100.0
        reasons.append(f"RSI extremely oversold ({cur_rsi:.1f})")
    elif cur_rsi <= a.rsi_oversold_threshold:
        rsi_score = 80.0
        reasons.append(f"RSI oversold ({cur_rsi:.1f})")
    elif cur_rsi <= 40:
        rsi_score = 60.0
        reasons.append(f"RSI low ({cur_rsi:.1f})")
    elif cur_rsi <= 50:
        rsi_score = 40.0
        reasons.append(f"RSI neutral ({cur_rsi:.1f})")
    else:
        rsi_score = 20.0
    factors["rsi"] = rsi_score

    distance = (price - lower) / lower if lower else float("nan")
    if price <= lower * a.bollinger_lower_multiplier:
        bollinger_score = 100.0
        reasons.append("price at the lower Bollinger band")
    elif distance <= 0.05:
        bollinger_score = 80.0
        reasons.append("price near the lower Bollinger band")
    elif distance <= 0.10:
        bollinger_score = 60.0
    else:
        bollinger_score = 30.0
    factors["bollinger"] = bollinger_score

    recent_high = float(np.max(candles.high[max(0, i - a.price_drop_lookback) : i + 1]))
    drop_pct = (recent_high - price) / recent_high * 100.0 if recent_high > 0 else 0.0
    if drop_pct >= a.major_drop_threshold:
        drop_score = 100.0
        reasons.append(f"major drop {drop_pct:.1f}% from the recent high")
    elif drop_pct >= a.significant_drop_threshold:
        drop_score = 80.0
        reasons.append(f"significant drop {drop_pct:.1f}% from the recent high")
    elif drop_pct >= 5:
        drop_score = 60.0
        reasons.append(f"moderate drop {drop_pct:.1f}% from the recent high")
    else:
        drop_score = 30.0
    factors["priceDrop"] = drop_score

    # undefined previous MACD values count as zero
    prev_macd = float(np.nan_to_num(ind.macd_line[i - 1]))
    prev_sig = float(np.nan_to_num(ind.macd_signal[i - 1]))
    if macd_line > macd_sig and prev_macd <= prev_sig:
        macd_score = 90.0
        reasons.append("MACD crossed above signal")
    elif macd_line > macd_sig:
        macd_score = 70.0
    elif macd_line < 0 and macd_sig < 0:
        macd_score = 60.0
    else:
        macd_score = 50.0
    factors["macd"] = macd_score

    recent_vol = candles.volume[max(0, i - a.volume_lookback) : i]
    avg_volume = float(np.mean(recent_vol)) if len(recent_vol) else 0.0
    vol = float(candles.volume[i])
    if avg_volume > 0:
        vol_ratio = vol / avg_volume
    else:
        vol_ratio = float("inf") if vol > 0 else 0.0
    if vol_ratio >= a.volume_spike_threshold * 2:
        volume_score = 90.0
        reasons.append(f"very high volume ({vol_ratio:.1f}x)")
    elif vol_ratio >= a.volume_spike_threshold:
        volume_score = 75.0
        reasons.append(f"high volume ({vol_ratio:.1f}x)")
    elif vol_ratio >= 1:
        volume_score = 60.0
    else:
        volume_score = 40.0
    factors["volume"] = volume_score

    if price < sma_long:
        trend_score = 70.0
        reasons.append("price below the long SMA")
    else:
        trend_score = 40.0
    factors["trend"] = trend_score

    total = (
        rsi_score * a.rsi_weight
        + bollinger_score * a.bollinger_weight
        + drop_score * a.price_drop_weight
        + macd_score * a.macd_weight
        + volume_score * a.volume_weight
        + trend_score * a.trend_weight
    ) / 100.0
    score = min(100.0, max(0.0, total))
    return DealAttractiveness(
        score=score,
        factors=factors,
        reason=" | ".join(reasons) if reasons else "general market conditions",
    )


def classify_deal(score: float, alloc: DcaAllocationConfig = DcaAllocationConfig()) -> str:
    if score >= alloc.golden_opportunity_threshold:
        return GOLDEN
    if score >= alloc.excellent_score_threshold:
        return EXCELLENT
    if score >= alloc.good_score_threshold:
        return GOOD
    if score >= alloc.min_attractiveness_score:
        return POOR
    return SKIP


@dataclass(frozen=True)
class InvestmentPlan:
    tier: str
    amount: float
    reserve_bonus: float = 0.0


def calculate_investment_amount(
    score: float,
    base_amount: float,
    reserve_capital: float,
    alloc: DcaAllocationConfig = DcaAllocationConfig(),
) -> InvestmentPlan:
    """Amount to invest for a deal of ``score``; golden deals add part of the reserve."""
    tier = classify_deal(score, alloc)
    if tier == SKIP:
        return InvestmentPlan(tier=tier, amount=0.0)
    ratio = {
        POOR: alloc.poor_deal_ratio,
        GOOD: alloc.good_deal_ratio,
        EXCELLENT: alloc.excellent_deal_ratio,
        GOLDEN: alloc.excellent_deal_ratio,
    }[tier]
    bonus = reserve_capital * alloc.reserve_usage_ratio if tier == GOLDEN else 0.0
    return InvestmentPlan(tier=tier, amount=base_amount * ratio + bonus, reserve_bonus=bonus)


@dataclass
class DcaPools:
    """Cash pools of one Smart DCA run."""

    reserved: float
    immediate: float
    regular: float

    @classmethod
    def split(cls, initial_capital: float, reservation_ratio: float, immediate_ratio: float) -> "DcaPools":
        reserved = initial_capital * reservation_ratio
        immediate = initial_capital * immediate_ratio
        return cls(reserved=reserved, immediate=immediate, regular=initial_capital - reserved - immediate)

    @property
    def cash(self) -> float:
        return self.reserved + self.immediate + self.regular

    def fund(self, amount: float, tier: str, reserve_usage_ratio: float) -> float:
        """Draw up to ``amount``: regular first, then immediate, then a capped slice of the reserve.

        The reserve is only touched by excellent and golden deals. Returns the
        amount actually drawn.
        """
        need = amount
        from_regular = min(need, self.regular)
        self.regular -= from_regular
        need -= from_regular

        from_immediate = min(need, self.immediate)
        self.immediate -= from_immediate
        need -= from_immediate

        from_reserve = 0.0
        if need > 0 and tier in (EXCELLENT, GOLDEN):
            from_reserve = min(need, self.reserved * reserve_usage_ratio)
            self.reserved -= from_reserve
        return from_regular + from_immediate + from_reserve


def run_smart_dca_strategy(
    candles: Any,
    cfg: SmartDcaConfig = SmartDcaConfig(),
    timeframe: Optional[str] = None,
) -> StrategyMetrics:
    """Run Smart DCA over ``candles``. ``timeframe`` overrides ``cfg.timeframe``."""
    if timeframe is not None:
        cfg = replace(cfg, timeframe=timeframe)
    preset = cfg.timeframe_preset
    alloc = cfg.allocation

    md = MarketData(CandleSeries.coerce(candles), cfg.indicators)
    series, ind = md.candles, md.indicators
    n = len(md)

    pools = DcaPools.split(cfg.initial_capital, preset.capital_reservation_ratio, preset.immediate_ratio)
    base_amount = pools.regular / preset.total_investments

    holdings = 0.0
    scheduled_buys = 0
    max_equity = cfg.initial_capital
    next_buy_time: pd.Timestamp = series.timestamps[0]
    prev_score = 0.0

    trades: list[Trade] = []
    positions: list[Position] = []
    equity_curve: list[EquityPoint] = []

    logger.info(
        "smart_dca run: {} ({}), {} buys every {} days, base={:.2f}, reserved={:.2f}, immediate={:.2f}",
        cfg.timeframe,
        preset.description,
        preset.total_investments,
        preset.interval_days,
        base_amount,
        pools.reserved,
        pools.immediate,
    )

    def buy(i: int, deal: DealAttractiveness, kind: str) -> bool:
        nonlocal holdings
        plan = calculate_investment_amount(deal.score, base_amount, pools.reserved, alloc)
        if plan.tier == SKIP:
            return False
        invested = pools.fund(plan.amount, plan.tier, alloc.reserve_usage_ratio)
        if invested <= 0:
            return False
        price = md.close(i)
        qty = invested / price
        holdings += qty
        ts = series.label(i)
        trades.append(Trade(timestamp=ts, type="buy", price=price, quantity=qty))
        positions.append(
            Position(id=f"dca-{len(positions) + 1}", entry_price=price, quantity=qty, entry_time=ts, grid_level=0)
        )
        logger.debug(
            "{} {} buy #{} tier={} score={:.1f} amount={:.2f} qty={:.6f} ({})",
            ts,
            kind,
            len(trades),
            plan.tier,
            deal.score,
            invested,
            qty,
            deal.reason,
        )
        return True

    for i in range(n):
        price = md.close(i)
        ts = series.timestamps[i]

        equity = holdings * price + pools.cash
        max_equity = max(max_equity, equity)
        dd = (max_equity - equity) / max_equity * 100.0 if max_equity > 0 else 0.0
        equity_curve.append(EquityPoint(timestamp=series.label(i), equity=equity, drawdown=max(dd, 0.0)))

        deal = calculate_deal_attractiveness(series, ind, i, cfg)
        has_cash = pools.regular + pools.immediate > 0

        if ts >= next_buy_time and scheduled_buys < preset.total_investments and has_cash:
            if deal.score >= alloc.min_attractiveness_score and buy(i, deal, "scheduled"):
                scheduled_buys += 1
                next_buy_time = ts + pd.Timedelta(days=preset.interval_days)
            else:
                logger.debug("{} scheduled buy skipped (score {:.1f})", series.label(i), deal.score)
                next_buy_time = ts + pd.Timedelta(days=cfg.retry_days)
        elif (
            cfg.enable_opportunistic_buys
            and has_cash
            and prev_score < alloc.opportunity_score <= deal.score
        ):
            buy(i, deal, "opportunistic")

        prev_score = deal.score

    last_price = float(series.close[-1])
    holdings_value = holdings * last_price
    final_capital = holdings_value + pools.cash
    invested_total = cfg.initial_capital - pools.cash
    buys = len(trades)
    years = elapsed_years(series.timestamps[0], series.timestamps[-1])

    result = StrategyMetrics(
        strategy=STRATEGY_NAME,
        total_return=total_return(cfg.initial_capital, final_capital),
        annualized_return=annualized_return(cfg.initial_capital, final_capital, years),
        sharpe_ratio=sharpe_ratio([p.equity for p in equity_curve]),
        max_drawdown=max_drawdown(equity_curve),
        # nothing is ever realized, so every buy counts as a win
        win_rate=100.0 if buys else 0.0,
        total_trades=buys,
        winning_trades=buys,
        losing_trades=0,
        average_win=(holdings_value - invested_total) / buys if buys else 0.0,
        average_loss=0.0,
        profit_factor=float("inf") if buys else 0.0,
        initial_capital=cfg.initial_capital,
        final_capital=final_capital,
        trades=trades,
        equity_curve=equity_curve,
        decision_logs=[],
        open_positions=positions,
    )
    logger.info(
        "smart_dca done: buys={} holdings={:.6f} cash={:.2f} final={:.2f} return={:.2f}%",
        buys,
        holdings,
        pools.cash,
        final_capital,
        result.total_return,
    )
    return result
