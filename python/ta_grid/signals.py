"""Per-candle buy/sell/hold signal generation.

For each candle at or beyond ``min_data_points``:

1. the downturn detector runs first; a sell pre-empts buy scoring;
2. otherwise independent weighted factors add up to a buy score;
3. ``buy`` when the score reaches ``min_buy_score``, else ``hold``.

Every factor reads indices ``<= i`` only. Candles whose indicator snapshot
still contains NaN are held.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .config import GridConfig
from .data_manager import CandleSeries
from .indicators import IndicatorSet
from .trend import analyze_market_trend, detect_market_downturn
from .types import DecisionLog, DownturnAnalysis

BUY = "buy"
SELL = "sell"
HOLD = "hold"


@dataclass(frozen=True)
class BuyEvaluation:
    score: int
    signals: dict[str, str] = field(default_factory=dict)
    reasons: tuple[str, ...] = ()


def evaluate_buy_score(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: GridConfig = GridConfig(),
) -> BuyEvaluation:
    """Weighted buy score at index ``i`` with a text line per factor.

    Index 0 has no previous candle to compare against and scores zero.
    """
    if i < 1:
        return BuyEvaluation(score=0, reasons=("insufficient history",))
    b = cfg.buy
    snap = ind.snapshot(i)
    price = float(candles.close[i])
    prev_sma_s, prev_sma_l = float(ind.sma_short[i - 1]), float(ind.sma_long[i - 1])
    prev_macd, prev_sig = float(ind.macd_line[i - 1]), float(ind.macd_signal[i - 1])

    score = 0
    signals: dict[str, str] = {}
    reasons: list[str] = []

    if snap.rsi < b.rsi_oversold_strong:
        score += 2
        signals["rsiSignal"] = f"RSI {snap.rsi:.1f} < {b.rsi_oversold_strong:g}: strong buy (+2)"
        reasons.append("RSI oversold")
    elif snap.rsi < b.rsi_oversold_weak:
        score += 1
        signals["rsiSignal"] = f"RSI {snap.rsi:.1f} < {b.rsi_oversold_weak:g}: weak buy (+1)"
        reasons.append("RSI low")
    else:
        signals["rsiSignal"] = f"RSI {snap.rsi:.1f}: no signal (0)"

    if snap.sma_short > snap.sma_long and prev_sma_s <= prev_sma_l:
        score += 3
        signals["smaSignal"] = "SMA short crossed above SMA long: golden cross (+3)"
        reasons.append("golden cross")
    else:
        rel = ">" if snap.sma_short > snap.sma_long else "<="
        signals["smaSignal"] = f"SMA short {rel} SMA long: no cross (0)"

    if snap.macd_line > snap.macd_signal and prev_macd <= prev_sig:
        score += 2
        signals["macdSignal"] = "MACD crossed above signal (+2)"
        reasons.append("MACD bullish cross")
    else:
        signals["macdSignal"] = "MACD: no bullish cross (0)"

    if price <= snap.bollinger_lower * b.bollinger_lower_buffer:
        score += 2
        signals["bollingerSignal"] = "price at/below lower Bollinger band (+2)"
        reasons.append("price near lower band")
    else:
        signals["bollingerSignal"] = "price above lower Bollinger band (0)"

    ref_idx = i - b.price_drop_lookback
    ref = float(candles.close[ref_idx]) if ref_idx >= 0 else price
    drop_pct = (ref - price) / ref * 100.0 if ref != 0 else 0.0
    drop_points = 0
    if drop_pct > b.price_drop_threshold_1:
        drop_points += 1
    if drop_pct > b.price_drop_threshold_2:
        drop_points += 2
    score += drop_points
    signals["priceDropSignal"] = (
        f"{drop_pct:.1f}% change over the last {b.price_drop_lookback} candles (+{drop_points})"
    )
    if drop_points:
        reasons.append(f"price drop {drop_pct:.1f}%")

    avg_volume = float(np.sum(candles.volume[max(0, i - b.volume_period) : i])) / b.volume_period
    vol = float(candles.volume[i])
    if vol > avg_volume * b.volume_multiplier:
        score += 1
        ratio = vol / avg_volume if avg_volume > 0 else float("inf")
        signals["volumeSignal"] = f"volume {ratio:.1f}x the average (+1)"
        reasons.append("volume spike")
    else:
        signals["volumeSignal"] = "volume normal (0)"

    return BuyEvaluation(score=score, signals=signals, reasons=tuple(reasons))


def _evaluate(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: GridConfig,
) -> tuple[str, BuyEvaluation | None, DownturnAnalysis | None]:
    if i < cfg.min_data_points:
        return HOLD, None, None
    if not ind.snapshot(i).is_complete():
        return HOLD, None, None

    downturn = detect_market_downturn(candles, ind, i, cfg)
    if downturn.should_sell:
        return SELL, None, downturn

    buy = evaluate_buy_score(candles, ind, i, cfg)
    action = BUY if buy.score >= cfg.buy.min_buy_score else HOLD
    return action, buy, downturn


def _decision_log(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: GridConfig,
    action: str,
    buy: BuyEvaluation | None,
    downturn: DownturnAnalysis | None,
) -> DecisionLog:
    snap = ind.snapshot(i)
    sell_score = downturn.score if downturn is not None else 0
    if buy is None and downturn is None:
        signals: dict[str, str] = {}
        final = "hold - indicators not yet defined"
        reason = "insufficient history"
        buy_score = 0
    elif action == SELL:
        signals = {}
        final = f"sell - sell score {sell_score}/{cfg.sell.min_sell_score}"
        reason = downturn.reason
        buy_score = 0
    else:
        signals = dict(buy.signals)
        buy_score = buy.score
        final = f"{action} - buy score {buy_score}/{cfg.buy.min_buy_score}"
        reason = " + ".join(buy.reasons) if buy.reasons else "no buy factors"

    return DecisionLog(
        timestamp=candles.label(i),
        action=action,
        price=float(candles.close[i]),
        market_trend=analyze_market_trend(candles, ind, i, cfg),
        indicators=snap,
        signals=signals,
        buy_score=buy_score,
        sell_score=sell_score,
        final_decision=final,
        reason=reason,
    )


def generate_signals(
    candles: CandleSeries,
    ind: IndicatorSet,
    cfg: GridConfig = GridConfig(),
) -> list[str]:
    """One of 'buy' / 'sell' / 'hold' per candle."""
    return [_evaluate(candles, ind, i, cfg)[0] for i in range(len(candles))]


def generate_decisions(
    candles: CandleSeries,
    ind: IndicatorSet,
    cfg: GridConfig = GridConfig(),
) -> tuple[list[str], list[DecisionLog]]:
    """Signals plus a DecisionLog for every evaluated candle (sampled by ``decision_log_every``)."""
    signals: list[str] = []
    logs: list[DecisionLog] = []
    for i in range(len(candles)):
        action, buy, downturn = _evaluate(candles, ind, i, cfg)
        signals.append(action)
        if i >= cfg.min_data_points and (i - cfg.min_data_points) % cfg.decision_log_every == 0:
            logs.append(_decision_log(candles, ind, i, cfg, action, buy, downturn))
    return signals, logs
