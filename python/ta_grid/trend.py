"""Market regime and downturn analysis.

Both functions are pure: they read the candle/indicator columns up to and
including index ``i`` and return a value. They may be called any number of
times per candle.
"""

from __future__ import annotations

import numpy as np

from .config import GridConfig
from .data_manager import CandleSeries
from .indicators import IndicatorSet
from .types import DownturnAnalysis

BULLISH = "bullish"
BEARISH = "bearish"


def _is_finite(x: float) -> bool:
    return bool(np.isfinite(x))


def analyze_market_trend(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: GridConfig = GridConfig(),
) -> str:
    """Majority vote of four bullish/bearish checks.

    Votes: SMA short vs long, RSI vs 50 (no vote at exactly 50 or when
    undefined), MACD vs signal, and the sign of the close-price slope over the
    last ``trend_analysis_period + 1`` closes. A tie is bearish. Before the
    long SMA has enough history the regime is reported as bullish.
    """
    if i < cfg.indicators.sma_long:
        return BULLISH

    bull = 0
    bear = 0

    if ind.sma_short[i] > ind.sma_long[i]:
        bull += 1
    else:
        bear += 1

    r = ind.rsi[i]
    if _is_finite(r):
        if r < 50:
            bear += 1
        elif r > 50:
            bull += 1

    if ind.macd_line[i] > ind.macd_signal[i]:
        bull += 1
    else:
        bear += 1

    window = candles.close[max(0, i - cfg.trend_analysis_period) : i + 1]
    slope = (window[-1] - window[0]) / len(window)
    if slope > 0:
        bull += 1
    else:
        bear += 1

    return BULLISH if bull > bear else BEARISH


def detect_market_downturn(
    candles: CandleSeries,
    ind: IndicatorSet,
    i: int,
    cfg: GridConfig = GridConfig(),
) -> DownturnAnalysis:
    """Additive sell score from up to eight independent heuristics.

    ``should_sell`` when the score reaches ``min_sell_score``;
    ``confidence = min(score * 10, 100)``.
    """
    if i < cfg.min_data_points:
        return DownturnAnalysis(should_sell=False, reason="insufficient data", confidence=0.0, score=0)

    s = cfg.sell
    price = float(candles.close[i])
    cur_rsi = float(ind.rsi[i])
    sma_s, sma_l = float(ind.sma_short[i]), float(ind.sma_long[i])
    prev_sma_s, prev_sma_l = float(ind.sma_short[i - 1]), float(ind.sma_long[i - 1])
    macd_line, macd_sig = float(ind.macd_line[i]), float(ind.macd_signal[i])
    prev_macd, prev_sig = float(ind.macd_line[i - 1]), float(ind.macd_signal[i - 1])
    upper = float(ind.bollinger_upper[i])

    score = 0
    reasons: list[str] = []

    # 1) RSI overbought tiers
    if _is_finite(cur_rsi):
        if cur_rsi > s.rsi_overbought_strong:
            score += 3
            reasons.append(f"RSI overbought (>{s.rsi_overbought_strong:g})")
        elif cur_rsi > s.rsi_overbought_medium:
            score += 1
            reasons.append(f"RSI elevated (>{s.rsi_overbought_medium:g})")

    # 2) dead cross
    if all(map(_is_finite, (sma_s, sma_l, prev_sma_s, prev_sma_l))):
        if sma_s < sma_l and prev_sma_s >= prev_sma_l:
            score += 4
            reasons.append("SMA short crossed below SMA long")

    # 3) MACD bearish cross
    if all(map(_is_finite, (macd_line, macd_sig, prev_macd, prev_sig))):
        if macd_line < macd_sig and prev_macd >= prev_sig:
            score += 3
            reasons.append("MACD crossed below signal")

    # 4) near the upper band
    if _is_finite(upper) and price >= upper * s.bollinger_upper_buffer:
        score += 2
        reasons.append("price near upper Bollinger band")

    # 5) volume contraction (fixed divisor: the lookback length)
    lb = s.lookback_period
    avg_volume = float(np.sum(candles.volume[max(0, i - lb) : i])) / lb
    if float(candles.volume[i]) < avg_volume * s.volume_drop_threshold:
        score += 1
        reasons.append("volume contraction")

    # 6) strong bearish candle
    o, h, l = float(candles.open[i]), float(candles.high[i]), float(candles.low[i])
    candle_range = h - l
    if candle_range > 0 and price < o and abs(price - o) / candle_range > s.candle_body_threshold:
        score += 2
        reasons.append("strong bearish candle")

    # 7) run of declining closes
    recent = candles.close[max(0, i - s.declining_window + 1) : i + 1]
    declining = int(np.sum(np.diff(recent) < 0))
    if declining >= s.declining_candles_threshold:
        score += 2
        reasons.append(f"{declining} declining closes in the last {len(recent)} candles")

    # 8) bearish price/RSI divergence
    start = max(0, i - lb)
    price_high = float(np.max(candles.high[start : i + 1]))
    rsi_window = ind.rsi[start : i + 1]
    rsi_window = rsi_window[np.isfinite(rsi_window)]
    if len(rsi_window) and _is_finite(cur_rsi) and price_high > 0:
        rsi_high = float(np.max(rsi_window))
        if rsi_high > 0:
            if price / price_high > s.price_high_position and cur_rsi / rsi_high < s.rsi_high_position:
                score += 2
                reasons.append("bearish price/RSI divergence")

    confidence = float(min(score * 10, 100))
    should_sell = score >= s.min_sell_score
    reason = " | ".join(reasons) if reasons else "no strong sell signals"
    return DownturnAnalysis(should_sell=should_sell, reason=reason, confidence=confidence, score=score)
