"""Configuration objects.

Style rules:
- keep signatures stable (no alias chaos)
- prefer explicit field names
- every run receives its config explicitly; nothing is read from module state
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional


def _require_positive(name: str, value: float) -> None:
    if not value > 0:
        raise ValueError(f"{name} must be positive (got {value!r})")


def _require_ratio(name: str, value: float) -> None:
    if not 0.0 < value <= 1.0:
        raise ValueError(f"{name} must be in (0, 1] (got {value!r})")


def _kwargs_from_mapping(d: dict | None, mapping: dict[str, str]) -> dict[str, Any]:
    """Pick known UPPER_SNAKE keys out of ``d`` and rename them. Unknown keys are ignored."""
    kwargs: dict[str, Any] = {}
    for k, v in (d or {}).items():
        if k in mapping:
            kwargs[mapping[k]] = v
    return kwargs


@dataclass(frozen=True)
class IndicatorConfig:
    """Indicator lookback configuration."""

    sma_short: int = 20
    sma_long: int = 50
    rsi_period: int = 14
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    ema_fast: int = 12
    ema_slow: int = 26
    macd_signal: int = 9
    atr_period: int = 14
    adx_period: int = 14

    def __post_init__(self) -> None:
        for f in fields(self):
            _require_positive(f.name, getattr(self, f.name))


@dataclass(frozen=True)
class BuySignalConfig:
    """Weighted buy-score thresholds."""

    rsi_oversold_strong: float = 35.0
    rsi_oversold_weak: float = 45.0
    bollinger_lower_buffer: float = 1.02  # 2% above the lower band
    price_drop_lookback: int = 5
    price_drop_threshold_1: float = 3.0  # percent
    price_drop_threshold_2: float = 5.0  # percent
    volume_multiplier: float = 1.5
    volume_period: int = 10
    min_buy_score: int = 4


@dataclass(frozen=True)
class SellSignalConfig:
    """Additive downturn-score thresholds."""

    rsi_overbought_strong: float = 70.0
    rsi_overbought_medium: float = 60.0
    bollinger_upper_buffer: float = 0.98  # 98% of the upper band
    volume_drop_threshold: float = 0.7
    candle_body_threshold: float = 0.7
    declining_window: int = 5
    declining_candles_threshold: int = 3
    price_high_position: float = 0.95
    rsi_high_position: float = 0.9
    min_sell_score: int = 4
    lookback_period: int = 10


@dataclass(frozen=True)
class GridConfig:
    """Grid strategy parameters (capital, risk, signal thresholds, exit policy)."""

    initial_capital: float = 10_000.0
    leverage: float = 2.0
    liquidation_price: float = 30_000.0
    grid_count: int = 8
    safe_capital_ratio: float = 0.8
    position_capital_ratio: float = 0.9
    # no new position is opened once cash falls to this level
    min_capital: float = 100.0

    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    buy: BuySignalConfig = field(default_factory=BuySignalConfig)
    sell: SellSignalConfig = field(default_factory=SellSignalConfig)

    min_data_points: int = 50
    trend_analysis_period: int = 9

    # 'downturn': close a profitable position when the downturn detector fires
    # 'take_profit': close at a fixed profit percentage chosen by market trend
    exit_mode: str = "downturn"
    take_profit_bullish_pct: float = 15.0
    take_profit_bearish_pct: float = 8.0

    # 'profitable': only winning positions are closed at end of test
    # 'all': every remaining position is closed at the last close
    end_of_run_close: str = "profitable"

    record_decisions: bool = True
    decision_log_every: int = 1

    def __post_init__(self) -> None:
        _require_positive("initial_capital", self.initial_capital)
        _require_positive("leverage", self.leverage)
        _require_positive("grid_count", self.grid_count)
        _require_ratio("safe_capital_ratio", self.safe_capital_ratio)
        _require_ratio("position_capital_ratio", self.position_capital_ratio)
        _require_positive("decision_log_every", self.decision_log_every)
        if self.min_data_points < 1:
            raise ValueError("min_data_points must be at least 1")
        if self.exit_mode not in {"downturn", "take_profit"}:
            raise ValueError(f"exit_mode must be 'downturn' or 'take_profit' (got {self.exit_mode!r})")
        if self.end_of_run_close not in {"profitable", "all"}:
            raise ValueError(f"end_of_run_close must be 'profitable' or 'all' (got {self.end_of_run_close!r})")

    @classmethod
    def from_params_dict(cls, d: dict, base: Optional["GridConfig"] = None) -> "GridConfig":
        """Create GridConfig from an UPPER_SNAKE parameter table.

        Top-level keys follow the strategy parameter table (``GRID_COUNT``,
        ``SMA_SHORT_PERIOD`` ...); ``BUY_SIGNALS`` and ``SELL_SIGNALS`` are
        nested tables. Unknown keys are ignored. Keys that are present
        override ``base`` (default: ``GridConfig()``), the rest keep its values.
        """
        d = d or {}
        kwargs = _kwargs_from_mapping(
            d,
            {
                "INITIAL_CAPITAL": "initial_capital",
                "LEVERAGE": "leverage",
                "LIQUIDATION_PRICE": "liquidation_price",
                "GRID_COUNT": "grid_count",
                "SAFE_CAPITAL_RATIO": "safe_capital_ratio",
                "POSITION_CAPITAL_RATIO": "position_capital_ratio",
                "MIN_CAPITAL": "min_capital",
                "MIN_DATA_POINTS": "min_data_points",
                "TREND_ANALYSIS_PERIOD": "trend_analysis_period",
                "EXIT_MODE": "exit_mode",
                "TAKE_PROFIT_BULLISH_PCT": "take_profit_bullish_pct",
                "TAKE_PROFIT_BEARISH_PCT": "take_profit_bearish_pct",
                "END_OF_RUN_CLOSE": "end_of_run_close",
            },
        )
        ind_kwargs = _kwargs_from_mapping(
            d,
            {
                "SMA_SHORT_PERIOD": "sma_short",
                "SMA_LONG_PERIOD": "sma_long",
                "RSI_PERIOD": "rsi_period",
                "BOLLINGER_PERIOD": "bollinger_period",
                "BOLLINGER_STD_DEV": "bollinger_std_dev",
                "EMA_FAST": "ema_fast",
                "EMA_SLOW": "ema_slow",
                "MACD_SIGNAL": "macd_signal",
                "ATR_PERIOD": "atr_period",
                "ADX_PERIOD": "adx_period",
            },
        )
        buy_kwargs = _kwargs_from_mapping(
            d.get("BUY_SIGNALS"),
            {
                "RSI_OVERSOLD_STRONG": "rsi_oversold_strong",
                "RSI_OVERSOLD_WEAK": "rsi_oversold_weak",
                "BOLLINGER_LOWER_BUFFER": "bollinger_lower_buffer",
                "PRICE_DROP_LOOKBACK": "price_drop_lookback",
                "PRICE_DROP_THRESHOLD_1": "price_drop_threshold_1",
                "PRICE_DROP_THRESHOLD_2": "price_drop_threshold_2",
                "VOLUME_MULTIPLIER": "volume_multiplier",
                "VOLUME_PERIOD": "volume_period",
                "MIN_BUY_SCORE": "min_buy_score",
            },
        )
        sell_kwargs = _kwargs_from_mapping(
            d.get("SELL_SIGNALS"),
            {
                "RSI_OVERBOUGHT_STRONG": "rsi_overbought_strong",
                "RSI_OVERBOUGHT_MEDIUM": "rsi_overbought_medium",
                "BOLLINGER_UPPER_BUFFER": "bollinger_upper_buffer",
                "VOLUME_DROP_THRESHOLD": "volume_drop_threshold",
                "CANDLE_BODY_THRESHOLD": "candle_body_threshold",
                "DECLINING_WINDOW": "declining_window",
                "DECLINING_CANDLES_THRESHOLD": "declining_candles_threshold",
                "PRICE_HIGH_POSITION": "price_high_position",
                "RSI_HIGH_POSITION": "rsi_high_position",
                "MIN_SELL_SCORE": "min_sell_score",
                "LOOKBACK_PERIOD": "lookback_period",
            },
        )
        if isinstance(kwargs.get("exit_mode"), str):
            kwargs["exit_mode"] = kwargs["exit_mode"].lower()
        if isinstance(kwargs.get("end_of_run_close"), str):
            kwargs["end_of_run_close"] = kwargs["end_of_run_close"].lower()

        base = base or cls()
        return replace(
            base,
            indicators=replace(base.indicators, **ind_kwargs),
            buy=replace(base.buy, **buy_kwargs),
            sell=replace(base.sell, **sell_kwargs),
            **kwargs,
        )


# Lookbacks found by the parameter search on BTC/USDT daily candles.
TUNED_INDICATORS = IndicatorConfig(
    sma_short=15,
    sma_long=43,
    rsi_period=23,
    bollinger_period=10,
    bollinger_std_dev=2.4,
    ema_fast=14,
    ema_slow=26,
    macd_signal=14,
)

GRID_PRESETS: dict[str, GridConfig] = {
    "default": GridConfig(),
    "tuned": GridConfig(indicators=TUNED_INDICATORS),
    "take_profit": GridConfig(exit_mode="take_profit", end_of_run_close="all"),
}


def get_grid_preset(name: str, **overrides: Any) -> GridConfig:
    """Return a named grid preset, optionally with field overrides."""
    key = str(name).lower()
    if key not in GRID_PRESETS:
        raise ValueError(f"Unknown grid preset {name!r}. Available: {sorted(GRID_PRESETS)}")
    cfg = GRID_PRESETS[key]
    return replace(cfg, **overrides) if overrides else cfg


# ---------------------------------------------------------------------------
# Smart DCA
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeframePreset:
    """Capital split and buy cadence for one investment horizon."""

    total_investments: int
    interval_days: int
    capital_reservation_ratio: float
    immediate_ratio: float
    description: str = ""

    def __post_init__(self) -> None:
        _require_positive("total_investments", self.total_investments)
        _require_positive("interval_days", self.interval_days)
        if not 0.0 <= self.capital_reservation_ratio < 1.0:
            raise ValueError("capital_reservation_ratio must be in [0, 1)")
        if not 0.0 <= self.immediate_ratio < 1.0:
            raise ValueError("immediate_ratio must be in [0, 1)")
        if self.capital_reservation_ratio + self.immediate_ratio >= 1.0:
            raise ValueError("reserved + immediate pools must leave a regular pool")


TIMEFRAME_PRESETS: dict[str, TimeframePreset] = {
    "3months": TimeframePreset(12, 7, 0.4, 0.10, "3 months - weekly buys"),
    "6months": TimeframePreset(24, 7, 0.5, 0.10, "6 months - weekly buys"),
    "1year": TimeframePreset(24, 15, 0.6, 0.10, "1 year - twice-monthly buys"),
    "5years": TimeframePreset(60, 30, 0.7, 0.05, "5 years - monthly buys"),
}


def get_timeframe_preset(name: str) -> TimeframePreset:
    if name not in TIMEFRAME_PRESETS:
        raise ValueError(f"Invalid timeframe: {name!r}. Available: {sorted(TIMEFRAME_PRESETS)}")
    return TIMEFRAME_PRESETS[name]


@dataclass(frozen=True)
class DcaAttractivenessConfig:
    """Weights (percent) and thresholds of the deal-attractiveness score."""

    rsi_weight: float = 25.0
    rsi_oversold_threshold: float = 30.0
    rsi_extreme_oversold: float = 20.0

    bollinger_weight: float = 20.0
    bollinger_lower_multiplier: float = 1.02

    price_drop_weight: float = 20.0
    price_drop_lookback: int = 30
    significant_drop_threshold: float = 10.0
    major_drop_threshold: float = 20.0

    macd_weight: float = 15.0

    volume_weight: float = 10.0
    volume_spike_threshold: float = 1.5
    volume_lookback: int = 14

    trend_weight: float = 10.0


@dataclass(frozen=True)
class DcaAllocationConfig:
    """Deal tiers and how much of the base amount each tier invests."""

    min_attractiveness_score: float = 30.0
    good_score_threshold: float = 50.0
    excellent_score_threshold: float = 80.0
    golden_opportunity_threshold: float = 90.0

    poor_deal_ratio: float = 0.3
    good_deal_ratio: float = 0.6
    excellent_deal_ratio: float = 1.0
    reserve_usage_ratio: float = 0.3

    # off-schedule buy when the score rises through this level
    opportunity_score: float = 80.0


@dataclass(frozen=True)
class SmartDcaConfig:
    """Smart DCA parameters."""

    initial_capital: float = 10_000.0
    timeframe: str = "1year"
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    attractiveness: DcaAttractivenessConfig = field(default_factory=DcaAttractivenessConfig)
    allocation: DcaAllocationConfig = field(default_factory=DcaAllocationConfig)
    min_data_points: int = 50
    # retry delay after a scheduled buy is skipped for a weak score
    retry_days: float = 1.0
    enable_opportunistic_buys: bool = True

    def __post_init__(self) -> None:
        _require_positive("initial_capital", self.initial_capital)
        _require_positive("retry_days", self.retry_days)
        _require_ratio("reserve_usage_ratio", self.allocation.reserve_usage_ratio)
        if self.min_data_points < 1:
            raise ValueError("min_data_points must be at least 1")
        get_timeframe_preset(self.timeframe)

    @property
    def timeframe_preset(self) -> TimeframePreset:
        return get_timeframe_preset(self.timeframe)

    @classmethod
    def from_params_dict(cls, d: dict) -> "SmartDcaConfig":
        """Create SmartDcaConfig from an UPPER_SNAKE parameter table.

        Recognized nested tables: ``ATTRACTIVENESS_FACTORS``,
        ``CAPITAL_DISTRIBUTION`` and ``ANALYSIS_PERIODS``.
        """
        d = d or {}
        kwargs = _kwargs_from_mapping(
            d,
            {
                "INITIAL_CAPITAL": "initial_capital",
                "TIMEFRAME": "timeframe",
                "RETRY_DAYS": "retry_days",
                "ENABLE_OPPORTUNISTIC_BUYS": "enable_opportunistic_buys",
            },
        )
        att_kwargs = _kwargs_from_mapping(
            d.get("ATTRACTIVENESS_FACTORS"),
            {
                "RSI_WEIGHT": "rsi_weight",
                "RSI_OVERSOLD_THRESHOLD": "rsi_oversold_threshold",
                "RSI_EXTREME_OVERSOLD": "rsi_extreme_oversold",
                "BOLLINGER_WEIGHT": "bollinger_weight",
                "BOLLINGER_LOWER_MULTIPLIER": "bollinger_lower_multiplier",
                "PRICE_DROP_WEIGHT": "price_drop_weight",
                "PRICE_DROP_LOOKBACK": "price_drop_lookback",
                "SIGNIFICANT_DROP_THRESHOLD": "significant_drop_threshold",
                "MAJOR_DROP_THRESHOLD": "major_drop_threshold",
                "MACD_WEIGHT": "macd_weight",
                "VOLUME_WEIGHT": "volume_weight",
                "VOLUME_SPIKE_THRESHOLD": "volume_spike_threshold",
                "VOLUME_LOOKBACK": "volume_lookback",
                "TREND_WEIGHT": "trend_weight",
            },
        )
        alloc_kwargs = _kwargs_from_mapping(
            d.get("CAPITAL_DISTRIBUTION"),
            {
                "MIN_ATTRACTIVENESS_SCORE": "min_attractiveness_score",
                "GOOD_SCORE_THRESHOLD": "good_score_threshold",
                "EXCELLENT_SCORE_THRESHOLD": "excellent_score_threshold",
                "GOLDEN_OPPORTUNITY_THRESHOLD": "golden_opportunity_threshold",
                "POOR_DEAL_RATIO": "poor_deal_ratio",
                "GOOD_DEAL_RATIO": "good_deal_ratio",
                "EXCELLENT_DEAL_RATIO": "excellent_deal_ratio",
                "RESERVE_USAGE_RATIO": "reserve_usage_ratio",
                "OPPORTUNITY_SCORE": "opportunity_score",
            },
        )
        periods = d.get("ANALYSIS_PERIODS") or {}
        if "MIN_DATA_POINTS" in periods:
            kwargs["min_data_points"] = periods["MIN_DATA_POINTS"]
        ind_kwargs = {}
        if "SMA_TREND_PERIOD" in (d.get("ATTRACTIVENESS_FACTORS") or {}):
            ind_kwargs["sma_long"] = d["ATTRACTIVENESS_FACTORS"]["SMA_TREND_PERIOD"]

        return cls(
            indicators=IndicatorConfig(**ind_kwargs),
            attractiveness=DcaAttractivenessConfig(**att_kwargs),
            allocation=DcaAllocationConfig(**alloc_kwargs),
            **kwargs,
        )
