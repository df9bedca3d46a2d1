import pytest

from ta_grid.config import (
    GRID_PRESETS,
    TIMEFRAME_PRESETS,
    GridConfig,
    IndicatorConfig,
    SmartDcaConfig,
    TimeframePreset,
    get_grid_preset,
    get_timeframe_preset,
)


def test_defaults_match_parameter_table():
    cfg = GridConfig()
    assert cfg.initial_capital == 10_000
    assert cfg.leverage == 2
    assert cfg.grid_count == 8
    assert cfg.safe_capital_ratio == 0.8
    assert cfg.position_capital_ratio == 0.9
    assert cfg.buy.min_buy_score == 4
    assert cfg.sell.min_sell_score == 4
    assert cfg.min_data_points == 50
    assert (cfg.indicators.sma_short, cfg.indicators.sma_long) == (20, 50)


def test_grid_presets():
    assert set(GRID_PRESETS) == {"default", "tuned", "take_profit"}
    tuned = get_grid_preset("tuned")
    assert (tuned.indicators.sma_short, tuned.indicators.sma_long, tuned.indicators.rsi_period) == (15, 43, 23)
    tp = get_grid_preset("TAKE_PROFIT")
    assert tp.exit_mode == "take_profit"
    assert tp.end_of_run_close == "all"
    assert get_grid_preset("default", grid_count=4).grid_count == 4


def test_unknown_grid_preset():
    with pytest.raises(ValueError, match="Unknown grid preset"):
        get_grid_preset("martingale")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"grid_count": 0},
        {"leverage": 0},
        {"initial_capital": -1},
        {"safe_capital_ratio": 1.5},
        {"position_capital_ratio": 0},
        {"exit_mode": "stop_loss"},
        {"end_of_run_close": "never"},
        {"min_data_points": 0},
    ],
)
def test_invalid_grid_config(kwargs):
    with pytest.raises(ValueError):
        GridConfig(**kwargs)


def test_invalid_indicator_period():
    with pytest.raises(ValueError):
        IndicatorConfig(rsi_period=0)


def test_grid_from_params_dict():
    cfg = GridConfig.from_params_dict(
        {
            "INITIAL_CAPITAL": 5_000,
            "GRID_COUNT": 6,
            "SMA_SHORT_PERIOD": 15,
            "RSI_PERIOD": 23,
            "EXIT_MODE": "TAKE_PROFIT",
            "BUY_SIGNALS": {"MIN_BUY_SCORE": 5, "RSI_OVERSOLD_STRONG": 30},
            "SELL_SIGNALS": {"MIN_SELL_SCORE": 6},
            "SOMETHING_ELSE": 1,
        }
    )
    assert cfg.initial_capital == 5_000
    assert cfg.grid_count == 6
    assert cfg.indicators.sma_short == 15
    assert cfg.indicators.rsi_period == 23
    assert cfg.indicators.sma_long == 50
    assert cfg.exit_mode == "take_profit"
    assert cfg.buy.min_buy_score == 5
    assert cfg.buy.rsi_oversold_strong == 30
    assert cfg.sell.min_sell_score == 6


def test_timeframe_presets():
    assert set(TIMEFRAME_PRESETS) == {"3months", "6months", "1year", "5years"}
    one_year = get_timeframe_preset("1year")
    assert (one_year.total_investments, one_year.interval_days, one_year.capital_reservation_ratio) == (24, 15, 0.6)
    five = get_timeframe_preset("5years")
    assert (five.total_investments, five.interval_days, five.capital_reservation_ratio) == (60, 30, 0.7)


def test_invalid_timeframe():
    with pytest.raises(ValueError, match="Invalid timeframe"):
        get_timeframe_preset("2weeks")
    with pytest.raises(ValueError):
        SmartDcaConfig(timeframe="2weeks")
    with pytest.raises(ValueError):
        TimeframePreset(10, 7, 0.9, 0.2)


def test_smart_dca_from_params_dict():
    cfg = SmartDcaConfig.from_params_dict(
        {
            "INITIAL_CAPITAL": 20_000,
            "TIMEFRAME": "5years",
            "ATTRACTIVENESS_FACTORS": {"RSI_WEIGHT": 30, "SMA_TREND_PERIOD": 100},
            "CAPITAL_DISTRIBUTION": {"MIN_ATTRACTIVENESS_SCORE": 40, "RESERVE_USAGE_RATIO": 0.5},
            "ANALYSIS_PERIODS": {"MIN_DATA_POINTS": 60},
        }
    )
    assert cfg.initial_capital == 20_000
    assert cfg.timeframe_preset.total_investments == 60
    assert cfg.attractiveness.rsi_weight == 30
    assert cfg.indicators.sma_long == 100
    assert cfg.allocation.min_attractiveness_score == 40
    assert cfg.allocation.reserve_usage_ratio == 0.5
    assert cfg.min_data_points == 60


def test_params_layered_on_preset():
    cfg = GridConfig.from_params_dict(
        {"GRID_COUNT": 4, "BUY_SIGNALS": {"MIN_BUY_SCORE": 5}},
        base=get_grid_preset("take_profit"),
    )
    assert cfg.grid_count == 4
    assert cfg.buy.min_buy_score == 5
    assert cfg.exit_mode == "take_profit"
    assert cfg.end_of_run_close == "all"

    tuned = GridConfig.from_params_dict({"RSI_PERIOD": 10}, base=get_grid_preset("tuned"))
    assert tuned.indicators.rsi_period == 10
    assert (tuned.indicators.sma_short, tuned.indicators.sma_long) == (15, 43)


def test_params_without_base_start_from_defaults():
    assert GridConfig.from_params_dict({}) == GridConfig()
