from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from loguru import logger

from ta_grid.backtest import STRATEGIES, run_backtest
from ta_grid.config import GRID_PRESETS, TIMEFRAME_PRESETS, GridConfig, SmartDcaConfig, get_grid_preset
from ta_grid.data_provider import DEFAULT_SYMBOL, CsvProvider, YfinanceProvider
from ta_grid.pivots import fibonacci_pivots


def load_params(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        params = json.load(f)
    if not isinstance(params, dict):
        raise ValueError("--params must point to a JSON object")
    return params


def main():
    p = argparse.ArgumentParser(description="Backtest the grid / Smart DCA strategies on OHLCV candles.")
    p.add_argument("--csv", type=str, default=None, help="OHLCV CSV path (timestamp,open,high,low,close,volume).")
    p.add_argument("--symbol", type=str, default=DEFAULT_SYMBOL, help="yfinance symbol when --csv is not given.")
    p.add_argument("--start", type=str, default=None)
    p.add_argument("--end", type=str, default=None)
    p.add_argument("--interval", type=str, default="1d")
    p.add_argument("--strategy", type=str, default="grid", choices=[*STRATEGIES, "both"])
    p.add_argument("--preset", type=str, default="default", choices=sorted(GRID_PRESETS))
    p.add_argument("--timeframe", type=str, default=None, choices=sorted(TIMEFRAME_PRESETS), help="Smart DCA horizon (default 1year).")
    p.add_argument("--params", type=str, default=None, help="JSON file with an UPPER_SNAKE parameter table, applied on top of --preset.")
    p.add_argument("--initial_capital", type=float, default=None)
    p.add_argument("--log_level", type=str, default="INFO")
    p.add_argument("--decisions", action="store_true", help="Print the full result (trades, equity, decision logs).")
    p.add_argument("--pivots", type=int, default=0, help="Also print Fibonacci pivot levels over N chunks.")
    args = p.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    if args.params:
        params = load_params(args.params)
        grid_cfg = GridConfig.from_params_dict(params, base=get_grid_preset(args.preset))
        dca_cfg = SmartDcaConfig.from_params_dict(params)
    else:
        grid_cfg = get_grid_preset(args.preset)
        dca_cfg = SmartDcaConfig()
    grid_cfg = replace(grid_cfg, record_decisions=args.decisions)
    if args.initial_capital is not None:
        grid_cfg = replace(grid_cfg, initial_capital=args.initial_capital)
        dca_cfg = replace(dca_cfg, initial_capital=args.initial_capital)

    if args.csv:
        frame = CsvProvider().fetch(csv_path=args.csv)
    else:
        frame = YfinanceProvider().fetch(symbol=args.symbol, start=args.start, end=args.end, interval=args.interval)
    series = frame.to_series()

    names = list(STRATEGIES) if args.strategy == "both" else [args.strategy]
    out = {}
    for name in names:
        result = run_backtest(series, name, grid_cfg=grid_cfg, dca_cfg=dca_cfg, timeframe=args.timeframe)
        out[name] = result.to_dict() if args.decisions else result.summary()

    payload = out[names[0]] if len(names) == 1 else out
    if args.pivots > 0:
        payload = {"results": payload, "pivots": [lv.to_dict() for lv in fibonacci_pivots(series, args.pivots)]}
    print(json.dumps(payload, indent=2, allow_nan=False))


if __name__ == "__main__":
    main()
