import math

import numpy as np
import pandas as pd
import pytest

from ta_grid.config import IndicatorConfig
from ta_grid.data_manager import CandleSeries, MarketData
from ta_grid.data_provider import CsvProvider, _standardize_ohlcv_columns
from ta_grid.types import Candle

CSV = """timestamp,open,high,low,close,volume
2024-01-03,102,104,101,103,1300
2024-01-01,100,101,99,100.5,1000
2024-01-02,100.5,103,100,102,1200
2024-01-04,103,oops,102,104,1100
2024-01-02,100.5,103,100,102.5,1250
not-a-date,1,2,0.5,1.5,10
"""


def test_csv_provider_cleans_rows(tmp_path):
    path = tmp_path / "candles.csv"
    path.write_text(CSV)
    frame = CsvProvider().fetch(path)
    df = frame.df
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert list(df.index) == list(pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-03"]))
    # duplicate timestamps keep the last row
    assert df.loc[pd.Timestamp("2024-01-02"), "close"] == 102.5
    assert frame.symbol == "BTC-USD"

    series = frame.to_series()
    assert len(series) == 3
    assert series.label(0).startswith("2024-01-01")


def test_csv_provider_capitalized_headers(tmp_path):
    path = tmp_path / "caps.csv"
    path.write_text("Date,Open,High,Low,Close,Volume\n2024-01-01,1,2,0.5,1.5,10\n2024-01-02,1.5,2.5,1,2,20\n")
    assert len(CsvProvider().fetch(path).df) == 2


def test_csv_provider_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvProvider().fetch(tmp_path / "nope.csv")


def test_csv_provider_nothing_valid(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("timestamp,open,high,low,close,volume\n2024-01-01,x,y,z,w,v\n")
    with pytest.raises(ValueError):
        CsvProvider().fetch(path)


def test_csv_provider_missing_columns(tmp_path):
    path = tmp_path / "cols.csv"
    path.write_text("timestamp,open,close\n2024-01-01,1,2\n")
    with pytest.raises(ValueError, match="Missing required OHLCV columns"):
        CsvProvider().fetch(path)


def test_standardize_multiindex_columns():
    idx = pd.date_range("2024-01-01", periods=2)
    cols = pd.MultiIndex.from_product([["Open", "High", "Low", "Close", "Adj Close", "Volume"], ["BTC-USD"]])
    df = pd.DataFrame(np.ones((2, 6)), index=idx, columns=cols)
    out = _standardize_ohlcv_columns(df)
    assert list(out.columns) == ["open", "high", "low", "close", "volume"]


def test_candle_series_validation():
    ts = pd.date_range("2024-01-01", periods=3)
    ok = dict(open=np.ones(3), high=np.ones(3), low=np.ones(3), close=np.ones(3), volume=np.ones(3))
    CandleSeries(timestamps=ts, **ok)

    with pytest.raises(ValueError, match="empty"):
        CandleSeries(timestamps=pd.DatetimeIndex([]), **{k: np.array([]) for k in ok})
    with pytest.raises(ValueError, match="non-finite"):
        CandleSeries(timestamps=ts, **{**ok, "close": np.array([1.0, math.nan, 1.0])})
    with pytest.raises(ValueError, match="expected 3"):
        CandleSeries(timestamps=ts, **{**ok, "volume": np.ones(2)})


def test_candle_series_from_records():
    rows = [
        Candle(pd.Timestamp("2024-01-01").to_pydatetime(), 1.0, 2.0, 0.5, 1.5, 10.0),
        {"timestamp": "2024-01-02", "open": 1.5, "high": 2.5, "low": 1.0, "close": 2.0, "volume": 20.0},
    ]
    series = CandleSeries.from_records(rows)
    assert len(series) == 2
    assert series.close.tolist() == [1.5, 2.0]
    assert [c.close for c in series.to_candles()] == [1.5, 2.0]

    with pytest.raises(ValueError):
        CandleSeries.from_records([])
    with pytest.raises(ValueError, match="not numeric"):
        CandleSeries.from_records([{**rows[1], "close": "abc"}])


def test_market_data_snapshot():
    closes = np.linspace(100, 160, 70)
    df = pd.DataFrame(
        {"open": closes, "high": closes + 1, "low": closes - 1, "close": closes, "volume": 1.0},
        index=pd.date_range("2024-01-01", periods=70),
    )
    md = MarketData(CandleSeries.from_frame(df), IndicatorConfig())
    assert len(md) == 70
    assert md.close(69) == pytest.approx(160.0)
    assert md.snapshot(69).is_complete()
    assert math.isnan(md.snapshot(0).sma_long)
