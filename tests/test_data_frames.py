"""
Tests for src/data/frames.py

Verifies the tabular views keep a fixed column order, follow the
newest-first convention, and that TickTape keeps "most recent wins" quotes.
"""

import pandas as pd
import pytest

from src.data.frames import (
    ORDER_COLUMNS,
    POSITION_COLUMNS,
    TICK_COLUMNS,
    TickTape,
    orders_to_frame,
    positions_to_frame,
    ticks_to_frame,
    timestamp_regressions,
)
from src.venues.models import MarketTick, OrderState, OrderStatus, Position, PositionSide, Side

T0 = 1709303400000


def _tick(symbol, price, ts):
    return MarketTick(symbol=symbol, price=price, bid=price - 0.01, ask=price + 0.01, volume=1, timestamp=ts)


def test_ticks_to_frame_newest_first_with_datetime():
    df = ticks_to_frame([_tick("AAPL", 1.0, T0), _tick("AAPL", 2.0, T0 + 1000), _tick("MSFT", 3.0, T0 + 500)])

    assert list(df.columns) == TICK_COLUMNS + ["datetime"]
    assert list(df["price"]) == [2.0, 3.0, 1.0]
    assert df.loc[2, "datetime"] == pd.Timestamp("2024-03-01 14:30:00", tz="UTC")


def test_ticks_to_frame_can_keep_input_order():
    df = ticks_to_frame([_tick("AAPL", 1.0, T0 + 1), _tick("AAPL", 2.0, T0)], sort=False)

    assert list(df["price"]) == [1.0, 2.0]


def test_empty_inputs_keep_columns():
    assert list(ticks_to_frame([]).columns) == TICK_COLUMNS + ["datetime"]
    assert list(positions_to_frame([]).columns) == POSITION_COLUMNS
    assert list(orders_to_frame([]).columns) == ORDER_COLUMNS + ["is_terminal"]


def test_positions_sorted_by_market_value_with_plain_strings():
    positions = [
        Position("AAPL", PositionSide.LONG, 10, 180.0, market_value=1900.0),
        Position("TSLA", PositionSide.SHORT, 5, 200.0, market_value=3000.0),
    ]

    df = positions_to_frame(positions)

    assert list(df["symbol"]) == ["TSLA", "AAPL"]
    assert list(df["side"]) == ["short", "long"]


def test_orders_frame_has_terminal_flag():
    orders = [
        OrderStatus("1", "AAPL", Side.BUY, 10, state=OrderState.FILLED),
        OrderStatus("2", "AAPL", None, 5, state=OrderState.NEW),
    ]

    df = orders_to_frame(orders)

    assert list(df["state"]) == ["filled", "new"]
    assert list(df["is_terminal"]) == [True, False]


def test_timestamp_regressions_per_symbol():
    ticks = [
        _tick("AAPL", 1.0, T0 + 1000),
        _tick("MSFT", 2.0, T0),
        _tick("AAPL", 1.1, T0 + 500),  # earlier than previous AAPL
        _tick("MSFT", 2.1, T0 + 10),
    ]

    found = timestamp_regressions(ticks)

    assert list(found.columns) == ["sequence", "symbol", "timestamp", "previous_timestamp"]
    assert found.to_dict("records") == [
        {"sequence": 2, "symbol": "AAPL", "timestamp": T0 + 500, "previous_timestamp": T0 + 1000}
    ]


def test_timestamp_regressions_none():
    assert timestamp_regressions([_tick("AAPL", 1.0, T0), _tick("AAPL", 1.0, T0)]).empty
    assert timestamp_regressions([]).empty


def test_tick_tape_latest_wins_and_history_is_bounded():
    tape = TickTape(max_history=2)

    tape(_tick("AAPL", 1.0, T0))
    tape(_tick("AAPL", 2.0, T0 + 1))
    tape(_tick("MSFT", 3.0, T0 + 2))

    assert len(tape) == 2
    assert tape.latest("AAPL").price == 2.0
    assert tape.symbols == ["AAPL", "MSFT"]
    assert list(tape.quotes()["symbol"]) == ["MSFT", "AAPL"]
    assert list(tape.history()["price"]) == [3.0, 2.0]


def test_tick_tape_symbol_filter_and_clear():
    tape = TickTape(symbols=["BTC-USDT"])

    tape(_tick("ETH-USDT", 1.0, T0))
    tape(_tick("BTC-USDT", 2.0, T0))
    assert tape.symbols == ["BTC-USDT"]

    tape.clear()
    assert len(tape) == 0
    assert tape.latest("BTC-USDT") is None


def test_tick_tape_reports_regressions(caplog):
    tape = TickTape()
    tape(_tick("AAPL", 1.0, T0 + 10))
    tape(_tick("AAPL", 1.0, T0))

    assert len(tape.regressions()) == 1
    assert "out-of-order" in caplog.text


def test_tick_tape_rejects_bad_history_size():
    with pytest.raises(ValueError):
        TickTape(max_history=0)
