"""
Tabular views of canonical records for the UI consumer layer.

**Conceptual**: Adapters hand out dataclasses one at a time through callbacks
and REST calls. Dashboards, notebooks and scripts mostly want tables. This
module converts lists of MarketTick / Position / OrderStatus into pandas
DataFrames with a fixed column order, and provides TickTape, a callback
consumer that keeps "most recent wins" quotes per symbol plus a bounded
history.

**Ordering convention**: like every time-series table in this project,
tick tables are sorted by timestamp descending (newest first). The one
exception is timestamp_regressions(), which must look at ticks in receipt
order to find out-of-order timestamps.

**Timestamps**: ticks carry epoch milliseconds; every tick table also gets a
"datetime" column (UTC, datetime64) for display.
"""

import logging
from collections import deque
from dataclasses import asdict, fields
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional

import pandas as pd

from src.venues.models import MarketTick, OrderStatus, Position

logger = logging.getLogger(__name__)

TICK_COLUMNS: List[str] = [f.name for f in fields(MarketTick)]
POSITION_COLUMNS: List[str] = [f.name for f in fields(Position)]
ORDER_COLUMNS: List[str] = [f.name for f in fields(OrderStatus)]


def _records(items: Iterable) -> List[dict]:
    records = []
    for item in items:
        record = asdict(item)
        for key, value in record.items():
            if isinstance(value, Enum):
                record[key] = value.value
        records.append(record)
    return records


def ticks_to_frame(ticks: Iterable[MarketTick], sort: bool = True) -> pd.DataFrame:
    """
    Convert ticks to a DataFrame.

    Args:
        ticks: MarketTick records, in any order.
        sort: Sort newest first (default). Pass False to keep input order.

    Returns:
        DataFrame with TICK_COLUMNS plus "datetime". Empty input gives an
        empty frame with the same columns.

    Example:
        >>> df = ticks_to_frame([MarketTick("AAPL", 190.0, 189.99, 190.01, 100, 1709303400000)])
        >>> df.loc[0, "datetime"]
        Timestamp('2024-03-01 14:30:00+0000', tz='UTC')
    """
    df = pd.DataFrame(_records(ticks), columns=TICK_COLUMNS)
    df["datetime"] = pd.to_datetime(df["timestamp"].astype("int64"), unit="ms", utc=True)
    if sort and not df.empty:
        df = df.sort_values("timestamp", ascending=False, kind="mergesort").reset_index(drop=True)
    return df


def positions_to_frame(positions: Iterable[Position]) -> pd.DataFrame:
    """Positions as a DataFrame, one row per position, largest market value first."""
    df = pd.DataFrame(_records(positions), columns=POSITION_COLUMNS)
    if not df.empty:
        df = df.sort_values("market_value", ascending=False, kind="mergesort").reset_index(drop=True)
    return df


def orders_to_frame(orders: Iterable[OrderStatus]) -> pd.DataFrame:
    """Orders as a DataFrame with states as plain strings and an "is_terminal" column."""
    orders = list(orders)
    df = pd.DataFrame(_records(orders), columns=ORDER_COLUMNS)
    df["is_terminal"] = [order.is_terminal for order in orders]
    return df


def timestamp_regressions(ticks: Iterable[MarketTick]) -> pd.DataFrame:
    """
    Find ticks whose timestamp is earlier than the previous tick for the same symbol.

    Well-behaved feeds never produce any; venues stamped by the local clock
    cannot. Feeds are not required to be monotonic, so this only reports.

    Args:
        ticks: Ticks in the order they were received.

    Returns:
        DataFrame with columns sequence (receipt index), symbol, timestamp,
        previous_timestamp. Empty when every symbol is non-decreasing.
    """
    columns = ["sequence", "symbol", "timestamp", "previous_timestamp"]
    df = ticks_to_frame(ticks, sort=False)
    if df.empty:
        return pd.DataFrame(columns=columns)

    df["sequence"] = range(len(df))
    df["previous_timestamp"] = df.groupby("symbol")["timestamp"].shift(1)
    regressed = df[df["timestamp"] < df["previous_timestamp"]]
    return regressed[columns].reset_index(drop=True)


class TickTape:
    """
    Callback consumer that records ticks.

    Register it directly: `adapter.on_market_data(tape)`.

    Args:
        max_history: Number of ticks kept in history (oldest dropped first).
        symbols: Optional whitelist; ticks for other symbols are ignored.
                 Useful for all-ticker feeds such as KuCoin's.
    """

    def __init__(self, max_history: int = 10_000, symbols: Optional[Iterable[str]] = None):
        if max_history <= 0:
            raise ValueError(f"max_history must be positive, got: {max_history}")
        self._history: Deque[MarketTick] = deque(maxlen=max_history)
        self._latest: Dict[str, MarketTick] = {}
        self._symbols = set(symbols) if symbols is not None else None

    def __call__(self, tick: MarketTick) -> None:
        if self._symbols is not None and tick.symbol not in self._symbols:
            return
        self._history.append(tick)
        self._latest[tick.symbol] = tick

    def latest(self, symbol: str) -> Optional[MarketTick]:
        return self._latest.get(symbol)

    @property
    def symbols(self) -> List[str]:
        return sorted(self._latest)

    def quotes(self) -> pd.DataFrame:
        """Most recent tick per symbol, newest first."""
        return ticks_to_frame(self._latest.values())

    def history(self) -> pd.DataFrame:
        return ticks_to_frame(self._history)

    def regressions(self) -> pd.DataFrame:
        found = timestamp_regressions(self._history)
        if not found.empty:
            logger.warning("%d out-of-order ticks across %s", len(found), sorted(found["symbol"].unique()))
        return found

    def clear(self) -> None:
        self._history.clear()
        self._latest.clear()

    def __len__(self) -> int:
        return len(self._history)
