"""
Equities broker and data-vendor dialects: Alpaca, Polygon, Finnhub,
Interactive Brokers, TD Ameritrade.

The tick normalizers are plain functions so they can be exercised directly
with captured payloads:

    >>> normalize_polygon_tick({"ev": "T", "sym": "AAPL", "p": 190.1, "s": 100, "t": 1700000000000})
    MarketTick(symbol='AAPL', price=190.1, bid=190.09, ask=190.11, ...)

All three streaming vendors here send trades, not quotes, so bid and ask are
approximated as price -/+ TRADE_SPREAD. The REST-only brokers (Interactive
Brokers, TD Ameritrade) have no stream profile and reuse the generic
equities REST parsing from src.venues.base.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from src.utils.time import to_epoch_millis
from src.venues import profiles
from src.venues.base import (
    TRADE_SPREAD,
    VenueDialect,
    parse_order_body,
    require_float,
    to_float,
)
from src.venues.errors import NormalizationError
from src.venues.models import MarketTick, OrderStatus

logger = logging.getLogger(__name__)


def _trade_tick(symbol: Any, price: float, volume: float, timestamp: Any, venue: str) -> MarketTick:
    if not symbol:
        raise NormalizationError(f"{venue} trade without a symbol")
    try:
        ts = to_epoch_millis(timestamp)
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"{venue} trade has an unreadable timestamp: {timestamp!r}") from e
    return MarketTick(
        symbol=str(symbol),
        price=price,
        bid=round(price - TRADE_SPREAD, 10),
        ask=round(price + TRADE_SPREAD, 10),
        volume=volume,
        timestamp=ts,
        change=0.0,
        change_percent=0.0,
        venue=venue,
    )


def normalize_alpaca_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """
    Alpaca trade message ({"T": "t", "S": sym, "p": price, "s": size, "t": RFC3339}).

    Control messages ("success", "subscription", "error") return None.
    """
    if not isinstance(message, Mapping) or message.get("T") != "t":
        return None
    return _trade_tick(
        message.get("S"),
        require_float(message, "p"),
        to_float(message.get("s")),
        message.get("t"),
        "alpaca",
    )


def normalize_polygon_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """Polygon trade event ({"ev": "T", "sym", "p", "s", "t" in epoch ms})."""
    if not isinstance(message, Mapping) or message.get("ev") != "T":
        return None
    return _trade_tick(
        message.get("sym"),
        require_float(message, "p"),
        to_float(message.get("s")),
        message.get("t"),
        "polygon",
    )


def normalize_finnhub_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """Finnhub trade ({"type": "trade", "s", "p", "v", "t"}); pings return None."""
    if not isinstance(message, Mapping) or message.get("type") != "trade":
        return None
    return _trade_tick(
        message.get("s"),
        require_float(message, "p"),
        to_float(message.get("v")),
        message.get("t"),
        "finnhub",
    )


def normalize_alpaca_order_update(message: Mapping[str, Any]) -> Optional[OrderStatus]:
    """
    Alpaca trade_updates message: {"stream": "trade_updates", "data": {"event": ..., "order": {...}}}.
    """
    if not isinstance(message, Mapping) or message.get("stream") != "trade_updates":
        return None
    data = message.get("data") or {}
    order = data.get("order")
    if not isinstance(order, Mapping):
        raise NormalizationError("trade_updates message without an order")
    return parse_order_body(order)


class EquitiesDialect(VenueDialect):
    """Shared behaviour for equities venues: generic REST bodies, bearer auth."""

    family = profiles.EQUITIES

    def auth_headers(self, method: str, path: str, body: Optional[Any] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def opening_messages(self, symbols: Iterable[str]) -> List[Any]:
        return []

    def normalize_tick(self, message: Any) -> Optional[MarketTick]:
        return None


class AlpacaDialect(EquitiesDialect):
    name = "alpaca"

    def auth_headers(self, method, path, body=None):
        return {
            "APCA-API-KEY-ID": self.config.api_key,
            "APCA-API-SECRET-KEY": self.config.secret_key,
        }

    def opening_messages(self, symbols):
        symbols = list(symbols)
        return [
            {"action": "auth", "key": self.config.api_key, "secret": self.config.secret_key},
            {"action": "subscribe", "trades": symbols},
        ]

    def normalize_tick(self, message):
        if isinstance(message, Mapping) and message.get("T") == "error":
            logger.warning("alpaca stream error %s: %s", message.get("code"), message.get("msg"))
            return None
        return normalize_alpaca_tick(message)

    def normalize_order_update(self, message):
        return normalize_alpaca_order_update(message)


class PolygonDialect(EquitiesDialect):
    name = "polygon"

    def opening_messages(self, symbols):
        channels = ",".join(f"T.{symbol}" for symbol in symbols)
        return [
            {"action": "auth", "params": self.config.api_key},
            {"action": "subscribe", "params": channels},
        ]

    def normalize_tick(self, message):
        return normalize_polygon_tick(message)


class FinnhubDialect(EquitiesDialect):
    name = "finnhub"

    def auth_headers(self, method, path, body=None):
        return {"X-Finnhub-Token": self.config.api_key}

    def opening_messages(self, symbols):
        return [{"type": "subscribe", "symbol": symbol} for symbol in symbols]

    def decode_frame(self, raw: Union[str, bytes]) -> List[Any]:
        # Finnhub batches trades as {"type": "trade", "data": [{...}, ...]}
        messages = []
        for message in super().decode_frame(raw):
            is_trade = isinstance(message, Mapping) and message.get("type") == "trade"
            batch = message.get("data") if is_trade else None
            if isinstance(batch, list):
                messages.extend(dict(item, type="trade") for item in batch)
            else:
                messages.append(message)
        return messages

    def normalize_tick(self, message):
        return normalize_finnhub_tick(message)


class InteractiveBrokersDialect(EquitiesDialect):
    name = "interactive_brokers"


class TDAmeritradeDialect(EquitiesDialect):
    name = "td_ameritrade"
