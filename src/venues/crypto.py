"""
Crypto exchange dialects: Bybit, KuCoin, Kraken, Crypto.com, CoinEx, Bitget.

**Conceptual**: Every exchange here streams a 24h ticker rather than individual
trades, so ticks carry a real bid/ask, 24h volume, 24h change and the 24h
high/low. Numbers usually arrive as strings ("64123.5") and are parsed with
the helpers from src.venues.base.

**Percent conventions differ per venue** and are normalized to "already
multiplied by 100":
  - Bybit: price24hPcnt is a fraction (0.0123 -> 1.23%); absolute change is
    derived as fraction * last price.
  - KuCoin: changeRate is a fraction; changePrice is absolute.
  - Bitget: changeUtc24h is a fraction; change24h is absolute.
  - Kraken, Crypto.com, CoinEx: only an absolute figure is sent, the
    percentage is computed against the last price.

Kraken and CoinEx send no timestamp, so their normalizers take `now_ms`
from the dialect's clock.

Auth headers follow each exchange's header names but do not compute HMAC
signatures; only the key/timestamp/passphrase envelope is produced.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from src.utils.time import to_epoch_millis
from src.venues import profiles
from src.venues.base import (
    VenueDialect,
    as_list,
    first_present,
    parse_side,
    percent_of,
    require_float,
    to_float,
    to_optional_float,
)
from src.venues.errors import NormalizationError
from src.venues.models import (
    AccountSnapshot,
    MarketTick,
    OrderRequest,
    Position,
    PositionSide,
    Side,
)

logger = logging.getLogger(__name__)

# Bybit default request validity window, in milliseconds.
BYBIT_RECV_WINDOW = "5000"


def _timestamp(value: Any, venue: str) -> int:
    try:
        return to_epoch_millis(value)
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"{venue} ticker has an unreadable timestamp: {value!r}") from e


def _symbol(value: Any, venue: str) -> str:
    if not value:
        raise NormalizationError(f"{venue} ticker without a symbol")
    return str(value)


def normalize_bybit_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """Bybit v5 ticker ({"topic": "tickers.BTCUSDT", "data": {...}})."""
    if not isinstance(message, Mapping):
        return None
    topic = message.get("topic") or ""
    ticker = message.get("data")
    if not topic.startswith("tickers.") or not isinstance(ticker, Mapping):
        return None

    price = require_float(ticker, "lastPrice")
    fraction = to_float(ticker.get("price24hPcnt"))
    return MarketTick(
        symbol=_symbol(ticker.get("symbol") or topic[len("tickers."):], "bybit"),
        price=price,
        bid=to_float(ticker.get("bid1Price"), default=price),
        ask=to_float(ticker.get("ask1Price"), default=price),
        volume=to_float(ticker.get("volume24h")),
        timestamp=_timestamp(first_present(ticker, "time") or message.get("ts"), "bybit"),
        change=fraction * price,
        change_percent=fraction * 100,
        high=to_optional_float(ticker.get("highPrice24h")),
        low=to_optional_float(ticker.get("lowPrice24h")),
        venue="bybit",
    )


def normalize_kucoin_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """KuCoin all-ticker push ({"type": "message", "topic": "/market/ticker:all", "data": {...}})."""
    if not isinstance(message, Mapping):
        return None
    ticker = message.get("data")
    if (
        message.get("type") != "message"
        or message.get("topic") != "/market/ticker:all"
        or not isinstance(ticker, Mapping)
    ):
        return None

    price = require_float(ticker, "price")
    return MarketTick(
        symbol=_symbol(ticker.get("symbol") or message.get("subject"), "kucoin"),
        price=price,
        bid=to_float(ticker.get("bestBid"), default=price),
        ask=to_float(ticker.get("bestAsk"), default=price),
        volume=to_float(ticker.get("vol")),
        timestamp=_timestamp(ticker.get("time"), "kucoin"),
        change=to_optional_float(ticker.get("changePrice")),
        change_percent=to_float(ticker.get("changeRate")) * 100,
        high=to_optional_float(ticker.get("high")),
        low=to_optional_float(ticker.get("low")),
        bid_size=to_optional_float(ticker.get("bestBidSize")),
        ask_size=to_optional_float(ticker.get("bestAskSize")),
        venue="kucoin",
    )


def normalize_kraken_tick(message: Any, now_ms: int) -> Optional[MarketTick]:
    """
    Kraken ticker array: [channel_id, {c, b, a, v, p, h, l, o}, "ticker", "XBT/USD"].

    Each field is an array; index 0 is "today"/"price", index 1 the 24h value.
    Event dicts (heartbeat, systemStatus, subscriptionStatus) return None.
    """
    if not isinstance(message, list) or len(message) < 4 or message[2] != "ticker":
        return None
    ticker = message[1]
    if not isinstance(ticker, Mapping):
        return None

    def pick(key: str, index: int) -> Any:
        values = ticker.get(key)
        if isinstance(values, list) and len(values) > index:
            return values[index]
        return None

    price = to_optional_float(pick("c", 0))
    if price is None:
        raise NormalizationError("kraken ticker without a last trade price")
    change = to_float(pick("p", 1))
    return MarketTick(
        symbol=_symbol(message[3], "kraken"),
        price=price,
        bid=to_float(pick("b", 0), default=price),
        ask=to_float(pick("a", 0), default=price),
        volume=to_float(pick("v", 1)),
        timestamp=now_ms,
        change=change,
        change_percent=percent_of(change, price),
        high=to_optional_float(pick("h", 1)),
        low=to_optional_float(pick("l", 1)),
        open=to_optional_float(pick("o", 1)),
        venue="kraken",
    )


def normalize_crypto_com_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """
    Crypto.com ticker push ({"method": "subscribe", "result": {"data": ...}}).

    result.data is a list of tickers on the v2 API and a single object on
    older gateways; the first ticker is used.
    """
    if not isinstance(message, Mapping) or message.get("method") != "subscribe":
        return None
    result = message.get("result")
    if not isinstance(result, Mapping):
        # subscription ack
        return None
    ticker = result.get("data")
    if isinstance(ticker, list):
        ticker = ticker[0] if ticker else None
    if not isinstance(ticker, Mapping):
        return None

    price = require_float(ticker, "a")
    change = to_float(ticker.get("c"))
    return MarketTick(
        symbol=_symbol(ticker.get("i") or result.get("instrument_name"), "crypto_com"),
        price=price,
        bid=to_float(ticker.get("b"), default=price),
        ask=to_float(ticker.get("k"), default=price),
        volume=to_float(ticker.get("v")),
        timestamp=_timestamp(ticker.get("t"), "crypto_com"),
        change=change,
        change_percent=percent_of(change, price),
        high=to_optional_float(ticker.get("h")),
        low=to_optional_float(ticker.get("l")),
        venue="crypto_com",
    )


def normalize_coinex_tick(message: Mapping[str, Any], now_ms: int) -> Optional[MarketTick]:
    """CoinEx state push ({"method": "state.update", "params": [symbol, ticker]})."""
    if not isinstance(message, Mapping) or message.get("method") != "state.update":
        return None
    params = message.get("params")
    if not isinstance(params, list) or len(params) < 2 or not isinstance(params[1], Mapping):
        return None
    ticker = params[1]

    price = require_float(ticker, "last")
    change = to_float(ticker.get("change"))
    return MarketTick(
        symbol=_symbol(params[0], "coinex"),
        price=price,
        bid=to_float(ticker.get("bid"), default=price),
        ask=to_float(ticker.get("ask"), default=price),
        volume=to_float(ticker.get("vol")),
        timestamp=now_ms,
        change=change,
        change_percent=percent_of(change, price),
        high=to_optional_float(ticker.get("high")),
        low=to_optional_float(ticker.get("low")),
        open=to_optional_float(ticker.get("open")),
        venue="coinex",
    )


def normalize_bitget_tick(message: Mapping[str, Any]) -> Optional[MarketTick]:
    """Bitget ticker snapshot ({"action": "snapshot", "arg": {"instId"}, "data": [{...}]})."""
    if not isinstance(message, Mapping) or message.get("action") != "snapshot":
        return None
    arg = message.get("arg")
    data = message.get("data")
    if not isinstance(arg, Mapping) or not isinstance(data, list) or not data:
        return None
    ticker = data[0]

    price = require_float(ticker, "last")
    return MarketTick(
        symbol=_symbol(arg.get("instId"), "bitget"),
        price=price,
        bid=to_float(ticker.get("bidPx"), default=price),
        ask=to_float(ticker.get("askPx"), default=price),
        volume=to_float(ticker.get("baseVolume")),
        timestamp=_timestamp(ticker.get("ts"), "bitget"),
        change=to_optional_float(ticker.get("change24h")),
        change_percent=to_float(ticker.get("changeUtc24h")) * 100,
        high=to_optional_float(ticker.get("high24h")),
        low=to_optional_float(ticker.get("low24h")),
        open=to_optional_float(ticker.get("openUtc")),
        venue="bitget",
    )


def parse_crypto_account(body: Mapping[str, Any]) -> AccountSnapshot:
    """
    Exchange balance body -> AccountSnapshot.

    Exchanges report a total balance, an available balance and margin
    figures; equities-only fields (day trades, PDT flag) stay at their
    defaults.
    """
    total = to_float(first_present(body, "totalBalance", "total"))
    available = to_float(first_present(body, "availableBalance", "available"))
    return AccountSnapshot(
        account_id=str(first_present(body, "accountId", "uid", "id", default="")),
        total_value=total,
        buying_power=available,
        available_funds=available,
        cash=to_float(body.get("totalWalletBalance")),
        equity=to_float(body.get("totalMarginBalance"), default=total),
        margin_used=to_float(body.get("marginBalance")),
        unrealized_pnl=to_float(body.get("unrealizedPnl")),
    )


def parse_crypto_position(body: Mapping[str, Any]) -> Position:
    """
    Derivatives position body -> Position.

    Leverage defaults to 1 and margin mode to "cross" when the exchange omits
    them. A missing or zero liquidation price is reported as None.
    """
    side = parse_side(body.get("side"))
    signed_size = to_float(first_present(body, "size", "quantity"))
    if side is None:
        side = Side.BUY if signed_size >= 0 else Side.SELL
    size = abs(signed_size)
    mark = to_float(first_present(body, "markPrice", "currentPrice"))
    liquidation = to_float(body.get("liquidationPrice"))

    return Position(
        symbol=str(body.get("symbol", "")),
        side=PositionSide.LONG if side == Side.BUY else PositionSide.SHORT,
        quantity=size,
        avg_price=to_float(first_present(body, "entryPrice", "avgPrice")),
        market_price=mark,
        market_value=to_float(body.get("positionValue"), default=mark * size),
        unrealized_pnl=to_float(body.get("unrealizedPnl")),
        realized_pnl=to_float(first_present(body, "realizedPnl", "cumRealisedPnl")),
        leverage=to_float(body.get("leverage"), default=1.0),
        margin_mode=str(body.get("marginMode") or "cross").lower(),
        liquidation_price=liquidation or None,
    )


class CryptoDialect(VenueDialect):
    """
    Shared behaviour for crypto exchanges.

    REST paths use the singular "/order" for placement, and order bodies use
    camelCase with leverage and margin mode carried through for derivatives.
    """

    family = profiles.CRYPTO

    endpoints = {
        "place_order": "/order",
        "cancel_order": "/order/{order_id}",
        "account": "/account",
        "positions": "/positions",
        "orders": "/orders",
    }

    def order_payload(self, request: OrderRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side.value,
            "type": request.order_type.value,
            "quantity": request.quantity,
            "timeInForce": request.time_in_force.value,
        }
        if request.price is not None:
            payload["price"] = request.price
        if request.stop_price is not None:
            payload["stopPrice"] = request.stop_price
        leverage = request.leverage if request.leverage is not None else self.config.leverage
        if leverage is not None:
            payload["leverage"] = leverage
        margin_mode = request.margin_mode or self.config.margin_mode
        if margin_mode:
            payload["marginMode"] = margin_mode
        if request.client_order_id:
            payload["clientOrderId"] = request.client_order_id
        return payload

    def parse_account(self, body):
        return parse_crypto_account(body)

    def parse_positions(self, body):
        return [parse_crypto_position(item) for item in as_list(body)]


class BybitDialect(CryptoDialect):
    name = "bybit"

    def auth_headers(self, method, path, body=None):
        return {
            "X-BAPI-API-KEY": self.config.api_key,
            "X-BAPI-TIMESTAMP": str(self.timestamp_ms()),
            "X-BAPI-RECV-WINDOW": BYBIT_RECV_WINDOW,
        }

    def opening_messages(self, symbols):
        return [{"op": "subscribe", "args": [f"tickers.{symbol}" for symbol in symbols]}]

    def normalize_tick(self, message):
        if isinstance(message, Mapping) and message.get("success") is False:
            logger.warning("bybit %s rejected: %s", message.get("op"), message.get("ret_msg"))
            return None
        return normalize_bybit_tick(message)


class KuCoinDialect(CryptoDialect):
    name = "kucoin"

    def auth_headers(self, method, path, body=None):
        return {
            "KC-API-KEY": self.config.api_key,
            "KC-API-TIMESTAMP": str(self.timestamp_ms()),
            "KC-API-PASSPHRASE": self.config.passphrase,
        }

    def opening_messages(self, symbols):
        # The all-ticker topic covers every symbol; filtering happens downstream.
        return [
            {
                "id": self.timestamp_ms(),
                "type": "subscribe",
                "topic": "/market/ticker:all",
                "privateChannel": False,
                "response": True,
            }
        ]

    def normalize_tick(self, message):
        return normalize_kucoin_tick(message)


class KrakenDialect(CryptoDialect):
    name = "kraken"

    def auth_headers(self, method, path, body=None):
        return {"API-Key": self.config.api_key}

    def opening_messages(self, symbols):
        return [{"event": "subscribe", "pair": list(symbols), "subscription": {"name": "ticker"}}]

    def decode_frame(self, raw: Union[str, bytes]) -> List[Any]:
        # Kraken data messages are themselves arrays; one frame is one message.
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        return [json.loads(raw)]

    def normalize_tick(self, message):
        if isinstance(message, Mapping) and message.get("status") == "error":
            logger.warning("kraken %s failed: %s", message.get("event"), message.get("errorMessage"))
            return None
        return normalize_kraken_tick(message, self.timestamp_ms())


class CryptoComDialect(CryptoDialect):
    name = "crypto_com"

    def auth_headers(self, method, path, body=None):
        return {"X-CRO-API-KEY": self.config.api_key}

    def opening_messages(self, symbols):
        return [
            {
                "method": "subscribe",
                "params": {"channels": [f"ticker.{symbol}" for symbol in symbols]},
            }
        ]

    def normalize_tick(self, message):
        return normalize_crypto_com_tick(message)


class CoinExDialect(CryptoDialect):
    name = "coinex"

    def auth_headers(self, method, path, body=None):
        return {"AccessId": self.config.api_key, "Tonce": str(self.timestamp_ms())}

    def opening_messages(self, symbols):
        return [{"method": "state.subscribe", "params": list(symbols), "id": self.timestamp_ms()}]

    def normalize_tick(self, message):
        return normalize_coinex_tick(message, self.timestamp_ms())


class BitgetDialect(CryptoDialect):
    name = "bitget"

    def auth_headers(self, method, path, body=None):
        return {"ACCESS-KEY": self.config.api_key, "ACCESS-TIMESTAMP": str(self.timestamp_ms())}

    def opening_messages(self, symbols):
        return [
            {
                "op": "subscribe",
                "args": [
                    {"instType": "sp", "channel": "ticker", "instId": symbol} for symbol in symbols
                ],
            }
        ]

    def normalize_tick(self, message):
        return normalize_bitget_tick(message)
