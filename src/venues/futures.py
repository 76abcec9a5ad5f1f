"""
Futures gateway dialect (Rithmic).

**Conceptual**: Unlike the key-authenticated venues, the futures gateway is a
session protocol. Everything, including order entry, travels over one
WebSocket:

    client                          gateway
      | -- login (10) --------------> |
      | <------------- login resp (11)|   rp_code[0] == "0" means success
      | -- account request (200) ---> |
      | -- subscribe (100) per sym -> |
      | <------ market data (150) --- |
      | <------ account (101) ------- |
      | <------ order update (102) -- |
      | <------ position (103) ------ |
      | -- new order (300) ---------> |
      | -- cancel (301) ------------> |

Every message is a dict keyed by "template_id"; requests carry their
arguments positionally in "user_msg". Binary frames are accepted too: the
first two bytes (little-endian) carry the template id and the rest of the
frame is passed along untouched as "data".

Symbols may name their exchange as "ESM4:CME"; a bare symbol is routed to
DEFAULT_EXCHANGE.
"""

import json
import logging
import struct
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from src.venues import profiles
from src.venues.base import (
    SESSION,
    StreamEvent,
    VenueDialect,
    first_present,
    parse_side,
    to_float,
    to_optional_float,
)
from src.venues.errors import NormalizationError
from src.venues.models import (
    AccountSnapshot,
    MarketTick,
    OrderRequest,
    OrderStatus,
    Position,
    PositionSide,
    normalize_order_state,
)

logger = logging.getLogger(__name__)

LOGIN_REQUEST = 10
LOGIN_RESPONSE = 11
MARKET_DATA_SUBSCRIBE = 100
ACCOUNT_UPDATE = 101
ORDER_UPDATE = 102
POSITION_UPDATE = 103
MARKET_DATA_UPDATE = 150
ACCOUNT_REQUEST = 200
NEW_ORDER = 300
CANCEL_ORDER = 301

DEFAULT_EXCHANGE = profiles.FUTURES_EXCHANGES[0]

_TEMPLATE_HEADER = struct.Struct("<H")


def split_symbol(symbol: str, default_exchange: str = DEFAULT_EXCHANGE) -> Tuple[str, str]:
    """
    Split "ESM4:CME" into ("ESM4", "CME").

    Example:
        >>> split_symbol("NQM4")
        ('NQM4', 'CME')
    """
    code, sep, exchange = symbol.partition(":")
    if not code.strip():
        raise ValueError(f"Invalid futures symbol: {symbol!r}")
    return code.strip(), (exchange.strip().upper() if sep and exchange.strip() else default_exchange)


def decode_binary_frame(raw: bytes) -> Dict[str, Any]:
    """Read the little-endian template id from the first two bytes of `raw`."""
    if len(raw) < _TEMPLATE_HEADER.size:
        raise NormalizationError(f"Binary frame too short for a template id ({len(raw)} bytes)")
    (template_id,) = _TEMPLATE_HEADER.unpack_from(raw, 0)
    return {"template_id": template_id, "data": bytes(raw)}


def login_succeeded(message: Mapping[str, Any]) -> bool:
    rp_code = message.get("rp_code")
    return isinstance(rp_code, list) and len(rp_code) > 0 and str(rp_code[0]) == "0"


def normalize_rithmic_tick(message: Mapping[str, Any], now_ms: int) -> Optional[MarketTick]:
    """
    Market data update (template 150) -> MarketTick.

    The gateway sends no event time, so the tick is stamped with `now_ms`.
    Missing numeric fields default to 0, but a message without a symbol is
    rejected (binary frames that only carry a template id land here).
    """
    if not isinstance(message, Mapping) or message.get("template_id") != MARKET_DATA_UPDATE:
        return None
    symbol = message.get("symbol")
    if not symbol:
        raise NormalizationError("market data update without a symbol")

    return MarketTick(
        symbol=str(symbol),
        price=to_float(message.get("last_trade_price")),
        bid=to_float(message.get("best_bid_price")),
        ask=to_float(message.get("best_ask_price")),
        volume=to_float(message.get("total_volume")),
        timestamp=now_ms,
        high=to_optional_float(message.get("high_price")),
        low=to_optional_float(message.get("low_price")),
        open=to_optional_float(message.get("open_price")),
        bid_size=to_optional_float(message.get("best_bid_quantity")),
        ask_size=to_optional_float(message.get("best_ask_quantity")),
        settlement_price=to_optional_float(message.get("settlement_price")),
        exchange=message.get("exchange") or None,
        venue="rithmic",
    )


def normalize_rithmic_account(message: Mapping[str, Any]) -> Optional[AccountSnapshot]:
    """Account update (template 101) -> AccountSnapshot."""
    if not isinstance(message, Mapping) or message.get("template_id") != ACCOUNT_UPDATE:
        return None
    net_liquidation = to_float(message.get("net_liquidation_value"))
    return AccountSnapshot(
        account_id=str(message.get("account_id") or ""),
        total_value=net_liquidation,
        equity=net_liquidation,
        cash=to_float(message.get("total_cash_value")),
        buying_power=to_float(message.get("buying_power")),
        margin_used=to_float(message.get("initial_margin")),
        maintenance_margin=to_float(message.get("maintenance_margin")),
        available_funds=to_float(message.get("available_funds")),
        excess_liquidity=to_float(message.get("excess_liquidity")),
    )


def normalize_rithmic_order(message: Mapping[str, Any]) -> Optional[OrderStatus]:
    """Order update (template 102) -> OrderStatus."""
    if not isinstance(message, Mapping) or message.get("template_id") != ORDER_UPDATE:
        return None
    order_id = first_present(message, "order_id", "basket_id", "user_tag")
    if not order_id:
        raise NormalizationError("order update without an order id")

    quantity = to_float(first_present(message, "quantity", "total_quantity"))
    filled = to_float(first_present(message, "filled_quantity", "total_fill_size"))
    if quantity > 0:
        filled = min(max(filled, 0.0), quantity)

    return OrderStatus(
        order_id=str(order_id),
        symbol=str(message.get("symbol") or ""),
        side=parse_side(first_present(message, "side", "transaction_type")),
        quantity=quantity,
        filled_quantity=filled,
        avg_fill_price=to_float(first_present(message, "avg_fill_price", "fill_price")),
        state=normalize_order_state(first_present(message, "status", "completion_reason")),
        order_type=message.get("order_type") or message.get("price_type"),
        time_in_force=message.get("time_in_force") or message.get("duration"),
        client_order_id=message.get("user_tag"),
    )


def normalize_rithmic_position(message: Mapping[str, Any]) -> Optional[Position]:
    """Position update (template 103) -> Position; side from the sign of net_position."""
    if not isinstance(message, Mapping) or message.get("template_id") != POSITION_UPDATE:
        return None
    symbol = message.get("symbol")
    if not symbol:
        raise NormalizationError("position update without a symbol")
    net = to_float(first_present(message, "net_position", "net_quantity"))
    return Position(
        symbol=str(symbol),
        side=PositionSide.LONG if net > 0 else PositionSide.SHORT,
        quantity=abs(net),
        avg_price=to_float(first_present(message, "avg_price", "avg_open_fill_price")),
        unrealized_pnl=to_float(first_present(message, "unrealized_pnl", "open_position_pnl")),
        realized_pnl=to_float(first_present(message, "realized_pnl", "closed_position_pnl")),
        exchange=message.get("exchange") or None,
    )


class RithmicDialect(VenueDialect):
    """
    Session-login futures gateway.

    opening_messages() only sends the login; the account request and the
    market-data subscriptions go out as replies to a successful login
    response, so the dialect remembers the symbols it was asked for.
    """

    name = "rithmic"
    family = profiles.FUTURES
    requires_login = True
    endpoints: Dict[str, str] = {}

    def __init__(self, config, clock=None):
        super().__init__(config, clock)
        self._symbols: List[str] = []

    def stream_url(self) -> str:
        return profiles.stream_url(self.config.venue, self.config.sandbox, gateway=self.config.gateway)

    def auth_headers(self, method: str, path: str, body: Optional[Any] = None) -> Dict[str, str]:
        return {}

    def opening_messages(self, symbols: Iterable[str]) -> List[Any]:
        self._symbols = list(symbols)
        return [self.login_message()]

    def login_message(self) -> Dict[str, Any]:
        return {
            "template_id": LOGIN_REQUEST,
            "user_msg": [
                self.config.username,
                self.config.password,
                self.config.system_name,
                self.config.app_name,
                self.config.app_version,
            ],
        }

    def post_login_messages(self) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"template_id": ACCOUNT_REQUEST, "user_msg": []}]
        for symbol in self._symbols:
            code, exchange = split_symbol(symbol)
            messages.append(self.subscribe_message(code, exchange))
        return messages

    def decode_frame(self, raw: Union[str, bytes]) -> List[Any]:
        if isinstance(raw, (bytes, bytearray)):
            return [decode_binary_frame(raw)]
        return [json.loads(raw)]

    def parse_message(self, message: Any) -> Optional[StreamEvent]:
        if isinstance(message, Mapping) and message.get("template_id") == LOGIN_RESPONSE:
            if login_succeeded(message):
                return StreamEvent(SESSION, authenticated=True, replies=self.post_login_messages())
            return StreamEvent(SESSION, payload=message.get("rp_code"), authenticated=False)

        event = super().parse_message(message)
        if event is None and isinstance(message, Mapping):
            logger.debug("Ignoring rithmic template %s", message.get("template_id"))
        return event

    def normalize_tick(self, message):
        return normalize_rithmic_tick(message, self.timestamp_ms())

    def normalize_order_update(self, message):
        return normalize_rithmic_order(message)

    def normalize_account_update(self, message):
        return normalize_rithmic_account(message)

    def normalize_position_update(self, message):
        return normalize_rithmic_position(message)

    def order_message(self, request: OrderRequest, order_id: str) -> Dict[str, Any]:
        """
        New-order request (template 300).

        user_msg: symbol, exchange, side, quantity, type, price, stop price,
        time in force, account, then the client order id as the user tag.
        Optional prices are sent as empty strings.
        """
        code, default_exchange = split_symbol(request.symbol)
        exchange = request.exchange or default_exchange
        return {
            "template_id": NEW_ORDER,
            "user_msg": [
                code,
                exchange,
                request.side.value.upper(),
                _format_number(request.quantity),
                request.order_type.value.upper(),
                _format_number(request.price),
                _format_number(request.stop_price),
                request.time_in_force.value.upper(),
                request.account or self.config.account_id or "",
                order_id,
            ],
        }

    def cancel_message(self, order_id: str) -> Dict[str, Any]:
        return {"template_id": CANCEL_ORDER, "user_msg": [order_id]}

    def subscribe_message(self, symbol: str, exchange: str) -> Dict[str, Any]:
        return {"template_id": MARKET_DATA_SUBSCRIBE, "user_msg": [symbol, exchange]}


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return str(value)
