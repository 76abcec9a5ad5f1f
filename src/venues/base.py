"""
Venue dialect: the single extension point for venue-specific behaviour.

**Conceptual**: Every venue speaks its own dialect of the same conversation.
They all have a streaming endpoint, an opening handshake, a way to
authenticate REST calls, a wire format for ticks, and REST bodies for orders,
accounts and positions. VenueDialect captures that conversation as a small
capability interface; each venue implements it once, and the connection
manager, REST gateway and adapter facades only ever talk to the interface.

**Adding a venue** means:
  1. A profile entry in src.venues.profiles (URLs, family).
  2. A VenueDialect subclass (opening messages, auth headers, tick normalizer).
  3. Registering it in src.venues.registry.
Nothing else changes.

**Normalizer contract**: normalize_* methods return a canonical record, or
None when the message is not a data event this dialect cares about (acks,
heartbeats, subscription confirmations). None means "ignore", not "error".
Structurally valid messages with unusable values raise NormalizationError,
which the connection manager logs and drops.

The generic REST parsers at the bottom of this module implement the field
fallbacks shared by the equities brokers (id | order_id, qty | quantity, ...).
Dialects override them where their bodies differ.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from src.config.settings import VenueConfig
from src.utils.time import Clock, get_real_clock, now_millis
from src.venues import profiles
from src.venues.errors import NormalizationError
from src.venues.models import (
    AccountSnapshot,
    MarketTick,
    OrderRequest,
    OrderStatus,
    Position,
    PositionSide,
    Side,
    normalize_order_state,
)

logger = logging.getLogger(__name__)

TICK = "tick"
ORDER = "order"
ACCOUNT = "account"
POSITION = "position"
SESSION = "session"

# Approximate spread applied by trade-only feeds that carry no quote.
TRADE_SPREAD = 0.01


@dataclass
class StreamEvent:
    """
    A decoded streaming message the connection manager should act on.

    Attributes:
        kind: TICK, ORDER, ACCOUNT, POSITION or SESSION.
        payload: The canonical record (MarketTick, OrderStatus, ...). None for
                 SESSION events.
        replies: Messages to send back on the same socket (login follow-ups).
        authenticated: For SESSION events, the login outcome.
    """
    kind: str
    payload: Any = None
    replies: List[Any] = field(default_factory=list)
    authenticated: Optional[bool] = None


def first_present(source: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Value of the first key that is present and not None/empty-string.

    Mirrors the "a or b or c" fallback chains venues force on us
    (`filled_qty` on one broker, `filled_quantity` on another).
    """
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return default


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a number sent as int, float or string; `default` when absent or unparseable."""
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def require_float(source: Mapping[str, Any], key: str) -> float:
    """
    Parse a mandatory numeric field.

    Raises:
        NormalizationError: If the field is missing or not numeric.
    """
    value = source.get(key)
    if value is None or value == "":
        raise NormalizationError(f"Missing required field {key!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"Field {key!r} is not numeric: {value!r}")


def percent_of(change: float, price: float) -> float:
    """change as a percentage of price; 0.0 when price is zero."""
    if not price:
        return 0.0
    return change / price * 100.0


class VenueDialect(ABC):
    """
    Capability interface every venue implements.

    Subclasses set `name` and `family` and implement auth_headers,
    opening_messages and normalize_tick. Everything else has a default that
    fits most REST/JSON venues.

    Args:
        config: The venue configuration (credentials, sandbox flag, base URL).
        clock: Time source for auth timestamps and for ticks of venues that
               send none. Defaults to RealClock.
    """

    name: str = ""
    family: str = ""
    requires_login: bool = False

    # operation -> path template, appended to config.base_url
    endpoints: Dict[str, str] = {
        "place_order": "/orders",
        "cancel_order": "/orders/{order_id}",
        "account": "/account",
        "positions": "/positions",
        "orders": "/orders",
    }

    def __init__(self, config: VenueConfig, clock: Optional[Clock] = None):
        self.config = config
        self.clock = clock if clock is not None else get_real_clock()

    # ---------- streaming ----------

    def stream_url(self) -> str:
        return profiles.stream_url(self.config.venue, self.config.sandbox)

    @abstractmethod
    def opening_messages(self, symbols: Iterable[str]) -> List[Any]:
        """Messages sent right after the socket opens (auth and/or subscribe)."""

    def decode_frame(self, raw: Union[str, bytes]) -> List[Any]:
        """
        Turn one WebSocket frame into a list of messages.

        JSON arrays are treated as batches of messages; venues whose single
        messages are arrays (Kraken) override this.
        """
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if isinstance(data, list):
            return data
        return [data]

    def encode_message(self, message: Any) -> str:
        return json.dumps(message)

    def parse_message(self, message: Any) -> Optional[StreamEvent]:
        """Classify one decoded message; None if it is not a data event."""
        tick = self.normalize_tick(message)
        if tick is not None:
            return StreamEvent(TICK, tick)
        order = self.normalize_order_update(message)
        if order is not None:
            return StreamEvent(ORDER, order)
        account = self.normalize_account_update(message)
        if account is not None:
            return StreamEvent(ACCOUNT, account)
        position = self.normalize_position_update(message)
        if position is not None:
            return StreamEvent(POSITION, position)
        return None

    @abstractmethod
    def normalize_tick(self, message: Any) -> Optional[MarketTick]:
        """Translate a market-data message; None for anything else."""

    def normalize_order_update(self, message: Any) -> Optional[OrderStatus]:
        return None

    def normalize_account_update(self, message: Any) -> Optional[AccountSnapshot]:
        return None

    def normalize_position_update(self, message: Any) -> Optional[Position]:
        return None

    # ---------- REST ----------

    @abstractmethod
    def auth_headers(self, method: str, path: str, body: Optional[Any] = None) -> Dict[str, str]:
        """Venue-specific authentication headers for one request."""

    def endpoint(self, operation: str, **params: Any) -> str:
        try:
            template = self.endpoints[operation]
        except KeyError:
            raise ValueError(f"{self.name} has no endpoint for operation {operation!r}") from None
        return template.format(**params)

    def order_payload(self, request: OrderRequest) -> Dict[str, Any]:
        """
        Request body for placing `request`. Optional fields are omitted.

        The default uses the snake_case vocabulary most brokers share.
        """
        payload: Dict[str, Any] = {
            "symbol": request.symbol,
            "qty": request.quantity,
            "side": request.side.value,
            "type": request.order_type.value,
            "time_in_force": request.time_in_force.value,
        }
        if request.price is not None:
            payload["limit_price"] = request.price
        if request.stop_price is not None:
            payload["stop_price"] = request.stop_price
        if request.client_order_id:
            payload["client_order_id"] = request.client_order_id
        return payload

    def parse_order(self, body: Mapping[str, Any]) -> OrderStatus:
        return parse_order_body(body)

    def parse_orders(self, body: Any) -> List[OrderStatus]:
        return [self.parse_order(item) for item in as_list(body)]

    def parse_account(self, body: Mapping[str, Any]) -> AccountSnapshot:
        return parse_account_body(body)

    def parse_positions(self, body: Any) -> List[Position]:
        return [parse_position_body(item) for item in as_list(body)]

    # ---------- helpers ----------

    def timestamp_ms(self) -> int:
        return now_millis(self.clock)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(venue={self.config.venue!r}, sandbox={self.config.sandbox})"


def as_list(body: Any) -> List[Any]:
    """Unwrap a list response, accepting the {"data": [...]}-style envelopes some venues use."""
    if body is None:
        return []
    if isinstance(body, list):
        return body
    if isinstance(body, Mapping):
        for key in ("orders", "positions", "data", "result", "items"):
            inner = body.get(key)
            if isinstance(inner, list):
                return inner
    raise NormalizationError(f"Expected a list response, got {type(body).__name__}")


def parse_side(raw: Any) -> Optional[Side]:
    if raw is None or raw == "":
        return None
    text = str(raw).strip().lower()
    if text in ("buy", "b", "bid", "long"):
        return Side.BUY
    if text in ("sell", "s", "ask", "short"):
        return Side.SELL
    return None


def parse_order_body(body: Mapping[str, Any]) -> OrderStatus:
    """
    Generic order body -> OrderStatus.

    Field fallbacks: id | order_id | orderId, qty | quantity,
    filled_qty | filled_quantity, filled_avg_price | avg_fill_price,
    order_type | type, submitted_at | created_at. Missing numbers become 0
    and filled quantity is clamped into [0, quantity].
    """
    quantity = to_float(first_present(body, "qty", "quantity", "size"))
    filled = to_float(first_present(body, "filled_qty", "filled_quantity", "filledSize"))
    filled = min(max(filled, 0.0), quantity) if quantity > 0 else max(filled, 0.0)

    return OrderStatus(
        order_id=str(first_present(body, "id", "order_id", "orderId", default="")),
        symbol=str(body.get("symbol", "")),
        side=parse_side(body.get("side")),
        quantity=quantity,
        filled_quantity=filled,
        avg_fill_price=to_float(first_present(body, "filled_avg_price", "avg_fill_price", "avgPrice")),
        state=normalize_order_state(first_present(body, "status", "state")),
        order_type=first_present(body, "order_type", "type"),
        time_in_force=body.get("time_in_force"),
        submitted_at=first_present(body, "submitted_at", "created_at"),
        filled_at=body.get("filled_at"),
        canceled_at=body.get("canceled_at"),
        client_order_id=first_present(body, "client_order_id", "clientOrderId"),
    )


def parse_account_body(body: Mapping[str, Any]) -> AccountSnapshot:
    """Generic (equities broker) account body -> AccountSnapshot."""
    buying_power = to_float(body.get("buying_power"))
    return AccountSnapshot(
        account_id=str(first_present(body, "account_number", "id", "account_id", default="")),
        total_value=to_float(first_present(body, "portfolio_value", "equity")),
        buying_power=buying_power,
        cash=to_float(body.get("cash")),
        equity=to_float(first_present(body, "equity", "portfolio_value")),
        margin_used=to_float(body.get("initial_margin")),
        day_trading_buying_power=to_float(body.get("daytrading_buying_power"), default=buying_power),
        day_trade_count=int(to_float(body.get("daytrade_count"))),
        pattern_day_trader=bool(body.get("pattern_day_trader", False)),
        maintenance_margin=to_float(body.get("maintenance_margin")),
    )


def parse_position_body(body: Mapping[str, Any]) -> Position:
    """
    Generic position body -> Position.

    Side is derived from the sign of qty/quantity: positive is long, anything
    else short. An explicit "side" field wins when present.
    """
    signed_qty = to_float(first_present(body, "qty", "quantity"))
    explicit = parse_side(body.get("side"))
    if explicit is not None:
        side = PositionSide.LONG if explicit == Side.BUY else PositionSide.SHORT
    else:
        side = PositionSide.LONG if signed_qty > 0 else PositionSide.SHORT

    return Position(
        symbol=str(body.get("symbol", "")),
        side=side,
        quantity=abs(signed_qty),
        avg_price=to_float(first_present(body, "avg_entry_price", "avg_price")),
        market_price=to_float(first_present(body, "current_price", "market_price")),
        market_value=to_float(body.get("market_value")),
        unrealized_pnl=to_float(first_present(body, "unrealized_pl", "unrealized_pnl")),
        realized_pnl=to_float(first_present(body, "realized_pl", "realized_pnl")),
    )
