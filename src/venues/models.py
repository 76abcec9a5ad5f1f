"""
Canonical records every venue normalizes into.

**Conceptual**: Venues disagree on field names, units and nesting. Bybit calls
the last price `lastPrice` and ships it as a string, Polygon calls it `p`,
Rithmic calls it `last_trade_price`. The rest of the application never sees
those differences: each venue's normalizer translates its wire format into
the dataclasses below, and callbacks, REST results and the tabular views in
src.data.frames all speak this one vocabulary.

**Order lifecycle**: OrderState, ALLOWED_TRANSITIONS and OrderStateTracker
define the canonical state machine

    NEW -> PARTIALLY_FILLED -> FILLED
    NEW -> FILLED | CANCELED | REJECTED
    PARTIALLY_FILLED -> CANCELED

with FILLED, CANCELED and REJECTED terminal. Venue-specific status strings
are mapped onto these states by normalize_order_state().
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeInForce(str, Enum):
    DAY = "day"
    GTC = "gtc"
    IOC = "ioc"
    FOK = "fok"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class OrderState(str, Enum):
    NEW = "new"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"


TERMINAL_ORDER_STATES: FrozenSet[OrderState] = frozenset(
    {
        OrderState.FILLED,
        OrderState.CANCELED,
        OrderState.REJECTED,
    }
)

# Key: previous state (None when the order has not been seen before).
# Repeated states (partially_filled -> partially_filled) are allowed.
ALLOWED_TRANSITIONS: Dict[Optional[OrderState], FrozenSet[OrderState]] = {
    None: frozenset(OrderState),
    OrderState.NEW: frozenset(
        {
            OrderState.NEW,
            OrderState.PARTIALLY_FILLED,
            OrderState.FILLED,
            OrderState.CANCELED,
            OrderState.REJECTED,
        }
    ),
    OrderState.PARTIALLY_FILLED: frozenset(
        {
            OrderState.PARTIALLY_FILLED,
            OrderState.FILLED,
            OrderState.CANCELED,
        }
    ),
    OrderState.FILLED: frozenset(),
    OrderState.CANCELED: frozenset(),
    OrderState.REJECTED: frozenset(),
}

# Venue status vocabulary -> canonical state. Keys are lowercased with
# spaces/dashes folded to underscores before lookup.
_STATE_ALIASES: Dict[str, OrderState] = {
    "new": OrderState.NEW,
    "accepted": OrderState.NEW,
    "pending_new": OrderState.NEW,
    "accepted_for_bidding": OrderState.NEW,
    "open": OrderState.NEW,
    "live": OrderState.NEW,
    "active": OrderState.NEW,
    "working": OrderState.NEW,
    "held": OrderState.NEW,
    "calculated": OrderState.NEW,
    "pending_replace": OrderState.NEW,
    "pending_cancel": OrderState.NEW,
    "replaced": OrderState.NEW,
    "partially_filled": OrderState.PARTIALLY_FILLED,
    "partial_fill": OrderState.PARTIALLY_FILLED,
    "partiallyfilled": OrderState.PARTIALLY_FILLED,
    "filled": OrderState.FILLED,
    "fill": OrderState.FILLED,
    "full_fill": OrderState.FILLED,
    "done": OrderState.FILLED,
    "canceled": OrderState.CANCELED,
    "cancelled": OrderState.CANCELED,
    "expired": OrderState.CANCELED,
    "done_for_day": OrderState.CANCELED,
    "stopped": OrderState.CANCELED,
    "suspended": OrderState.CANCELED,
    "rejected": OrderState.REJECTED,
}


def normalize_order_state(raw: Optional[str]) -> OrderState:
    """
    Map a venue status string onto the canonical OrderState.

    Unknown or missing statuses map to NEW (the order exists, nothing more is
    known about it) and are logged at DEBUG.

    Example:
        >>> normalize_order_state("PARTIALLY_FILLED")
        <OrderState.PARTIALLY_FILLED: 'partially_filled'>
        >>> normalize_order_state("expired")
        <OrderState.CANCELED: 'canceled'>
    """
    if raw is None:
        return OrderState.NEW
    if isinstance(raw, OrderState):
        return raw
    key = str(raw).strip().lower().replace(" ", "_").replace("-", "_")
    state = _STATE_ALIASES.get(key)
    if state is None:
        logger.debug("Unknown order status %r, treating as new", raw)
        return OrderState.NEW
    return state


def is_terminal_state(state: OrderState) -> bool:
    """Return True if the given state is terminal."""
    return state in TERMINAL_ORDER_STATES


def is_valid_transition(prev_state: Optional[OrderState], next_state: OrderState) -> bool:
    """Return True if the transition prev_state -> next_state is allowed."""
    allowed = ALLOWED_TRANSITIONS.get(prev_state)
    if allowed is None:
        return False
    return next_state in allowed


@dataclass
class MarketTick:
    """
    One market-data update for a symbol.

    The first six fields are always populated by every normalizer. Everything
    else is optional and only set by venues that send it.

    Attributes:
        symbol: Venue symbol as sent on the wire (e.g., "AAPL", "BTCUSDT", "ESM4").
        price: Last traded price.
        bid: Best bid. Trade-only feeds approximate it as price - 0.01.
        ask: Best ask. Trade-only feeds approximate it as price + 0.01.
        volume: Period-scoped volume (trade size, 24h volume, session volume
                depending on venue).
        timestamp: Epoch milliseconds.
        change: Absolute change over the venue's reference period, if sent.
        change_percent: Percentage change (already multiplied by 100).
    """
    symbol: str
    price: float
    bid: float
    ask: float
    volume: float
    timestamp: int
    change: Optional[float] = None
    change_percent: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    bid_size: Optional[float] = None
    ask_size: Optional[float] = None
    settlement_price: Optional[float] = None
    exchange: Optional[str] = None
    venue: Optional[str] = None


@dataclass
class OrderRequest:
    """
    An order as the UI submits it, before any venue translation.

    Attributes:
        symbol: Instrument symbol.
        side: Side.BUY or Side.SELL (plain strings are coerced).
        quantity: Order size. Must be positive. Crypto venues accept
                  fractional sizes, so this is a float.
        order_type: market, limit, stop or stop_limit.
        price: Limit price. Required for limit and stop_limit.
        stop_price: Trigger price. Required for stop and stop_limit.
        time_in_force: day, gtc, ioc or fok.
        leverage / margin_mode: Derivatives extensions (crypto venues).
        exchange / account: Futures extensions (routing exchange, account id).
        client_order_id: Caller-chosen id echoed back by venues that support it.
    """
    symbol: str
    side: Side
    quantity: float
    order_type: OrderType = OrderType.MARKET
    price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: TimeInForce = TimeInForce.DAY
    leverage: Optional[float] = None
    margin_mode: Optional[str] = None
    exchange: Optional[str] = None
    account: Optional[str] = None
    client_order_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.side, Side):
            self.side = Side(str(self.side).lower())
        if not isinstance(self.order_type, OrderType):
            self.order_type = OrderType(str(self.order_type).lower())
        if not isinstance(self.time_in_force, TimeInForce):
            self.time_in_force = TimeInForce(str(self.time_in_force).lower())

    def validate(self) -> None:
        """
        Check the request is internally consistent.

        Raises:
            ValueError: If the symbol is empty, quantity is not positive, a
                        limit-type order has no price, or a stop-type order
                        has no stop price.
        """
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Symbol cannot be empty")
        if self.quantity is None or self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got: {self.quantity}")
        if self.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and self.price is None:
            raise ValueError(f"{self.order_type.value} orders require a price")
        if self.order_type in (OrderType.STOP, OrderType.STOP_LIMIT) and self.stop_price is None:
            raise ValueError(f"{self.order_type.value} orders require a stop_price")


@dataclass
class OrderStatus:
    """
    Venue-reported state of one order.

    filled_quantity is clamped into [0, quantity] by the parsers.
    Timestamps are kept as the venue sent them (usually ISO strings).
    """
    order_id: str
    symbol: str
    side: Optional[Side]
    quantity: float
    filled_quantity: float = 0.0
    avg_fill_price: float = 0.0
    state: OrderState = OrderState.NEW
    order_type: Optional[str] = None
    time_in_force: Optional[str] = None
    submitted_at: Optional[str] = None
    filled_at: Optional[str] = None
    canceled_at: Optional[str] = None
    client_order_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)


@dataclass
class Position:
    """
    Open position in one instrument.

    quantity is always a magnitude; direction lives in side.
    """
    symbol: str
    side: PositionSide
    quantity: float
    avg_price: float
    market_price: float = 0.0
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    leverage: Optional[float] = None
    margin_mode: Optional[str] = None
    liquidation_price: Optional[float] = None
    exchange: Optional[str] = None


@dataclass
class AccountSnapshot:
    """
    Venue account summary.

    Equities venues populate the day-trading fields, crypto venues the
    unrealized P&L, futures gateways the margin/liquidity fields. Unset
    numeric fields are 0.0.
    """
    account_id: str = ""
    total_value: float = 0.0
    buying_power: float = 0.0
    cash: float = 0.0
    equity: float = 0.0
    margin_used: float = 0.0
    day_trading_buying_power: float = 0.0
    day_trade_count: int = 0
    pattern_day_trader: bool = False
    unrealized_pnl: float = 0.0
    maintenance_margin: float = 0.0
    available_funds: float = 0.0
    excess_liquidity: float = 0.0


@dataclass
class OrderStateTracker:
    """
    Remembers the last state per order id and rejects regressions.

    **Conceptual**: Streams can replay or reorder order events (especially
    across reconnects). Once an order is FILLED, CANCELED or REJECTED, a late
    NEW or PARTIALLY_FILLED for the same id must not resurrect it. The
    connection manager runs every order update through accept() before
    dispatching.

    Transitions that are merely unusual (NEW after PARTIALLY_FILLED) are let
    through with a warning; only leaving a terminal state is blocked.
    """
    _states: Dict[str, OrderState] = field(default_factory=dict)

    def accept(self, status: OrderStatus) -> bool:
        """Record `status` and return True if it should be dispatched."""
        previous = self._states.get(status.order_id)
        if previous is not None and is_terminal_state(previous):
            if previous == status.state:
                return True
            logger.warning(
                "Dropping order update %s: %s -> %s leaves a terminal state",
                status.order_id, previous.value, status.state.value,
            )
            return False
        if not is_valid_transition(previous, status.state):
            logger.warning(
                "Unexpected order transition %s: %s -> %s",
                status.order_id, previous.value if previous else None, status.state.value,
            )
        self._states[status.order_id] = status.state
        return True

    def state_of(self, order_id: str) -> Optional[OrderState]:
        return self._states.get(order_id)

    def clear(self) -> None:
        self._states.clear()
