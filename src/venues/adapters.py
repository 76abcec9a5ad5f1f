"""
Adapter facades: the only objects the application talks to.

**Conceptual**: An adapter composes the three lower layers for one venue
family:

    TradingAdapter
      |- VenueDialect      (chosen by configure() from the registry)
      |- ConnectionManager (streaming session + callback registries)
      |- RestGateway       (order / account / position requests)

and presents one uniform surface regardless of venue:

    adapter = BrokerAdapter()
    adapter.configure(VenueConfig.from_env("ALPACA"))
    sub = adapter.on_market_data(print)
    await adapter.connect_market_data(["AAPL", "MSFT"])
    status = await adapter.place_order(OrderRequest("AAPL", "buy", 10))
    ...
    sub.dispose()
    await adapter.disconnect()

**Families**: BrokerAdapter (equities brokers and data vendors),
CryptoExchangeAdapter (crypto exchanges, leverage/margin extensions) and
FuturesGatewayAdapter (session-login futures gateway, where order entry
travels over the stream instead of REST).

**Async model**: every I/O method is a coroutine. The REST gateway is
blocking (requests), so its calls run in a worker thread via
asyncio.to_thread and never stall the event loop that drives the stream.

**Order ids**: place_order() assigns a client order id (uuid4 hex) when the
request has none, and the venue echoes it back where supported. Nothing is
deduplicated; two calls with the same request are two orders.
"""

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Type

import requests

from src.config.settings import Settings, VenueConfig, get_settings
from src.utils.time import Clock, get_real_clock, now_iso
from src.venues import profiles
from src.venues.base import VenueDialect
from src.venues.callbacks import Subscription
from src.venues.errors import ConfigurationError, VenueConnectionError
from src.venues.futures import split_symbol
from src.venues.models import (
    AccountSnapshot,
    MarketTick,
    OrderRequest,
    OrderState,
    OrderStatus,
    Position,
    normalize_order_state,
)
from src.venues.registry import dialect_for
from src.venues.rest import RestGateway
from src.venues.stream import ConnectFactory, ConnectionManager, ConnectionState, SleepFunction

logger = logging.getLogger(__name__)


def new_client_order_id() -> str:
    return uuid.uuid4().hex


class TradingAdapter:
    """
    Common facade for one venue family.

    Args:
        settings: Stream and REST settings. Defaults to get_settings().
        clock: Time source handed to dialects. Defaults to RealClock.
        connect_factory: WebSocket factory for the connection manager
                         (tests pass a fake).
        sleep: Backoff sleep for the connection manager (tests pass a fake).
        http_session: requests.Session for the REST gateway (tests pass a
                      mock).
    """

    family: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        connect_factory: Optional[ConnectFactory] = None,
        sleep: Optional[SleepFunction] = None,
        http_session: Optional[requests.Session] = None,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.clock = clock if clock is not None else get_real_clock()
        self._http_session = http_session
        self._stream = ConnectionManager(self.settings.stream, connect_factory, sleep)
        self._config: Optional[VenueConfig] = None
        self._dialect: Optional[VenueDialect] = None
        self._gateway: Optional[RestGateway] = None

    @property
    def config(self) -> Optional[VenueConfig]:
        return self._config

    @property
    def dialect(self) -> Optional[VenueDialect]:
        return self._dialect

    @property
    def connection_state(self) -> ConnectionState:
        return self._stream.state

    @property
    def reconnect_attempts(self) -> int:
        return self._stream.reconnect_attempts

    def configure(self, config: VenueConfig) -> None:
        """
        Adopt `config`, replacing any previous one. Does not connect.

        A live session for the previous config is torn down and the
        reconnection counter reset. Registered callbacks are kept.

        Raises:
            ConfigurationError: If the venue belongs to another family or has
                                no registered dialect.
        """
        if config.family != self.family:
            raise ConfigurationError(
                f"{type(self).__name__} handles {self.family} venues; "
                f"{config.venue!r} is a {config.family} venue"
            )
        dialect = dialect_for(config, self.clock)

        self._stream.bind(dialect)
        if self._gateway is not None:
            self._gateway.close()
        self._gateway = RestGateway(dialect, self.settings.rest, session=self._http_session)
        self._config = config
        self._dialect = dialect
        logger.info("Configured %s for %s (sandbox=%s)", type(self).__name__, config.venue, config.sandbox)

    async def connect_market_data(self, symbols: Iterable[str]) -> None:
        """
        Open the market-data stream for `symbols`.

        Raises:
            ConfigurationError: Before configure().
            ValueError: If no symbols are given.
            VenueConnectionError: If the venue has no streaming endpoint.
        """
        self._require_configured()
        if isinstance(symbols, str):
            symbols = [symbols]
        symbols = [s.strip() for s in symbols if s and s.strip()]
        if not symbols:
            raise ValueError("At least one symbol is required")
        await self._stream.connect(symbols)

    def on_market_data(self, callback: Callable[[MarketTick], None]) -> Subscription:
        return self._stream.ticks.add(callback)

    def on_order_update(self, callback: Callable[[OrderStatus], None]) -> Subscription:
        return self._stream.orders.add(callback)

    def on_account_update(self, callback: Callable[[AccountSnapshot], None]) -> Subscription:
        return self._stream.accounts.add(callback)

    def on_position_update(self, callback: Callable[[Position], None]) -> Subscription:
        return self._stream.positions.add(callback)

    async def place_order(self, request: OrderRequest) -> OrderStatus:
        """
        Submit an order through the venue's REST API.

        Raises:
            ConfigurationError: Before configure().
            ValueError: If the request fails validation.
            RequestError: If the venue rejects the request or is unreachable.
        """
        gateway = self._require_gateway()
        request.validate()
        if not request.client_order_id:
            request = replace(request, client_order_id=new_client_order_id())
        status = await asyncio.to_thread(gateway.place_order, request)
        logger.info("Placed %s %s %s on %s: %s", request.side.value, request.quantity,
                    request.symbol, self._config.venue, status.order_id)
        return status

    async def cancel_order(self, order_id: str) -> None:
        gateway = self._require_gateway()
        await asyncio.to_thread(gateway.cancel_order, order_id)

    async def get_account(self) -> AccountSnapshot:
        gateway = self._require_gateway()
        return await asyncio.to_thread(gateway.get_account)

    async def get_positions(self) -> List[Position]:
        gateway = self._require_gateway()
        return await asyncio.to_thread(gateway.get_positions)

    async def get_orders(self, status: Optional[str] = None) -> List[OrderStatus]:
        gateway = self._require_gateway()
        return await asyncio.to_thread(gateway.get_orders, status)

    async def disconnect(self) -> None:
        """
        Close the stream, clear every callback and discard the config.

        The adapter can be configured again afterwards.
        """
        await self._stream.disconnect()
        if self._gateway is not None:
            self._gateway.close()
        self._gateway = None
        self._dialect = None
        self._config = None
        self._stream.bind(None)

    def is_connected(self) -> bool:
        return self._stream.is_connected

    async def wait_closed(self) -> None:
        """Wait for the streaming session to end on its own."""
        await self._stream.wait_closed()

    def _require_configured(self) -> VenueDialect:
        if self._dialect is None:
            raise ConfigurationError(f"{type(self).__name__} is not configured; call configure() first")
        return self._dialect

    def _require_gateway(self) -> RestGateway:
        self._require_configured()
        return self._gateway

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False

    def __repr__(self) -> str:
        venue = self._config.venue if self._config else None
        return f"{type(self).__name__}(venue={venue!r}, state={self._stream.state.value})"


class BrokerAdapter(TradingAdapter):
    """Equities brokers and data vendors (Alpaca, Polygon, Finnhub, IB, TD Ameritrade)."""

    family = profiles.EQUITIES


class CryptoExchangeAdapter(TradingAdapter):
    """
    Crypto exchanges (Bybit, KuCoin, Kraken, Crypto.com, CoinEx, Bitget).

    Orders inherit leverage and margin mode from the config when the request
    does not set them.
    """

    family = profiles.CRYPTO


class FuturesGatewayAdapter(TradingAdapter):
    """
    Session-login futures gateway (Rithmic).

    **Conceptual**: There is no REST API. The stream logs in with
    username/password, and order entry, cancellation, account and position
    data all travel over that same socket. Consequently:

      - place_order / cancel_order require a logged-in session and raise
        VenueConnectionError otherwise.
      - place_order cannot wait for an exchange acknowledgement; it returns
        an OrderStatus in state NEW whose order_id is the client order id
        sent with the order. Later fills arrive through on_order_update().
      - get_account / get_positions / get_orders return the most recent
        snapshots received on the stream (None / empty before the first
        update).
    """

    family = profiles.FUTURES

    async def place_order(self, request: OrderRequest) -> OrderStatus:
        dialect = self._require_session()
        request.validate()
        order_id = request.client_order_id or new_client_order_id()

        await self._stream.send(dialect.order_message(request, order_id))
        logger.info("Sent %s %s %s to %s: %s", request.side.value, request.quantity,
                    request.symbol, self._config.venue, order_id)
        return OrderStatus(
            order_id=order_id,
            symbol=request.symbol,
            side=request.side,
            quantity=request.quantity,
            state=OrderState.NEW,
            order_type=request.order_type.value,
            time_in_force=request.time_in_force.value,
            submitted_at=now_iso(self.clock),
            client_order_id=order_id,
        )

    async def cancel_order(self, order_id: str) -> None:
        dialect = self._require_session()
        if not order_id or not str(order_id).strip():
            raise ValueError("order_id cannot be empty")
        await self._stream.send(dialect.cancel_message(str(order_id).strip()))

    async def subscribe_market_data(self, symbol: str, exchange: Optional[str] = None) -> None:
        """Add one instrument to a logged-in session."""
        dialect = self._require_session()
        code, default_exchange = split_symbol(symbol)
        await self._stream.send(dialect.subscribe_message(code, exchange or default_exchange))

    async def get_account(self) -> Optional[AccountSnapshot]:
        self._require_configured()
        return self._stream.latest_account

    async def get_positions(self) -> List[Position]:
        self._require_configured()
        return [p for p in self._stream.latest_positions.values() if p.quantity > 0]

    async def get_orders(self, status: Optional[str] = None) -> List[OrderStatus]:
        """
        Orders seen on the stream this session.

        status may be "open" (non-terminal orders) or any order status the
        canonical state mapping understands ("filled", "canceled", ...).
        """
        self._require_configured()
        orders = list(self._stream.latest_orders.values())
        if not status:
            return orders
        if status.strip().lower() == "open":
            return [o for o in orders if not o.is_terminal]
        wanted = normalize_order_state(status)
        return [o for o in orders if o.state == wanted]

    def _require_session(self):
        dialect = self._require_configured()
        if not self._stream.is_connected:
            raise VenueConnectionError(f"Not logged in to {self._config.venue}")
        return dialect


ADAPTER_CLASSES: Dict[str, Type[TradingAdapter]] = {
    profiles.EQUITIES: BrokerAdapter,
    profiles.CRYPTO: CryptoExchangeAdapter,
    profiles.FUTURES: FuturesGatewayAdapter,
}


def adapter_class_for(family: str) -> Type[TradingAdapter]:
    try:
        return ADAPTER_CLASSES[family]
    except KeyError:
        raise ConfigurationError(f"No adapter for venue family {family!r}") from None
