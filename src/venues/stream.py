"""
Connection manager: one streaming session per adapter.

**Conceptual**: The manager owns a single WebSocket at a time and drives its
whole lifecycle:

    IDLE -> CONNECTING -> OPEN -> (socket lost) -> RECONNECTING -> CONNECTING ...
                                                -> IDLE (attempts exhausted,
                                                         login rejected, or
                                                         disconnect())

Incoming frames go through the venue dialect (decode_frame, parse_message)
and the resulting events are fanned out to the callbacks registered for
their kind, in registration order. Frames that fail to decode or normalize
are logged and dropped; they never end the session.

**Reconnection**: when the socket closes for any reason other than an
explicit disconnect(), attempt n (1-based) waits
StreamSettings.backoff_delay_ms(n) = 2**n * 1000 ms by default, so five
failures in a row produce 2s, 4s, 8s, 16s, 32s and then the manager goes
IDLE. A successful open resets the counter; for session venues only a
successful login does, so a gateway that drops the socket before answering
the login still uses up the attempts.
After exhaustion only a fresh connect() starts again.

**Stale sessions**: every connect()/disconnect() bumps a session generation.
Frames read by a socket from an older generation are discarded before they
can reach a callback, so nothing fires after disconnect().

The socket factory and the sleep function are injected so tests can run the
full reconnect sequence instantly with fakes.
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import websockets

from src.config.settings import StreamSettings, get_settings
from src.venues.base import ACCOUNT, ORDER, POSITION, SESSION, TICK, StreamEvent, VenueDialect
from src.venues.callbacks import CallbackRegistry
from src.venues.errors import NormalizationError, VenueConnectionError
from src.venues.models import AccountSnapshot, MarketTick, OrderStateTracker, OrderStatus, Position

logger = logging.getLogger(__name__)

ConnectFactory = Callable[..., Awaitable[Any]]
SleepFunction = Callable[[float], Awaitable[Any]]

# Errors a dialect may raise for a frame it cannot make sense of.
_FRAME_ERRORS = (NormalizationError, ValueError, TypeError, KeyError, IndexError, AttributeError)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"


class LoginRejected(VenueConnectionError):
    """The gateway refused the session login. Not retried."""


class ConnectionManager:
    """
    Streaming session owner for one adapter.

    Args:
        settings: Reconnection policy. Defaults to get_settings().stream.
        connect_factory: Coroutine function (url, **kwargs) returning a
                         connected socket with send(), close() and async
                         iteration over incoming frames. Defaults to
                         websockets.connect.
        sleep: Coroutine function used for backoff delays (seconds).
               Defaults to asyncio.sleep.

    Attributes:
        ticks / orders / accounts / positions: CallbackRegistry per event kind.
        latest_account: Last AccountSnapshot received on the stream.
        latest_positions: Last Position per symbol received on the stream.
        latest_orders: Last accepted OrderStatus per order id.
    """

    def __init__(
        self,
        settings: Optional[StreamSettings] = None,
        connect_factory: Optional[ConnectFactory] = None,
        sleep: Optional[SleepFunction] = None,
    ):
        self.settings = settings if settings is not None else get_settings().stream
        self._connect_factory = connect_factory if connect_factory is not None else websockets.connect
        self._sleep = sleep if sleep is not None else asyncio.sleep

        self.ticks: CallbackRegistry[MarketTick] = CallbackRegistry(TICK)
        self.orders: CallbackRegistry[OrderStatus] = CallbackRegistry(ORDER)
        self.accounts: CallbackRegistry[AccountSnapshot] = CallbackRegistry(ACCOUNT)
        self.positions: CallbackRegistry[Position] = CallbackRegistry(POSITION)

        self.latest_account: Optional[AccountSnapshot] = None
        self.latest_positions: Dict[str, Position] = {}
        self.latest_orders: Dict[str, OrderStatus] = {}

        self._dialect: Optional[VenueDialect] = None
        self._tracker = OrderStateTracker()
        self._state = ConnectionState.IDLE
        self._attempts = 0
        self._generation = 0
        self._socket: Any = None
        self._task: Optional[asyncio.Task] = None
        self._authenticated = False
        self._symbols: List[str] = []

    # ---------- configuration ----------

    def bind(self, dialect: Optional[VenueDialect]) -> None:
        """
        Attach a dialect (or detach with None).

        Any running session is torn down without awaiting it and the attempt
        counter is reset. Registered callbacks are kept.
        """
        self.close_nowait()
        self._dialect = dialect
        self._attempts = 0

    @property
    def dialect(self) -> Optional[VenueDialect]:
        return self._dialect

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def is_connected(self) -> bool:
        """True while the socket is open and, for login venues, the login succeeded."""
        if self._state != ConnectionState.OPEN or self._socket is None:
            return False
        if self._dialect is not None and self._dialect.requires_login:
            return self._authenticated
        return True

    # ---------- lifecycle ----------

    async def connect(self, symbols: Iterable[str]) -> None:
        """
        Start a streaming session for `symbols`, replacing any previous one.

        Returns once the session task is started; opening, the subscription
        handshake and any reconnection happen in the background.

        Raises:
            VenueConnectionError: If no dialect is bound or the venue has no
                                  streaming endpoint.
        """
        if self._dialect is None:
            raise VenueConnectionError("Cannot connect: no venue configured")
        try:
            url = self._dialect.stream_url()
        except ValueError as e:
            raise VenueConnectionError(str(e)) from e

        await self._stop_session()
        self._symbols = list(dict.fromkeys(symbols))
        self._attempts = 0
        self._generation += 1
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation, url))

    async def disconnect(self) -> None:
        """Close the socket, clear every callback and reset all session state."""
        await self._stop_session()
        for registry in (self.ticks, self.orders, self.accounts, self.positions):
            registry.clear()
        self._tracker.clear()
        self.latest_account = None
        self.latest_positions = {}
        self.latest_orders = {}
        self._attempts = 0
        logger.info("Stream disconnected")

    def close_nowait(self) -> None:
        """
        Tear down the current session without awaiting it.

        Used from synchronous code (adapter reconfiguration). The session task
        is cancelled and closes its own socket as it unwinds.
        """
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._socket = None
        self._authenticated = False
        self._state = ConnectionState.IDLE

    async def wait_closed(self) -> None:
        """Wait until the current session task ends (exhaustion, rejection or disconnect)."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def send(self, message: Any) -> None:
        """
        Send one message on the live socket, encoded by the dialect.

        Raises:
            VenueConnectionError: If there is no open socket.
        """
        if self._socket is None or self._state != ConnectionState.OPEN:
            raise VenueConnectionError("Cannot send: stream is not open")
        await self._socket.send(self._dialect.encode_message(message))

    async def _stop_session(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        socket, self._socket = self._socket, None
        self._authenticated = False
        self._state = ConnectionState.IDLE

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if socket is not None:
            await socket.close()

    # ---------- session loop ----------

    async def _run(self, generation: int, url: str) -> None:
        while True:
            try:
                await self._session(generation, url)
            except LoginRejected as e:
                logger.error("Login rejected by %s: %s", url, e)
                if generation == self._generation:
                    self._state = ConnectionState.IDLE
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Stream session to %s failed: %s", url, e)

            if generation != self._generation:
                return
            self._socket = None
            self._authenticated = False

            if self._attempts >= self.settings.max_reconnect_attempts:
                logger.error(
                    "Max reconnection attempts reached (%s) for %s",
                    self.settings.max_reconnect_attempts, url,
                )
                self._state = ConnectionState.IDLE
                return

            self._attempts += 1
            delay_ms = self.settings.backoff_delay_ms(self._attempts)
            self._state = ConnectionState.RECONNECTING
            logger.info(
                "Attempting to reconnect in %sms (attempt %s)", delay_ms, self._attempts
            )
            await self._sleep(delay_ms / 1000.0)
            if generation != self._generation:
                return
            self._state = ConnectionState.CONNECTING

    async def _session(self, generation: int, url: str) -> None:
        kwargs = {}
        if self.settings.open_timeout_seconds is not None:
            kwargs["open_timeout"] = self.settings.open_timeout_seconds

        socket = await self._connect_factory(url, **kwargs)
        try:
            if generation != self._generation:
                return
            self._socket = socket
            self._state = ConnectionState.OPEN
            if not self._dialect.requires_login:
                self._attempts = 0
            logger.info("Stream connected to %s", url)

            for message in self._dialect.opening_messages(self._symbols):
                await socket.send(self._dialect.encode_message(message))

            async for raw in socket:
                if generation != self._generation:
                    return
                await self._handle_frame(raw, generation)
        finally:
            if self._socket is socket:
                self._socket = None
            await socket.close()

        logger.info("Stream to %s closed", url)

    async def _handle_frame(self, raw: Any, generation: int) -> None:
        dialect = self._dialect
        try:
            messages = dialect.decode_frame(raw)
        except _FRAME_ERRORS as e:
            logger.warning("Dropping undecodable frame from %s: %s", dialect.name, e)
            return

        for message in messages:
            try:
                event = dialect.parse_message(message)
            except _FRAME_ERRORS as e:
                logger.warning("Dropping malformed %s message: %s", dialect.name, e)
                continue
            if event is None:
                continue
            if generation != self._generation:
                return
            await self._dispatch(event)

    async def _dispatch(self, event: StreamEvent) -> None:
        if event.kind == SESSION:
            if not event.authenticated:
                raise LoginRejected(f"rp_code={event.payload!r}")
            self._authenticated = True
            self._attempts = 0
            logger.info("Session login succeeded")
            for reply in event.replies:
                await self._socket.send(self._dialect.encode_message(reply))
        elif event.kind == TICK:
            self.ticks.dispatch(event.payload)
        elif event.kind == ORDER:
            status = event.payload
            if self._tracker.accept(status):
                self.latest_orders[status.order_id] = status
                self.orders.dispatch(status)
        elif event.kind == ACCOUNT:
            self.latest_account = event.payload
            self.accounts.dispatch(event.payload)
        elif event.kind == POSITION:
            self.latest_positions[event.payload.symbol] = event.payload
            self.positions.dispatch(event.payload)
        else:
            logger.debug("Ignoring stream event of kind %r", event.kind)
