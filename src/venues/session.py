"""
Trading session: explicit owner of adapter instances.

**Conceptual**: Adapters are ordinary objects, not process-wide singletons.
A TradingSession creates them on demand (one per venue), configures them, and
disconnects all of them when it ends:

    async with TradingSession() as session:
        broker = session.open(VenueConfig.from_env("ALPACA"))
        crypto = session.open(VenueConfig.from_env("BYBIT"))
        broker.on_market_data(handle_tick)
        await broker.connect_market_data(["AAPL"])
        ...
    # every adapter disconnected here

Two sessions never share adapters, so tests (or two accounts on the same
venue) cannot leak state into each other.
"""

import asyncio
import logging
from typing import Any, Dict, Iterator, Optional

from src.config.settings import Settings, VenueConfig, get_settings
from src.utils.time import Clock
from src.venues.adapters import TradingAdapter, adapter_class_for
from src.venues.errors import ConfigurationError

logger = logging.getLogger(__name__)


class TradingSession:
    """
    Container for the adapters an application uses.

    Args:
        settings: Shared settings handed to every adapter.
        clock: Shared clock handed to every adapter.
        **adapter_options: Extra keyword arguments for adapter constructors
                           (connect_factory, sleep, http_session).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        **adapter_options: Any,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.clock = clock
        self._adapter_options = adapter_options
        self._adapters: Dict[str, TradingAdapter] = {}

    def open(self, config: VenueConfig, name: Optional[str] = None) -> TradingAdapter:
        """
        Return the adapter registered under `name` (default: the venue id),
        configured with `config`.

        An existing adapter under that name is reconfigured in place, so
        callbacks registered on it survive a credential change.

        Raises:
            ConfigurationError: If `name` already holds an adapter for another
                                venue family (remove() it first).
        """
        key = name or config.venue
        adapter = self._adapters.get(key)
        if adapter is None:
            adapter = adapter_class_for(config.family)(
                settings=self.settings, clock=self.clock, **self._adapter_options
            )
            adapter.configure(config)
            self._adapters[key] = adapter
            return adapter
        if adapter.family != config.family:
            raise ConfigurationError(
                f"{key!r} holds a {adapter.family} adapter; remove it before opening a {config.family} venue"
            )
        adapter.configure(config)
        return adapter

    def get(self, name: str) -> TradingAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            raise KeyError(f"No adapter named {name!r} in this session") from None

    async def remove(self, name: str) -> None:
        """Disconnect the adapter registered under `name` and forget it."""
        adapter = self.get(name)
        del self._adapters[name]
        await adapter.disconnect()

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[TradingAdapter]:
        return iter(list(self._adapters.values()))

    def __len__(self) -> int:
        return len(self._adapters)

    async def close(self) -> None:
        """Disconnect every adapter and forget them."""
        adapters, self._adapters = list(self._adapters.values()), {}
        results = await asyncio.gather(
            *(adapter.disconnect() for adapter in adapters), return_exceptions=True
        )
        for adapter, result in zip(adapters, results):
            if isinstance(result, Exception):
                logger.error("Failed to disconnect %r: %s", adapter, result)

    async def __aenter__(self) -> "TradingSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
