"""
Dialect registry: venue id -> VenueDialect class.

This is the one place that knows every concrete dialect. Adapters call
dialect_for(config) at configure() time and never branch on venue names
themselves.
"""

from typing import Dict, Optional, Type

from src.config.settings import VenueConfig
from src.utils.time import Clock
from src.venues import crypto, equities, futures
from src.venues.base import VenueDialect
from src.venues.errors import ConfigurationError

DIALECTS: Dict[str, Type[VenueDialect]] = {
    cls.name: cls
    for cls in (
        equities.AlpacaDialect,
        equities.PolygonDialect,
        equities.FinnhubDialect,
        equities.InteractiveBrokersDialect,
        equities.TDAmeritradeDialect,
        crypto.BybitDialect,
        crypto.KuCoinDialect,
        crypto.KrakenDialect,
        crypto.CryptoComDialect,
        crypto.CoinExDialect,
        crypto.BitgetDialect,
        futures.RithmicDialect,
    )
}


def dialect_for(config: VenueConfig, clock: Optional[Clock] = None) -> VenueDialect:
    """
    Instantiate the dialect for `config.venue`.

    Raises:
        ConfigurationError: If no dialect is registered for the venue.
    """
    try:
        dialect_cls = DIALECTS[config.venue]
    except KeyError:
        raise ConfigurationError(
            f"No dialect registered for venue {config.venue!r}. Known: {sorted(DIALECTS)}"
        ) from None
    return dialect_cls(config, clock)
