"""
Venue profile registry: static connection parameters per venue.

**Conceptual**: Everything an adapter needs to know about *where* a venue
lives is data, not behaviour: which family it belongs to, its REST base URL
(live and sandbox), and its streaming endpoint (live and sandbox). Adapters
derive the WebSocket URL purely from (venue, sandbox); there is no runtime
negotiation.

**Presets** mirror the connection choices offered to users ("alpaca" is the
paper account, "alpaca_live" the live one, "bybit_testnet" the Bybit testnet
...). A preset names a venue plus a sandbox flag plus a base URL; credentials
are supplied separately (see VenueConfig.from_preset).

This module has no dependencies on the rest of the package.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

EQUITIES = "equities"
CRYPTO = "crypto"
FUTURES = "futures"


@dataclass(frozen=True)
class VenueProfile:
    """
    Connection parameters for one venue.

    Attributes:
        name: Venue identifier (lowercase, e.g., "alpaca", "crypto_com").
        family: EQUITIES, CRYPTO or FUTURES.
        rest_url: Live REST base URL (None for stream-only venues).
        sandbox_rest_url: Sandbox/testnet REST base URL (falls back to rest_url).
        stream_url: Live WebSocket endpoint (None if the venue has no stream).
        sandbox_stream_url: Sandbox WebSocket endpoint (falls back to stream_url).
        session_auth: True for venues that log in over the stream with
                      username/password instead of signing requests with keys.
    """
    name: str
    family: str
    rest_url: Optional[str]
    sandbox_rest_url: Optional[str] = None
    stream_url: Optional[str] = None
    sandbox_stream_url: Optional[str] = None
    session_auth: bool = False


VENUE_PROFILES: Dict[str, VenueProfile] = {
    # Equities brokers / data vendors
    "alpaca": VenueProfile(
        name="alpaca",
        family=EQUITIES,
        rest_url="https://api.alpaca.markets/v2",
        sandbox_rest_url="https://paper-api.alpaca.markets/v2",
        stream_url="wss://stream.data.alpaca.markets/v2/iex",
        sandbox_stream_url="wss://stream.data.sandbox.alpaca.markets/v2/iex",
    ),
    "polygon": VenueProfile(
        name="polygon",
        family=EQUITIES,
        rest_url="https://api.polygon.io/v2",
        stream_url="wss://socket.polygon.io/stocks",
    ),
    "finnhub": VenueProfile(
        name="finnhub",
        family=EQUITIES,
        rest_url="https://finnhub.io/api/v1",
        stream_url="wss://ws.finnhub.io",
    ),
    "interactive_brokers": VenueProfile(
        name="interactive_brokers",
        family=EQUITIES,
        rest_url="https://localhost:5000/v1/api",
    ),
    "td_ameritrade": VenueProfile(
        name="td_ameritrade",
        family=EQUITIES,
        rest_url="https://api.tdameritrade.com/v1",
    ),
    # Crypto exchanges
    "bybit": VenueProfile(
        name="bybit",
        family=CRYPTO,
        rest_url="https://api.bybit.com",
        sandbox_rest_url="https://api-testnet.bybit.com",
        stream_url="wss://stream.bybit.com/v5/public/linear",
        sandbox_stream_url="wss://stream-testnet.bybit.com/v5/public/linear",
    ),
    "kucoin": VenueProfile(
        name="kucoin",
        family=CRYPTO,
        rest_url="https://api.kucoin.com",
        sandbox_rest_url="https://openapi-sandbox.kucoin.com",
        stream_url="wss://ws-api-spot.kucoin.com/",
        sandbox_stream_url="wss://ws-api-sandbox.kucoin.com/",
    ),
    "kraken": VenueProfile(
        name="kraken",
        family=CRYPTO,
        rest_url="https://api.kraken.com",
        stream_url="wss://ws.kraken.com",
    ),
    "crypto_com": VenueProfile(
        name="crypto_com",
        family=CRYPTO,
        rest_url="https://api.crypto.com/v2",
        sandbox_rest_url="https://uat-api.3ona.co/v2",
        stream_url="wss://stream.crypto.com/v2/market",
        sandbox_stream_url="wss://uat-stream.3ona.co/v2/market",
    ),
    "coinex": VenueProfile(
        name="coinex",
        family=CRYPTO,
        rest_url="https://api.coinex.com",
        stream_url="wss://socket.coinex.com/",
    ),
    "bitget": VenueProfile(
        name="bitget",
        family=CRYPTO,
        rest_url="https://api.bitget.com",
        sandbox_rest_url="https://api.bitgetapi.com",
        stream_url="wss://ws.bitgetapi.com/spot/v1/stream",
    ),
    # Futures gateways
    "rithmic": VenueProfile(
        name="rithmic",
        family=FUTURES,
        rest_url=None,
        stream_url="wss://rituz00100.rithmic.com:443",
        session_auth=True,
    ),
}


# preset name -> (venue, sandbox)
PRESETS: Dict[str, Tuple[str, bool]] = {
    "alpaca": ("alpaca", True),
    "alpaca_live": ("alpaca", False),
    "polygon": ("polygon", False),
    "finnhub": ("finnhub", False),
    "interactive_brokers": ("interactive_brokers", False),
    "td_ameritrade": ("td_ameritrade", False),
    "rithmic": ("rithmic", False),
    "rithmic_test": ("rithmic", True),
    "bybit": ("bybit", False),
    "bybit_testnet": ("bybit", True),
    "kucoin": ("kucoin", False),
    "kucoin_sandbox": ("kucoin", True),
    "kraken": ("kraken", False),
    "crypto_com": ("crypto_com", False),
    "crypto_com_sandbox": ("crypto_com", True),
    "coinex": ("coinex", False),
    "bitget": ("bitget", False),
    "bitget_sandbox": ("bitget", True),
}

ORDER_TYPES = ("market", "limit", "stop", "stop_limit")
TIME_IN_FORCE = ("day", "gtc", "ioc", "fok")
LEVERAGE_OPTIONS = (1, 2, 3, 5, 10, 20, 25, 50, 75, 100, 125)
MARGIN_MODES = ("isolated", "cross")
FUTURES_EXCHANGES = ("CME", "CBOT", "NYMEX", "COMEX", "ICE", "EUREX")


def get_profile(venue: str) -> VenueProfile:
    """
    Look up the profile for `venue` (case-insensitive).

    Raises:
        KeyError: If the venue is not registered. The message lists the
                  supported venues.
    """
    key = (venue or "").strip().lower()
    try:
        return VENUE_PROFILES[key]
    except KeyError:
        raise KeyError(
            f"Unsupported venue: {venue!r}. Supported: {sorted(VENUE_PROFILES)}"
        ) from None


def resolve_preset(preset: str) -> Tuple[VenueProfile, bool]:
    """Return (profile, sandbox) for a preset name."""
    key = (preset or "").strip().lower()
    if key not in PRESETS:
        raise KeyError(f"Unknown preset: {preset!r}. Known presets: {sorted(PRESETS)}")
    venue, sandbox = PRESETS[key]
    return VENUE_PROFILES[venue], sandbox


def rest_base_url(venue: str, sandbox: bool) -> Optional[str]:
    """REST base URL for (venue, sandbox), or None for stream-only venues."""
    profile = get_profile(venue)
    if sandbox and profile.sandbox_rest_url:
        return profile.sandbox_rest_url
    return profile.rest_url


def stream_url(venue: str, sandbox: bool, gateway: Optional[str] = None) -> str:
    """
    WebSocket endpoint for (venue, sandbox).

    Session-auth gateways append the configured gateway name as a path
    segment (e.g., "wss://rituz00100.rithmic.com:443/Chicago").

    Raises:
        KeyError: If the venue is unknown.
        ValueError: If the venue has no streaming endpoint.
    """
    profile = get_profile(venue)
    url = profile.sandbox_stream_url if sandbox and profile.sandbox_stream_url else profile.stream_url
    if url is None:
        raise ValueError(f"Venue {profile.name!r} has no streaming endpoint")
    if gateway:
        return f"{url.rstrip('/')}/{gateway.strip('/')}"
    return url
