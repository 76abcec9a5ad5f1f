"""
Tests for per-venue REST authentication headers.

Each venue expects its own header names; a missing or misspelled one means a
401 at the venue. These tests pin the exact header set per venue.
"""

from datetime import datetime, timezone

import pytest

from src.config.settings import VenueConfig
from src.utils.time import FrozenClock
from src.venues.registry import dialect_for

CLOCK = FrozenClock(datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc))
NOW = "1709303400000"


def _headers(venue, **credentials):
    credentials.setdefault("api_key", "KEY")
    credentials.setdefault("secret_key", "SECRET")
    dialect = dialect_for(VenueConfig(venue, **credentials), CLOCK)
    return dialect.auth_headers("GET", "/account")


@pytest.mark.parametrize(
    "venue, expected",
    [
        ("alpaca", {"APCA-API-KEY-ID": "KEY", "APCA-API-SECRET-KEY": "SECRET"}),
        ("polygon", {"Authorization": "Bearer KEY"}),
        ("finnhub", {"X-Finnhub-Token": "KEY"}),
        ("interactive_brokers", {"Authorization": "Bearer KEY"}),
        ("td_ameritrade", {"Authorization": "Bearer KEY"}),
        ("bybit", {"X-BAPI-API-KEY": "KEY", "X-BAPI-TIMESTAMP": NOW, "X-BAPI-RECV-WINDOW": "5000"}),
        ("kraken", {"API-Key": "KEY"}),
        ("crypto_com", {"X-CRO-API-KEY": "KEY"}),
        ("coinex", {"AccessId": "KEY", "Tonce": NOW}),
        ("bitget", {"ACCESS-KEY": "KEY", "ACCESS-TIMESTAMP": NOW}),
    ],
)
def test_auth_headers(venue, expected):
    assert _headers(venue) == expected


def test_kucoin_headers_include_passphrase():
    assert _headers("kucoin", passphrase="PASS") == {
        "KC-API-KEY": "KEY",
        "KC-API-TIMESTAMP": NOW,
        "KC-API-PASSPHRASE": "PASS",
    }


def test_secret_never_leaks_into_crypto_headers():
    """Exchanges take the secret as an HMAC key, never as a header value."""
    for venue in ("bybit", "kucoin", "kraken", "crypto_com", "coinex", "bitget"):
        assert "SECRET" not in _headers(venue, passphrase="PASS").values()


def test_session_gateway_sends_no_headers():
    dialect = dialect_for(VenueConfig("rithmic", username="u", password="p"), CLOCK)

    assert dialect.auth_headers("GET", "/account") == {}
