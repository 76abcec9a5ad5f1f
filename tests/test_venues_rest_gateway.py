"""
Tests for RestGateway.

**Purpose**: Verify URL construction, header merging, body encoding, response
parsing through the dialect, and the error policy (RequestError with status
code for non-2xx, status_code=None for transport failures, timeouts
re-raised unchanged).

**Testing philosophy**: The requests.Session is a Mock, so no request ever
leaves the process and every failure mode can be produced on demand.
"""

import json
from unittest.mock import Mock

import pytest
import requests

from src.config.settings import RestSettings, VenueConfig
from src.venues.crypto import BybitDialect
from src.venues.equities import AlpacaDialect
from src.venues.errors import ConfigurationError, NormalizationError, RequestError
from src.venues.futures import RithmicDialect
from src.venues.models import OrderRequest, OrderState, PositionSide, Side
from src.venues.rest import RestGateway


def _response(status_code=200, payload=None, text=None):
    response = Mock()
    response.status_code = status_code
    if payload is not None:
        response.json.return_value = payload
        response.text = json.dumps(payload)
        response.content = response.text.encode()
    else:
        response.text = text or ""
        response.content = response.text.encode()
        response.json.side_effect = ValueError("No JSON object could be decoded")
    return response


@pytest.fixture
def session():
    """
    Mock requests.Session.

    headers is a real dict so the gateway's session-level headers can be
    inspected.
    """
    mock = Mock(spec=requests.Session)
    mock.headers = {}
    return mock


@pytest.fixture
def alpaca_gateway(session):
    config = VenueConfig("alpaca", api_key="key-id", secret_key="secret", sandbox=True)
    return RestGateway(AlpacaDialect(config), RestSettings(timeout_seconds=10), session=session)


def test_session_headers(alpaca_gateway, session):
    assert session.headers["Accept"] == "application/json"
    assert session.headers["User-Agent"] == "multivenue/1.0"


def test_place_order_posts_payload_with_auth(alpaca_gateway, session):
    session.request.return_value = _response(
        200,
        {"id": "ord-1", "client_order_id": "cid-1", "symbol": "AAPL", "side": "buy", "qty": "10",
         "filled_qty": "0", "status": "accepted", "type": "limit", "time_in_force": "day",
         "submitted_at": "2024-03-01T14:30:00Z"},
    )
    request = OrderRequest("AAPL", "buy", 10, order_type="limit", price=190.0, client_order_id="cid-1")

    status = alpaca_gateway.place_order(request)

    session.request.assert_called_once()
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://paper-api.alpaca.markets/v2/orders")
    assert kwargs["headers"] == {
        "Content-Type": "application/json",
        "APCA-API-KEY-ID": "key-id",
        "APCA-API-SECRET-KEY": "secret",
    }
    assert json.loads(kwargs["data"]) == {
        "symbol": "AAPL",
        "qty": 10,
        "side": "buy",
        "type": "limit",
        "time_in_force": "day",
        "limit_price": 190.0,
        "client_order_id": "cid-1",
    }
    assert kwargs["timeout"] == 10

    assert status.order_id == "ord-1"
    assert status.state == OrderState.NEW
    assert status.side == Side.BUY
    assert status.quantity == 10.0


def test_place_order_backfills_sparse_response(alpaca_gateway, session):
    session.request.return_value = _response(200, {"orderId": "X1"})

    status = alpaca_gateway.place_order(OrderRequest("MSFT", "sell", 3, client_order_id="cid-9"))

    assert status.order_id == "X1"
    assert status.symbol == "MSFT"
    assert status.side == Side.SELL
    assert status.quantity == 3
    assert status.order_type == "market"
    assert status.client_order_id == "cid-9"


def test_place_order_validates_before_sending(alpaca_gateway, session):
    with pytest.raises(ValueError):
        alpaca_gateway.place_order(OrderRequest("AAPL", "buy", 0))

    session.request.assert_not_called()


def test_non_2xx_raises_request_error(alpaca_gateway, session):
    session.request.return_value = _response(403, {"message": "forbidden"})

    with pytest.raises(RequestError) as excinfo:
        alpaca_gateway.get_account()

    assert excinfo.value.status_code == 403
    assert "forbidden" in excinfo.value.body
    assert "API request failed: 403" in str(excinfo.value)


def test_transport_failure_has_no_status(alpaca_gateway, session):
    session.request.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(RequestError) as excinfo:
        alpaca_gateway.get_positions()

    assert excinfo.value.status_code is None
    assert "connection refused" in excinfo.value.body


def test_timeout_is_reraised(alpaca_gateway, session):
    session.request.side_effect = requests.Timeout("read timed out")

    with pytest.raises(requests.Timeout):
        alpaca_gateway.get_account()


def test_invalid_json_raises_request_error(alpaca_gateway, session):
    session.request.return_value = _response(200, text="<html>maintenance</html>")

    with pytest.raises(RequestError, match="Failed to parse JSON"):
        alpaca_gateway.get_account()


def test_cancel_order_quotes_id_and_accepts_empty_body(alpaca_gateway, session):
    session.request.return_value = _response(204, text="")

    alpaca_gateway.cancel_order("abc/123")

    args, kwargs = session.request.call_args
    assert args == ("DELETE", "https://paper-api.alpaca.markets/v2/orders/abc%2F123")
    assert kwargs["data"] is None


def test_cancel_order_rejects_empty_id(alpaca_gateway, session):
    with pytest.raises(ValueError):
        alpaca_gateway.cancel_order("  ")
    session.request.assert_not_called()


def test_get_account(alpaca_gateway, session):
    session.request.return_value = _response(
        200,
        {"account_number": "PA123", "portfolio_value": "105000", "equity": "105000",
         "buying_power": "200000", "cash": "50000", "daytrade_count": 2, "pattern_day_trader": False},
    )

    account = alpaca_gateway.get_account()

    assert account.account_id == "PA123"
    assert account.total_value == 105000.0
    assert account.buying_power == 200000.0
    assert account.day_trading_buying_power == 200000.0
    assert account.day_trade_count == 2


def test_get_account_unwraps_single_account_list(alpaca_gateway, session):
    session.request.return_value = _response(200, [{"account_number": "PA123", "cash": "50000"}])

    account = alpaca_gateway.get_account()

    assert account.account_id == "PA123"


@pytest.mark.parametrize("payload", [[], [{"account_number": "A"}, {"account_number": "B"}], "ok"])
def test_get_account_rejects_non_object_bodies(alpaca_gateway, session, payload):
    session.request.return_value = _response(200, payload)

    with pytest.raises(NormalizationError, match="Expected an account object"):
        alpaca_gateway.get_account()


def test_get_positions(alpaca_gateway, session):
    session.request.return_value = _response(
        200,
        [
            {"symbol": "AAPL", "qty": "10", "avg_entry_price": "180", "current_price": "190",
             "market_value": "1900", "unrealized_pl": "100"},
            {"symbol": "TSLA", "qty": "-5", "avg_entry_price": "200", "current_price": "190",
             "market_value": "-950", "unrealized_pl": "50"},
        ],
    )

    positions = alpaca_gateway.get_positions()

    assert [p.symbol for p in positions] == ["AAPL", "TSLA"]
    assert positions[0].side == PositionSide.LONG
    assert positions[1].side == PositionSide.SHORT
    assert positions[1].quantity == 5.0


def test_get_orders_passes_status_filter(alpaca_gateway, session):
    session.request.return_value = _response(200, [{"id": "1", "symbol": "AAPL", "qty": "1", "status": "new"}])

    orders = alpaca_gateway.get_orders("open")

    _, kwargs = session.request.call_args
    assert kwargs["params"] == {"status": "open"}
    assert orders[0].order_id == "1"


def test_get_orders_unwraps_envelope(session):
    config = VenueConfig("bybit", api_key="k", base_url="https://api.example.test/")
    gateway = RestGateway(BybitDialect(config), RestSettings(), session=session)
    session.request.return_value = _response(
        200, {"data": [{"orderId": "7", "symbol": "BTCUSDT", "quantity": "0.5", "status": "Filled"}]}
    )

    orders = gateway.get_orders()

    args, kwargs = session.request.call_args
    assert args == ("GET", "https://api.example.test/orders")
    assert kwargs["params"] is None
    assert kwargs["timeout"] is None
    assert orders[0].state == OrderState.FILLED


def test_unexpected_list_body_raises_normalization_error(alpaca_gateway, session):
    session.request.return_value = _response(200, {"unexpected": True})

    with pytest.raises(NormalizationError):
        alpaca_gateway.get_positions()


def test_stream_only_venue_has_no_rest(session):
    dialect = RithmicDialect(VenueConfig("rithmic", username="u", password="p"))
    gateway = RestGateway(dialect, RestSettings(), session=session)

    with pytest.raises(ConfigurationError, match="no REST endpoint"):
        gateway._request("GET", "/account")


def test_context_manager_closes_session(session):
    config = VenueConfig("alpaca", api_key="k")
    with RestGateway(AlpacaDialect(config), RestSettings(), session=session):
        pass

    session.close.assert_called_once()
