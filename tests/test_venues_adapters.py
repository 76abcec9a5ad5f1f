"""
Tests for the adapter facades.

**Purpose**: Verify the uniform surface every family presents: lifecycle
rules (nothing works before configure(), disconnect() discards the config),
family checks, REST operations dispatched through the gateway, client order
ids, and the futures gateway's stream-based order entry and snapshots.

The HTTP session is a Mock and the WebSocket plumbing comes from the fakes in
conftest.py, so no network is touched.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from src.config.settings import RestSettings, Settings, StreamSettings, VenueConfig
from src.utils.time import FrozenClock, RealClock
from src.venues import profiles
from src.venues.adapters import (
    BrokerAdapter,
    CryptoExchangeAdapter,
    FuturesGatewayAdapter,
    adapter_class_for,
)
from src.venues.errors import ConfigurationError, VenueConnectionError
from src.venues.models import OrderRequest, OrderState
from src.venues.stream import ConnectionState

SETTINGS = Settings(stream=StreamSettings(max_reconnect_attempts=0), rest=RestSettings())
CLOCK = FrozenClock(datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc))
ALPACA = VenueConfig("alpaca", api_key="key-id", secret_key="secret", sandbox=True)
BYBIT = VenueConfig("bybit", api_key="k", sandbox=True, leverage=5)
RITHMIC = VenueConfig("rithmic", username="trader", password="pw", account_id="ACC-1")


def _response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = json.dumps(payload)
    response.content = response.text.encode()
    return response


@pytest.fixture
def http_session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def make_adapter(connector, fake_sleep, http_session):
    def build(adapter_cls, settings=SETTINGS):
        return adapter_cls(
            settings=settings,
            clock=CLOCK,
            connect_factory=connector,
            sleep=fake_sleep,
            http_session=http_session,
        )
    return build


def test_operations_before_configure_raise(make_adapter):
    adapter = make_adapter(BrokerAdapter)

    with pytest.raises(ConfigurationError, match="configure"):
        asyncio.run(adapter.connect_market_data(["AAPL"]))
    with pytest.raises(ConfigurationError):
        asyncio.run(adapter.place_order(OrderRequest("AAPL", "buy", 1)))
    with pytest.raises(ConfigurationError):
        asyncio.run(adapter.get_account())
    assert not adapter.is_connected()


def test_callbacks_can_be_registered_before_configure(make_adapter):
    adapter = make_adapter(BrokerAdapter)

    subscription = adapter.on_market_data(print)

    assert subscription.active


def test_configure_rejects_other_family(make_adapter):
    adapter = make_adapter(BrokerAdapter)

    with pytest.raises(ConfigurationError, match="handles equities venues"):
        adapter.configure(BYBIT)
    assert adapter.config is None


def test_configure_selects_dialect(make_adapter):
    adapter = make_adapter(CryptoExchangeAdapter)

    adapter.configure(BYBIT)

    assert adapter.dialect.name == "bybit"
    assert adapter.config is BYBIT
    assert adapter.connection_state == ConnectionState.IDLE
    assert "bybit" in repr(adapter)


def test_connect_requires_symbols(make_adapter):
    adapter = make_adapter(BrokerAdapter)
    adapter.configure(ALPACA)

    with pytest.raises(ValueError, match="At least one symbol"):
        asyncio.run(adapter.connect_market_data(["", "  "]))


def test_connect_accepts_single_symbol_string(make_adapter, connector, make_socket):
    socket = make_socket()
    connector.queue(socket)
    adapter = make_adapter(BrokerAdapter)
    adapter.configure(ALPACA)

    async def scenario():
        await adapter.connect_market_data("AAPL")
        await adapter.wait_closed()

    asyncio.run(scenario())

    assert json.loads(socket.sent[-1]) == {"action": "subscribe", "trades": ["AAPL"]}


def test_callbacks_survive_reconfigure(make_adapter, connector, make_socket):
    connector.queue(make_socket(frames=[json.dumps({"T": "t", "S": "AAPL", "p": 1.5, "s": 1, "t": 1709303400000})]))
    adapter = make_adapter(BrokerAdapter)
    ticks = []
    adapter.on_market_data(ticks.append)
    adapter.configure(ALPACA)
    adapter.configure(ALPACA.with_updates(api_key="rotated"))

    async def scenario():
        await adapter.connect_market_data(["AAPL"])
        await adapter.wait_closed()

    asyncio.run(scenario())

    assert [t.price for t in ticks] == [1.5]
    assert adapter.config.api_key == "rotated"


def test_place_order_assigns_client_order_id(make_adapter, http_session):
    http_session.request.return_value = _response({"id": "ord-1", "status": "new"})
    adapter = make_adapter(BrokerAdapter)
    adapter.configure(ALPACA)

    status = asyncio.run(adapter.place_order(OrderRequest("AAPL", "buy", 10)))

    sent = json.loads(http_session.request.call_args.kwargs["data"])
    assert len(sent["client_order_id"]) == 32
    assert status.client_order_id == sent["client_order_id"]
    assert status.order_id == "ord-1"
    assert status.symbol == "AAPL"


def test_place_order_keeps_caller_client_order_id(make_adapter, http_session):
    http_session.request.return_value = _response({"id": "ord-2", "status": "new"})
    adapter = make_adapter(BrokerAdapter)
    adapter.configure(ALPACA)

    status = asyncio.run(adapter.place_order(OrderRequest("AAPL", "buy", 1, client_order_id="mine")))

    assert status.client_order_id == "mine"


def test_place_order_validation_happens_before_request(make_adapter, http_session):
    adapter = make_adapter(BrokerAdapter)
    adapter.configure(ALPACA)

    with pytest.raises(ValueError):
        asyncio.run(adapter.place_order(OrderRequest("AAPL", "buy", 1, order_type="limit")))
    http_session.request.assert_not_called()


def test_crypto_rest_operations(make_adapter, http_session):
    adapter = make_adapter(CryptoExchangeAdapter)
    adapter.configure(BYBIT)
    http_session.request.side_effect = [
        _response({"totalBalance": "1000", "availableBalance": "700"}),
        _response({"data": [{"symbol": "BTCUSDT", "size": "0.1", "entryPrice": "60000", "markPrice": "61000"}]}),
        _response({"orderId": "9", "status": "New"}),
        _response({}, status_code=200),
    ]

    async def scenario():
        account = await adapter.get_account()
        positions = await adapter.get_positions()
        status = await adapter.place_order(OrderRequest("BTCUSDT", "buy", 0.1))
        await adapter.cancel_order("9")
        return account, positions, status

    account, positions, status = asyncio.run(scenario())

    assert account.buying_power == 700.0
    assert positions[0].market_value == pytest.approx(6100.0)
    assert status.order_id == "9"
    urls = [c.args[1] for c in http_session.request.call_args_list]
    assert urls == [
        "https://api-testnet.bybit.com/account",
        "https://api-testnet.bybit.com/positions",
        "https://api-testnet.bybit.com/order",
        "https://api-testnet.bybit.com/order/9",
    ]
    order_body = json.loads(http_session.request.call_args_list[2].kwargs["data"])
    assert order_body["leverage"] == 5


def test_disconnect_discards_config_and_callbacks(make_adapter, http_session):
    adapter = make_adapter(BrokerAdapter)
    subscription = adapter.on_order_update(print)
    adapter.configure(ALPACA)

    asyncio.run(adapter.disconnect())

    assert adapter.config is None
    assert adapter.dialect is None
    assert not subscription.active
    http_session.close.assert_called()
    with pytest.raises(ConfigurationError):
        asyncio.run(adapter.get_orders())


def test_async_context_manager_disconnects(make_adapter):
    adapter = make_adapter(CryptoExchangeAdapter)
    adapter.configure(BYBIT)

    async def scenario():
        async with adapter:
            pass

    asyncio.run(scenario())

    assert adapter.config is None


def test_adapter_class_for():
    assert adapter_class_for(profiles.EQUITIES) is BrokerAdapter
    assert adapter_class_for(profiles.CRYPTO) is CryptoExchangeAdapter
    assert adapter_class_for(profiles.FUTURES) is FuturesGatewayAdapter
    with pytest.raises(ConfigurationError):
        adapter_class_for("options")


# ---------- futures gateway ----------

GATEWAY_FRAMES = [
    json.dumps({"template_id": 11, "rp_code": ["0"]}),
    json.dumps({"template_id": 101, "account_id": "ACC-1", "net_liquidation_value": 100000}),
    json.dumps({"template_id": 103, "symbol": "ESM4", "net_position": 2, "avg_price": 5200}),
    json.dumps({"template_id": 103, "symbol": "NQM4", "net_position": 0, "avg_price": 0}),
    json.dumps({"template_id": 102, "order_id": "G1", "symbol": "ESM4", "side": "BUY",
                "quantity": 2, "filled_quantity": 2, "status": "filled"}),
    json.dumps({"template_id": 102, "order_id": "G2", "symbol": "ESM4", "side": "SELL",
                "quantity": 1, "status": "open"}),
]


def test_futures_orders_need_a_session(make_adapter):
    adapter = make_adapter(FuturesGatewayAdapter)
    adapter.configure(RITHMIC)

    with pytest.raises(VenueConnectionError, match="Not logged in"):
        asyncio.run(adapter.place_order(OrderRequest("ESM4", "buy", 1)))
    with pytest.raises(VenueConnectionError):
        asyncio.run(adapter.cancel_order("G1"))


def test_futures_snapshots_empty_before_updates(make_adapter):
    adapter = make_adapter(FuturesGatewayAdapter)
    adapter.configure(RITHMIC)

    async def scenario():
        return await adapter.get_account(), await adapter.get_positions(), await adapter.get_orders()

    assert asyncio.run(scenario()) == (None, [], [])


def test_futures_order_entry_over_stream(make_adapter, connector, make_socket, settle_tasks):
    socket = make_socket(frames=GATEWAY_FRAMES, hold_open=True)
    connector.queue(socket)
    adapter = make_adapter(FuturesGatewayAdapter, settings=Settings(stream=StreamSettings()))
    adapter.configure(RITHMIC)

    async def scenario():
        await adapter.connect_market_data(["ESM4:CME"])
        await settle_tasks()
        assert adapter.is_connected()

        status = await adapter.place_order(
            OrderRequest("ESM4:CME", "buy", 1, order_type="limit", price=5200.5, client_order_id="cid-1")
        )
        await adapter.cancel_order("G2")
        await adapter.subscribe_market_data("CLN4", exchange="NYMEX")

        snapshot = (
            await adapter.get_account(),
            await adapter.get_positions(),
            await adapter.get_orders(),
            await adapter.get_orders("open"),
            await adapter.get_orders("filled"),
        )
        await adapter.disconnect()
        return status, snapshot

    status, (account, positions, orders, open_orders, filled) = asyncio.run(scenario())

    assert status.order_id == "cid-1"
    assert status.state == OrderState.NEW
    assert status.submitted_at == "2024-03-01T14:30:00+00:00"

    sent = [json.loads(m) for m in socket.sent]
    assert sent[-3] == {
        "template_id": 300,
        "user_msg": ["ESM4", "CME", "BUY", "1", "LIMIT", "5200.5", "", "DAY", "ACC-1", "cid-1"],
    }
    assert sent[-2] == {"template_id": 301, "user_msg": ["G2"]}
    assert sent[-1] == {"template_id": 100, "user_msg": ["CLN4", "NYMEX"]}

    assert account.total_value == 100000.0
    assert [p.symbol for p in positions] == ["ESM4"]
    assert {o.order_id for o in orders} == {"G1", "G2"}
    assert [o.order_id for o in open_orders] == ["G2"]
    assert [o.order_id for o in filled] == ["G1"]


def test_default_clock_is_real_and_reaches_dialect(connector, fake_sleep, http_session):
    adapter = BrokerAdapter(settings=SETTINGS, connect_factory=connector, sleep=fake_sleep,
                            http_session=http_session)

    adapter.configure(ALPACA)

    assert isinstance(adapter.clock, RealClock)
    assert adapter.dialect.clock is adapter.clock
