from __future__ import annotations

import asyncio

import ccxt
import pytest

from bridgepy.src.trading.bridge_routing.exceptions import MarketUnavailable, OrderRejected
from bridgepy.src.trading.bridge_routing.exchange import ExchangeConnection


def _markets():
    return {
        "ETH/BTC": {
            "id": "ETHBTC",
            "base": "ETH",
            "quote": "BTC",
            "active": True,
            "spot": True,
            "info": {
                "filters": [
                    {"filterType": "PRICE_FILTER", "tickSize": "0.00000100"},
                    {"filterType": "LOT_SIZE", "stepSize": "0.00010000"},
                ]
            },
            "precision": {"amount": 0.001},
        },
        "XLM/BTC": {
            "id": "XLMBTC",
            "base": "XLM",
            "quote": "BTC",
            "active": True,
            "spot": True,
            "info": {},
            "precision": {"amount": 1.0},
        },
        "DOGE/BTC": {"id": "DOGEBTC", "base": "DOGE", "quote": "BTC", "active": False, "spot": True},
    }


class _FakeRestClient:
    precisionMode = ccxt.TICK_SIZE

    def __init__(self, *, order=None, order_error=None):
        self.order_books = {
            "ETH/BTC": {
                "bids": [[0.05, 1.0], [0.049, 2.0]],
                "asks": [[0.051, 1.0], [0.052, 2.0]],
                "timestamp": 1680000000000,
            }
        }
        self.order = order
        self.order_error = order_error
        self.created_orders = []
        self.book_requests = []

    def load_markets(self):
        return _markets()

    def fetch_order_book(self, symbol, limit=None):
        self.book_requests.append((symbol, limit))
        if symbol not in self.order_books:
            raise ccxt.BadSymbol(f"binance does not have market symbol {symbol}")
        return self.order_books[symbol]

    def fetch_ticker(self, symbol):
        return {"symbol": symbol, "last": 0.0505}

    def fetch_balance(self):
        return {"BTC": {"free": 1.5, "used": 0.0, "total": 1.5}, "free": {"BTC": 1.5}}

    def amount_to_precision(self, symbol, amount):
        return f"{amount:.4f}"

    def create_order(self, symbol, order_type, side, amount, price=None, params=None):
        self.created_orders.append((symbol, order_type, side, amount, price, params))
        if self.order_error is not None:
            raise self.order_error
        return self.order


class _FakeWebsocketClient:
    def __init__(self, books=None, error=None, trades=None):
        self.books = list(books or [])
        self.trades = list(trades or [])
        self.error = error
        self.closed = False
        self._idle = asyncio.Event()

    async def watch_order_book(self, symbol, limit=None):
        if self.error is not None:
            raise self.error
        if self.books:
            return self.books.pop(0)
        await self._idle.wait()

    async def watch_trades(self, symbol, since=None, limit=None):
        if self.error is not None:
            raise self.error
        if self.trades:
            return self.trades.pop(0)
        await self._idle.wait()

    async def close(self):
        self.closed = True


def _connection(rest_client=None, **kwargs):
    kwargs.setdefault("enable_websocket", False)
    return ExchangeConnection("binance", rest_client=rest_client or _FakeRestClient(), **kwargs)


def test_market_ids_resolve_to_ccxt_symbols() -> None:
    connection = _connection()

    assert connection.resolve_symbol("ethbtc") == "ETH/BTC"
    assert connection.resolve_symbol("XLM/BTC") == "XLM/BTC"
    with pytest.raises(MarketUnavailable) as excinfo:
        connection.resolve_symbol("ETCBTC")
    assert excinfo.value.market == "ETCBTC"


def test_list_markets_skips_inactive_pairs() -> None:
    connection = _connection()

    assert connection.list_markets() == [
        {"market": "ETHBTC", "base": "ETH", "quote": "BTC"},
        {"market": "XLMBTC", "base": "XLM", "quote": "BTC"},
    ]


def test_min_step_prefers_lot_size_filter() -> None:
    connection = _connection()

    assert connection.get_min_step("ETHBTC") == pytest.approx(0.0001)
    assert connection.get_min_step("XLMBTC") == pytest.approx(1.0)

    min_steps = asyncio.run(connection.fetch_min_steps("ETHBTC", "XLMBTC"))
    assert min_steps.sell_min_step == pytest.approx(0.0001)
    assert min_steps.buy_min_step == 1.0


def test_min_step_converts_decimal_places_precision() -> None:
    client = _FakeRestClient()
    client.precisionMode = ccxt.DECIMAL_PLACES
    client.load_markets = lambda: {
        "XLM/BTC": {"id": "XLMBTC", "base": "XLM", "quote": "BTC", "precision": {"amount": 2}}
    }
    connection = _connection(client)

    assert connection.get_min_step("XLMBTC") == pytest.approx(0.01)


def test_fetch_order_book_normalises_and_translates_errors() -> None:
    client = _FakeRestClient()
    connection = _connection(client, order_book_depth=20)

    snapshot = asyncio.run(connection.fetch_order_book("ETHBTC"))

    assert snapshot.symbol == "ETHBTC"
    assert snapshot.top_of_book() == (0.05, 0.051)
    assert client.book_requests == [("ETH/BTC", 20)]

    with pytest.raises(MarketUnavailable):
        asyncio.run(connection.fetch_order_book("XLMBTC"))


def test_last_price_and_balance() -> None:
    connection = _connection()

    assert asyncio.run(connection.fetch_last_price("ETHBTC")) == pytest.approx(0.0505)
    assert asyncio.run(connection.fetch_available_balance("btc")) == pytest.approx(1.5)
    assert asyncio.run(connection.fetch_available_balance("XLM")) == 0.0


def test_live_market_order_parses_full_response() -> None:
    order = {
        "id": 12345,
        "info": {
            "symbol": "ETHBTC",
            "fills": [
                {"price": "0.05000000", "qty": "0.60000000", "commission": "0.00001", "commissionAsset": "BNB", "tradeId": 11},
                {"price": "0.04900000", "qty": "0.40000000", "commission": "0.00001", "commissionAsset": "BNB", "tradeId": 12},
            ],
        },
    }
    client = _FakeRestClient(order=order)
    connection = _connection(client, make_trades=True)

    result = asyncio.run(connection.place_market_order("ETHBTC", "sell", 1.0))

    symbol, order_type, side, amount, price, params = client.created_orders[0]
    assert (symbol, order_type, side, price) == ("ETH/BTC", "market", "sell", None)
    assert amount == pytest.approx(1.0)
    assert params == {"newOrderRespType": "FULL"}
    assert result.order_id == "12345"
    assert [fill.trade_id for fill in result.fills] == ["11", "12"]
    assert result.fills[1].price == pytest.approx(0.049)
    assert result.fills[0].commission_asset == "BNB"


def test_live_market_order_falls_back_to_unified_trades() -> None:
    order = {
        "id": "9",
        "info": {},
        "trades": [{"id": "3", "price": 0.051, "amount": 2.0, "fee": {"cost": 0.002, "currency": "ETH"}}],
    }
    connection = _connection(_FakeRestClient(order=order), make_trades=True)

    result = asyncio.run(connection.place_market_order("ETHBTC", "buy", 2.0))

    assert result.symbol == "ETHBTC"
    [fill] = result.fills
    assert (fill.price, fill.quantity, fill.commission, fill.commission_asset) == (0.051, 2.0, 0.002, "ETH")


def test_exchange_rejection_becomes_order_rejected() -> None:
    client = _FakeRestClient(order_error=ccxt.InsufficientFunds("Account has insufficient balance"))
    connection = _connection(client, make_trades=True)

    with pytest.raises(OrderRejected) as excinfo:
        asyncio.run(connection.place_market_order("ETHBTC", "buy", 1.0))

    assert excinfo.value.market == "ETHBTC"
    assert "insufficient balance" in str(excinfo.value)


def test_non_positive_order_quantity_is_rejected_locally() -> None:
    client = _FakeRestClient()
    connection = _connection(client, make_trades=True)

    with pytest.raises(OrderRejected):
        asyncio.run(connection.place_market_order("ETHBTC", "sell", 0.0))
    assert client.created_orders == []


def test_dry_run_order_walks_the_live_book() -> None:
    client = _FakeRestClient()
    connection = _connection(client)

    result = asyncio.run(connection.place_market_order("ETHBTC", "sell", 1.5))

    assert client.created_orders == []
    [fill] = result.fills
    assert fill.quantity == pytest.approx(1.5)
    assert fill.price == pytest.approx((0.05 * 1.0 + 0.049 * 0.5) / 1.5)
    assert fill.commission_asset == "BTC"
    assert result.order_id == "dry-run-1"


def test_websocket_failure_falls_back_to_rest_polling() -> None:
    websocket = _FakeWebsocketClient(error=ccxt.NotSupported("watchOrderBook() is not supported"))
    connection = _connection(websocket_client=websocket, poll_interval=0.0)

    async def _first_snapshot():
        feed = connection.watch_order_book("ETHBTC")
        try:
            return await feed.__anext__()
        finally:
            await feed.aclose()

    snapshot = asyncio.run(_first_snapshot())

    assert snapshot.best_bid().price == 0.05


def test_subscription_forwards_snapshots_until_cancelled() -> None:
    books = [
        {"bids": [[0.05, 1.0]], "asks": [[0.051, 1.0]]},
        {"bids": [[0.06, 1.0]], "asks": [[0.061, 1.0]]},
    ]
    websocket = _FakeWebsocketClient(books=books)
    connection = _connection(websocket_client=websocket, websocket_timeout=None)
    received = []

    async def _run():
        done = asyncio.Event()

        def _on_update(snapshot):
            received.append(snapshot)
            if len(received) == 1:
                raise RuntimeError("handler failure is logged, not fatal")
            done.set()

        subscription = connection.subscribe_order_book("ETHBTC", _on_update)
        await asyncio.wait_for(done.wait(), timeout=1.0)
        await subscription.cancel()
        await connection.close()
        return subscription

    subscription = asyncio.run(_run())

    assert [snapshot.best_bid().price for snapshot in received] == [0.05, 0.06]
    assert subscription.active is False
    assert websocket.closed is True


def test_subscribe_to_unknown_market_fails_fast() -> None:
    connection = _connection()

    async def _run():
        connection.subscribe_order_book("ETCBTC", lambda snapshot: None)

    with pytest.raises(MarketUnavailable):
        asyncio.run(_run())


def test_credentials_are_normalised_for_ccxt() -> None:
    normalised = ExchangeConnection._normalise_credentials(
        {"api_key": "key", "SECRET": "shh", "password": None}
    )

    assert normalised == {"apiKey": "key", "secret": "shh"}


def test_last_price_subscription_forwards_latest_trade_price() -> None:
    trades = [
        [{"id": "1", "price": 0.0501, "amount": 1.0}, {"id": "2", "price": 0.0502, "amount": 0.5}],
        [{"id": "3", "price": None}],
        [{"id": "4", "price": 0.0499, "amount": 2.0}],
    ]
    websocket = _FakeWebsocketClient(trades=trades)
    connection = _connection(websocket_client=websocket, websocket_timeout=None)
    received = []

    async def _run():
        done = asyncio.Event()

        def _on_price(price):
            received.append(price)
            if len(received) == 2:
                done.set()

        subscription = connection.subscribe_last_price("ETHBTC", _on_price)
        await asyncio.wait_for(done.wait(), timeout=1.0)
        await subscription.cancel()
        return subscription

    subscription = asyncio.run(_run())

    assert received == [0.0502, 0.0499]
    assert subscription.market == "ETHBTC"
    assert subscription.active is False


def test_last_price_falls_back_to_rest_ticker() -> None:
    websocket = _FakeWebsocketClient(error=ccxt.NotSupported("watchTrades() is not supported"))
    connection = _connection(websocket_client=websocket, poll_interval=0.0)

    async def _first_price():
        feed = connection.watch_last_price("ETHBTC")
        try:
            return await feed.__anext__()
        finally:
            await feed.aclose()

    assert asyncio.run(_first_price()) == pytest.approx(0.0505)


def test_subscribe_last_price_to_unknown_market_fails_fast() -> None:
    connection = _connection()

    async def _run():
        connection.subscribe_last_price("ETCBTC", lambda price: None)

    with pytest.raises(MarketUnavailable):
        asyncio.run(_run())
