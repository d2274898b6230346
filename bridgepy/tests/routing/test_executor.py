from __future__ import annotations

import asyncio

import pytest

from bridgepy.src.trading.bridge_routing.exceptions import (
    MarketUnavailable,
    OrderRejected,
    PartialExecutionError,
)
from bridgepy.src.trading.bridge_routing.executor import BridgeTradeExecutor
from bridgepy.src.trading.bridge_routing.models import (
    BaseCoin,
    BuyLeg,
    MinSteps,
    OrderBookSnapshot,
    OrderResult,
    PriceLevel,
    Route,
    SellLeg,
    TradeFill,
)


def _book(symbol, *, bids=(), asks=()):
    return OrderBookSnapshot(
        symbol=symbol,
        bids=tuple(PriceLevel(*level) for level in bids),
        asks=tuple(PriceLevel(*level) for level in asks),
    )


class _TradingExchange:
    def __init__(self, *, reject_buy=False):
        self.books = {
            "ETCBTC": _book("ETCBTC", bids=[(0.002, 100.0)], asks=[(0.0021, 100.0)]),
            "XLMBTC": _book("XLMBTC", bids=[(0.0000099, 1e6)], asks=[(0.00001, 1e6)]),
            "ETCETH": _book("ETCETH", bids=[(0.03, 100.0)], asks=[(0.031, 100.0)]),
            "XLMETH": _book("XLMETH", bids=[(0.00015, 1e6)], asks=[(0.00016, 1e6)]),
        }
        self.prices = {"BTCUSDT": 20000.0, "ETHUSDT": 1000.0}
        self.min_steps = {"ETCBTC": 0.01, "XLMBTC": 1.0, "ETCETH": 0.01, "XLMETH": 1.0}
        self.reject_buy = reject_buy
        self.orders = []
        self.book_requests = []

    async def fetch_order_book(self, market, *, limit=None):
        self.book_requests.append(market)
        if market not in self.books:
            raise MarketUnavailable(market)
        return self.books[market]

    async def fetch_min_steps(self, sell_market, buy_market):
        return MinSteps(self.min_steps[sell_market], self.min_steps[buy_market])

    async def fetch_last_price(self, market):
        return self.prices[market]

    async def place_market_order(self, market, side, quantity):
        self.orders.append((market, side, quantity))
        if side == "buy" and self.reject_buy:
            raise OrderRejected(market, "Account has insufficient balance for requested action.")
        book = self.books[market]
        price = book.bids[0].price if side == "sell" else book.asks[0].price
        return OrderResult(
            symbol=market,
            side=side,
            order_id=str(len(self.orders)),
            fills=[
                TradeFill(
                    price=price,
                    quantity=quantity,
                    commission=0.0,
                    commission_asset="BNB",
                    trade_id=f"t{len(self.orders)}",
                )
            ],
        )


def test_smart_routed_trade_reports_savings() -> None:
    exchange = _TradingExchange()
    executor = BridgeTradeExecutor(exchange)

    trade = asyncio.run(executor.execute_trade("ETC", "XLM", 10.0, bridge_assets=["BTC", "ETH"]))

    (sell_market, sell_side, sold), (buy_market, buy_side, bought) = exchange.orders
    assert (sell_market, sell_side, sold) == ("ETCBTC", "sell", 10.0)
    assert (buy_market, buy_side) == ("XLMBTC", "buy")
    assert bought == pytest.approx(2000.0)

    assert trade.sale.total == pytest.approx(0.02 - 0.02 * 0.00005)
    assert trade.purchase.quantity == pytest.approx(2000.0)
    assert trade.savings.best_base_coin == "BTC"
    assert trade.savings.worst_base_coin == "ETH"
    # (0.002 - 0.00001) * 20000 - (0.03 - 0.00016) * 1000
    assert trade.savings.usd_savings == pytest.approx(9.96)
    assert trade.savings.total_usd_savings == pytest.approx(19920.0)


def test_failed_buy_leg_surfaces_the_completed_sale() -> None:
    exchange = _TradingExchange(reject_buy=True)
    executor = BridgeTradeExecutor(exchange)

    with pytest.raises(PartialExecutionError) as excinfo:
        asyncio.run(executor.execute_trade("ETC", "XLM", 10.0, bridge_assets=["BTC"]))

    assert excinfo.value.market == "XLMBTC"
    assert excinfo.value.sale.quantity == pytest.approx(10.0)
    assert isinstance(excinfo.value, OrderRejected)
    assert [side for _, side, _ in exchange.orders] == ["sell", "buy"]


def test_explicit_route_skips_evaluation_and_savings() -> None:
    exchange = _TradingExchange()
    executor = BridgeTradeExecutor(exchange)
    route = Route(
        sell_coin=SellLeg(market="ETCETH", average_sell_price=0.03, shares_sellable=10.0),
        buy_coin=BuyLeg(market="XLMETH", average_buy_price=0.00016, shares_buyable=1875.5, amount_buyable=0.30008),
        base_coin=BaseCoin(name="ETH", market="ETHUSDT"),
        ratio=187.5,
    )

    trade = asyncio.run(executor.execute_trade("ETC", "XLM", 10.0, route=route))

    assert exchange.book_requests == []
    assert exchange.orders[1] == ("XLMETH", "buy", pytest.approx(1875.0))
    assert trade.savings is None


def test_non_positive_quantity_is_rejected() -> None:
    executor = BridgeTradeExecutor(_TradingExchange())

    with pytest.raises(ValueError):
        asyncio.run(executor.execute_trade("ETC", "XLM", 0.0))
