import pytest

from bridgepy.src.trading.bridge_routing.models import OrderBookSnapshot, PriceLevel


def make_order_book(symbol, *, bids=(), asks=()):
    return OrderBookSnapshot(
        symbol=symbol,
        bids=tuple(PriceLevel(price, quantity) for price, quantity in bids),
        asks=tuple(PriceLevel(price, quantity) for price, quantity in asks),
    )


@pytest.fixture
def order_book():
    return make_order_book
