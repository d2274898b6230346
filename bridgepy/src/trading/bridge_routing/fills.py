"""Order book fill simulation used to price each leg of a route."""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple, Union

from .exceptions import EmptyFillError
from .models import BuyFill, PriceLevel, SellFill


_DEFAULT_TOLERANCE = 1e-12

LevelLike = Union[PriceLevel, Tuple[float, float], Sequence[float]]


def _iter_levels(levels: Iterable[LevelLike]) -> Iterable[Tuple[float, float]]:
    for level in levels:
        price = float(level[0])
        quantity = float(level[1])
        if price <= 0 or quantity <= 0:
            continue
        yield price, quantity


def simulate_sell(bids: Iterable[LevelLike], shares: float) -> SellFill:
    """Walk ``bids`` best-first to sell ``shares``.

    Each level is consumed in full before moving to the next one. When the
    book runs out first the result carries the quantity that could be sold
    and ``liquidity_limited`` is set. An :class:`EmptyFillError` is raised when
    nothing can be sold, since the average price is undefined.
    """

    if shares < 0:
        raise ValueError("shares must not be negative")

    remaining = float(shares)
    total_shares = 0.0
    total_quote = 0.0

    for price, quantity in _iter_levels(bids):
        if remaining <= _DEFAULT_TOLERANCE:
            break
        traded = min(remaining, quantity)
        total_shares += traded
        total_quote += traded * price
        remaining -= traded

    if total_shares <= 0:
        raise EmptyFillError(f"Unable to sell any of {shares} shares against the bids")

    average = total_quote / total_shares
    return SellFill(
        shares_sellable=total_shares,
        average_sell_price=average,
        sale_total=total_shares * average,
        liquidity_limited=remaining > _DEFAULT_TOLERANCE,
    )


def simulate_buy(asks: Iterable[LevelLike], buy_amount: float) -> BuyFill:
    """Walk ``asks`` best-first spending up to ``buy_amount`` of the quote asset."""

    if buy_amount < 0:
        raise ValueError("buy_amount must not be negative")

    remaining = float(buy_amount)
    total_shares = 0.0
    total_spent = 0.0

    for price, quantity in _iter_levels(asks):
        if remaining <= _DEFAULT_TOLERANCE:
            break
        spent = min(remaining, price * quantity)
        total_shares += spent / price
        total_spent += spent
        remaining -= spent

    if total_shares <= 0:
        raise EmptyFillError(f"Unable to spend any of {buy_amount} against the asks")

    return BuyFill(
        amount_spent=total_spent,
        shares_buyable=total_shares,
        average_buy_price=total_spent / total_shares,
        liquidity_limited=remaining > _DEFAULT_TOLERANCE,
    )
