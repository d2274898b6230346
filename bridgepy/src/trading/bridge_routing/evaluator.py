"""Evaluates bridge routes between two assets using live order book depth."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Sequence

from .exceptions import EmptyFillError, MarketUnavailable, NoViableRouteError
from .fills import simulate_buy, simulate_sell
from .lot_size import adjust_buy_leg
from .models import (
    BaseCoin,
    BestRoute,
    BuyLeg,
    OrderBookSnapshot,
    Route,
    RoutePrices,
    SellLeg,
    WorstRoute,
)

logger = logging.getLogger(__name__)


def market_symbol(base: str, quote: str) -> str:
    """Return the exchange market id for ``base`` priced in ``quote``."""

    return f"{base.upper()}{quote.upper()}"


def rank_routes(routes: Iterable[Route]) -> List[Route]:
    """Order routes best-first.

    Routes that can sell more of the requested quantity always come first;
    the sell/buy price ratio breaks ties. Remaining ties keep input order.
    """

    return sorted(
        routes,
        key=lambda route: (-route.sell_coin.shares_sellable, -route.ratio),
    )


def build_route(
    sell_book: OrderBookSnapshot,
    buy_book: OrderBookSnapshot,
    bridge_asset: str,
    shares: float,
    *,
    unit_of_account: str = "USDT",
) -> Route:
    """Price one route by chaining the sell leg's proceeds into the buy leg."""

    sale = simulate_sell(sell_book.bids, shares)
    purchase = simulate_buy(buy_book.asks, sale.sale_total)

    return Route(
        sell_coin=SellLeg(
            market=sell_book.symbol,
            average_sell_price=sale.average_sell_price,
            shares_sellable=sale.shares_sellable,
        ),
        buy_coin=BuyLeg(
            market=buy_book.symbol,
            average_buy_price=purchase.average_buy_price,
            shares_buyable=purchase.shares_buyable,
            amount_buyable=purchase.amount_spent,
        ),
        base_coin=BaseCoin(
            name=bridge_asset,
            market=market_symbol(bridge_asset, unit_of_account),
        ),
        ratio=sale.average_sell_price / purchase.average_buy_price,
    )


class BridgeRouteEvaluator:
    """Chooses the bridge asset that converts one asset into another most favourably."""

    def __init__(self, exchange: Any, *, unit_of_account: str = "USDT") -> None:
        self.exchange = exchange
        self.unit_of_account = unit_of_account.upper()

    async def evaluate_route(
        self,
        sell_asset: str,
        buy_asset: str,
        bridge_assets: Sequence[str],
        quantity: float,
    ) -> BestRoute:
        sell_asset = sell_asset.upper()
        buy_asset = buy_asset.upper()
        bridges = list(dict.fromkeys(bridge.upper() for bridge in bridge_assets))

        candidates = await asyncio.gather(
            *(self._evaluate_candidate(sell_asset, buy_asset, bridge, quantity) for bridge in bridges)
        )
        routes = [route for route in candidates if route is not None]
        if not routes:
            raise NoViableRouteError(sell_asset, buy_asset, bridges)

        ranked = rank_routes(routes)
        best = ranked[0]
        worst = ranked[-1]

        min_steps = await self.exchange.fetch_min_steps(best.sell_coin.market, best.buy_coin.market)
        best = best.with_min_steps(min_steps)
        best = replace(best, buy_coin=adjust_buy_leg(best.buy_coin))

        logger.info(
            f"Best route for {quantity} {sell_asset} -> {buy_asset}: via {best.base_coin.name} "
            f"(ratio {best.ratio:.8f}); worst via {worst.base_coin.name} "
            f"({len(routes)}/{len(bridges)} candidates evaluated)"
        )

        return BestRoute(
            sell_coin=best.sell_coin,
            buy_coin=best.buy_coin,
            base_coin=best.base_coin,
            ratio=best.ratio,
            worst_route=WorstRoute.from_route(worst),
        )

    async def _evaluate_candidate(
        self,
        sell_asset: str,
        buy_asset: str,
        bridge: str,
        quantity: float,
    ) -> Optional[Route]:
        sell_market = market_symbol(sell_asset, bridge)
        buy_market = market_symbol(buy_asset, bridge)
        books = await asyncio.gather(
            self.exchange.fetch_order_book(sell_market),
            self.exchange.fetch_order_book(buy_market),
            return_exceptions=True,
        )
        for outcome in books:
            if isinstance(outcome, MarketUnavailable):
                logger.warning(f"Skipping bridge {bridge}: {outcome}")
                return None
            if isinstance(outcome, Exception):
                logger.warning(f"Skipping bridge {bridge}: order book fetch failed ({outcome!r})")
                return None
            if isinstance(outcome, BaseException):
                raise outcome
        sell_book, buy_book = books

        try:
            return build_route(
                sell_book,
                buy_book,
                bridge,
                quantity,
                unit_of_account=self.unit_of_account,
            )
        except EmptyFillError as exc:
            logger.warning(f"Skipping bridge {bridge}: {exc}")
            return None

    async def fetch_route_prices(self, route: Route) -> RoutePrices:
        """Return the last prices of the sell, buy and bridge markets of ``route``."""

        async def _bridge_price() -> float:
            if route.base_coin.name == self.unit_of_account:
                return 1.0
            return await self.exchange.fetch_last_price(route.base_coin.market)

        sell_last, buy_last, base_last = await asyncio.gather(
            self.exchange.fetch_last_price(route.sell_coin.market),
            self.exchange.fetch_last_price(route.buy_coin.market),
            _bridge_price(),
        )
        return RoutePrices(
            sell_coin_last=sell_last,
            buy_coin_last=buy_last,
            base_coin_last=base_last,
        )
