"""Helpers to execute a routed trade as two market orders."""
from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence

from .config import RouterSettings
from .evaluator import BridgeRouteEvaluator
from .exceptions import OrderRejected, PartialExecutionError
from .lot_size import adjust_to_min_step
from .models import BestRoute, Route, SettledTrade
from .settlement import TradeSettlementAggregator

logger = logging.getLogger(__name__)


class BridgeTradeExecutor:
    """Sells into the bridge asset, then buys the target asset with the proceeds.

    Orders are never retried: a rejected leg is reported as-is, and a sale
    that already went through is surfaced on :class:`PartialExecutionError`.
    """

    def __init__(
        self,
        exchange: Any,
        *,
        settings: Optional[RouterSettings] = None,
        evaluator: Optional[BridgeRouteEvaluator] = None,
        aggregator: Optional[TradeSettlementAggregator] = None,
    ) -> None:
        self.exchange = exchange
        self.settings = settings or RouterSettings()
        self.evaluator = evaluator or BridgeRouteEvaluator(
            exchange, unit_of_account=self.settings.unit_of_account
        )
        self.aggregator = aggregator or TradeSettlementAggregator(exchange, self.settings)

    async def execute_trade(
        self,
        sell_asset: str,
        buy_asset: str,
        quantity: float,
        *,
        bridge_assets: Optional[Sequence[str]] = None,
        route: Optional[Route] = None,
    ) -> SettledTrade:
        """Execute ``quantity`` of ``sell_asset`` into ``buy_asset``.

        Without ``route`` the best route is re-evaluated first (smart routing)
        and savings against the worst candidate are included in the result.
        """

        if quantity <= 0:
            raise ValueError("quantity must be positive")

        best_route: Optional[BestRoute] = None
        if route is None:
            best_route = await self.evaluator.evaluate_route(
                sell_asset,
                buy_asset,
                bridge_assets or self.settings.bridge_assets,
                quantity,
            )
            route = best_route

        sell_market = route.sell_coin.market
        buy_market = route.buy_coin.market
        min_steps = await self.exchange.fetch_min_steps(sell_market, buy_market)

        started = time.perf_counter()
        sell_order = await self.exchange.place_market_order(sell_market, "sell", quantity)
        sale = self.aggregator.settle_sale(sell_order)

        adjustment = adjust_to_min_step(
            route.buy_coin.shares_buyable,
            route.buy_coin.average_buy_price,
            min_steps.buy_min_step,
        )
        try:
            buy_order = await self.exchange.place_market_order(
                buy_market, "buy", adjustment.shares_buyable
            )
        except OrderRejected as exc:
            logger.error(
                f"Buy leg on {buy_market} failed after selling {sale.quantity} on {sell_market}: {exc}"
            )
            raise PartialExecutionError(buy_market, str(exc), sale=sale) from exc

        trade = await self.aggregator.settle_trade(sell_order, buy_order, best_route)
        logger.info(
            f"Executed {sell_market} -> {buy_market} in {time.perf_counter() - started:.3f}s: "
            f"sold {trade.sale.quantity} @ {trade.sale.price}, bought {trade.purchase.quantity} @ {trade.purchase.price}"
        )
        return trade
