"""Reconciles the fills of an executed two-leg trade into a single report."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from .config import RouterSettings
from .exceptions import EmptyFillError, EmptyFillSetError
from .models import BestRoute, OrderResult, Savings, SettledLeg, SettledTrade, TradeFill

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FillAggregate:
    price: float
    quantity: float
    commission: float
    commission_asset: str
    trade_id: Optional[str]


def round_half_up(value: float, places: int = 4) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def aggregate_fills(fills: Sequence[TradeFill]) -> FillAggregate:
    """Collapse the partial fills of one order.

    The price is quantity weighted, commission is summed in the units of the
    commission asset, and the commission asset and trade id come from the
    first fill.
    """

    if not fills:
        raise EmptyFillSetError("Cannot aggregate an order without fills")

    quantity = sum(fill.quantity for fill in fills)
    if quantity <= 0:
        raise EmptyFillError("Cannot average the price of fills with zero total quantity")

    notional = sum(fill.price * fill.quantity for fill in fills)
    first = fills[0]
    return FillAggregate(
        price=notional / quantity,
        quantity=quantity,
        commission=sum(fill.commission for fill in fills),
        commission_asset=first.commission_asset,
        trade_id=first.trade_id,
    )


def commission_rate(
    commission_asset: str,
    *,
    discount_asset: str = "BNB",
    discounted_rate: float = 0.00005,
    standard_rate: float = 0.0001,
) -> float:
    return discounted_rate if commission_asset.upper() == discount_asset.upper() else standard_rate


def compute_savings(
    best_route: BestRoute,
    best_bridge_price: float,
    worst_bridge_price: float,
    bought_quantity: float,
) -> Savings:
    """Savings per share and in total, valued in the unit of account."""

    worst = best_route.worst_route
    if worst is None:
        raise ValueError("best_route has no worst route to compare against")

    best_spread = best_route.spread * best_bridge_price
    worst_spread = worst.spread * worst_bridge_price
    per_share = round_half_up(best_spread - worst_spread, 4)
    return Savings(
        usd_savings=per_share,
        total_usd_savings=round_half_up(per_share * bought_quantity, 4),
        best_base_coin=best_route.base_coin.name,
        worst_base_coin=worst.base_coin,
    )


class TradeSettlementAggregator:
    """Builds :class:`SettledTrade` reports from raw order fills."""

    def __init__(self, exchange: Any, settings: Optional[RouterSettings] = None) -> None:
        self.exchange = exchange
        self.settings = settings or RouterSettings()

    def _rate(self, commission_asset: str) -> float:
        return commission_rate(
            commission_asset,
            discount_asset=self.settings.discount_asset,
            discounted_rate=self.settings.discounted_commission_rate,
            standard_rate=self.settings.standard_commission_rate,
        )

    def settle_sale(self, order: OrderResult) -> SettledLeg:
        aggregate = aggregate_fills(order.fills)
        amount = aggregate.quantity * aggregate.price
        return SettledLeg(
            market=order.symbol,
            price=aggregate.price,
            quantity=aggregate.quantity,
            commission=aggregate.commission,
            commission_asset=aggregate.commission_asset,
            total=amount - amount * self._rate(aggregate.commission_asset),
            trade_id=aggregate.trade_id,
        )

    def settle_purchase(self, order: OrderResult) -> SettledLeg:
        aggregate = aggregate_fills(order.fills)
        amount = aggregate.quantity * aggregate.price
        return SettledLeg(
            market=order.symbol,
            price=aggregate.price,
            quantity=aggregate.quantity,
            commission=aggregate.commission,
            commission_asset=aggregate.commission_asset,
            total=amount + amount * self._rate(aggregate.commission_asset),
            trade_id=aggregate.trade_id,
        )

    async def _bridge_price(self, bridge_asset: str) -> float:
        unit = self.settings.unit_of_account
        if bridge_asset.upper() == unit:
            return 1.0
        return await self.exchange.fetch_last_price(f"{bridge_asset.upper()}{unit}")

    async def calculate_savings(self, best_route: BestRoute, bought_quantity: float) -> Savings:
        worst = best_route.worst_route
        if worst is None:
            raise ValueError("best_route has no worst route to compare against")
        best_price, worst_price = await asyncio.gather(
            self._bridge_price(best_route.base_coin.name),
            self._bridge_price(worst.base_coin),
        )
        return compute_savings(best_route, best_price, worst_price, bought_quantity)

    async def settle_trade(
        self,
        sell_order: OrderResult,
        buy_order: OrderResult,
        best_route: Optional[BestRoute] = None,
    ) -> SettledTrade:
        sale = self.settle_sale(sell_order)
        purchase = self.settle_purchase(buy_order)

        savings = None
        if best_route is not None:
            savings = await self.calculate_savings(best_route, purchase.quantity)
            logger.info(
                f"Realised savings via {savings.best_base_coin} over {savings.worst_base_coin}: "
                f"{savings.usd_savings} per share, {savings.total_usd_savings} total"
            )

        return SettledTrade(sale=sale, purchase=purchase, savings=savings)
