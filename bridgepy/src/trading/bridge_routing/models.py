"""Data models used by the bridge routing utilities."""
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple


class PriceLevel(NamedTuple):
    """Single ``(price, quantity)`` row of an order book."""

    price: float
    quantity: float


def _coerce_level(raw: Any) -> Optional[PriceLevel]:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        return None
    try:
        price = float(raw[0])
        quantity = float(raw[1])
    except (TypeError, ValueError):
        return None
    if price <= 0 or quantity <= 0:
        return None
    return PriceLevel(price, quantity)


def _normalise_levels(raw_levels: Any, *, descending: bool) -> Tuple[PriceLevel, ...]:
    levels = [level for level in map(_coerce_level, raw_levels or []) if level is not None]
    levels.sort(key=lambda level: level.price, reverse=descending)
    return tuple(levels)


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Point-in-time order book with bids best-first (descending) and asks best-first (ascending)."""

    symbol: str
    bids: Sequence[PriceLevel]
    asks: Sequence[PriceLevel]
    timestamp: float = field(default_factory=lambda: time.time())

    @classmethod
    def from_ccxt(cls, symbol: str, order_book: Dict[str, Any]) -> "OrderBookSnapshot":
        bids = _normalise_levels(order_book.get("bids"), descending=True)
        asks = _normalise_levels(order_book.get("asks"), descending=False)
        timestamp = order_book.get("timestamp")
        if timestamp:
            timestamp = float(timestamp) / 1000.0
        else:
            timestamp = time.time()
        return cls(symbol=symbol, bids=bids, asks=asks, timestamp=timestamp)

    def best_bid(self) -> Optional[PriceLevel]:
        return self.bids[0] if self.bids else None

    def best_ask(self) -> Optional[PriceLevel]:
        return self.asks[0] if self.asks else None

    def top_of_book(self) -> Tuple[Optional[float], Optional[float]]:
        """Return ``(bid, ask)`` prices, ``None`` for an empty side."""

        bid = self.best_bid()
        ask = self.best_ask()
        return (bid.price if bid else None, ask.price if ask else None)


@dataclass(frozen=True)
class SellFill:
    """Outcome of walking the bids for a quantity to sell."""

    shares_sellable: float
    average_sell_price: float
    sale_total: float
    liquidity_limited: bool = False


@dataclass(frozen=True)
class BuyFill:
    """Outcome of walking the asks with an amount to spend."""

    amount_spent: float
    shares_buyable: float
    average_buy_price: float
    liquidity_limited: bool = False


@dataclass(frozen=True)
class LotAdjustment:
    """Buy quantity snapped to the market's minimum step."""

    shares_buyable: float
    amount_buyable: float
    leftover_shares: float
    leftover: float


@dataclass(frozen=True)
class MinSteps:
    sell_min_step: float
    buy_min_step: float

    def as_payload(self) -> Dict[str, Any]:
        return {
            "sellCoin": {"minStep": self.sell_min_step},
            "buyCoin": {"minStep": self.buy_min_step},
        }


@dataclass(frozen=True)
class SellLeg:
    market: str
    average_sell_price: float
    shares_sellable: float
    min_step: Optional[float] = None

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "market": self.market,
            "averageSellPrice": self.average_sell_price,
            "sharesSellable": self.shares_sellable,
        }
        if self.min_step is not None:
            payload["minStep"] = self.min_step
        return payload


@dataclass(frozen=True)
class BuyLeg:
    market: str
    average_buy_price: float
    shares_buyable: float
    amount_buyable: float
    min_step: Optional[float] = None
    leftover: Optional[float] = None

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "market": self.market,
            "amountBuyable": self.amount_buyable,
            "sharesBuyable": self.shares_buyable,
            "averageBuyPrice": self.average_buy_price,
        }
        if self.min_step is not None:
            payload["minStep"] = self.min_step
        if self.leftover is not None:
            payload["leftOver"] = self.leftover
        return payload


@dataclass(frozen=True)
class BaseCoin:
    """Bridge asset together with the market used to value it."""

    name: str
    market: str


@dataclass(frozen=True)
class Route:
    """One sell-then-buy path through a bridge asset."""

    sell_coin: SellLeg
    buy_coin: BuyLeg
    base_coin: BaseCoin
    ratio: float

    def with_min_steps(self, min_steps: MinSteps) -> "Route":
        return replace(
            self,
            sell_coin=replace(self.sell_coin, min_step=min_steps.sell_min_step),
            buy_coin=replace(self.buy_coin, min_step=min_steps.buy_min_step),
        )

    def as_payload(self) -> Dict[str, Any]:
        return {
            "sellCoin": self.sell_coin.as_payload(),
            "buyCoin": self.buy_coin.as_payload(),
            "baseCoin": {"name": self.base_coin.name, "market": self.base_coin.market},
            "ratio": self.ratio,
        }


@dataclass(frozen=True)
class WorstRoute:
    """Key figures of the least favourable candidate, kept for savings."""

    shares_buyable: float
    base_coin: str
    average_sell_price: float
    average_buy_price: float

    @classmethod
    def from_route(cls, route: Route) -> "WorstRoute":
        return cls(
            shares_buyable=route.buy_coin.shares_buyable,
            base_coin=route.base_coin.name,
            average_sell_price=route.sell_coin.average_sell_price,
            average_buy_price=route.buy_coin.average_buy_price,
        )

    @property
    def spread(self) -> float:
        return self.average_sell_price - self.average_buy_price


@dataclass(frozen=True)
class BestRoute(Route):
    worst_route: Optional[WorstRoute] = None

    @property
    def spread(self) -> float:
        return self.sell_coin.average_sell_price - self.buy_coin.average_buy_price

    def as_payload(self) -> Dict[str, Any]:
        payload = super().as_payload()
        if self.worst_route is not None:
            payload["worstRoute"] = {
                "sharesBuyable": self.worst_route.shares_buyable,
                "baseCoin": self.worst_route.base_coin,
                "averageSellPrice": self.worst_route.average_sell_price,
                "averageBuyPrice": self.worst_route.average_buy_price,
            }
        return payload


@dataclass(frozen=True)
class RoutePrices:
    """Last traded prices for the markets that make up a route."""

    sell_coin_last: float
    buy_coin_last: float
    base_coin_last: float

    def as_payload(self) -> Dict[str, float]:
        return {
            "sellCoinLast": self.sell_coin_last,
            "buyCoinLast": self.buy_coin_last,
            "baseCoinLast": self.base_coin_last,
        }


@dataclass(frozen=True)
class TradeFill:
    """A single execution reported for a market order."""

    price: float
    quantity: float
    commission: float
    commission_asset: str
    trade_id: Optional[str] = None


@dataclass(frozen=True)
class OrderResult:
    symbol: str
    fills: List[TradeFill]
    side: Optional[str] = None
    order_id: Optional[str] = None


@dataclass(frozen=True)
class SettledLeg:
    market: str
    price: float
    quantity: float
    commission: float
    commission_asset: str
    total: float
    trade_id: Optional[str]

    def as_payload(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "price": self.price,
            "quantity": self.quantity,
            "commission": self.commission,
            "commissionAsset": self.commission_asset,
            "total": self.total,
            "tradeId": self.trade_id,
        }


@dataclass(frozen=True)
class Savings:
    usd_savings: float
    total_usd_savings: float
    best_base_coin: str
    worst_base_coin: str

    def as_payload(self) -> Dict[str, Any]:
        return {
            "USDSavings": self.usd_savings,
            "totalUSDSavings": self.total_usd_savings,
            "bestBaseCoin": self.best_base_coin,
            "worstBaseCoin": self.worst_base_coin,
        }


@dataclass(frozen=True)
class SettledTrade:
    sale: SettledLeg
    purchase: SettledLeg
    savings: Optional[Savings] = None

    def as_payload(self) -> Dict[str, Any]:
        return {
            "sale": self.sale.as_payload(),
            "purchase": self.purchase.as_payload(),
            "savings": self.savings.as_payload() if self.savings else None,
        }
