"""Realtime recomputation of a chosen route backed by order book feeds."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Union

from .config import UNIT_OF_ACCOUNT_DEFAULT
from .exceptions import EmptyFillError
from .exchange import OrderBookSubscription
from .fills import simulate_buy, simulate_sell
from .lot_size import adjust_to_min_step
from .models import OrderBookSnapshot

logger = logging.getLogger(__name__)

SELL_LEG_UPDATED = "sellLegUpdated"
BUY_LEG_UPDATED = "buyLegUpdated"
LAST_PRICE_UPDATED = "updateLast"


@dataclass(frozen=True)
class SaleProceeds:
    """Sale total handed from the sell leg to the buy leg, stamped with a version."""

    amount: float
    version: int


class SessionRecomputationState:
    """Mutable state owned by one live session.

    The sale proceeds are replaced as a whole on every publish, so the buy
    leg always reads an amount together with the version it belongs to.
    """

    def __init__(self, quantity: float = 0.0) -> None:
        self._quantity = 0.0
        self.quantity = quantity
        self._proceeds = SaleProceeds(amount=0.0, version=0)
        self._consumed_version = 0

    @property
    def quantity(self) -> float:
        return self._quantity

    @quantity.setter
    def quantity(self, value: float) -> None:
        value = float(value)
        if value < 0:
            raise ValueError("quantity must not be negative")
        self._quantity = value

    @property
    def proceeds(self) -> SaleProceeds:
        return self._proceeds

    def publish_sale_total(self, amount: float) -> SaleProceeds:
        self._proceeds = SaleProceeds(amount=float(amount), version=self._proceeds.version + 1)
        return self._proceeds

    def take_proceeds(self, *, strict: bool = False) -> Optional[SaleProceeds]:
        """Return the current proceeds, or ``None`` in strict mode when already consumed."""

        proceeds = self._proceeds
        if strict:
            if proceeds.version <= self._consumed_version:
                return None
            self._consumed_version = proceeds.version
        return proceeds


@dataclass(frozen=True)
class SellLegUpdate:
    session_id: str
    market: str
    bid: Optional[float]
    ask: Optional[float]
    average_sell_price: float
    shares_sellable: float
    sale_total: float

    def as_payload(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "bid": self.bid,
            "ask": self.ask,
            "averageSellPrice": self.average_sell_price,
            "sharesSellable": self.shares_sellable,
        }


@dataclass(frozen=True)
class BuyLegUpdate:
    session_id: str
    market: str
    bid: Optional[float]
    ask: Optional[float]
    average_buy_price: float
    shares_buyable: float
    amount_buyable: float
    leftover: float
    min_step: float
    proceeds_version: int

    def as_payload(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "bid": self.bid,
            "ask": self.ask,
            "averageBuyPrice": self.average_buy_price,
            "sharesBuyable": self.shares_buyable,
            "amountBuyable": self.amount_buyable,
            "minStep": self.min_step,
            "leftOver": self.leftover,
        }


@dataclass(frozen=True)
class LastPriceUpdate:
    session_id: str
    market: str
    last: float

    def as_payload(self) -> Dict[str, Any]:
        return {"market": self.market, "last": self.last}


LiveUpdate = Union[SellLegUpdate, BuyLegUpdate, LastPriceUpdate]
EventEmitter = Callable[[str, LiveUpdate], None]


@dataclass
class LiveSession:
    session_id: str
    sell_market: str
    buy_market: str
    state: SessionRecomputationState
    buy_min_step: float = 0.0
    subscriptions: List[OrderBookSubscription] = field(default_factory=list)
    closed: bool = False


class LiveRoutePipeline:
    """Keeps the figures of chosen routes current as their order books move.

    Each session registers two independent feed handlers. The sell-leg
    handler recomputes the sale with the session's current quantity and
    caches its total; the buy-leg handler spends whatever total is cached at
    that moment. With ``strict_consistency`` the buy leg only recomputes once
    per published sale total.
    """

    def __init__(
        self,
        exchange: Any,
        emit: EventEmitter,
        *,
        strict_consistency: bool = False,
        unit_of_account: str = UNIT_OF_ACCOUNT_DEFAULT,
    ) -> None:
        self.exchange = exchange
        self.emit = emit
        self.strict_consistency = strict_consistency
        self.unit_of_account = unit_of_account.upper()
        self._sessions: Dict[str, LiveSession] = {}

    @property
    def sessions(self) -> Dict[str, LiveSession]:
        return dict(self._sessions)

    async def start_session(
        self,
        sell_market: str,
        buy_market: str,
        *,
        quantity: float = 0.0,
        buy_min_step: Optional[float] = None,
    ) -> LiveSession:
        if buy_min_step is None:
            min_steps = await self.exchange.fetch_min_steps(sell_market, buy_market)
            buy_min_step = min_steps.buy_min_step

        session = LiveSession(
            session_id=uuid.uuid4().hex,
            sell_market=sell_market,
            buy_market=buy_market,
            state=SessionRecomputationState(quantity),
            buy_min_step=buy_min_step,
        )
        self._sessions[session.session_id] = session
        try:
            session.subscriptions.append(
                self.exchange.subscribe_order_book(sell_market, partial(self._on_sell_book, session))
            )
            session.subscriptions.append(
                self.exchange.subscribe_order_book(buy_market, partial(self._on_buy_book, session))
            )
        except Exception:
            await self.end_session(session)
            raise

        logger.info(f"Started live session {session.session_id} for {sell_market} -> {buy_market}")
        return session

    def update_session_quantity(self, session: LiveSession, quantity: float) -> None:
        """Change the quantity used from the next sell-leg update onwards."""

        session.state.quantity = quantity
        logger.debug(f"Session {session.session_id} quantity set to {quantity}")

    def watch_route_prices(self, session: LiveSession, bridge_market: str) -> List[str]:
        """Stream last traded prices for the sell, buy and bridge markets of ``session``.

        The unit of account priced in itself (``USDTUSDT``) is not a market
        and is skipped. Returns the markets that were subscribed; the feeds
        stop with :meth:`end_session`.
        """

        if session.closed:
            raise ValueError(f"Session {session.session_id} is closed")

        self_quoted = f"{self.unit_of_account}{self.unit_of_account}"
        markets = [
            market
            for market in dict.fromkeys((session.sell_market, session.buy_market, bridge_market.upper()))
            if market.upper() != self_quoted
        ]
        for market in markets:
            session.subscriptions.append(
                self.exchange.subscribe_last_price(market, partial(self._on_last_price, session, market))
            )
        logger.debug(f"Session {session.session_id} streaming last prices for {', '.join(markets)}")
        return markets

    async def end_session(self, session: LiveSession) -> None:
        session.closed = True
        self._sessions.pop(session.session_id, None)
        for subscription in session.subscriptions:
            await subscription.cancel()
        session.subscriptions.clear()
        logger.info(f"Ended live session {session.session_id}")

    async def close(self) -> None:
        for session in list(self._sessions.values()):
            await self.end_session(session)

    def _on_sell_book(self, session: LiveSession, snapshot: OrderBookSnapshot) -> None:
        if session.closed:
            return
        try:
            sale = simulate_sell(snapshot.bids, session.state.quantity)
        except EmptyFillError as exc:
            # a sale that fills nothing leaves nothing for the buy leg to spend
            session.state.publish_sale_total(0.0)
            logger.debug(f"Session {session.session_id} sell leg not recomputed: {exc}")
            return

        session.state.publish_sale_total(sale.sale_total)
        bid, ask = snapshot.top_of_book()
        self.emit(
            SELL_LEG_UPDATED,
            SellLegUpdate(
                session_id=session.session_id,
                market=session.sell_market,
                bid=bid,
                ask=ask,
                average_sell_price=sale.average_sell_price,
                shares_sellable=sale.shares_sellable,
                sale_total=sale.sale_total,
            ),
        )

    def _on_buy_book(self, session: LiveSession, snapshot: OrderBookSnapshot) -> None:
        if session.closed:
            return
        proceeds = session.state.take_proceeds(strict=self.strict_consistency)
        if proceeds is None:
            return
        try:
            purchase = simulate_buy(snapshot.asks, proceeds.amount)
        except EmptyFillError as exc:
            logger.debug(f"Session {session.session_id} buy leg not recomputed: {exc}")
            return

        adjustment = adjust_to_min_step(
            purchase.shares_buyable,
            purchase.average_buy_price,
            session.buy_min_step,
            amount_buyable=purchase.amount_spent,
        )
        bid, ask = snapshot.top_of_book()
        self.emit(
            BUY_LEG_UPDATED,
            BuyLegUpdate(
                session_id=session.session_id,
                market=session.buy_market,
                bid=bid,
                ask=ask,
                average_buy_price=purchase.average_buy_price,
                shares_buyable=adjustment.shares_buyable,
                amount_buyable=adjustment.amount_buyable,
                leftover=adjustment.leftover,
                min_step=session.buy_min_step,
                proceeds_version=proceeds.version,
            ),
        )

    def _on_last_price(self, session: LiveSession, market: str, price: float) -> None:
        if session.closed:
            return
        self.emit(
            LAST_PRICE_UPDATED,
            LastPriceUpdate(session_id=session.session_id, market=market, last=price),
        )
