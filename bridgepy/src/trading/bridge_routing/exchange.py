"""Exchange connectivity helpers for bridge routing."""
from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import ccxt
import ccxt.pro as ccxtpro
import requests
from ccxt.base.errors import BaseError as CcxtBaseError
from ccxt.base.errors import NotSupported as CcxtNotSupported

from .exceptions import MarketUnavailable, OrderRejected
from .fills import simulate_sell
from .models import MinSteps, OrderBookSnapshot, OrderResult, TradeFill

logger = logging.getLogger(__name__)

OrderBookCallback = Callable[[OrderBookSnapshot], Union[None, Awaitable[None]]]
LastPriceCallback = Callable[[float], Union[None, Awaitable[None]]]


class OrderBookSubscription:
    """Handle for a running market feed started by one of the ``ExchangeConnection.subscribe_*`` methods."""

    def __init__(self, market: str, task: "asyncio.Task[None]") -> None:
        self.market = market
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def cancel(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)


class ExchangeConnection:
    """Wraps a ccxt client pair for market data, subscriptions and market orders.

    Markets are addressed by the exchange's own concatenated ids (``ETHBTC``)
    and resolved to ccxt unified symbols through the loaded market cache.
    """

    def __init__(
        self,
        exchange_name: str = "binance",
        *,
        credentials: Optional[Dict[str, str]] = None,
        make_trades: bool = False,
        enable_websocket: bool = True,
        rest_client: Optional[Any] = None,
        websocket_client: Optional[Any] = None,
        order_book_depth: int = 100,
        websocket_timeout: Optional[float] = 10.0,
        poll_interval: float = 2.0,
    ) -> None:
        self.exchange_name = exchange_name.lower()
        self.credentials = self._normalise_credentials(credentials)
        self.make_trades = make_trades
        self.order_book_depth = order_book_depth
        self.websocket_timeout = websocket_timeout
        self.poll_interval = poll_interval
        self._shared_http_session: Optional[requests.Session] = None

        if rest_client is None:
            exchange_class = getattr(ccxt, self.exchange_name)
            rest_client = exchange_class({"enableRateLimit": True, **self.credentials})
            self._shared_http_session = requests.Session()
            self._attach_shared_session(rest_client)
        self.rest_client = rest_client

        self.websocket_client = websocket_client
        if websocket_client is None and enable_websocket:
            ws_class = getattr(ccxtpro, self.exchange_name, None)
            if ws_class is not None:
                self.websocket_client = ws_class({"enableRateLimit": True, **self.credentials})
            else:
                logger.info(
                    f"{self.exchange_name} has no websocket client; order books will be polled via REST."
                )

        self._market_cache: Dict[str, Any] = self.rest_client.load_markets() or {}
        self._symbols_by_id: Dict[str, str] = {}
        for symbol, market in self._market_cache.items():
            if isinstance(market, dict) and market.get("id"):
                self._symbols_by_id.setdefault(str(market["id"]).upper(), symbol)
        self._dry_run_ids = itertools.count(1)

    @staticmethod
    def _normalise_credentials(credentials: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """Return a ccxt-compatible credential mapping."""

        if not credentials:
            return {}

        normalised: Dict[str, str] = {}
        for raw_key, raw_value in credentials.items():
            if raw_value in (None, ""):
                continue
            lower = str(raw_key).lower()
            if lower in {"apikey", "api_key", "key"}:
                normalised["apiKey"] = str(raw_value)
            elif lower in {"secret", "api_secret", "secretkey"}:
                normalised["secret"] = str(raw_value)
            else:
                normalised[str(raw_key)] = str(raw_value)
        return normalised

    def _attach_shared_session(self, client: Any) -> None:
        if not client or self._shared_http_session is None:
            return
        if hasattr(client, "session"):
            try:
                client.session = self._shared_http_session
            except Exception:
                logger.debug(
                    "Unable to attach shared HTTP session to %s client", client,
                    exc_info=True,
                )

    # ------------------------------------------------------------------ #
    # Market metadata
    # ------------------------------------------------------------------ #
    def resolve_symbol(self, market: str) -> str:
        """Translate an exchange market id (``ETHBTC``) into a ccxt symbol."""

        symbol = self._symbols_by_id.get(market.upper())
        if symbol is not None:
            return symbol
        if market in self._market_cache:
            return market
        raise MarketUnavailable(market)

    def list_markets(self) -> List[Dict[str, str]]:
        """Return ``{"market", "base", "quote"}`` entries for every active spot market."""

        pairs: List[Dict[str, str]] = []
        for market_id, symbol in sorted(self._symbols_by_id.items()):
            market = self._market_cache.get(symbol, {})
            if market.get("active") is False or market.get("spot") is False:
                continue
            pairs.append(
                {"market": market_id, "base": str(market.get("base", "")), "quote": str(market.get("quote", ""))}
            )
        return pairs

    @staticmethod
    def _coerce_float(value: Any) -> Optional[float]:
        try:
            if value is None:
                return None
            return float(value)
        except (TypeError, ValueError):
            return None

    def get_min_step(self, market: str) -> float:
        """Return the minimum tradeable quantity increment for ``market``."""

        symbol = self.resolve_symbol(market)
        metadata = self._market_cache.get(symbol, {})

        info = metadata.get("info")
        if isinstance(info, dict):
            for entry in info.get("filters") or []:
                if isinstance(entry, dict) and entry.get("filterType") == "LOT_SIZE":
                    step = self._coerce_float(entry.get("stepSize"))
                    if step is not None:
                        return step

        precision = metadata.get("precision")
        amount_precision = (
            self._coerce_float(precision.get("amount")) if isinstance(precision, dict) else None
        )
        if amount_precision is None:
            return 0.0
        if getattr(self.rest_client, "precisionMode", ccxt.TICK_SIZE) == ccxt.DECIMAL_PLACES:
            return 10 ** -int(amount_precision)
        return amount_precision

    async def fetch_min_steps(self, sell_market: str, buy_market: str) -> MinSteps:
        return MinSteps(
            sell_min_step=self.get_min_step(sell_market),
            buy_min_step=self.get_min_step(buy_market),
        )

    # ------------------------------------------------------------------ #
    # Market data
    # ------------------------------------------------------------------ #
    async def fetch_order_book(self, market: str, *, limit: Optional[int] = None) -> OrderBookSnapshot:
        symbol = self.resolve_symbol(market)
        try:
            order_book = await asyncio.to_thread(
                self.rest_client.fetch_order_book,
                symbol,
                limit or self.order_book_depth,
            )
        except CcxtBaseError as exc:
            raise MarketUnavailable(market, f"Failed to fetch order book for {market}: {exc}") from exc
        return OrderBookSnapshot.from_ccxt(market, order_book)

    async def fetch_last_price(self, market: str) -> float:
        symbol = self.resolve_symbol(market)
        try:
            ticker = await asyncio.to_thread(self.rest_client.fetch_ticker, symbol)
        except CcxtBaseError as exc:
            raise MarketUnavailable(market, f"Failed to fetch last price for {market}: {exc}") from exc
        price = self._coerce_float(ticker.get("last") if isinstance(ticker, dict) else None)
        if price is None:
            raise MarketUnavailable(market, f"No last price reported for {market}")
        return price

    async def fetch_available_balance(self, asset: str) -> float:
        """Return the free balance held for ``asset``."""

        balances = await asyncio.to_thread(self.rest_client.fetch_balance)
        entry = balances.get(asset.upper()) if isinstance(balances, dict) else None
        if isinstance(entry, dict):
            return self._coerce_float(entry.get("free")) or 0.0
        free = balances.get("free") if isinstance(balances, dict) else None
        if isinstance(free, dict):
            return self._coerce_float(free.get(asset.upper())) or 0.0
        return 0.0

    async def watch_order_book(
        self,
        market: str,
        *,
        limit: Optional[int] = None,
        require_websocket: bool = False,
    ) -> AsyncIterator[OrderBookSnapshot]:
        """Yield order book snapshots for ``market``, preferring the websocket feed."""

        symbol = self.resolve_symbol(market)
        depth = limit or self.order_book_depth
        use_websocket = self.websocket_client is not None

        while use_websocket:
            try:
                if self.websocket_timeout and self.websocket_timeout > 0:
                    order_book = await asyncio.wait_for(
                        self.websocket_client.watch_order_book(symbol, depth),
                        timeout=self.websocket_timeout,
                    )
                else:
                    order_book = await self.websocket_client.watch_order_book(symbol, depth)
            except (CcxtNotSupported, AttributeError, asyncio.TimeoutError, CcxtBaseError) as exc:
                if require_websocket:
                    raise
                logger.warning(
                    f"{self.exchange_name} websocket order book failed for {market}; falling back to REST polling ({exc!r})."
                )
                use_websocket = False
                break
            yield OrderBookSnapshot.from_ccxt(market, order_book)

        if require_websocket:
            raise RuntimeError(f"{self.exchange_name} websocket order book unavailable for {market}")

        while True:
            yield await self.fetch_order_book(market, limit=depth)
            await asyncio.sleep(self.poll_interval)

    async def watch_last_price(
        self,
        market: str,
        *,
        require_websocket: bool = False,
    ) -> AsyncIterator[float]:
        """Yield the last traded price of ``market``, preferring the websocket trade stream."""

        symbol = self.resolve_symbol(market)
        use_websocket = self.websocket_client is not None

        while use_websocket:
            try:
                if self.websocket_timeout and self.websocket_timeout > 0:
                    trades = await asyncio.wait_for(
                        self.websocket_client.watch_trades(symbol),
                        timeout=self.websocket_timeout,
                    )
                else:
                    trades = await self.websocket_client.watch_trades(symbol)
            except (CcxtNotSupported, AttributeError, asyncio.TimeoutError, CcxtBaseError) as exc:
                if require_websocket:
                    raise
                logger.warning(
                    f"{self.exchange_name} websocket trades failed for {market}; falling back to REST polling ({exc!r})."
                )
                use_websocket = False
                break
            price = self._last_trade_price(trades)
            if price is not None:
                yield price

        if require_websocket:
            raise RuntimeError(f"{self.exchange_name} websocket trades unavailable for {market}")

        while True:
            yield await self.fetch_last_price(market)
            await asyncio.sleep(self.poll_interval)

    @classmethod
    def _last_trade_price(cls, trades: Any) -> Optional[float]:
        if not isinstance(trades, list):
            trades = [trades]
        for trade in reversed(trades):
            if isinstance(trade, dict):
                price = cls._coerce_float(trade.get("price"))
                if price is not None:
                    return price
        return None

    def subscribe_order_book(self, market: str, on_update: OrderBookCallback) -> OrderBookSubscription:
        """Start a background task that forwards every snapshot of ``market`` to ``on_update``.

        Must be called from a running event loop. Exceptions raised by the
        callback are logged and the feed keeps running.
        """

        self.resolve_symbol(market)
        return self._start_feed(market, "order-book", self.watch_order_book(market), on_update)

    def subscribe_last_price(self, market: str, on_update: LastPriceCallback) -> OrderBookSubscription:
        """Start a background task that forwards every last traded price of ``market`` to ``on_update``."""

        self.resolve_symbol(market)
        return self._start_feed(market, "last-price", self.watch_last_price(market), on_update)

    def _start_feed(
        self,
        market: str,
        kind: str,
        feed: AsyncIterator[Any],
        on_update: Callable[[Any], Union[None, Awaitable[None]]],
    ) -> OrderBookSubscription:
        async def _pump() -> None:
            async for value in feed:
                try:
                    result = on_update(value)
                    if inspect.isawaitable(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"{kind} handler for {market} failed")

        task = asyncio.create_task(_pump(), name=f"{kind}-{market}")
        task.add_done_callback(self._log_feed_exit)
        logger.debug(f"Subscribed to {market} {kind} updates")
        return OrderBookSubscription(market, task)

    @staticmethod
    def _log_feed_exit(task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Order book feed {task.get_name()} stopped: {exc!r}")

    # ------------------------------------------------------------------ #
    # Trading
    # ------------------------------------------------------------------ #
    async def place_market_order(self, market: str, side: str, quantity: float) -> OrderResult:
        """Submit a market order and return its fills.

        When ``make_trades`` is disabled the order is simulated against the
        current order book instead of being sent to the exchange.
        """

        if side not in {"buy", "sell"}:
            raise ValueError(f"Unsupported order side {side!r}")
        if quantity <= 0:
            raise OrderRejected(market, f"Order quantity for {market} must be positive, got {quantity}")

        symbol = self.resolve_symbol(market)
        if not self.make_trades:
            return await self._simulate_market_order(market, symbol, side, quantity)

        params = {"newOrderRespType": "FULL"} if self.exchange_name.startswith("binance") else {}
        try:
            order = await asyncio.to_thread(
                self.rest_client.create_order,
                symbol,
                "market",
                side,
                self.amount_to_precision(symbol, quantity),
                None,
                params,
            )
        except CcxtBaseError as exc:
            raise OrderRejected(market, f"{side} order for {quantity} {market} rejected: {exc}") from exc

        result = self._parse_order(market, side, order)
        logger.info(f"Executed market {side} on {market}: {len(result.fills)} fill(s)")
        return result

    def amount_to_precision(self, symbol: str, amount: float) -> float:
        method = getattr(self.rest_client, "amount_to_precision", None)
        if method is None:
            return float(amount)
        try:
            return float(method(symbol, float(amount)))
        except CcxtBaseError:
            return float(amount)

    async def _simulate_market_order(
        self, market: str, symbol: str, side: str, quantity: float
    ) -> OrderResult:
        snapshot = await self.fetch_order_book(market)
        levels = snapshot.bids if side == "sell" else snapshot.asks
        fill = simulate_sell(levels, quantity)
        metadata = self._market_cache.get(symbol, {})
        commission_asset = str(metadata.get("quote" if side == "sell" else "base", ""))
        trade_id = f"dry-run-{next(self._dry_run_ids)}"
        logger.info(
            f"Dry run market {side} on {market}: {fill.shares_sellable} @ {fill.average_sell_price}"
        )
        return OrderResult(
            symbol=market,
            side=side,
            order_id=trade_id,
            fills=[
                TradeFill(
                    price=fill.average_sell_price,
                    quantity=fill.shares_sellable,
                    commission=0.0,
                    commission_asset=commission_asset,
                    trade_id=trade_id,
                )
            ],
        )

    def _parse_order(self, market: str, side: str, order: Dict[str, Any]) -> OrderResult:
        info = order.get("info") if isinstance(order.get("info"), dict) else {}
        fills: List[TradeFill] = []

        for raw in info.get("fills") or []:
            fills.append(
                TradeFill(
                    price=self._coerce_float(raw.get("price")) or 0.0,
                    quantity=self._coerce_float(raw.get("qty")) or 0.0,
                    commission=self._coerce_float(raw.get("commission")) or 0.0,
                    commission_asset=str(raw.get("commissionAsset", "")),
                    trade_id=str(raw["tradeId"]) if raw.get("tradeId") is not None else None,
                )
            )

        if not fills:
            for trade in order.get("trades") or []:
                fee = trade.get("fee") if isinstance(trade.get("fee"), dict) else {}
                fills.append(
                    TradeFill(
                        price=self._coerce_float(trade.get("price")) or 0.0,
                        quantity=self._coerce_float(trade.get("amount")) or 0.0,
                        commission=self._coerce_float(fee.get("cost")) or 0.0,
                        commission_asset=str(fee.get("currency") or ""),
                        trade_id=str(trade["id"]) if trade.get("id") is not None else None,
                    )
                )

        return OrderResult(
            symbol=str(info.get("symbol") or market),
            side=side,
            order_id=str(order["id"]) if order.get("id") is not None else None,
            fills=fills,
        )

    async def close(self) -> None:
        if self.websocket_client is not None and hasattr(self.websocket_client, "close"):
            try:
                result = self.websocket_client.close()
                if inspect.isawaitable(result):
                    await result
            except CcxtBaseError:
                logger.debug("Failed to close websocket client", exc_info=True)
        if self._shared_http_session is not None:
            self._shared_http_session.close()
            self._shared_http_session = None
