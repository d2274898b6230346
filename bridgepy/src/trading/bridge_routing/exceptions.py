"""Custom exceptions for bridge routing utilities."""
from __future__ import annotations

from typing import Any, Optional, Sequence


class BridgeRoutingError(RuntimeError):
    """Base class for routing and execution failures."""


class MarketUnavailable(BridgeRoutingError):
    """Raised when an order book or market cannot be fetched for a symbol."""

    def __init__(self, market: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Market {market} is unavailable")
        self.market = market


class NoViableRouteError(BridgeRoutingError):
    """Raised when none of the bridge candidates produced a rankable route."""

    def __init__(self, sell_asset: str, buy_asset: str, bridge_assets: Sequence[str]) -> None:
        super().__init__(
            f"No viable route from {sell_asset} to {buy_asset} via {', '.join(bridge_assets) or 'no bridges'}"
        )
        self.sell_asset = sell_asset
        self.buy_asset = buy_asset
        self.bridge_assets = tuple(bridge_assets)


class OrderRejected(BridgeRoutingError):
    """Raised when the exchange refuses a market order."""

    def __init__(self, market: str, message: str) -> None:
        super().__init__(message)
        self.market = market


class PartialExecutionError(OrderRejected):
    """Raised when the buy leg fails after the sell leg already executed."""

    def __init__(self, market: str, message: str, *, sale: Any) -> None:
        super().__init__(market, message)
        self.sale = sale


class EmptyFillError(ZeroDivisionError):
    """Raised when an average price is requested over zero filled quantity."""


class EmptyFillSetError(ValueError):
    """Raised when an executed order reports no fills to aggregate."""
