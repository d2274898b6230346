"""Bridge routing toolkit: find and track the best intermediate asset for a swap."""
from bridgepy.src.trading.bridge_routing.config import RouterSettings, load_credentials_from_config
from bridgepy.src.trading.bridge_routing.evaluator import (
    BridgeRouteEvaluator,
    build_route,
    market_symbol,
    rank_routes,
)
from bridgepy.src.trading.bridge_routing.exceptions import (
    BridgeRoutingError,
    EmptyFillError,
    EmptyFillSetError,
    MarketUnavailable,
    NoViableRouteError,
    OrderRejected,
    PartialExecutionError,
)
from bridgepy.src.trading.bridge_routing.exchange import ExchangeConnection, OrderBookSubscription
from bridgepy.src.trading.bridge_routing.executor import BridgeTradeExecutor
from bridgepy.src.trading.bridge_routing.fills import simulate_buy, simulate_sell
from bridgepy.src.trading.bridge_routing.live import (
    BUY_LEG_UPDATED,
    LAST_PRICE_UPDATED,
    SELL_LEG_UPDATED,
    BuyLegUpdate,
    LastPriceUpdate,
    LiveRoutePipeline,
    LiveSession,
    SellLegUpdate,
    SessionRecomputationState,
)
from bridgepy.src.trading.bridge_routing.lot_size import adjust_buy_leg, adjust_to_min_step
from bridgepy.src.trading.bridge_routing.models import (
    BaseCoin,
    BestRoute,
    BuyFill,
    BuyLeg,
    LotAdjustment,
    MinSteps,
    OrderBookSnapshot,
    OrderResult,
    PriceLevel,
    Route,
    RoutePrices,
    Savings,
    SellFill,
    SellLeg,
    SettledLeg,
    SettledTrade,
    TradeFill,
    WorstRoute,
)
from bridgepy.src.trading.bridge_routing.settlement import (
    TradeSettlementAggregator,
    aggregate_fills,
    commission_rate,
    compute_savings,
)

__all__ = [
    "BUY_LEG_UPDATED",
    "LAST_PRICE_UPDATED",
    "SELL_LEG_UPDATED",
    "BaseCoin",
    "BestRoute",
    "BridgeRouteEvaluator",
    "BridgeRoutingError",
    "BridgeTradeExecutor",
    "BuyFill",
    "BuyLeg",
    "BuyLegUpdate",
    "EmptyFillError",
    "EmptyFillSetError",
    "ExchangeConnection",
    "LastPriceUpdate",
    "LiveRoutePipeline",
    "LiveSession",
    "LotAdjustment",
    "MarketUnavailable",
    "MinSteps",
    "NoViableRouteError",
    "OrderBookSnapshot",
    "OrderBookSubscription",
    "OrderRejected",
    "OrderResult",
    "PartialExecutionError",
    "PriceLevel",
    "Route",
    "RoutePrices",
    "RouterSettings",
    "Savings",
    "SellFill",
    "SellLeg",
    "SellLegUpdate",
    "SessionRecomputationState",
    "SettledLeg",
    "SettledTrade",
    "TradeFill",
    "TradeSettlementAggregator",
    "WorstRoute",
    "adjust_buy_leg",
    "adjust_to_min_step",
    "aggregate_fills",
    "build_route",
    "commission_rate",
    "compute_savings",
    "load_credentials_from_config",
    "market_symbol",
    "rank_routes",
    "simulate_buy",
    "simulate_sell",
]
