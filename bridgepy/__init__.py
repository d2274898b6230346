from bridgepy.src.trading.bridge_routing.evaluator import BridgeRouteEvaluator
from bridgepy.src.trading.bridge_routing.exchange import ExchangeConnection
from bridgepy.src.trading.bridge_routing.executor import BridgeTradeExecutor
from bridgepy.src.trading.bridge_routing.live import LiveRoutePipeline
from bridgepy.src.trading.bridge_routing.settlement import TradeSettlementAggregator
