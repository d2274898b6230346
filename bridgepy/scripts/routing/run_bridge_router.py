"""Command line entry point for the bridge routing toolkit."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import List, Optional, Sequence

from bridgepy.src.trading.bridge_routing import (
    BridgeRouteEvaluator,
    BridgeTradeExecutor,
    ExchangeConnection,
    LiveRoutePipeline,
    NoViableRouteError,
    PartialExecutionError,
    RouterSettings,
    load_credentials_from_config,
)
from bridgepy.src.trading.bridge_routing.config import (
    DEFAULT_CONFIG_PATH,
    LOG_LEVEL_DEFAULT,
)
from bridgepy.src.trading.bridge_routing.live import LiveUpdate


logger = logging.getLogger(__name__)


def _parse_bridge_assets(entries: Optional[Sequence[str]]) -> List[str]:
    assets: List[str] = []
    for entry in entries or []:
        for part in str(entry).replace(",", " ").split():
            if part and part.upper() not in assets:
                assets.append(part.upper())
    return assets


def _print_event(event: str, update: LiveUpdate) -> None:
    print(json.dumps({"event": event, **update.as_payload()}))


def build_settings(args: argparse.Namespace) -> RouterSettings:
    settings = RouterSettings.from_yaml(args.config or DEFAULT_CONFIG_PATH)
    if args.exchange:
        settings.exchange = args.exchange.lower()
    bridges = _parse_bridge_assets(args.bridge)
    if bridges:
        settings.bridge_assets = bridges
    if args.strict_consistency is not None:
        settings.strict_consistency = args.strict_consistency
    settings.make_trades = bool(args.live_trading)
    return settings


async def run_from_args(args: argparse.Namespace) -> None:
    if args.live_trading and not args.execute:
        raise SystemExit("--live-trading requires --execute to be set.")
    if args.quantity <= 0:
        raise SystemExit("--quantity must be positive.")

    settings = build_settings(args)
    credentials = load_credentials_from_config(settings.exchange, args.config)
    exchange = ExchangeConnection(
        settings.exchange,
        credentials=credentials,
        make_trades=settings.make_trades,
        order_book_depth=settings.order_book_depth,
        websocket_timeout=settings.websocket_timeout,
        poll_interval=settings.poll_interval,
    )
    evaluator = BridgeRouteEvaluator(exchange, unit_of_account=settings.unit_of_account)

    try:
        if args.execute:
            executor = BridgeTradeExecutor(exchange, settings=settings, evaluator=evaluator)
            try:
                trade = await executor.execute_trade(
                    args.sell,
                    args.buy,
                    args.quantity,
                    bridge_assets=settings.bridge_assets,
                )
            except PartialExecutionError as exc:
                logger.error(f"Trade only partially executed: {exc}")
                print(json.dumps({"sale": exc.sale.as_payload(), "purchase": None}, indent=2))
                raise SystemExit(1)
            print(json.dumps(trade.as_payload(), indent=2))
            return

        try:
            best_route = await evaluator.evaluate_route(
                args.sell,
                args.buy,
                settings.bridge_assets,
                args.quantity,
            )
        except NoViableRouteError as exc:
            raise SystemExit(str(exc))
        print(json.dumps(best_route.as_payload(), indent=2))

        if not args.watch:
            return

        pipeline = LiveRoutePipeline(
            exchange,
            _print_event,
            strict_consistency=settings.strict_consistency,
            unit_of_account=settings.unit_of_account,
        )
        session = await pipeline.start_session(
            best_route.sell_coin.market,
            best_route.buy_coin.market,
            quantity=args.quantity,
            buy_min_step=best_route.buy_coin.min_step,
        )
        pipeline.watch_route_prices(session, best_route.base_coin.market)
        try:
            await asyncio.Event().wait()
        finally:
            await pipeline.close()
    finally:
        await exchange.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find the best bridge asset to convert one coin into another.",
    )
    parser.add_argument("--sell", required=True, help="Asset being sold (e.g. ETC).")
    parser.add_argument("--buy", required=True, help="Asset being bought (e.g. XLM).")
    parser.add_argument(
        "--quantity",
        type=float,
        required=True,
        help="Quantity of the sell asset to route.",
    )
    parser.add_argument(
        "--bridge",
        action="append",
        metavar="ASSET",
        help="Candidate bridge asset. Provide multiple times or comma-separated values.",
    )
    parser.add_argument(
        "--exchange",
        default=None,
        help="Name of the exchange supported by ccxt (defaults to the configured exchange).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional path to an exchange_config.yaml with router settings and API credentials.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep streaming recomputed leg figures and last prices for the chosen route.",
    )
    parser.add_argument(
        "--strict-consistency",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Only recompute the buy leg once per new sell-leg total.",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Execute the route with two market orders (simulated unless --live-trading).",
    )
    parser.add_argument(
        "--live-trading",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Send real orders instead of simulating them against the order book.",
    )
    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL_DEFAULT,
        help="Configure the logging level (e.g. DEBUG, INFO).",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    default_level = getattr(logging, LOG_LEVEL_DEFAULT.upper(), logging.INFO)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), default_level))
    try:
        asyncio.run(run_from_args(args))
    except KeyboardInterrupt:  # pragma: no cover - outer signal handler
        logger.info("Interrupted by user. Goodbye!")


if __name__ == "__main__":  # pragma: no cover - script entry point
    main()
