"""
Command line entry point.

Usage:
    # Run the engine until Ctrl+C
    flash-arbitrage --config config/engine.example.yaml run

    # Run the startup health checks once
    flash-arbitrage --config config/engine.example.yaml check

    # Show the current spread for the configured pair
    flash-arbitrage --config config/engine.example.yaml quote

    # Serve the control API; the engine is started through it
    flash-arbitrage --config config/engine.example.yaml serve --port 8080
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import uvicorn

from . import logging_config
from .api import create_app
from .config_loader import load_config
from .config_schema import EngineConfig
from .events import EventBus
from .exceptions import ConfigurationError, FlashArbitrageError, OwnershipError
from .fixed_point import format_units
from .metrics import EngineMetrics
from .supervisor import EngineState, Supervisor, build_components
from .utils import safe_json_dump, wait_for_stop

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C then surfaces as KeyboardInterrupt
            pass


async def run_engine(config: EngineConfig, metrics_port: Optional[int] = None) -> int:
    metrics = EngineMetrics()
    if metrics_port:
        await metrics.start_server(port=metrics_port)

    supervisor = Supervisor(metrics=metrics)
    result = await supervisor.start(config)
    if not result["ok"]:
        print(f"Engine failed to start: {result['error']['message']}")
        await metrics.stop_server()
        return 1

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    print("Engine running. Press Ctrl+C to stop.")

    try:
        while not await wait_for_stop(stop_event, 1.0):
            if supervisor.state == EngineState.STOPPED:
                break
    finally:
        await supervisor.stop()
        await metrics.stop_server()

    print(safe_json_dump(supervisor.stats.summary(), indent=2))
    if supervisor.last_error:
        print(f"Engine stopped on error: {supervisor.last_error['message']}")
        return 1
    return 0


async def run_check(config: EngineConfig) -> int:
    components = build_components(config, EventBus())
    try:
        results = await components.health.run_startup_checks()
    except OwnershipError as e:
        print(f"FATAL  contract  {e}")
        return 1

    for result in results:
        status = "PASS" if result.healthy else "FAIL"
        print(f"{status:5}  {result.name:14} {result.detail}")

    failed = sum(1 for result in results if not result.healthy)
    if failed > config.max_failed_health_checks:
        print(f"{failed} checks failed; the engine would refuse to start")
        return 1
    return 0


async def run_quote(config: EngineConfig) -> int:
    components = build_components(config, EventBus())
    pair = config.pair
    try:
        spread = await components.aggregator.get_spread(pair.token_a, pair.token_b)
        decimals = await components.chain.get_token_decimals(pair.token_b)
    except FlashArbitrageError as e:
        print(f"Quote failed: {e}")
        return 1

    print(f"{pair.name}: {spread.difference_bps} bps, favoring {spread.favored_exchange}")
    for quote in (spread.quote_a, spread.quote_b):
        print(f"  {quote.exchange_id:12} {format_units(quote.amount_out, decimals)}")
    return 0


async def run_server(config_path: Optional[str], host: str, port: int) -> int:
    supervisor = Supervisor(metrics=EngineMetrics())
    app = create_app(supervisor, lambda: load_config(config_path))
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    try:
        await server.serve()
    finally:
        await supervisor.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flash-arbitrage",
        description="Flash-loan arbitrage engine for two Uniswap V2 style exchanges",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--env-file", help="dotenv file with secrets")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", help="Also write logs to this rotating file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the engine until interrupted")
    run_parser.add_argument(
        "--metrics-port", type=int, help="Serve Prometheus metrics on this port"
    )

    subparsers.add_parser("check", help="Run the startup health checks once")
    subparsers.add_parser("quote", help="Show the current spread for the pair")

    serve_parser = subparsers.add_parser("serve", help="Serve the control API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging_config.setup(level=args.log_level, log_file=args.log_file)

    try:
        config = load_config(args.config, env_file=args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2

    if args.command == "run":
        return await run_engine(config, args.metrics_port)
    if args.command == "check":
        return await run_check(config)
    if args.command == "quote":
        return await run_quote(config)
    if args.command == "serve":
        return await run_server(args.config, args.host, args.port)
    return 2


def cli() -> None:
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
