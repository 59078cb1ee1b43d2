"""Problem Relay -- entry point.

Assembles the relay pipeline:

    DynatraceProvider (shared httpx.AsyncClient)
        -> RelayEngine.classify (TrackingStore, SQLite)
        -> fan-out delivery tasks (one httpx.AsyncClient per connector)
        -> delivery history

Sub-commands: run, clear-cache, test-source, test-connectors, stats.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from connectors.base import Connector
from core.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from core.engine import RelayEngine
from core.errors import DeliveryError, RelayError
from core.log_format import configure_logging
from core.registry import ConnectorRegistry
from core.tracking_store import TrackingStore
from providers.dynatrace_provider import DynatraceProvider

log = logging.getLogger("problem_relay")

SOURCE_TIMEOUT_SECONDS = 30.0


@asynccontextmanager
async def build_engine(
    settings: Settings,
    shutdown: asyncio.Event | None = None,
) -> AsyncIterator[RelayEngine]:
    store = TrackingStore.open(settings.database_path)
    registry = ConnectorRegistry()
    for cfg in settings.connectors:
        registry.register(Connector(cfg))

    async with httpx.AsyncClient(timeout=SOURCE_TIMEOUT_SECONDS) as client:
        source = DynatraceProvider(
            client=client,
            base_url=settings.source.base_url,
            tenant=settings.source.tenant,
            api_token=settings.source.api_token,
            problem_selector=settings.source.problem_selector,
            page_size=settings.source.page_size,
        )
        engine = RelayEngine(
            source=source,
            store=store,
            registry=registry,
            interval_seconds=settings.interval_seconds,
            shutdown=shutdown,
        )
        try:
            yield engine
        finally:
            await engine.aclose()
            store.close()


async def cmd_run(settings: Settings) -> int:
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows event loops: Ctrl+C still raises KeyboardInterrupt.
            pass

    async with build_engine(settings, shutdown) as engine:
        await engine.run_forever()
    log.info("Shutdown complete")
    return 0


async def cmd_clear_cache(settings: Settings, confirm: bool) -> int:
    if not confirm:
        answer = input("This will delete all cached problems. Are you sure? (y/N): ")
        if answer.strip().lower() != "y":
            log.info("Operation cancelled")
            return 0

    async with build_engine(settings) as engine:
        removed = await engine.clear_cache()
    print(f"Cleared {removed} problems from cache")
    return 0


async def cmd_test_source(settings: Settings) -> int:
    async with build_engine(settings) as engine:
        total = await engine.source.test_connection()
    print(f"✓ {engine.source.name} API connection successful ({total} problems)")
    return 0


async def cmd_test_connectors(settings: Settings) -> int:
    failures = 0
    async with build_engine(settings) as engine:
        for connector in engine.connectors:
            try:
                await engine.test_connector(connector.name)
            except DeliveryError as exc:
                failures += 1
                print(f"✗ Connector '{connector.name}' test failed: {exc}")
            else:
                print(f"✓ Connector '{connector.name}' test successful")
    return 1 if failures else 0


async def cmd_stats(settings: Settings) -> int:
    async with build_engine(settings) as engine:
        stats = await engine.get_stats()

    print("\n=== Database Statistics ===")
    print(f"Total problems tracked:  {stats.total}")
    print(f"  Open problems:         {stats.open_count}")
    print(f"  Closed problems:       {stats.closed_count}")
    print("\nForward history:")
    print(f"  Total forwards:        {stats.total_deliveries}")
    print(f"  Successful:            {stats.success_count}")
    print(f"  Failed:                {stats.failure_count}")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="problem-relay",
        description="Forward Dynatrace problems to external HTTP endpoints",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c",
        "--config",
        default=os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH),
        help="Path to configuration file (default: $CONFIG_PATH or ./config.yaml)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", parents=[common], help="Run the relay in the foreground")
    clear = sub.add_parser(
        "clear-cache",
        parents=[common],
        help="Forget tracked problems so open ones are forwarded again",
    )
    clear.add_argument("--yes", action="store_true", help="Do not prompt for confirmation")
    sub.add_parser("test-source", parents=[common], help="Test connectivity to the Dynatrace API")
    sub.add_parser("test-connectors", parents=[common], help="Send a test payload to every connector")
    sub.add_parser("stats", parents=[common], help="Show tracking store statistics")
    return parser


async def dispatch(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    configure_logging(settings.log_level, settings.log_format)
    log.info("Configuration loaded from: %s", args.config)

    if args.command == "run":
        return await cmd_run(settings)
    if args.command == "clear-cache":
        return await cmd_clear_cache(settings, args.yes)
    if args.command == "test-source":
        return await cmd_test_source(settings)
    if args.command == "test-connectors":
        return await cmd_test_connectors(settings)
    return await cmd_stats(settings)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(dispatch(args))
    except RelayError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
