"""CLI interface for pollwatch.

Run a preset watcher from the command line and print what it sees.

Usage:
    python -m pollwatch.cli balance --rpc-url https://rpc.example <address>...
    python -m pollwatch.cli transactions --api-url https://explorer.example <address>
    python -m pollwatch.cli events --api-url https://feed.example --output json
    python -m pollwatch.cli price --api-url https://prices.example ETH/USD --once
    python -m pollwatch.cli transfers --api-url https://flows.example
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

from pollwatch.cli_output import CLIOutput, OutputFormat
from pollwatch.config import WatchSettings, build_settings
from pollwatch.dedup import ValueDiff
from pollwatch.engine import PollingEngine
from pollwatch.errors import ConfigError
from pollwatch.events import EVENT_KINDS
from pollwatch.utils.logging import bind_context, configure_logging, get_logger
from pollwatch.watchers import (
    asset_flow_watcher,
    balance_watcher,
    event_watcher,
    price_watcher,
    transaction_watcher,
)

logger = get_logger(__name__)

SETTINGS_FLAGS = {
    "interval_ms": "poll_interval_ms",
    "timeout_ms": "timeout_ms",
    "retries": "retries",
    "backoff_ms": "backoff_ms",
    "concurrency": "concurrency",
    "max_seen_ids": "max_seen_ids",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pollwatch",
        description="Poll remote sources and print changes as they happen",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m pollwatch.cli balance --rpc-url https://rpc.example <address>
  python -m pollwatch.cli events --api-url https://feed.example -o json
  python -m pollwatch.cli price --api-url https://prices.example BTC/USD --once
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-o",
        "--output",
        choices=[fmt.value for fmt in OutputFormat],
        default="text",
        help="Output format (default: text)",
    )
    common.add_argument(
        "-v", "--verbose", action="store_true", help="Show ticks and debug logs"
    )
    common.add_argument(
        "--once", action="store_true", help="Run a single tick and exit"
    )
    common.add_argument("--interval-ms", type=int, help="Poll interval (>= 1000)")
    common.add_argument("--timeout-ms", type=int, help="Per-attempt timeout")
    common.add_argument("--retries", type=int, help="Retries per fetch")
    common.add_argument("--backoff-ms", type=int, help="Base retry backoff")
    common.add_argument("--concurrency", type=int, help="Max fetches in flight")
    common.add_argument("--max-seen-ids", type=int, help="Remembered ids per key")
    common.add_argument(
        "--no-skip-backfill",
        action="store_true",
        help="Report items that existed before the first poll",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    balance = commands.add_parser(
        "balance", parents=[common], help="Watch wallet balances over JSON-RPC"
    )
    balance.add_argument("--rpc-url", required=True)
    balance.add_argument("--method", default="getBalance")
    balance.add_argument("addresses", nargs="+")

    transactions = commands.add_parser(
        "transactions", parents=[common], help="Watch new transactions per address"
    )
    transactions.add_argument("--api-url", required=True)
    transactions.add_argument("addresses", nargs="+")

    events = commands.add_parser(
        "events", parents=[common], help="Watch an outer event feed"
    )
    events.add_argument("--api-url", required=True)
    events.add_argument("--path", default="/outer/events")
    events.add_argument("sources", nargs="*", default=["default"])

    price = commands.add_parser(
        "price", parents=[common], help="Alert on price moves above a threshold"
    )
    price.add_argument("--api-url", required=True)
    price.add_argument("--threshold", type=float, default=1.0, help="Percent move")
    price.add_argument("symbols", nargs="+")

    transfers = commands.add_parser(
        "transfers", parents=[common], help="Watch token transfers (asset flow)"
    )
    transfers.add_argument("--api-url", required=True)
    transfers.add_argument("addresses", nargs="*", default=["default"])

    return parser


def settings_from_args(args: argparse.Namespace) -> WatchSettings:
    overrides: Dict[str, Any] = {}
    for flag, field in SETTINGS_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            overrides[field] = value
    if getattr(args, "no_skip_backfill", False):
        overrides["skip_backfill_on_first_run"] = False
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    return build_settings(**overrides)


def build_watcher(args: argparse.Namespace, settings: WatchSettings) -> PollingEngine:
    if args.command == "balance":
        return balance_watcher(
            args.rpc_url, args.addresses, settings=settings, method=args.method
        )
    if args.command == "transactions":
        return transaction_watcher(args.api_url, args.addresses, settings=settings)
    if args.command == "events":
        return event_watcher(
            args.api_url, args.sources, settings=settings, path=args.path
        )
    if args.command == "price":
        return price_watcher(
            args.api_url, args.symbols, threshold_pct=args.threshold, settings=settings
        )
    if args.command == "transfers":
        return asset_flow_watcher(args.api_url, args.addresses, settings=settings)
    raise ConfigError(f"Unknown command {args.command!r}")


def attach_output(engine: PollingEngine, output: CLIOutput) -> None:
    for kind in EVENT_KINDS:
        engine.on(kind, lambda event, kind=kind: output.event(kind, event))


async def run_once(engine: PollingEngine, output: CLIOutput) -> None:
    """Run one tick and report current values for value-diff watchers."""
    await engine.tick()
    if isinstance(engine.strategy, ValueDiff):
        for key in engine.keys:
            value = engine.last_value(key)
            if value is not None:
                output.info(f"{key}: {value}")


async def run_until_signalled(engine: PollingEngine, output: CLIOutput) -> None:
    stop_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    engine.start()
    output.status(
        f"Polling every {engine.settings.poll_interval_ms}ms, Ctrl+C to stop"
    )
    await stop_event.wait()


async def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    output = CLIOutput(format=OutputFormat(args.output), verbose=args.verbose)

    try:
        settings = settings_from_args(args)
        engine = build_watcher(args, settings)
    except ConfigError as exc:
        output.error(str(exc))
        return 2

    configure_logging(settings.log_level)
    bind_context(watcher=engine.name, command=args.command)
    attach_output(engine, output)

    try:
        if args.once:
            await run_once(engine, output)
        else:
            await run_until_signalled(engine, output)
    finally:
        await engine.aclose()
    return 0


def cli_main() -> None:
    """Synchronous wrapper for CLI entry."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
