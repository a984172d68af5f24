#!/usr/bin/env python3
"""Price Feed CLI.

Runs one price feed operation against a CBOR state file: administration,
quote submission, staleness-checked reads, conversion, or fetching and
reporting an exchange ticker price.

Heights come from --height when given, otherwise from the latest block of
the configured network.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

from .src import StateStore
from .src.Clock import Clock, ManualClock, Web3Clock
from .src.errors import PriceFeedError
from .src.identity import normalize_identity
from .src.PriceAggregator import DEFAULT_MIN_SOURCES, DEFAULT_STALENESS_THRESHOLD
from .src.PriceFeedEngine import PriceFeedEngine
from .src.PriceReporter import DEFAULT_DECIMALS, PriceReporter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Commands that change state and therefore rewrite the state file.
MUTATING_COMMANDS = {
    "authorize",
    "deauthorize",
    "set-min-sources",
    "set-staleness",
    "submit",
    "pause",
    "report",
}


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser.

    :returns: Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        description="Price Feed: authorized multi-source price aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a new state file owned by an address
  python -m pricefeed.main --height 1 init --owner 0x5FbDB2315678afecb367f032d93F642f64180aa3

  # Authorize a reporter and submit a quote
  python -m pricefeed.main --height 2 --caller <owner> authorize <reporter>
  python -m pricefeed.main --height 3 --caller <reporter> submit STX 1850000 50

  # Read the aggregate price
  python -m pricefeed.main --height 4 price STX

Environment variables (CLI args take precedence):
  STATE_FILE, CALLER, HEIGHT, NETWORK, RPC_URL, OWNER, MIN_SOURCES,
  STALENESS_THRESHOLD
""",
    )

    parser.add_argument(
        "--state",
        type=str,
        help="Path of the CBOR state file (default: pricefeed-state.cbor)",
        default=os.environ.get("STATE_FILE") or "pricefeed-state.cbor",
    )

    parser.add_argument(
        "--caller",
        type=str,
        help="Identity performing the operation (0x or bech32 address)",
        default=os.environ.get("CALLER"),
    )

    parser.add_argument(
        "--height",
        type=int,
        help="Explicit current height (default: latest block of --network)",
        default=os.environ.get("HEIGHT"),
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network used for the height clock (sapphire, sapphire-testnet, sapphire-localnet)",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create a new, empty state file")
    init.add_argument(
        "--owner",
        type=str,
        help="Owner identity (0x or bech32 address)",
        default=os.environ.get("OWNER"),
    )
    init.add_argument(
        "--min-sources",
        dest="min_sources",
        type=int,
        help=f"Minimum sources required for an aggregate (default: {DEFAULT_MIN_SOURCES})",
        default=int(os.environ.get("MIN_SOURCES") or DEFAULT_MIN_SOURCES),
    )
    init.add_argument(
        "--staleness-threshold",
        dest="staleness_threshold",
        type=int,
        help=f"Maximum age in height units (default: {DEFAULT_STALENESS_THRESHOLD})",
        default=int(os.environ.get("STALENESS_THRESHOLD") or DEFAULT_STALENESS_THRESHOLD),
    )

    for name, help_text in (
        ("authorize", "Authorize a reporting source (owner only)"),
        ("deauthorize", "Revoke a reporting source (owner only)"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("source", type=str)

    sub = commands.add_parser("set-min-sources", help="Set min sources (owner only)")
    sub.add_argument("value", type=int)

    sub = commands.add_parser("set-staleness", help="Set staleness threshold (owner only)")
    sub.add_argument("value", type=int)

    sub = commands.add_parser("submit", help="Submit a quote as --caller")
    sub.add_argument("asset", type=str)
    sub.add_argument("price", type=int)
    sub.add_argument("weight", type=int)

    sub = commands.add_parser("pause", help="Pause a source's quote for an asset (owner only)")
    sub.add_argument("asset", type=str)
    sub.add_argument("source", type=str)

    for name, help_text in (
        ("price", "Print the fresh aggregate price"),
        ("price-data", "Print the cached aggregate regardless of age"),
        ("fresh", "Print whether the aggregate is fresh"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("asset", type=str)

    sub = commands.add_parser("quote", help="Print a source's stored quote")
    sub.add_argument("asset", type=str)
    sub.add_argument("source", type=str)

    sub = commands.add_parser("convert", help="Convert an amount between assets")
    sub.add_argument("asset_from", type=str)
    sub.add_argument("asset_to", type=str)
    sub.add_argument("amount", type=int)

    sub = commands.add_parser("report", help="Fetch a ticker price and submit it as --caller")
    sub.add_argument("asset", type=str)
    sub.add_argument("--quote", type=str, default="usd", help="Quote currency (default: usd)")
    sub.add_argument("--weight", type=int, default=50, help="Quote weight (default: 50)")
    sub.add_argument(
        "--decimals",
        type=int,
        default=DEFAULT_DECIMALS,
        help=f"Decimals kept when scaling the ticker price (default: {DEFAULT_DECIMALS})",
    )

    return parser


def _identity(parser: argparse.ArgumentParser, value: str | None, what: str) -> str:
    if not value:
        parser.error(f"{what} is required for this command")
    try:
        return normalize_identity(value)
    except ValueError as e:
        parser.error(f"Invalid {what}: {e}")


def _build_clock(args: argparse.Namespace) -> Clock:
    if args.height is not None:
        return ManualClock(args.height)
    return Web3Clock.for_network(args.network)


def _print_json(value: object) -> None:
    print(json.dumps(value, sort_keys=True))


def run(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    """Execute one parsed command.

    :param args: Parsed arguments.
    :param parser: Parser, used to report usage errors.
    :raises PriceFeedError: If the engine rejects the operation.
    :raises ValueError: If the state file cannot be read.
    """
    state_path = Path(args.state)
    clock = _build_clock(args)

    if args.command == "init":
        if state_path.exists():
            parser.error(f"State file {state_path} already exists")
        owner = _identity(parser, args.owner, "--owner")
        try:
            engine = PriceFeedEngine(
                owner=owner,
                clock=clock,
                min_sources=args.min_sources,
                staleness_threshold=args.staleness_threshold,
            )
        except ValueError as e:
            parser.error(str(e))
        StateStore.save(engine, state_path)
        logger.info(f"Created {state_path} (owner={owner})")
        return

    if not state_path.exists():
        parser.error(f"State file {state_path} not found; run 'init' first")
    engine = StateStore.load(state_path, clock)

    command = args.command
    if command in ("authorize", "deauthorize"):
        caller = _identity(parser, args.caller, "--caller")
        source = _identity(parser, args.source, "source")
        if command == "authorize":
            engine.authorize_source(caller, source)
        else:
            engine.deauthorize_source(caller, source)
    elif command == "set-min-sources":
        engine.set_min_sources(_identity(parser, args.caller, "--caller"), args.value)
    elif command == "set-staleness":
        engine.set_staleness_threshold(_identity(parser, args.caller, "--caller"), args.value)
    elif command == "submit":
        caller = _identity(parser, args.caller, "--caller")
        _print_json({"asset": engine.submit(caller, args.asset, args.price, args.weight)})
    elif command == "pause":
        caller = _identity(parser, args.caller, "--caller")
        engine.pause_source(caller, args.asset, _identity(parser, args.source, "source"))
    elif command == "price":
        _print_json({"asset": args.asset, "price": engine.get_price(args.asset)})
    elif command == "price-data":
        data = engine.get_price_data(args.asset)
        _print_json(asdict(data) if data is not None else None)
    elif command == "fresh":
        _print_json({"asset": args.asset, "fresh": engine.is_price_fresh(args.asset)})
    elif command == "quote":
        quote = engine.get_source_quote(args.asset, _identity(parser, args.source, "source"))
        _print_json(asdict(quote) if quote is not None else None)
    elif command == "convert":
        _print_json({"amount": engine.convert(args.asset_from, args.asset_to, args.amount)})
    elif command == "report":
        caller = _identity(parser, args.caller, "--caller")
        reporter = PriceReporter(
            engine, source=caller, weight=args.weight, decimals=args.decimals
        )

        async def _report() -> int | None:
            try:
                return await reporter.report(args.asset, quote=args.quote)
            finally:
                await PriceReporter.close_shared_client()

        _print_json({"asset": args.asset, "price": asyncio.run(_report())})

    if command in MUTATING_COMMANDS:
        StateStore.save(engine, state_path)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Price Feed CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        run(args, parser)
    except PriceFeedError as e:
        logger.error(f"{e.kind}: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
