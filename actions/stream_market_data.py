#!/usr/bin/env python3
"""
Stream normalized market data from one venue and print it.

**Purpose**: End-to-end check of a venue configuration. It loads credentials
from the environment, opens the adapter's streaming session, prints every
normalized tick, and finishes with a table of the latest quote per symbol.

**Usage**:
    python actions/stream_market_data.py ALPACA AAPL MSFT
    python actions/stream_market_data.py BYBIT BTCUSDT ETHUSDT --duration 30
    python actions/stream_market_data.py RITHMIC ESM4:CME --log-level DEBUG

The first argument is the environment prefix: ALPACA reads ALPACA_API_KEY,
ALPACA_SECRET_KEY, ALPACA_SANDBOX and so on (see VenueConfig.from_env). The
venue id defaults to the lowercased prefix; override it with <PREFIX>_VENUE
or --venue.

**Exit codes**:
    0  ran for the requested duration (or the stream ended on its own)
    1  configuration problem (missing credentials, unknown venue)
    2  the venue has no streaming endpoint
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to Python path so we can import src modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config.settings import VenueConfig
from src.data.frames import TickTape
from src.venues.adapters import adapter_class_for
from src.venues.errors import ConfigurationError, VenueConnectionError


def parse_args():
    parser = argparse.ArgumentParser(
        description="Stream normalized market data from a configured venue",
        epilog="""
Examples:
  python actions/stream_market_data.py ALPACA AAPL MSFT
  python actions/stream_market_data.py BYBIT BTCUSDT --duration 30
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("prefix", help="Environment variable prefix (e.g., ALPACA, BYBIT, RITHMIC)")
    parser.add_argument("symbols", nargs="+", help="Symbols to subscribe to")
    parser.add_argument("--venue", default=None, help="Venue id (default: lowercased prefix)")
    parser.add_argument(
        "--duration",
        type=float,
        default=60.0,
        help="Seconds to stream before disconnecting (default: 60)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print the final quote table, not every tick",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args()


def print_tick(tick) -> None:
    print(
        f"{tick.timestamp}  {tick.symbol:<12} last={tick.price:<12g} "
        f"bid={tick.bid:<12g} ask={tick.ask:<12g} vol={tick.volume:g}"
    )


async def stream(config: VenueConfig, symbols, duration: float, quiet: bool) -> TickTape:
    adapter = adapter_class_for(config.family)()
    adapter.configure(config)
    tape = TickTape()
    adapter.on_market_data(tape)
    if not quiet:
        adapter.on_market_data(print_tick)

    async with adapter:
        await adapter.connect_market_data(symbols)
        try:
            await asyncio.wait_for(adapter.wait_closed(), timeout=duration)
            print("Stream ended before the requested duration (see log for details)")
        except asyncio.TimeoutError:
            pass
    return tape


def main():
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        config = VenueConfig.from_env(args.prefix, venue=args.venue)
    except (ValueError, KeyError) as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Streaming {', '.join(args.symbols)} from {config.venue} "
          f"({'sandbox' if config.sandbox else 'live'}) for {args.duration:g}s...")

    try:
        tape = asyncio.run(stream(config, args.symbols, args.duration, args.quiet))
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except VenueConnectionError as e:
        print(f"✗ Cannot stream: {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)

    print(f"\n✓ Received {len(tape)} ticks for {len(tape.symbols)} symbols")
    quotes = tape.quotes()
    if not quotes.empty:
        print(quotes[["symbol", "price", "bid", "ask", "volume", "datetime"]].to_string(index=False))

    regressions = tape.regressions()
    if not regressions.empty:
        print(f"⚠ {len(regressions)} ticks arrived with an earlier timestamp than their predecessor")


if __name__ == "__main__":
    main()
