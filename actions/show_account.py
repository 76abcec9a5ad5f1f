#!/usr/bin/env python3
"""
Print account summary, open positions and orders for one venue.

**Usage**:
    python actions/show_account.py ALPACA
    python actions/show_account.py BYBIT --orders all
    python actions/show_account.py RITHMIC --wait 5

For REST venues the data comes straight from the venue's API. The futures
gateway has no REST API: the script logs in over the stream, waits --wait
seconds for account/position/order snapshots, and prints what arrived.

**Exit codes**:
    0  success
    1  configuration problem
    2  the venue rejected a request or could not be reached
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

# Add project root to Python path so we can import src modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config.settings import VenueConfig
from src.data.frames import orders_to_frame, positions_to_frame
from src.venues import profiles
from src.venues.adapters import adapter_class_for
from src.venues.errors import ConfigurationError, RequestError, VenueConnectionError


def parse_args():
    parser = argparse.ArgumentParser(description="Show account, positions and orders for a venue")
    parser.add_argument("prefix", help="Environment variable prefix (e.g., ALPACA, BYBIT)")
    parser.add_argument("--venue", default=None, help="Venue id (default: lowercased prefix)")
    parser.add_argument(
        "--orders",
        default="open",
        help='Order status filter passed to the venue ("open", "closed", "all"; default: open)',
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Futures gateway only: seconds to wait for stream snapshots (default: 5)",
    )
    parser.add_argument(
        "--symbols",
        nargs="*",
        default=[],
        help="Futures gateway only: symbols to subscribe while waiting",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


async def collect(config: VenueConfig, args):
    adapter = adapter_class_for(config.family)()
    adapter.configure(config)
    async with adapter:
        if config.family == profiles.FUTURES:
            # Login happens on the stream; the gateway needs at least one symbol.
            await adapter.connect_market_data(args.symbols or ["ES"])
            await asyncio.sleep(args.wait)
            if not adapter.is_connected():
                raise VenueConnectionError(f"Not logged in to {config.venue} after {args.wait:g}s")

        status = None if args.orders == "all" else args.orders
        account = await adapter.get_account()
        positions = await adapter.get_positions()
        orders = await adapter.get_orders(status)
    return account, positions, orders


def main():
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        config = VenueConfig.from_env(args.prefix, venue=args.venue)
        account, positions, orders = asyncio.run(collect(config, args))
    except (ConfigurationError, ValueError, KeyError) as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except RequestError as e:
        print(f"✗ Request failed (status {e.status_code}): {e.body or e}", file=sys.stderr)
        sys.exit(2)
    except VenueConnectionError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(2)

    print(f"=== {config.venue} account ===")
    if account is None:
        print("(no account snapshot received)")
    else:
        for field in dataclasses.fields(account):
            print(f"  {field.name:<26} {getattr(account, field.name)}")

    print(f"\n=== Positions ({len(positions)}) ===")
    if positions:
        print(positions_to_frame(positions).to_string(index=False))

    print(f"\n=== Orders [{args.orders}] ({len(orders)}) ===")
    if orders:
        df = orders_to_frame(orders)
        print(df[["order_id", "symbol", "side", "quantity", "filled_quantity", "state"]].to_string(index=False))


if __name__ == "__main__":
    main()
