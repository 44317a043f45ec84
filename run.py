#!/usr/bin/env python3
"""
DLMM Watch -- Meteora DLMM Position Monitor
============================================

Values DLMM liquidity positions, tracks PnL against the initial deposit,
and reports a 5-minute Wilder RSI for the non-SOL side of each pair.

Usage:
  python run.py rsi     <mint>                         RSI of a token's most liquid pool
  python run.py rsi     <mint> --aggregate 15          RSI over 15-minute candles
  python run.py price   <mint> [<mint> ...]            USD prices (Jupiter)
  python run.py fee     <pool>                         Pair base / max fee (Meteora)
  python run.py deposit <position> [--current-value N] Initial deposit and PnL
  python run.py report  <positions.json>               Value all positions in a snapshot
  python run.py info                                   System overview

Sources:
  Jupiter Price API v2 : https://station.jup.ag/docs/apis/price-api-v2
  GeckoTerminal API    : https://api.geckoterminal.com/docs/index.html
  Meteora DLMM API     : https://dlmm-api.meteora.ag/swagger-ui/
"""

import sys
import asyncio
import argparse
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dlmm_watch.central_config import PROJECT_VERSION, config
from dlmm_watch.commands import (
    cmd_info,
    cmd_rsi,
    cmd_price,
    cmd_fee,
    cmd_deposit,
    cmd_report,
    _is_address,
)


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dlmm-watch",
        description=f"DLMM Watch v{PROJECT_VERSION} — Meteora DLMM position monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py rsi     JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN
  python run.py price   So11111111111111111111111111111111111111112
  python run.py fee     <pool_address>
  python run.py deposit <position_address> --current-value 1250.40
  python run.py report  positions.json

Snapshot format (positions.json):
  [{"position_id": "...", "pool_address": "...",
    "token_x_mint": "...", "token_y_mint": "...",
    "token_x_decimals": 6, "token_y_decimals": 9,
    "lower_bin_id": -120, "upper_bin_id": -52, "active_bin_id": -80,
    "total_x": "1250000", "total_y": "3400000000",
    "claimed_fee_x": 0, "claimed_fee_y": 0, "fee_x": 0, "fee_y": 0}]
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"DLMM Watch v{PROJECT_VERSION}"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    rsi_p = sub.add_parser("rsi", help="RSI of a token's most liquid pool")
    rsi_p.add_argument("mint", help="Token mint address")
    rsi_p.add_argument(
        "--aggregate",
        type=int,
        default=None,
        choices=config.gecko.OHLCV_AGGREGATES["minute"],
        help=f"Candle size in minutes (default: {config.rsi.AGGREGATE})",
    )
    rsi_p.add_argument(
        "--network",
        type=str,
        default=None,
        help=f"GeckoTerminal network id (default: {config.gecko.NETWORK})",
    )

    price_p = sub.add_parser("price", help="USD prices (Jupiter)")
    price_p.add_argument("mints", nargs="+", help="One or more token mint addresses")

    fee_p = sub.add_parser("fee", help="Pair base / max fee (Meteora)")
    fee_p.add_argument("pool", help="DLMM pair address")

    dep_p = sub.add_parser("deposit", help="Initial deposit and PnL of a position")
    dep_p.add_argument("position", help="Position address")
    dep_p.add_argument(
        "--current-value",
        type=float,
        default=None,
        help="Current total value in USD (position + fees) for PnL",
    )

    rep_p = sub.add_parser("report", help="Value all positions in a snapshot file")
    rep_p.add_argument("snapshot", help="Path to positions JSON snapshot")

    sub.add_parser("info", help="System & configuration info")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def _check_addresses(*addresses: str) -> bool:
    bad = [a for a in addresses if not _is_address(a)]
    for a in bad:
        print(f"❌ Invalid address: {a}. Must be a base58 Solana public key.")
    return not bad


def main() -> int:
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0

    if args.command == "rsi":
        if not _check_addresses(args.mint):
            return 1
        result = asyncio.run(cmd_rsi(args.mint, args.aggregate, args.network))
        return 0 if result.has_data else 1

    if args.command == "price":
        if not _check_addresses(*args.mints):
            return 1
        asyncio.run(cmd_price(args.mints))
        return 0

    if args.command == "fee":
        if not _check_addresses(args.pool):
            return 1
        return 0 if asyncio.run(cmd_fee(args.pool)) else 1

    if args.command == "deposit":
        if not _check_addresses(args.position):
            return 1
        found = asyncio.run(cmd_deposit(args.position, args.current_value))
        return 0 if found else 1

    if args.command == "report":
        return 0 if asyncio.run(cmd_report(args.snapshot)) else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
