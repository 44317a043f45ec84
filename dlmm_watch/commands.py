"""
DLMM Watch — Command Implementations
=====================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher.  Each public function corresponds to a
subcommand (info, rsi, price, fee, deposit, report).
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime
from pathlib import Path

from dlmm_watch.central_config import PROJECT_VERSION, PROJECT_NAME, SOL_MINT, config
from dlmm_watch.market_client import MarketDataClient, shorten_mint
from dlmm_watch.meteora_client import MeteoraClient
from position_math import (
    MonitorState,
    PositionSnapshot,
    TokenMetrics,
    WalletSummary,
    pnl,
    run_cycle,
    value_position,
)

# Base58, 32–44 chars (Solana public keys)
_ADDRESS_RE = re.compile(r"[1-9A-HJ-NP-Za-km-z]{32,44}")


def _is_address(value: str | None) -> bool:
    return bool(value) and _ADDRESS_RE.fullmatch(value) is not None


def _signed_usd(value: float) -> str:
    return f"{'+' if value >= 0 else '-'}${abs(value):,.2f}"


def _signed_pct(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


# ── Snapshot Loading ─────────────────────────────────────────────────────


def load_snapshots(path: str | Path) -> list[PositionSnapshot]:
    """
    Read positions from a JSON snapshot file.

    Accepts either a list of position objects or ``{"positions": [...]}``.
    Raises ValueError for unreadable files or malformed entries.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError:
        raise ValueError(f"Cannot read snapshot file: {path}") from None
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path} (line {exc.lineno})") from None

    if isinstance(data, dict):
        data = data.get("positions", [])
    if not isinstance(data, list):
        raise ValueError("Snapshot must be a list of positions")

    snapshots = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Position #{i} is not an object")
        try:
            snapshots.append(PositionSnapshot.from_dict(entry))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Position #{i}: {exc}") from None
    return snapshots


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system and configuration information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocol   : Meteora DLMM (Solana)")
    print(f"🌐 Network    : {config.gecko.NETWORK}")
    print(f"📈 RSI        : Wilder, period {config.rsi.PERIOD}, {config.rsi.label} candles")
    print()
    print("📡 Data Sources:")
    print(f"   Prices  : {config.jupiter.BASE_URL}{config.jupiter.PRICE_ENDPOINT}")
    print(f"   Candles : {config.gecko.BASE_URL}")
    print(f"   Deposits: {config.meteora.BASE_URL}")
    print()
    print("📁 Files:")
    print("   run.py                — CLI entry point")
    print("   rsi_engine.py         — Wilder RSI over OHLCV candles")
    print("   position_math.py      — Position valuation, PnL, monitor state")
    print("   dlmm_watch/           — API clients, config, commands")
    print()
    print("🔗 Quick Start:")
    print("   python run.py rsi     <token_mint>")
    print(f"   python run.py price   {SOL_MINT}")
    print("   python run.py report  positions.json")


async def cmd_rsi(mint: str, aggregate: int | None = None, network: str | None = None):
    """Print the RSI of a token's most liquid pool."""
    client = MarketDataClient(network)
    label = f"{aggregate}min" if aggregate else config.rsi.label

    name, result = await asyncio.gather(
        client.get_token_name(mint),
        client.calculate_token_rsi(mint, aggregate=aggregate),
    )

    if not result.has_data:
        print(f"⚠️ No candle data for {name} — RSI unavailable (reported as 0)")
        return result

    print(f"📊 {label} RSI ({name}): {result.value:.2f}")
    print(f"🕒 As of: {_format_ts(result.timestamp)}")
    return result


async def cmd_price(mints: list[str]) -> dict[str, float]:
    """Print USD prices for one or more mints."""
    client = MarketDataClient()
    prices = await client.get_token_prices(*mints)
    for mint, price in prices.items():
        if price > 0:
            print(f"💰 {shorten_mint(mint)}: ${price:,.6f}")
        else:
            print(f"❌ {shorten_mint(mint)}: no price")
    return prices


async def cmd_fee(pool: str) -> dict | None:
    """Print a pair's base, current dynamic and max fee."""
    client = MeteoraClient()
    info = await client.get_fee_info(pool)
    if info is None:
        return None
    dynamic = await client.get_current_dynamic_fee(pool, info)
    if info["name"]:
        print(f"🏦 Pair: {info['name']}")
    print(f"💰 Base Fee: {info['base_fee_percentage']:.4f}%")
    print(f"📊 Current Dynamic Fee: {dynamic:.6f}%")
    print(f"📈 Max Fee: {info['max_fee_percentage']:.4f}%")
    return info


async def cmd_deposit(position: str, current_value: float | None = None):
    """Print a position's initial deposit and, optionally, PnL against it."""
    deposit = await MeteoraClient().get_initial_deposit(position)
    if deposit is None:
        print(f"❌ No deposit found for position {shorten_mint(position)}")
        return None

    when = datetime.fromtimestamp(deposit.timestamp).strftime("%Y-%m-%d %H:%M:%S")
    print("\n📝 Initial Deposit Information:")
    print(f"└── 🕒 Timestamp: {when}")
    print(f"└── 💲 Initial Price: ${deposit.price:.8f}")
    print(f"└── 💰 Initial Value: ${deposit.initial_value:,.2f}")

    if current_value is not None:
        diff, pct = pnl(current_value, deposit.initial_value)
        emoji = "📈" if diff >= 0 else "📉"
        print(f"└── 💵 Current Total Value: ${current_value:,.2f}")
        print(f"└── {emoji} PnL: {_signed_usd(diff)} ({_signed_pct(pct)})")
    return deposit


async def _gather_metrics(
    client: MarketDataClient,
    mints: list[str],
    prices: dict[str, float],
    state: MonitorState,
) -> dict[str, TokenMetrics]:
    """Fresh RSI for each mint; names come from the state when already known."""

    async def _one(mint: str) -> TokenMetrics:
        cached = state.metrics_for(mint)
        if cached is not None:
            name = cached.name
            rsi = await client.calculate_token_rsi(mint)
        else:
            name, rsi = await asyncio.gather(
                client.get_token_name(mint), client.calculate_token_rsi(mint)
            )
        return TokenMetrics(mint=mint, name=name, price=prices.get(mint, 0.0), rsi=rsi)

    results = await asyncio.gather(*(_one(mint) for mint in mints))
    return {m.mint: m for m in results}


async def _gather_pool_fees(
    meteora: MeteoraClient, pools: list[str]
) -> dict[str, tuple[float, float]]:
    """(base fee %, current dynamic fee %) per pool; failed lookups are left out."""

    async def _one(pool: str):
        info = await meteora.get_fee_info(pool)
        if info is None:
            return pool, None
        dynamic = await meteora.get_current_dynamic_fee(pool, info)
        return pool, (info["base_fee_percentage"], dynamic)

    results = await asyncio.gather(*(_one(pool) for pool in pools))
    return {pool: fees for pool, fees in results if fees is not None}


async def cmd_report(
    snapshot_path: str,
    state: MonitorState | None = None,
    market: MarketDataClient | None = None,
    meteora: MeteoraClient | None = None,
) -> tuple[WalletSummary, MonitorState] | None:
    """
    Value every position in a snapshot file and print a wallet summary.

    One monitoring cycle: the returned state can be fed into the next call.
    """
    try:
        snapshots = load_snapshots(snapshot_path)
    except ValueError as exc:
        print(f"❌ {exc}")
        return None

    state = state or MonitorState()
    market = market or MarketDataClient()
    meteora = meteora or MeteoraClient()

    if not snapshots:
        print("No positions found in snapshot.")
        summary, state = run_cycle(state, [])
        return summary, state

    print(f"🔍 Valuing {len(snapshots)} position(s)...")

    mints = sorted({s.token_x_mint for s in snapshots} | {s.token_y_mint for s in snapshots})
    prices = await market.get_token_prices(*mints)

    # RSI is tracked for the non-SOL side of each pair
    rsi_mints = sorted(
        {s.token_y_mint if s.token_x_mint == SOL_MINT else s.token_x_mint for s in snapshots}
    )
    metrics = await _gather_metrics(market, rsi_mints, prices, state)

    unknown = [s.position_id for s in snapshots if state.known_initial_value(s.position_id) is None]
    pools = sorted({s.pool_address for s in snapshots})
    found, pool_fees = await asyncio.gather(
        asyncio.gather(*(meteora.get_initial_deposit(p) for p in unknown)),
        _gather_pool_fees(meteora, pools),
    )
    deposits = dict(zip(unknown, found))

    valuations = [
        value_position(s, prices.get(s.token_x_mint, 0.0), prices.get(s.token_y_mint, 0.0))
        for s in snapshots
    ]
    summary, new_state = run_cycle(state, valuations, deposits, metrics.values())

    for snap, val in zip(snapshots, valuations):
        token = snap.token_y_mint if snap.token_x_mint == SOL_MINT else snap.token_x_mint
        m = metrics[token]
        status = "🟢 IN RANGE" if val.in_range else "🔴 OUT OF RANGE"
        print(f"\n📍 Position {snap.position_id}")
        print(f"   Pool: {snap.pool_address}   Pair: SOL/{m.name}   {status}")
        print(f"   Bins: [{snap.lower_bin_id} to {snap.upper_bin_id}], current {snap.active_bin_id}")
        fees = pool_fees.get(snap.pool_address)
        if fees is not None:
            print(f"   Base Fee: {fees[0]:.4f}% | Current Dynamic Fee: {fees[1]:.6f}%")
        print(
            f"   Value ${val.position_value:,.2f} | Claimed ${val.claimed_value:,.2f}"
            f" | Unclaimed ${val.unclaimed_value:,.2f} | Total ${val.total_current_value:,.2f}"
        )
        print(f"   Total Fees (Claimed + Unclaimed): ${val.total_fees:,.2f}")
        rsi_text = f"{m.rsi.value:.2f}" if m.rsi.has_data else "n/a"
        print(f"   {config.rsi.label} RSI ({m.name}): {rsi_text}")

        deposit = new_state.deposit_for(snap.position_id)
        if deposit is not None:
            print(
                f"   Deposited {_format_ts(deposit.timestamp)}"
                f" at price ${deposit.price:.8f}"
            )

        initial = new_state.known_initial_value(snap.position_id)
        if initial is not None:
            diff, pct = pnl(val.total_current_value, initial)
            print(f"   Initial ${initial:,.2f} → PnL {_signed_usd(diff)} ({_signed_pct(pct)})")

    print("\n📊 WALLET SUMMARY")
    print(
        f"   Positions: {summary.total_positions} "
        f"({summary.in_range_positions} in range, {summary.out_of_range_positions} out)"
    )
    print(f"   Initial Value: ${summary.total_initial_value:,.2f}")
    print(f"   Position Value: ${summary.total_position_value:,.2f}")
    print(f"   Claimed Fees: ${summary.total_claimed_fees:,.2f}")
    print(f"   Unclaimed Fees: ${summary.total_unclaimed_fees:,.2f}")
    print(f"   Total Current Value: ${summary.total_current_value:,.2f}")
    emoji = "📈" if summary.total_pnl >= 0 else "📉"
    print(f"{emoji} TOTAL PnL: {_signed_usd(summary.total_pnl)} ({_signed_pct(summary.total_pnl_pct)})")

    return summary, new_state
