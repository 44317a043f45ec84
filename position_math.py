#!/usr/bin/env python3
"""
DLMM Position Math
==================

Valuation and PnL for Meteora DLMM liquidity positions.

FORMULA SOURCES:
──────────────────────────────────────────────
1. Meteora DLMM Docs — Bins & Fees
   https://docs.meteora.ag/dlmm/dlmm-overview
   - A position covers bins [lower_bin_id, upper_bin_id]; it earns fees
     only while the active bin lies inside that range (bounds inclusive).

2. SPL Token amounts
   https://spl.solana.com/token
   - On-chain amounts are integers in the token's smallest unit:
     amount = raw / 10^decimals

3. Meteora DLMM API — position deposits
   https://dlmm-api.meteora.ag/swagger-ui/
   - Initial value = token_x_usd_amount + token_y_usd_amount

PnL convention:
   current value = position value + claimed fees + unclaimed fees
   PnL           = current value − initial value
"""

import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rsi_engine import RSIResult


# ── Unit Conversion ──────────────────────────────────────────────────────


def lamports_to_amount(raw: Any, decimals: int) -> float:
    """
    Convert a smallest-unit integer amount into whole-token units.

    Integer division keeps large u64 values exact before the final float
    conversion. Numeric strings with a fractional part are truncated.

    >>> lamports_to_amount(1_500_000_000, 9)
    1.5
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")

    if isinstance(raw, str):
        text = raw.strip().split(".")[0] or "0"
        try:
            value = int(text)
        except ValueError:
            raise ValueError(f"Invalid raw amount: {raw!r}") from None
    elif isinstance(raw, bool):
        raise ValueError("Raw amount must be an integer, not bool")
    elif isinstance(raw, float):
        if not math.isfinite(raw):
            raise ValueError(f"Invalid raw amount: {raw!r}")
        value = int(raw)
    elif isinstance(raw, int):
        value = int(raw)
    elif raw is None:
        value = 0
    else:
        raise ValueError(f"Invalid raw amount type: {type(raw).__name__}")

    if decimals == 0:
        return float(value)

    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    return float(f"{sign}{whole}.{frac:0{decimals}d}")


def pnl(current_value: float, initial_value: float) -> Tuple[float, float]:
    """Absolute PnL and PnL % (0 % when the initial value is 0)."""
    diff = current_value - initial_value
    pct = (diff / initial_value) * 100 if initial_value > 0 else 0.0
    return diff, pct


# ── Position Data ────────────────────────────────────────────────────────


_AMOUNT_FIELDS = ("total_x", "total_y", "claimed_fee_x", "claimed_fee_y", "fee_x", "fee_y")


@dataclass
class PositionSnapshot:
    """
    One DLMM position as exported from the on-chain SDK.

    Amount fields are raw smallest-unit integers (u64 as int or string).
    """

    position_id: str
    pool_address: str
    token_x_mint: str
    token_y_mint: str
    token_x_decimals: int = 9
    token_y_decimals: int = 9
    lower_bin_id: int = 0
    upper_bin_id: int = 0
    active_bin_id: int = 0

    total_x: Any = 0
    total_y: Any = 0
    claimed_fee_x: Any = 0
    claimed_fee_y: Any = 0
    fee_x: Any = 0
    fee_y: Any = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionSnapshot":
        """
        Build from a snapshot-file entry.

        Raises ValueError on missing keys, non-integer bins / decimals and
        raw amounts that lamports_to_amount() would reject.
        """
        required = ("position_id", "pool_address", "token_x_mint", "token_y_mint")
        missing = [k for k in required if not data.get(k)]
        if missing:
            raise ValueError(f"Position entry missing: {', '.join(missing)}")

        known = set(cls.__dataclass_fields__)
        kwargs = {k: v for k, v in data.items() if k in known}
        for key in (
            "token_x_decimals",
            "token_y_decimals",
            "lower_bin_id",
            "upper_bin_id",
            "active_bin_id",
        ):
            if key in kwargs:
                kwargs[key] = int(kwargs[key])
        snapshot = cls(**kwargs)

        for key in _AMOUNT_FIELDS:
            decimals = (
                snapshot.token_x_decimals if key.endswith("_x")
                else snapshot.token_y_decimals
            )
            try:
                lamports_to_amount(getattr(snapshot, key), decimals)
            except ValueError as exc:
                raise ValueError(f"{key}: {exc}") from None
        return snapshot

    @property
    def in_range(self) -> bool:
        return self.lower_bin_id <= self.active_bin_id <= self.upper_bin_id


@dataclass
class PositionValuation:
    """USD valuation of one position at the given token prices."""

    position_id: str
    pool_address: str
    in_range: bool

    token_x_amount: float
    token_y_amount: float
    claimed_x_amount: float
    claimed_y_amount: float
    claimable_x_amount: float
    claimable_y_amount: float

    token_x_price: float
    token_y_price: float

    @property
    def token_x_value(self) -> float:
        return self.token_x_amount * self.token_x_price

    @property
    def token_y_value(self) -> float:
        return self.token_y_amount * self.token_y_price

    @property
    def position_value(self) -> float:
        return self.token_x_value + self.token_y_value

    @property
    def claimed_value(self) -> float:
        return (
            self.claimed_x_amount * self.token_x_price
            + self.claimed_y_amount * self.token_y_price
        )

    @property
    def unclaimed_value(self) -> float:
        return (
            self.claimable_x_amount * self.token_x_price
            + self.claimable_y_amount * self.token_y_price
        )

    @property
    def total_fees(self) -> float:
        return self.claimed_value + self.unclaimed_value

    @property
    def total_current_value(self) -> float:
        return self.position_value + self.total_fees


def value_position(
    snapshot: PositionSnapshot, token_x_price: float, token_y_price: float
) -> PositionValuation:
    """Convert raw amounts and price them in USD."""
    dx = snapshot.token_x_decimals
    dy = snapshot.token_y_decimals
    return PositionValuation(
        position_id=snapshot.position_id,
        pool_address=snapshot.pool_address,
        in_range=snapshot.in_range,
        token_x_amount=lamports_to_amount(snapshot.total_x, dx),
        token_y_amount=lamports_to_amount(snapshot.total_y, dy),
        claimed_x_amount=lamports_to_amount(snapshot.claimed_fee_x, dx),
        claimed_y_amount=lamports_to_amount(snapshot.claimed_fee_y, dy),
        claimable_x_amount=lamports_to_amount(snapshot.fee_x or 0, dx),
        claimable_y_amount=lamports_to_amount(snapshot.fee_y or 0, dy),
        token_x_price=token_x_price,
        token_y_price=token_y_price,
    )


@dataclass(frozen=True)
class InitialDeposit:
    """First deposit into a position, as reported by the Meteora API."""

    token_x_amount: float
    token_y_amount: float
    token_x_usd: float
    token_y_usd: float
    timestamp: float  # unix seconds
    price: float

    @property
    def initial_value(self) -> float:
        return self.token_x_usd + self.token_y_usd

    @classmethod
    def from_api(cls, entry: Dict[str, Any]) -> "InitialDeposit":
        return cls(
            token_x_amount=float(entry.get("token_x_amount", 0) or 0),
            token_y_amount=float(entry.get("token_y_amount", 0) or 0),
            token_x_usd=float(entry.get("token_x_usd_amount", 0) or 0),
            token_y_usd=float(entry.get("token_y_usd_amount", 0) or 0),
            timestamp=float(entry.get("onchain_timestamp", 0) or 0),
            price=float(entry.get("price", 0) or 0),
        )


# ── Wallet Summary ───────────────────────────────────────────────────────


@dataclass
class WalletSummary:
    total_positions: int = 0
    in_range_positions: int = 0
    total_initial_value: float = 0.0
    total_position_value: float = 0.0
    total_claimed_fees: float = 0.0
    total_unclaimed_fees: float = 0.0

    @property
    def out_of_range_positions(self) -> int:
        return self.total_positions - self.in_range_positions

    @property
    def total_current_value(self) -> float:
        return (
            self.total_position_value
            + self.total_claimed_fees
            + self.total_unclaimed_fees
        )

    @property
    def total_pnl(self) -> float:
        return pnl(self.total_current_value, self.total_initial_value)[0]

    @property
    def total_pnl_pct(self) -> float:
        return pnl(self.total_current_value, self.total_initial_value)[1]


def summarize(
    valuations: Iterable[PositionValuation],
    initial_values: Optional[Dict[str, float]] = None,
) -> WalletSummary:
    """
    Aggregate valuations into wallet totals.

    Positions without a known initial value contribute nothing to the
    initial total (matching a deposit lookup that returned nothing).
    """
    initial_values = initial_values or {}
    summary = WalletSummary()
    for v in valuations:
        summary.total_positions += 1
        if v.in_range:
            summary.in_range_positions += 1
        summary.total_position_value += v.position_value
        summary.total_claimed_fees += v.claimed_value
        summary.total_unclaimed_fees += v.unclaimed_value
        summary.total_initial_value += initial_values.get(v.position_id, 0.0)
    return summary


# ── Monitor State ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenMetrics:
    """Per-token market data gathered during a cycle."""

    mint: str
    name: str
    price: float
    rsi: RSIResult
    fetched_at: float = 0.0


@dataclass(frozen=True)
class MonitorState:
    """
    State carried from one monitoring cycle to the next.

    Passed into run_cycle() and returned updated; the input is never mutated.
    ``initial_values`` keeps the first initial deposit value seen for each
    position so deposits need to be looked up only once; ``initial_deposits``
    keeps the deposit itself for its timestamp and price.
    """

    cycle: int = 0
    initial_values: Dict[str, float] = field(default_factory=dict)
    initial_deposits: Dict[str, InitialDeposit] = field(default_factory=dict)
    token_metrics: Dict[str, TokenMetrics] = field(default_factory=dict)
    last_summary: Optional[WalletSummary] = None

    def known_initial_value(self, position_id: str) -> Optional[float]:
        return self.initial_values.get(position_id)

    def deposit_for(self, position_id: str) -> Optional[InitialDeposit]:
        return self.initial_deposits.get(position_id)

    def metrics_for(self, mint: str) -> Optional[TokenMetrics]:
        return self.token_metrics.get(mint)


def run_cycle(
    state: MonitorState,
    valuations: List[PositionValuation],
    deposits: Optional[Dict[str, Optional[InitialDeposit]]] = None,
    metrics: Optional[Iterable[TokenMetrics]] = None,
    now: Optional[float] = None,
) -> Tuple[WalletSummary, MonitorState]:
    """
    Fold one cycle's data into a wallet summary and the next state.

    Args:
        state:      State returned by the previous cycle
        valuations: This cycle's position valuations
        deposits:   position_id → InitialDeposit (None when lookup failed)
        metrics:    Freshly fetched token metrics (replace cached entries)
        now:        Unix seconds for ``fetched_at`` defaults

    Returns:
        (summary, new_state)
    """
    if now is None:
        now = time.time()

    initial_values = dict(state.initial_values)
    initial_deposits = dict(state.initial_deposits)
    for position_id, deposit in (deposits or {}).items():
        if deposit is not None and position_id not in initial_values:
            initial_values[position_id] = deposit.initial_value
            initial_deposits[position_id] = deposit

    token_metrics = dict(state.token_metrics)
    for m in metrics or []:
        if not m.fetched_at:
            m = replace(m, fetched_at=now)
        token_metrics[m.mint] = m

    summary = summarize(valuations, initial_values)
    new_state = MonitorState(
        cycle=state.cycle + 1,
        initial_values=initial_values,
        initial_deposits=initial_deposits,
        token_metrics=token_metrics,
        last_summary=summary,
    )
    return summary, new_state
