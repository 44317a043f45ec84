#!/usr/bin/env python3
"""
RSI Engine
==========

Wilder's smoothed Relative Strength Index over OHLCV candle data.

FORMULA SOURCES:
──────────────────────────────────────────────
1. J. Welles Wilder Jr., "New Concepts in Technical Trading Systems" (1978)
   RS  = average gain / average loss
   RSI = 100 − 100 / (1 + RS)

2. Wilder's smoothing (EMA with α = 1/period)
   avg_n = (avg_{n−1} · (period − 1) + value_n) / period

3. GeckoTerminal OHLCV API
   https://api.geckoterminal.com/docs/index.html
   Row format: [timestamp, open, high, low, close, volume], newest first.

The engine never raises: missing or degenerate data resolves to a neutral
result so a reporting loop around it keeps running.
"""

import math
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

# ── Named Constants ──────────────────────────────────────────────────────
RSI_PERIOD = 14
RSI_MAX = 100.0
RSI_MIN = 0.0


# ── Data Model ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Candle:
    """One fixed-interval OHLCV sample."""

    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_row(cls, row: Sequence) -> Optional["Candle"]:
        """Parse a ``[timestamp, open, high, low, close, volume]`` row.

        Returns None for rows that are too short, non-numeric, or carry a
        non-finite close. A bare string is not a row.
        """
        if isinstance(row, (str, bytes)):
            return None
        try:
            if len(row) < 5:
                return None
            values = [float(v) for v in row[:6]]
        except (TypeError, ValueError):
            return None
        if not math.isfinite(values[0]) or not math.isfinite(values[4]):
            return None
        volume = values[5] if len(values) > 5 else 0.0
        return cls(values[0], values[1], values[2], values[3], values[4], volume)


@dataclass(frozen=True)
class RSIResult:
    """
    RSI value plus the timestamp of the newest candle it was computed from.

    ``has_data`` is False for the sentinel produced when there was nothing
    to compute, so callers can tell "no data" apart from a genuine RSI of 0.
    """

    value: float
    timestamp: float
    has_data: bool = True

    @classmethod
    def no_data(cls, now: Optional[float] = None) -> "RSIResult":
        """Sentinel result: value 0, stamped with the wall-clock time (unix s)."""
        if now is None:
            now = time.time()
        return cls(value=RSI_MIN, timestamp=now, has_data=False)

    def as_dict(self) -> dict:
        return {"value": self.value, "timestamp": self.timestamp}


CandleInput = Union[Candle, Sequence]


# ── Candle Normalization ─────────────────────────────────────────────────


def normalize_candles(rows: Iterable[CandleInput]) -> List[Candle]:
    """
    Parse rows into candles sorted oldest → newest.

    GeckoTerminal returns the most recent candle first; sorting by timestamp
    accepts either ordering. Unparseable rows are dropped.
    """
    candles = []
    for row in rows or []:
        candle = row if isinstance(row, Candle) else Candle.from_row(row)
        if candle is not None:
            candles.append(candle)
    candles.sort(key=lambda c: c.timestamp)
    return candles


def price_changes(closes: Sequence[float]) -> List[float]:
    """Consecutive differences: close[i] − close[i−1]."""
    return [closes[i] - closes[i - 1] for i in range(1, len(closes))]


# ── Wilder Smoothing ─────────────────────────────────────────────────────


def smoothed_averages(
    closes: Sequence[float], period: int = RSI_PERIOD
) -> Tuple[float, float]:
    """
    Wilder-smoothed (average gain, average loss) over a close series.

    Seed: sums over the first ``min(period, len(changes))`` changes, always
    divided by ``period``. A short series therefore yields a partial-window
    average instead of an error.
    """
    changes = price_changes(closes)

    gain_sum = 0.0
    loss_sum = 0.0
    for change in changes[:period]:
        if change > 0:
            gain_sum += change
        else:
            loss_sum += abs(change)

    avg_gain = gain_sum / period
    avg_loss = loss_sum / period

    for change in changes[period:]:
        gain = max(change, 0.0)
        loss = max(-change, 0.0)
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    return avg_gain, avg_loss


def wilder_rsi(closes: Sequence[float], period: int = RSI_PERIOD) -> float:
    """
    RSI of a chronologically ordered close series (newest last).

    Returns 0 for fewer than two closes and 100 when the average loss is
    zero (which includes a flat series). Non-finite closes are skipped.
    """
    closes = [c for c in closes if math.isfinite(c)]
    if len(closes) < 2:
        return RSI_MIN

    avg_gain, avg_loss = smoothed_averages(closes, period)

    if avg_loss == 0:
        return RSI_MAX

    rs = avg_gain / avg_loss
    rsi = RSI_MAX - RSI_MAX / (1 + rs)
    return min(max(rsi, RSI_MIN), RSI_MAX)


def compute_rsi(
    candles: Iterable[CandleInput],
    period: int = RSI_PERIOD,
    now: Optional[float] = None,
) -> RSIResult:
    """
    RSI over a candle series in any order.

    Args:
        candles: Candle objects or raw OHLCV rows
        period:  Smoothing window (default 14)
        now:     Timestamp for the sentinel result (default: wall clock, unix s)

    Returns:
        RSIResult stamped with the newest candle's timestamp, or the
        no-data sentinel when fewer than two usable candles remain.
    """
    series = normalize_candles(candles)
    if len(series) < 2:
        return RSIResult.no_data(now)

    closes = [c.close for c in series]
    return RSIResult(value=wilder_rsi(closes, period), timestamp=series[-1].timestamp)
