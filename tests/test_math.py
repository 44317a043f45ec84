"""
Test Suite — RSI Engine & Position Math
========================================

Tests the Wilder RSI engine and DLMM position valuation against known
inputs and hand-computed reference values.

Formula Sources:
  - Wilder (1978) — RSI, smoothed averages
  - SPL Token — raw amount / 10^decimals
  - Meteora DLMM — bin range, fees, deposits

Run:  python -m pytest tests/test_math.py -v
"""

import pytest

from rsi_engine import (
    RSI_PERIOD,
    Candle,
    RSIResult,
    compute_rsi,
    normalize_candles,
    price_changes,
    smoothed_averages,
    wilder_rsi,
)
from position_math import (
    InitialDeposit,
    PositionSnapshot,
    PositionValuation,
    lamports_to_amount,
    pnl,
    summarize,
    value_position,
)


# ── Helpers ──────────────────────────────────────────────────────────────

# 14 seed changes alternating +2/−1, then +1, −1, 0, 0, 0.
#   seed:  avgGain = 14/14 = 1,  avgLoss = 7/14 = 0.5
#   +1:    avgGain = (13·1 + 1)/14 = 1,        avgLoss = 6.5/14
#   −1:    avgGain = 13/14,                    avgLoss = (84.5/14 + 1)/14 = 98.5/196
#   0×3:   both scale by (13/14)^3, ratio unchanged
#   RS  = (13/14) / (98.5/196) = 364/197
#   RSI = 100 − 100/(1 + 364/197) = 36400/561
REFERENCE_CLOSES = [
    100, 102, 101, 103, 102, 104, 103, 105, 104, 106, 105, 107, 106, 108, 107,
    108, 107, 107, 107, 107,
]
REFERENCE_RSI = 36400 / 561


def rows_from_closes(closes, start=1_700_000_000, step=300):
    """OHLCV rows (oldest first) with the given closes."""
    return [
        [start + i * step, c, c, c, c, 1000.0]
        for i, c in enumerate(closes)
    ]


# ── Candle Parsing & Ordering ────────────────────────────────────────────

class TestCandles:

    def test_from_row_parses_all_fields(self):
        candle = Candle.from_row([1700000000, "1.0", 2, 0.5, "1.5", 42])
        assert candle == Candle(1700000000.0, 1.0, 2.0, 0.5, 1.5, 42.0)

    def test_from_row_without_volume(self):
        candle = Candle.from_row([1, 2, 3, 4, 5])
        assert candle.close == 5.0
        assert candle.volume == 0.0

    @pytest.mark.parametrize("row", [
        [],
        [1, 2, 3],
        [1, 2, 3, 4, "abc", 6],
        [1, 2, 3, 4, None, 6],
        [1, 2, 3, 4, float("nan"), 6],
        None,
        "123456",
        b"123456",
    ])
    def test_malformed_rows_rejected(self, row):
        assert Candle.from_row(row) is None

    def test_newest_first_is_reversed(self):
        rows = rows_from_closes([1, 2, 3])[::-1]
        candles = normalize_candles(rows)
        assert [c.close for c in candles] == [1.0, 2.0, 3.0]

    def test_oldest_first_kept(self):
        candles = normalize_candles(rows_from_closes([5, 4, 3]))
        assert [c.close for c in candles] == [5.0, 4.0, 3.0]

    def test_malformed_rows_dropped(self):
        rows = rows_from_closes([1, 2]) + [["bad"]]
        assert len(normalize_candles(rows)) == 2

    def test_none_input(self):
        assert normalize_candles(None) == []

    def test_price_changes(self):
        assert price_changes([1, 3, 2, 2]) == [2, -1, 0]
        assert price_changes([7]) == []


# ── Wilder RSI ───────────────────────────────────────────────────────────

class TestWilderRSI:
    """RSI = 100 − 100/(1 + avgGain/avgLoss), Wilder smoothing, period 14"""

    @pytest.mark.parametrize("closes", [[], [42.0]])
    def test_insufficient_data_is_zero(self, closes):
        assert wilder_rsi(closes) == 0.0

    def test_monotonic_increase_is_100(self):
        assert wilder_rsi(list(range(1, 31))) == 100.0

    def test_monotonic_decrease_is_0(self):
        assert wilder_rsi(list(range(30, 0, -1))) == 0.0

    def test_flat_series_is_100(self):
        """Zero average loss (including no movement at all) maps to 100, not 50."""
        assert wilder_rsi([5.0] * 20) == 100.0

    def test_two_flat_closes_is_100(self):
        assert wilder_rsi([5.0, 5.0]) == 100.0

    def test_hand_computed_reference(self):
        assert len(REFERENCE_CLOSES) == 20
        assert wilder_rsi(REFERENCE_CLOSES) == pytest.approx(REFERENCE_RSI, abs=1e-9)

    def test_reference_averages(self):
        avg_gain, avg_loss = smoothed_averages(REFERENCE_CLOSES)
        scale = (13 / 14) ** 3
        assert avg_gain == pytest.approx(13 / 14 * scale, abs=1e-12)
        assert avg_loss == pytest.approx(98.5 / 196 * scale, abs=1e-12)

    def test_seed_only_equal_moves_is_50(self):
        assert wilder_rsi([10, 11, 10]) == pytest.approx(50.0)

    def test_non_finite_closes_skipped(self):
        assert wilder_rsi([1, float("nan"), 2, 3]) == 100.0

    @pytest.mark.parametrize("closes", [
        REFERENCE_CLOSES,
        [1, 5, 2, 8, 3, 9, 1],
        [100 - (i % 7) * 3 + (i % 3) for i in range(60)],
        [0.00001234, 0.00001301, 0.00001199, 0.00001250],
    ])
    def test_bounded(self, closes):
        assert 0.0 <= wilder_rsi(closes) <= 100.0

    def test_idempotent(self):
        first = wilder_rsi(REFERENCE_CLOSES)
        second = wilder_rsi(REFERENCE_CLOSES)
        assert first == second

    def test_input_not_mutated(self):
        closes = list(REFERENCE_CLOSES)
        wilder_rsi(closes)
        assert closes == REFERENCE_CLOSES


class TestPartialWindowSeed:
    """Fewer than 14 changes: the seed sums are still divided by 14.

    Pinned behaviour — short series get scaled-down averages rather than
    an average over the actual number of changes.
    """

    def test_divisor_is_period(self):
        avg_gain, avg_loss = smoothed_averages([10, 11, 10])
        assert avg_gain == pytest.approx(1 / RSI_PERIOD)
        assert avg_loss == pytest.approx(1 / RSI_PERIOD)

    def test_short_gain_only_series(self):
        avg_gain, avg_loss = smoothed_averages([1, 2, 3, 4])
        assert avg_gain == pytest.approx(3 / 14)
        assert avg_loss == 0.0

    def test_zero_change_counts_as_loss_bucket(self):
        # A zero change adds |0| to the loss sum: no effect on the average
        avg_gain, avg_loss = smoothed_averages([1, 1, 2])
        assert avg_gain == pytest.approx(1 / 14)
        assert avg_loss == 0.0

    def test_exactly_fifteen_closes_is_pure_seed(self):
        closes = REFERENCE_CLOSES[:15]
        avg_gain, avg_loss = smoothed_averages(closes)
        assert avg_gain == pytest.approx(1.0)
        assert avg_loss == pytest.approx(0.5)
        assert wilder_rsi(closes) == pytest.approx(100 - 100 / 3)


# ── compute_rsi (candles → RSIResult) ────────────────────────────────────

class TestComputeRSI:

    def test_empty_returns_sentinel(self):
        result = compute_rsi([], now=123.0)
        assert result == RSIResult(value=0.0, timestamp=123.0, has_data=False)

    def test_single_candle_returns_sentinel(self):
        result = compute_rsi(rows_from_closes([1.0]), now=5.0)
        assert result.value == 0.0
        assert result.has_data is False
        assert result.timestamp == 5.0

    def test_sentinel_defaults_to_wall_clock(self):
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr("rsi_engine.time.time", lambda: 1_700_000_999.0)
            result = compute_rsi([])
        assert result.timestamp == 1_700_000_999.0

    def test_reference_from_newest_first_rows(self):
        rows = rows_from_closes(REFERENCE_CLOSES)
        result = compute_rsi(rows[::-1])
        assert result.has_data is True
        assert result.value == pytest.approx(REFERENCE_RSI, abs=1e-9)
        assert result.timestamp == rows[-1][0]

    def test_accepts_candle_objects(self):
        candles = [Candle(t, c, c, c, c) for t, c in [(2, 3.0), (1, 1.0)]]
        result = compute_rsi(candles)
        assert result.value == 100.0
        assert result.timestamp == 2

    def test_all_rows_malformed_is_sentinel(self):
        result = compute_rsi([["x"], [None, None]], now=1.0)
        assert result.has_data is False

    def test_as_dict(self):
        assert RSIResult(55.5, 10.0).as_dict() == {"value": 55.5, "timestamp": 10.0}

    def test_idempotent(self):
        rows = rows_from_closes(REFERENCE_CLOSES)
        assert compute_rsi(rows) == compute_rsi(rows)


# ── Unit Conversion ──────────────────────────────────────────────────────

class TestLamportsToAmount:

    @pytest.mark.parametrize("raw,decimals,expected", [
        (1_500_000_000, 9, 1.5),
        (1, 9, 0.000000001),
        (0, 6, 0.0),
        (123_456, 6, 0.123456),
        ("2500000", 6, 2.5),
        ("2500000.987", 6, 2.5),
        (42, 0, 42.0),
        (None, 9, 0.0),
    ])
    def test_known_values(self, raw, decimals, expected):
        assert lamports_to_amount(raw, decimals) == pytest.approx(expected)

    def test_large_u64_exact(self):
        raw = 18_446_744_073_709_551_615  # u64::MAX
        assert lamports_to_amount(raw, 9) == pytest.approx(18_446_744_073.709551615)

    def test_negative_decimals_raises(self):
        with pytest.raises(ValueError):
            lamports_to_amount(1, -1)

    def test_garbage_string_raises(self):
        with pytest.raises(ValueError):
            lamports_to_amount("abc", 6)

    def test_bool_raises(self):
        with pytest.raises(ValueError):
            lamports_to_amount(True, 6)

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_raises(self, raw):
        with pytest.raises(ValueError, match="Invalid raw amount"):
            lamports_to_amount(raw, 6)


# ── Valuation ────────────────────────────────────────────────────────────

def _snapshot(**overrides):
    data = dict(
        position_id="Pos1",
        pool_address="Pool1",
        token_x_mint="MintX",
        token_y_mint="MintY",
        token_x_decimals=6,
        token_y_decimals=9,
        lower_bin_id=-10,
        upper_bin_id=10,
        active_bin_id=0,
        total_x=2_000_000,          # 2 X
        total_y=3_000_000_000,      # 3 Y
        claimed_fee_x=500_000,      # 0.5 X
        claimed_fee_y=0,
        fee_x=0,
        fee_y=100_000_000,          # 0.1 Y
    )
    data.update(overrides)
    return PositionSnapshot(**data)


class TestValuePosition:

    def test_amounts_and_values(self):
        v = value_position(_snapshot(), token_x_price=1.0, token_y_price=150.0)
        assert v.token_x_amount == pytest.approx(2.0)
        assert v.token_y_amount == pytest.approx(3.0)
        assert v.position_value == pytest.approx(2.0 + 450.0)
        assert v.claimed_value == pytest.approx(0.5)
        assert v.unclaimed_value == pytest.approx(15.0)
        assert v.total_fees == pytest.approx(15.5)
        assert v.total_current_value == pytest.approx(452.0 + 15.5)

    def test_zero_prices_value_zero(self):
        v = value_position(_snapshot(), 0.0, 0.0)
        assert v.total_current_value == 0.0

    def test_missing_claimable_fees(self):
        v = value_position(_snapshot(fee_x=None, fee_y=None), 1.0, 1.0)
        assert v.unclaimed_value == 0.0

    @pytest.mark.parametrize("active,expected", [
        (-10, True),   # lower bound inclusive
        (10, True),    # upper bound inclusive
        (0, True),
        (-11, False),
        (11, False),
    ])
    def test_in_range(self, active, expected):
        assert value_position(_snapshot(active_bin_id=active), 1, 1).in_range is expected


class TestSnapshotFromDict:

    def test_string_bins_coerced(self):
        snap = PositionSnapshot.from_dict({
            "position_id": "P", "pool_address": "A",
            "token_x_mint": "X", "token_y_mint": "Y",
            "lower_bin_id": "-5", "upper_bin_id": "5", "active_bin_id": "0",
            "extra_field": "ignored",
        })
        assert snap.lower_bin_id == -5
        assert snap.in_range is True

    def test_missing_keys_raise(self):
        with pytest.raises(ValueError, match="token_y_mint"):
            PositionSnapshot.from_dict({
                "position_id": "P", "pool_address": "A", "token_x_mint": "X",
            })

    @pytest.mark.parametrize("field,value", [
        ("total_x", "abc"),
        ("fee_y", float("nan")),
        ("claimed_fee_x", float("inf")),
        ("total_y", [1]),
    ])
    def test_bad_amount_rejected_on_load(self, field, value):
        entry = {
            "position_id": "P", "pool_address": "A",
            "token_x_mint": "X", "token_y_mint": "Y",
            field: value,
        }
        with pytest.raises(ValueError, match=field):
            PositionSnapshot.from_dict(entry)

    def test_negative_decimals_rejected_on_load(self):
        with pytest.raises(ValueError, match="decimals"):
            PositionSnapshot.from_dict({
                "position_id": "P", "pool_address": "A",
                "token_x_mint": "X", "token_y_mint": "Y",
                "token_x_decimals": -1,
            })


# ── PnL & Summary ────────────────────────────────────────────────────────

class TestPnL:

    def test_gain(self):
        diff, pct = pnl(110.0, 100.0)
        assert diff == pytest.approx(10.0)
        assert pct == pytest.approx(10.0)

    def test_loss(self):
        diff, pct = pnl(75.0, 100.0)
        assert diff == pytest.approx(-25.0)
        assert pct == pytest.approx(-25.0)

    def test_zero_initial_pct_is_zero(self):
        diff, pct = pnl(50.0, 0.0)
        assert diff == 50.0
        assert pct == 0.0


class TestInitialDeposit:

    def test_from_api(self):
        dep = InitialDeposit.from_api({
            "token_x_amount": 1000000,
            "token_y_amount": 0,
            "token_x_usd_amount": 60.25,
            "token_y_usd_amount": 39.75,
            "onchain_timestamp": 1700000000,
            "price": 0.00012345,
        })
        assert dep.initial_value == pytest.approx(100.0)
        assert dep.timestamp == 1700000000.0
        assert dep.price == pytest.approx(0.00012345)

    def test_nulls_default_to_zero(self):
        dep = InitialDeposit.from_api({"token_x_usd_amount": None})
        assert dep.initial_value == 0.0


class TestSummarize:

    def _valuation(self, pid, value, in_range=True, claimed=0.0, unclaimed=0.0):
        return PositionValuation(
            position_id=pid, pool_address="P", in_range=in_range,
            token_x_amount=value, token_y_amount=0.0,
            claimed_x_amount=claimed, claimed_y_amount=0.0,
            claimable_x_amount=unclaimed, claimable_y_amount=0.0,
            token_x_price=1.0, token_y_price=1.0,
        )

    def test_totals(self):
        vals = [
            self._valuation("a", 100.0, True, claimed=5.0, unclaimed=2.0),
            self._valuation("b", 50.0, False, unclaimed=1.0),
        ]
        s = summarize(vals, {"a": 90.0, "b": 60.0})
        assert s.total_positions == 2
        assert s.in_range_positions == 1
        assert s.out_of_range_positions == 1
        assert s.total_position_value == pytest.approx(150.0)
        assert s.total_claimed_fees == pytest.approx(5.0)
        assert s.total_unclaimed_fees == pytest.approx(3.0)
        assert s.total_current_value == pytest.approx(158.0)
        assert s.total_initial_value == pytest.approx(150.0)
        assert s.total_pnl == pytest.approx(8.0)
        assert s.total_pnl_pct == pytest.approx(8.0 / 150.0 * 100)

    def test_unknown_initial_value_contributes_nothing(self):
        s = summarize([self._valuation("a", 10.0)], {})
        assert s.total_initial_value == 0.0
        assert s.total_pnl_pct == 0.0

    def test_empty(self):
        s = summarize([])
        assert s.total_positions == 0
        assert s.total_current_value == 0.0
