"""
Test Suite — Fee-Growth Accrual
===============================

Fee-growth snapshot parsing, active-fraction overlap and the per-period
fee formula, including every degraded-data path.

Run:  python -m pytest tests/test_fee_accrual.py -v
"""

import pytest

from fee_accrual import FeeAccrual, FeeAccrualTracker, FeeGrowthSnapshot
from lp_backtest.errors import DegradedPeriodFeeComputation
from lp_backtest.fixed_point import MAX_UINT256, Q128
from lp_math import RangeAllocator, TickPriceConverter

D0, D1 = 6, 8


def _range(width="10%", price=100_000):
    tick = TickPriceConverter.price_to_tick(price, D0, D1)
    return RangeAllocator(D0, D1).compute_range(tick, width, 2000, reference_price=price)


# ── Snapshot Parsing ─────────────────────────────────────────────────────

class TestParseSnapshot:
    def test_decimal_strings(self):
        big = str(2 ** 200)
        snap = FeeAccrualTracker.parse_snapshot(big, "12345")
        assert snap == FeeGrowthSnapshot(2 ** 200, 12345)

    def test_ints_accepted(self):
        assert FeeAccrualTracker.parse_snapshot(0, 7) == FeeGrowthSnapshot(0, 7)

    @pytest.mark.parametrize("raw0,raw1", [
        (None, "1"),
        ("1", ""),
        ("abc", "1"),
        ("1.5", "1"),
        ("1", "0x10"),
    ])
    def test_missing_or_malformed_degrades(self, raw0, raw1):
        with pytest.raises(DegradedPeriodFeeComputation):
            FeeAccrualTracker.parse_snapshot(raw0, raw1)

    @pytest.mark.parametrize("raw", [str(MAX_UINT256), str(MAX_UINT256 - 10 ** 30), "-1"])
    def test_sentinel_or_negative_degrades(self, raw):
        with pytest.raises(DegradedPeriodFeeComputation):
            FeeAccrualTracker.parse_snapshot(raw, "1")

    def test_custom_threshold(self):
        with pytest.raises(DegradedPeriodFeeComputation):
            FeeAccrualTracker.parse_snapshot("1001", "1", sentinel_threshold=1000)
        assert FeeAccrualTracker.parse_snapshot("1000", "1", sentinel_threshold=1000).fee_growth_global0_x128 == 1000

    def test_degraded_is_arithmetic_error(self):
        with pytest.raises(ArithmeticError):
            FeeAccrualTracker.parse_snapshot("oops", "1")


# ── Active Fraction ──────────────────────────────────────────────────────

class TestActiveFraction:
    def setup_method(self):
        self.rng = _range()

    def test_full_range_always_100(self):
        full = _range("full-range")
        assert FeeAccrualTracker.active_fraction(full, 100_000, 1, 10 ** 9, D0, D1) == 100.0

    def test_band_inside_range(self):
        assert FeeAccrualTracker.active_fraction(self.rng, 100_000, 99_000, 101_000, D0, D1) == 100.0

    def test_band_outside_range(self):
        assert FeeAccrualTracker.active_fraction(self.rng, 55_000, 50_000, 60_000, D0, D1) == 0.0

    def test_partial_overlap(self):
        frac = FeeAccrualTracker.active_fraction(self.rng, 100_000, 95_000, 200_000, D0, D1)
        assert 0 < frac < 100

    def test_point_band_falls_back_to_price(self):
        assert FeeAccrualTracker.active_fraction(self.rng, 100_000, None, None, D0, D1) == 100.0
        assert FeeAccrualTracker.active_fraction(self.rng, 150_000, None, None, D0, D1) == 0.0

    def test_non_positive_extrema_fall_back_to_price(self):
        assert FeeAccrualTracker.active_fraction(self.rng, 100_000, 0, -5, D0, D1) == 100.0

    def test_wider_band_lowers_fraction(self):
        narrow = FeeAccrualTracker.active_fraction(self.rng, 100_000, 95_000, 150_000, D0, D1)
        wide = FeeAccrualTracker.active_fraction(self.rng, 100_000, 95_000, 300_000, D0, D1)
        assert wide < narrow


# ── Accrual ──────────────────────────────────────────────────────────────

class TestAccrue:
    def test_bootstrap_period_earns_nothing(self):
        fee = FeeAccrualTracker.accrue(None, FeeGrowthSnapshot(10 ** 30, 10 ** 30), 1e9, 100, D0, D1, 100_000)
        assert fee.fee_usd == 0
        assert fee.bootstrap and not fee.degraded

    def test_identical_snapshots_zero_fee(self):
        snap = FeeGrowthSnapshot(10 ** 35, 10 ** 33)
        fee = FeeAccrualTracker.accrue(snap, snap, 1e12, 100, D0, D1, 100_000)
        assert fee.fee_usd == 0
        assert not fee.degraded

    def test_token0_fee_is_usd(self):
        """One whole USDC of growth per unit liquidity, L = 1, fully active → $1."""
        prev = FeeGrowthSnapshot(0, 0)
        curr = FeeGrowthSnapshot(Q128 * 10 ** D0, 0)
        fee = FeeAccrualTracker.accrue(prev, curr, 1.0, 100, D0, D1, 100_000)
        assert fee.fee0 == pytest.approx(1.0)
        assert fee.fee_usd == pytest.approx(1.0)

    def test_token1_fee_valued_at_price(self):
        prev = FeeGrowthSnapshot(0, 0)
        curr = FeeGrowthSnapshot(0, Q128 * 10 ** D1)
        fee = FeeAccrualTracker.accrue(prev, curr, 1.0, 100, D0, D1, 100_000)
        assert fee.fee1 == pytest.approx(1.0)
        assert fee.fee_usd == pytest.approx(100_000)

    def test_scales_with_liquidity_and_active_fraction(self):
        prev = FeeGrowthSnapshot(0, 0)
        curr = FeeGrowthSnapshot(Q128 * 10 ** D0, 0)
        fee = FeeAccrualTracker.accrue(prev, curr, 4.0, 25, D0, D1, 100_000)
        assert fee.fee_usd == pytest.approx(1.0)

    @pytest.mark.parametrize("growth", [0, 1, 10 ** 20, 10 ** 38, 10 ** 60])
    def test_never_negative(self, growth):
        prev = FeeGrowthSnapshot(10 ** 30, 10 ** 30)
        curr = FeeGrowthSnapshot(10 ** 30 + growth, 10 ** 30 + growth)
        fee = FeeAccrualTracker.accrue(prev, curr, 1e9, 50, D0, D1, 100_000)
        assert fee.fee_usd >= 0

    def test_decreasing_counter_degrades(self):
        prev = FeeGrowthSnapshot(2 * 10 ** 30, 10 ** 30)
        curr = FeeGrowthSnapshot(10 ** 30, 10 ** 30)
        fee = FeeAccrualTracker.accrue(prev, curr, 1e9, 100, D0, D1, 100_000)
        assert fee.degraded
        assert fee.fee_usd == 0
        assert "decreased" in fee.reason

    def test_overflow_degrades(self):
        prev = FeeGrowthSnapshot(0, 0)
        curr = FeeGrowthSnapshot(10 ** 60, 0)
        fee = FeeAccrualTracker.accrue(prev, curr, 1e300, 100, D0, D1, 100_000)
        assert fee.degraded and fee.fee_usd == 0

    def test_fee_deltas_raise_on_decrease(self):
        with pytest.raises(DegradedPeriodFeeComputation):
            FeeAccrualTracker.fee_deltas(FeeGrowthSnapshot(5, 5), FeeGrowthSnapshot(5, 4), D0, D1)

    def test_default_accrual_is_zero(self):
        assert FeeAccrual() == FeeAccrual(fee_usd=0.0, fee0=0.0, fee1=0.0)
