"""
Test Suite — Concentrated-Liquidity Math
========================================

Tests every formula in lp_math.py against known inputs, reverse
calculations and the conservation / monotonicity properties the backtest
relies on.

Formula Sources:
  - Uniswap V3 Whitepaper §6.1, §6.2
  - DefiLab tokensForStrategy / liquidityForStrategy

Run:  python -m pytest tests/test_math.py -v
"""

import math
import pytest

from lp_backtest.central_config import MAX_TICK, MIN_TICK
from lp_backtest.errors import ConfigurationError, DataValidationError
from lp_math import (
    LiquidityScaleCalculator,
    PositionRange,
    RangeAllocator,
    TickPriceConverter,
    TokenAllocationSolver,
    TokenHoldings,
    parse_width_spec,
    pool_share,
)

# cbBTC/USDC: token0 = USDC (6), token1 = cbBTC (8)
D0, D1 = 6, 8
ADJ = D0 - D1


# ── Tick ↔ Price (Whitepaper §6.1) ──────────────────────────────────────

class TestTickPrice:
    """tick = round(log(10^(d1−d0) / price) / log(1.0001))"""

    @pytest.mark.parametrize("tick", [MIN_TICK, -200000, -69081, -1, 0, 1, 12345, 200000, MAX_TICK])
    def test_roundtrip_within_one_tick(self, tick: int):
        price = TickPriceConverter.tick_to_price(tick)
        assert TickPriceConverter.price_to_tick(price) in (tick - 1, tick, tick + 1)

    @pytest.mark.parametrize("tick", [-80000, -69081, -60000])
    def test_roundtrip_with_decimals(self, tick: int):
        price = TickPriceConverter.tick_to_price(tick, D0, D1)
        assert TickPriceConverter.price_to_tick(price, D0, D1) in (tick - 1, tick, tick + 1)

    def test_price_is_inverted(self):
        """Higher USD price → lower exchange tick."""
        t1 = TickPriceConverter.price_to_tick(90_000, D0, D1)
        t2 = TickPriceConverter.price_to_tick(100_000, D0, D1)
        t3 = TickPriceConverter.price_to_tick(110_000, D0, D1)
        assert t1 > t2 > t3

    def test_known_tick_value(self):
        """$100,000 cbBTC ↔ raw price 1e-3 ↔ tick ≈ −69081."""
        expected = round(math.log(1e-3) / math.log(1.0001))
        assert TickPriceConverter.price_to_tick(100_000, D0, D1) == expected

    def test_raw_tick_price(self):
        assert TickPriceConverter.raw_tick_price(0) == pytest.approx(1.0, abs=1e-12)
        assert TickPriceConverter.raw_tick_price(1) == pytest.approx(1.0001)

    def test_price_to_tick_returns_int(self):
        assert isinstance(TickPriceConverter.price_to_tick(2000), int)

    @pytest.mark.parametrize("price", [0, -1, -100_000])
    def test_non_positive_price_raises(self, price):
        with pytest.raises(DataValidationError):
            TickPriceConverter.price_to_tick(price, D0, D1)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            TickPriceConverter.price_to_tick(0)


# ── Width Specifiers ─────────────────────────────────────────────────────

class TestWidthSpec:
    @pytest.mark.parametrize("spec,expected", [
        ("10%", 0.10),
        ("2.5%", 0.025),
        (" 50% ", 0.50),
        (0.2, 0.2),
    ])
    def test_percentages(self, spec, expected):
        assert parse_width_spec(spec) == pytest.approx(expected)

    @pytest.mark.parametrize("spec", ["full-range", "FULL-RANGE", "full"])
    def test_full_range(self, spec):
        assert parse_width_spec(spec) is None

    @pytest.mark.parametrize("spec", ["10", "wide", "0%", "-5%", "200%", "abc%", None, True])
    def test_unsupported_raises(self, spec):
        with pytest.raises(ConfigurationError):
            parse_width_spec(spec)


# ── Range Allocation ─────────────────────────────────────────────────────

class TestRangeAllocator:
    def setup_method(self):
        self.allocator = RangeAllocator(D0, D1)
        self.ref_tick = TickPriceConverter.price_to_tick(100_000, D0, D1)

    def test_ten_percent_band(self):
        r = self.allocator.compute_range(self.ref_tick, "10%", 2000, reference_price=100_000)
        assert r.price_lower == pytest.approx(95_000)
        assert r.price_upper == pytest.approx(105_000)
        assert r.range_width_fraction == pytest.approx(0.10)

    def test_ticks_aligned_to_spacing(self):
        r = self.allocator.compute_range(self.ref_tick, "10%", 2000, reference_price=100_000)
        assert r.tick_lower % 2000 == 0
        assert r.tick_upper % 2000 == 0
        assert r.tick_lower <= r.tick_upper

    @pytest.mark.parametrize("spacing", [1, 10, 60, 200, 2000])
    def test_ticks_contain_price_band(self, spacing):
        r = self.allocator.compute_range(self.ref_tick, "10%", spacing, reference_price=100_000)
        for price in (r.price_lower, r.price_upper, 100_000):
            assert r.contains_tick(TickPriceConverter.price_to_tick(price, D0, D1))

    def test_reference_price_from_tick(self):
        r = self.allocator.compute_range(self.ref_tick, "10%", 2000)
        centre = TickPriceConverter.tick_to_price(self.ref_tick, D0, D1)
        assert r.price_lower == pytest.approx(centre * 0.95)
        assert r.price_upper == pytest.approx(centre * 1.05)

    def test_full_range(self):
        r = self.allocator.compute_range(self.ref_tick, "full-range", 2000)
        assert r.tick_lower == MIN_TICK
        assert r.tick_upper == MAX_TICK
        assert r.price_lower == 0
        assert math.isinf(r.price_upper)
        assert r.is_full_range

    @pytest.mark.parametrize("spacing", [0, -60, 1.5])
    def test_bad_tick_spacing_raises(self, spacing):
        with pytest.raises(ConfigurationError):
            self.allocator.compute_range(self.ref_tick, "10%", spacing, reference_price=100_000)

    def test_bad_width_raises(self):
        with pytest.raises(ConfigurationError):
            self.allocator.compute_range(self.ref_tick, "ten", 2000, reference_price=100_000)

    def test_range_is_inclusive(self):
        r = PositionRange(-100, 100, 1.0, 2.0, 0.1)
        assert r.contains_tick(-100) and r.contains_tick(100)
        assert not r.contains_tick(101)
        assert r.width_ticks == 200


# ── Token Allocation (DefiLab tokensForStrategy) ─────────────────────────

class TestTokenAllocationSolver:
    @pytest.mark.parametrize("price", [95_001, 97_500, 100_000, 102_345, 104_999])
    def test_conservation_inside_range(self, price):
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, price, ADJ)
        assert h.value_usd(price) == pytest.approx(1000, rel=1e-6)
        assert h.amount0 > 0 and h.amount1 > 0

    @pytest.mark.parametrize("lower,upper,price,adj", [
        (1500, 2500, 2000, -12),
        (0.5, 2.0, 1.0, 0),
        (80_000, 120_000, 90_000, -2),
    ])
    def test_conservation_other_pools(self, lower, upper, price, adj):
        h = TokenAllocationSolver.solve(lower, upper, 12_345.67, price, adj)
        assert h.value_usd(price) == pytest.approx(12_345.67, rel=1e-6)

    @pytest.mark.parametrize("price", [50_000, 94_999, 95_000])
    def test_below_or_at_lower_collapses_to_asset0(self, price):
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, price, ADJ)
        assert h.amount1 == 0
        assert h.amount0 == pytest.approx(1000 / price)

    @pytest.mark.parametrize("price", [105_000, 105_001, 200_000])
    def test_above_or_at_upper_collapses_to_asset1(self, price):
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, price, ADJ)
        assert h.amount0 == 0
        assert h.amount1 == pytest.approx(1000)

    def test_full_range_splits_evenly(self):
        h = TokenAllocationSolver.solve(0.0, math.inf, 1000, 100_000, ADJ)
        assert h.amount1 == pytest.approx(500)
        assert h.amount0 * 100_000 == pytest.approx(500)

    def test_more_asset1_when_price_near_upper(self):
        low = TokenAllocationSolver.solve(95_000, 105_000, 1000, 96_000, ADJ)
        high = TokenAllocationSolver.solve(95_000, 105_000, 1000, 104_000, ADJ)
        assert high.amount1 > low.amount1

    def test_zero_price_raises(self):
        with pytest.raises(DataValidationError):
            TokenAllocationSolver.solve(95_000, 105_000, 1000, 0, ADJ)

    def test_holdings_exposure(self):
        h = TokenHoldings(amount0=0.005, amount1=500)
        assert h.value_usd(100_000) == pytest.approx(1000)
        assert h.exposure_pct(100_000) == pytest.approx(50)
        assert TokenHoldings().exposure_pct(100_000) == 0


# ── Liquidity (Whitepaper §6.2) ──────────────────────────────────────────

class TestLiquidityScaleCalculator:
    def _liq(self, price, a0, a1):
        return LiquidityScaleCalculator.compute_liquidity(price, 95_000, 105_000, a0, a1, D0, D1)

    @pytest.mark.parametrize("price", [90_000, 100_000, 110_000])
    def test_monotone_in_amount0(self, price):
        base = self._liq(price, 0.005, 500)
        assert self._liq(price, 0.0075, 500) >= base
        assert self._liq(price, 0.05, 500) >= base

    @pytest.mark.parametrize("price", [90_000, 100_000, 110_000])
    def test_monotone_in_amount1(self, price):
        base = self._liq(price, 0.005, 500)
        assert self._liq(price, 0.005, 750) >= base
        assert self._liq(price, 0.005, 5000) >= base

    def test_in_range_binding_constraint(self):
        """Within range the scarcer asset sets liquidity."""
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, 100_000, ADJ)
        balanced = self._liq(100_000, h.amount0, h.amount1)
        assert self._liq(100_000, h.amount0 * 10, h.amount1) == pytest.approx(balanced, rel=1e-9)
        assert self._liq(100_000, h.amount0, h.amount1 * 10) == pytest.approx(balanced, rel=1e-9)

    def test_below_range_uses_asset0_only(self):
        assert self._liq(90_000, 0.01, 0) > 0
        assert self._liq(90_000, 0.01, 0) == self._liq(90_000, 0.01, 999)

    def test_above_range_uses_asset1_only(self):
        assert self._liq(110_000, 0, 1000) > 0
        assert self._liq(110_000, 0, 1000) == self._liq(110_000, 5, 1000)

    def test_bounds_are_ordered(self):
        a = LiquidityScaleCalculator.compute_liquidity(100_000, 95_000, 105_000, 0.005, 500, D0, D1)
        b = LiquidityScaleCalculator.compute_liquidity(100_000, 105_000, 95_000, 0.005, 500, D0, D1)
        assert a == pytest.approx(b)

    def test_amounts_roundtrip(self):
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, 100_000, ADJ)
        liq = self._liq(100_000, h.amount0, h.amount1)
        back = LiquidityScaleCalculator.amounts_for_liquidity(liq, 100_000, 95_000, 105_000, D0, D1)
        assert back.amount0 == pytest.approx(h.amount0, rel=1e-9)
        assert back.amount1 == pytest.approx(h.amount1, rel=1e-9)

    def test_amounts_outside_range(self):
        h = TokenAllocationSolver.solve(95_000, 105_000, 1000, 100_000, ADJ)
        liq = self._liq(100_000, h.amount0, h.amount1)
        below = LiquidityScaleCalculator.amounts_for_liquidity(liq, 80_000, 95_000, 105_000, D0, D1)
        above = LiquidityScaleCalculator.amounts_for_liquidity(liq, 120_000, 95_000, 105_000, D0, D1)
        assert below.amount1 == pytest.approx(0, abs=1e-9) and below.amount0 > h.amount0
        assert above.amount0 == pytest.approx(0, abs=1e-15) and above.amount1 > h.amount1

    def test_zero_liquidity_holds_nothing(self):
        assert LiquidityScaleCalculator.amounts_for_liquidity(0, 100_000, 95_000, 105_000) == TokenHoldings()

    def test_full_range_needs_proxy_band(self):
        with pytest.raises(DataValidationError):
            LiquidityScaleCalculator.compute_liquidity(100_000, 0.0, math.inf, 0.005, 500, D0, D1)

    def test_liquidity_bounds(self):
        full = PositionRange(MIN_TICK, MAX_TICK, 0.0, math.inf, None)
        assert LiquidityScaleCalculator.liquidity_bounds(full, 100_000) == pytest.approx((1000, 10_000_000))
        bounded = PositionRange(-70000, -68000, 95_000, 105_000, 0.1)
        assert LiquidityScaleCalculator.liquidity_bounds(bounded, 100_000) == (95_000, 105_000)


class TestPoolShare:
    def test_share(self):
        assert pool_share(25, 100) == pytest.approx(0.25)

    @pytest.mark.parametrize("total", [0, -1])
    def test_non_positive_total_raises(self, total):
        with pytest.raises(DataValidationError):
            pool_share(1, total)
