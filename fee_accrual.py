#!/usr/bin/env python3
"""
Fee Accrual — Fee-Growth Delta Accounting
=========================================

Computes the fee a position earns in one period from two successive
global fee-growth snapshots.

Formula (Whitepaper §6.3, global accumulator form):
    Δf_i   = (feeGrowthGlobal_i,now − feeGrowthGlobal_i,prev) / 2^128 / 10^decimals_i
    fee_i  = Δf_i · L · active_fraction / 100
    feeUSD = fee_0 + fee_1 · price          (token0 = USD quote)

Snapshots arrive as decimal strings and are kept as Python ints; the
subtraction is exact and floats only appear after the Q128 division.

Degradation policy:
  A sentinel, malformed or decreasing counter never aborts the run. The
  period earns 0 and is flagged degraded.

Ref: https://uniswap.org/whitepaper-v3.pdf §6.3
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from lp_backtest.central_config import FEE_GROWTH_SENTINEL_THRESHOLD
from lp_backtest.errors import DataValidationError, DegradedPeriodFeeComputation
from lp_backtest.fixed_point import is_sentinel, parse_int_string, x128_to_token_units
from lp_math import PositionRange, TickPriceConverter


@dataclass(frozen=True)
class FeeGrowthSnapshot:
    """Global fee growth per unit of liquidity, Q128 fixed point."""

    fee_growth_global0_x128: int
    fee_growth_global1_x128: int


@dataclass(frozen=True)
class FeeAccrual:
    """
    Result of one accrual step.

    fee0 is in token0 units (quote), fee1 in token1 units (priced asset).
    """

    fee_usd: float = 0.0
    fee0: float = 0.0
    fee1: float = 0.0
    degraded: bool = False
    bootstrap: bool = False
    reason: str = ""


class FeeAccrualTracker:
    """Fee-growth parsing, active fraction and per-period fee accrual."""

    @staticmethod
    def parse_snapshot(
        raw0: Union[str, int, None],
        raw1: Union[str, int, None],
        sentinel_threshold: int = FEE_GROWTH_SENTINEL_THRESHOLD,
    ) -> FeeGrowthSnapshot:
        """
        Parse both fee-growth counters.

        Raises:
            DegradedPeriodFeeComputation: missing, malformed or sentinel value.
        """
        values = []
        for field, raw in (("feeGrowthGlobal0X128", raw0), ("feeGrowthGlobal1X128", raw1)):
            if raw is None or raw == "":
                raise DegradedPeriodFeeComputation(f"{field} missing")
            try:
                value = parse_int_string(raw, field)
            except DataValidationError as exc:
                raise DegradedPeriodFeeComputation(str(exc)) from exc
            if is_sentinel(value, sentinel_threshold):
                raise DegradedPeriodFeeComputation(f"{field} is an uninitialized sentinel")
            values.append(value)
        return FeeGrowthSnapshot(values[0], values[1])

    @staticmethod
    def active_fraction(
        position_range: PositionRange,
        price: float,
        low: Optional[float] = None,
        high: Optional[float] = None,
        decimals0: int = 0,
        decimals1: int = 0,
    ) -> float:
        """
        Share (0–100) of the period's price band that overlapped the range.

        The band [low, high] is mapped to ticks and intersected with
        [tick_lower, tick_upper]. Missing extrema fall back to ``price``,
        which collapses the band to a point (100 inside, 0 outside).
        Full-range positions are always 100.
        """
        if position_range.is_full_range:
            return 100.0

        band_low = low if low is not None and low > 0 else price
        band_high = high if high is not None and high > 0 else price
        tick_a = TickPriceConverter.price_to_tick(band_low, decimals0, decimals1)
        tick_b = TickPriceConverter.price_to_tick(band_high, decimals0, decimals1)
        lo, hi = min(tick_a, tick_b), max(tick_a, tick_b)

        if hi == lo:
            return 100.0 if position_range.contains_tick(lo) else 0.0

        overlap = min(hi, position_range.tick_upper) - max(lo, position_range.tick_lower)
        if overlap <= 0:
            return 0.0
        return min(100.0, max(0.0, overlap / (hi - lo) * 100))

    @staticmethod
    def fee_deltas(
        prev: FeeGrowthSnapshot,
        curr: FeeGrowthSnapshot,
        decimals0: int,
        decimals1: int,
    ) -> Tuple[float, float]:
        """Per-unit-liquidity fee growth between snapshots, in token units."""
        delta0 = curr.fee_growth_global0_x128 - prev.fee_growth_global0_x128
        delta1 = curr.fee_growth_global1_x128 - prev.fee_growth_global1_x128
        if delta0 < 0 or delta1 < 0:
            raise DegradedPeriodFeeComputation("fee growth decreased between snapshots")
        return x128_to_token_units(delta0, decimals0), x128_to_token_units(delta1, decimals1)

    @staticmethod
    def accrue(
        prev: Optional[FeeGrowthSnapshot],
        curr: FeeGrowthSnapshot,
        liquidity: float,
        active_fraction: float,
        decimals0: int,
        decimals1: int,
        price: float,
    ) -> FeeAccrual:
        """
        Fee earned between ``prev`` and ``curr``.

        The first period (prev is None) earns nothing. Any arithmetic failure
        yields a degraded zero-fee result instead of an exception.
        """
        if prev is None:
            return FeeAccrual(bootstrap=True)
        try:
            growth0, growth1 = FeeAccrualTracker.fee_deltas(prev, curr, decimals0, decimals1)
            share = liquidity * active_fraction / 100
            fee0 = growth0 * share
            fee1 = growth1 * share
            fee_usd = fee0 + fee1 * price
            if not fee_usd >= 0 or fee_usd == float("inf"):
                raise DegradedPeriodFeeComputation(f"fee is not a finite non-negative value: {fee_usd!r}")
        except ArithmeticError as exc:
            # DegradedPeriodFeeComputation is an ArithmeticError
            return FeeAccrual(degraded=True, reason=str(exc) or type(exc).__name__)
        return FeeAccrual(fee_usd=fee_usd, fee0=fee0, fee1=fee1)
