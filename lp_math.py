#!/usr/bin/env python3
"""
Concentrated-Liquidity Math Engine
==================================

Tick/price conversion, range allocation, token allocation and liquidity
sizing for a single Uniswap V3 style position.

FORMULA SOURCES (every formula is traceable):
──────────────────────────────────────────────
1. Uniswap V3 Core Whitepaper
   https://uniswap.org/whitepaper-v3.pdf
   - §6.1  Tick-Indexed Concentrated Liquidity:  p(i) = 1.0001^i
   - §6.2  Global State / Liquidity

2. Uniswap V3 Development Book — Calculating Liquidity
   https://uniswapv3book.com/docs/milestone_1/calculating-liquidity/
   - L = Δx·√Pa·√Pb / (√Pb − √Pa)
   - L = Δy / (√Pb − √Pa)

3. DefiLab Uniswap V3 strategy simulator (tokensForStrategy /
   liquidityForStrategy)
   https://github.com/DefiLab-xyz/uniswap-v3-backtest

Price convention:
  Pool token0 is the USD quote asset and token1 the priced asset, so a
  "price" is USD per token1. The exchange tick grid is expressed in raw
  token1-per-token0 units, i.e. the reciprocal, hence the inversion in
  price_to_tick().
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from lp_backtest.central_config import (
    FULL_RANGE,
    FULL_RANGE_PROXY_HIGH,
    FULL_RANGE_PROXY_LOW,
    MAX_TICK,
    MIN_TICK,
)
from lp_backtest.errors import ConfigurationError, DataValidationError, InvariantViolation
from lp_backtest.fixed_point import Q96

TICK_BASE = 1.0001

_FULL_RANGE_ALIASES = frozenset({FULL_RANGE, "full", "fullrange", "full_range"})


# ── Data Types ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PositionRange:
    """
    Inclusive tick/price boundaries of a position.

    price_lower / price_upper are the intended price band; the ticks are the
    band rounded outward to the tick spacing, so they always contain it.
    range_width_fraction is None for full-range positions.
    """

    tick_lower: int
    tick_upper: int
    price_lower: float
    price_upper: float
    range_width_fraction: Optional[float] = None

    @property
    def is_full_range(self) -> bool:
        return self.range_width_fraction is None

    @property
    def width_ticks(self) -> int:
        return self.tick_upper - self.tick_lower

    def contains_tick(self, tick: int) -> bool:
        return self.tick_lower <= tick <= self.tick_upper


@dataclass(frozen=True)
class TokenHoldings:
    """
    Quantities held by the position in native units.

    amount0 — the priced asset (pool token1, e.g. cbBTC)
    amount1 — the USD quote asset (pool token0, e.g. USDC)
    """

    amount0: float = 0.0
    amount1: float = 0.0

    def value_usd(self, price: float) -> float:
        return self.amount0 * price + self.amount1

    def exposure_pct(self, price: float) -> float:
        """Share of value held in the priced asset."""
        total = self.value_usd(price)
        return (self.amount0 * price / total * 100) if total > 0 else 0.0


# ── Tick ↔ Price ─────────────────────────────────────────────────────────


class TickPriceConverter:
    """Conversions between a USD price and the exchange tick grid."""

    @staticmethod
    def price_to_tick(price: float, decimals0: int = 0, decimals1: int = 0) -> int:
        """
        Convert a USD price to the nearest tick.

        Formula (Whitepaper §6.1, inverted price, decimal adjusted):
            raw  = (1 / price) · 10^(decimals1 − decimals0)
            tick = round(log(raw) / log(1.0001))

        Raises:
            DataValidationError: price ≤ 0 (no clamping).
        """
        if not price > 0:
            raise DataValidationError(f"Price must be positive, got {price!r}")
        if math.isinf(price):
            return MIN_TICK
        scaled_inverted = (1 / price) * 10 ** (decimals1 - decimals0)
        return round(math.log(scaled_inverted) / math.log(TICK_BASE))

    @staticmethod
    def raw_tick_price(tick: int) -> float:
        """Exchange price of a tick: p(i) = 1.0001^i."""
        return TICK_BASE ** tick

    @staticmethod
    def tick_to_price(tick: int, decimals0: int = 0, decimals1: int = 0) -> float:
        """
        Inverse of price_to_tick(): USD price at a tick.

        Formula:  price = 10^(decimals1 − decimals0) / 1.0001^tick
        """
        return 10 ** (decimals1 - decimals0) / TickPriceConverter.raw_tick_price(tick)


# ── Range Allocation ─────────────────────────────────────────────────────


def parse_width_spec(width_spec: Union[str, float]) -> Optional[float]:
    """
    Parse a position-width specifier.

    Returns None for "full-range", otherwise the width as a fraction
    ("10%" → 0.10). Widths must lie in (0, 200%) so the lower bound stays
    positive.
    """
    if isinstance(width_spec, str):
        text = width_spec.strip().lower()
        if text in _FULL_RANGE_ALIASES:
            return None
        if not text.endswith("%"):
            raise ConfigurationError(
                f"Unsupported width {width_spec!r}: use 'full-range' or a percentage like '10%'"
            )
        try:
            fraction = float(text[:-1]) / 100
        except ValueError:
            raise ConfigurationError(f"Unsupported width {width_spec!r}") from None
    elif isinstance(width_spec, (int, float)) and not isinstance(width_spec, bool):
        fraction = float(width_spec)
    else:
        raise ConfigurationError(f"Unsupported width {width_spec!r}")

    if not 0 < fraction < 2:
        raise ConfigurationError(f"Width must be between 0% and 200%, got {width_spec!r}")
    return fraction


class RangeAllocator:
    """Computes tick/price boundaries around a reference price."""

    def __init__(self, decimals0: int = 0, decimals1: int = 0):
        self.decimals0 = decimals0
        self.decimals1 = decimals1

    def compute_range(
        self,
        reference_tick: int,
        width_spec: Union[str, float],
        tick_spacing: int,
        reference_price: Optional[float] = None,
    ) -> PositionRange:
        """
        Build the PositionRange for ``width_spec`` centred on the reference.

        Percentage widths map to the band [p·(1 − w/2), p·(1 + w/2)]. Both band
        edges are converted to raw ticks; the lower tick is floored and the
        upper tick ceiled to a multiple of tick_spacing. When reference_price
        is omitted it is derived from reference_tick.
        """
        if not isinstance(tick_spacing, int) or tick_spacing <= 0:
            raise ConfigurationError(f"Tick spacing must be a positive integer, got {tick_spacing!r}")

        fraction = parse_width_spec(width_spec)
        if fraction is None:
            return PositionRange(
                tick_lower=MIN_TICK,
                tick_upper=MAX_TICK,
                price_lower=0.0,
                price_upper=math.inf,
                range_width_fraction=None,
            )

        if reference_price is None:
            reference_price = TickPriceConverter.tick_to_price(
                reference_tick, self.decimals0, self.decimals1
            )
        if not reference_price > 0:
            raise DataValidationError(f"Reference price must be positive, got {reference_price!r}")

        price_lower = reference_price * (1 - fraction / 2)
        price_upper = reference_price * (1 + fraction / 2)

        # Inverted convention: the higher price maps to the lower tick
        raw_a = TickPriceConverter.price_to_tick(price_lower, self.decimals0, self.decimals1)
        raw_b = TickPriceConverter.price_to_tick(price_upper, self.decimals0, self.decimals1)
        tick_lower = math.floor(min(raw_a, raw_b) / tick_spacing) * tick_spacing
        tick_upper = math.ceil(max(raw_a, raw_b) / tick_spacing) * tick_spacing
        tick_lower = max(tick_lower, MIN_TICK)
        tick_upper = min(tick_upper, MAX_TICK)

        if tick_lower > tick_upper:
            raise InvariantViolation(f"tick_lower {tick_lower} > tick_upper {tick_upper}")

        return PositionRange(
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            price_lower=price_lower,
            price_upper=price_upper,
            range_width_fraction=fraction,
        )


# ── Token Allocation ─────────────────────────────────────────────────────


class TokenAllocationSolver:
    """
    Splits an investment into (priced asset, quote asset) for a range.

    DefiLab tokensForStrategy, with every price scaled by 10^decimal_adjustment
    before the square root:

      Inside range:
        δ  = investment / ((√P − √Pa) + (1/√P − 1/√Pb)·P·10^d)
        amount0 = δ·(1/√P − 1/√Pb)·10^d
        amount1 = δ·(√P − √Pa)
      Below range:  amount0 = investment / P,  amount1 = 0
      Above range:  amount0 = 0,               amount1 = investment

    USD value amount0·P + amount1 equals the investment in every case.
    """

    @staticmethod
    def solve(
        price_lower: float,
        price_upper: float,
        investment_usd: float,
        current_price: float,
        decimal_adjustment: int = 0,
    ) -> TokenHoldings:
        if not current_price > 0:
            raise DataValidationError(f"Current price must be positive, got {current_price!r}")
        if investment_usd < 0:
            raise DataValidationError(f"Investment must be non-negative, got {investment_usd!r}")

        scale = 10 ** decimal_adjustment
        sp = math.sqrt(current_price * scale)
        sl = math.sqrt(price_lower * scale)
        sh = math.sqrt(price_upper * scale)

        if sl < sp < sh:
            inv_sp_minus_inv_sh = (1 / sp) - (1 / sh)
            delta = investment_usd / ((sp - sl) + inv_sp_minus_inv_sh * (current_price * scale))
            return TokenHoldings(
                amount0=delta * inv_sp_minus_inv_sh * scale,
                amount1=delta * (sp - sl),
            )
        if sp <= sl:
            return TokenHoldings(amount0=investment_usd / current_price, amount1=0.0)
        return TokenHoldings(amount0=0.0, amount1=investment_usd)


# ── Liquidity Sizing ─────────────────────────────────────────────────────


def _sqrt_x96(price: float, decimal_adjustment: int) -> float:
    return math.sqrt(price * 10 ** decimal_adjustment) * Q96


class LiquidityScaleCalculator:
    """
    Liquidity units for held amounts, in Q96 fixed-point scale.

    Formulae (Whitepaper §6.2, raw token units):
      P ≤ Pa:        L = x / ((√Pb − √Pa) / (√Pa·√Pb))
      Pa < P ≤ Pb:   L = min(x / ((√Pb − √P) / (√P·√Pb)),  y / (√P − √Pa))
      P > Pb:        L = y / (√Pb − √Pa)

    x is the priced asset in raw units (10^decimals1), y the quote asset
    (10^decimals0).
    """

    @staticmethod
    def _sqrt_bounds(
        current_price: float,
        price_lower: float,
        price_upper: float,
        decimals0: int,
        decimals1: int,
    ) -> Tuple[float, float, float]:
        adj = decimals0 - decimals1
        low_high = (_sqrt_x96(price_lower, adj), _sqrt_x96(price_upper, adj))
        return _sqrt_x96(current_price, adj), min(low_high), max(low_high)

    @staticmethod
    def compute_liquidity(
        current_price: float,
        price_lower: float,
        price_upper: float,
        amount0: float,
        amount1: float,
        decimals0: int = 0,
        decimals1: int = 0,
    ) -> float:
        if not (current_price > 0 and price_lower > 0 and math.isfinite(price_upper)):
            raise DataValidationError(
                "Liquidity needs a positive price and a finite, positive band; "
                "size full-range positions with liquidity_bounds()"
            )
        s_price, s_low, s_high = LiquidityScaleCalculator._sqrt_bounds(
            current_price, price_lower, price_upper, decimals0, decimals1
        )
        if s_high == s_low:
            return 0.0

        x = amount0 * 10 ** decimals1
        y = amount1 * 10 ** decimals0

        if s_price <= s_low:
            return x / (Q96 * (s_high - s_low) / s_high / s_low)
        if s_price <= s_high:
            liq0 = x / (Q96 * (s_high - s_price) / s_high / s_price) if s_high > s_price else math.inf
            liq1 = y / ((s_price - s_low) / Q96)
            return min(liq0, liq1)
        return y / ((s_high - s_low) / Q96)

    @staticmethod
    def amounts_for_liquidity(
        liquidity: float,
        current_price: float,
        price_lower: float,
        price_upper: float,
        decimals0: int = 0,
        decimals1: int = 0,
    ) -> TokenHoldings:
        """
        Token amounts a liquidity position holds at ``current_price``.

        Inverse of compute_liquidity() with √P clamped into [√Pa, √Pb].
        """
        if liquidity <= 0:
            return TokenHoldings()
        s_price, s_low, s_high = LiquidityScaleCalculator._sqrt_bounds(
            current_price, price_lower, price_upper, decimals0, decimals1
        )
        s_clamped = min(max(s_price, s_low), s_high)
        x = liquidity * Q96 * (s_high - s_clamped) / (s_high * s_clamped)
        y = liquidity * (s_clamped - s_low) / Q96
        return TokenHoldings(amount0=x / 10 ** decimals1, amount1=y / 10 ** decimals0)

    @staticmethod
    def liquidity_bounds(position_range: PositionRange, reference_price: float) -> Tuple[float, float]:
        """
        Price band used for liquidity math.

        Full-range positions use the proxy band [p·0.01, p·100]; bounded
        positions use their own band.
        """
        if position_range.is_full_range:
            return reference_price * FULL_RANGE_PROXY_LOW, reference_price * FULL_RANGE_PROXY_HIGH
        return position_range.price_lower, position_range.price_upper


def pool_share(liquidity: float, total_pool_liquidity: float) -> float:
    """
    Position share of the pool: L_position / L_pool.

    Can exceed 1 only when the pool liquidity input is stale.
    """
    if not total_pool_liquidity > 0:
        raise DataValidationError(
            f"Total pool liquidity must be positive, got {total_pool_liquidity!r}"
        )
    return liquidity / total_pool_liquidity
