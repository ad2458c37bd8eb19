"""
Fixed-Point Helpers — Q96 / Q128 Encodings and Decimal-String Parsing
=====================================================================

Subgraph responses encode 128-bit fee-growth counters and ticks as decimal
strings. They are parsed into Python ``int`` (arbitrary precision) and only
converted to ``float`` after the fixed-point-to-token-unit division.

Terminology:
  • Q96:   2^96  — fixed-point denominator for sqrtPriceX96
  • Q128:  2^128 — fixed-point denominator for feeGrowthGlobalX128
  • Q256:  2^256 — uint256 wrap boundary

Ref: Uniswap V3 Whitepaper §6.3 — https://uniswap.org/whitepaper-v3.pdf
"""

from fractions import Fraction
from typing import Union

from lp_backtest.central_config import FEE_GROWTH_SENTINEL_THRESHOLD
from lp_backtest.errors import DataValidationError

# ── Uniswap V3 Fixed-Point Constants ───────────────────────────────────

Q96 = 2 ** 96                # sqrtPriceX96 denominator (FixedPoint96.RESOLUTION)
Q128 = 2 ** 128              # feeGrowthGlobalX128 denominator (FixedPoint128.Q128)
Q256 = 2 ** 256              # uint256 overflow boundary
MAX_UINT256 = Q256 - 1


def parse_int_string(raw: Union[str, int], field: str = "value") -> int:
    """
    Parse a decimal-string-encoded integer (e.g. a tick or Q128 counter).

    Raises:
        DataValidationError: on empty, non-integer or fractional input.
    """
    if isinstance(raw, bool):
        raise DataValidationError(f"{field}: boolean is not an integer")
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        raise DataValidationError(f"{field}: expected decimal string, got {type(raw).__name__}")
    text = raw.strip()
    if not text:
        raise DataValidationError(f"{field}: empty string")
    try:
        return int(text, 10)
    except ValueError:
        raise DataValidationError(f"{field}: malformed integer {raw!r}") from None


def parse_float_string(raw: Union[str, int, float], field: str = "value") -> float:
    """Parse a decimal string (price, TVL) into a finite float."""
    if isinstance(raw, bool):
        raise DataValidationError(f"{field}: boolean is not a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise DataValidationError(f"{field}: malformed number {raw!r}") from None
    if value != value or value in (float("inf"), float("-inf")):
        raise DataValidationError(f"{field}: non-finite number {raw!r}")
    return value


def is_sentinel(value: int, threshold: int = FEE_GROWTH_SENTINEL_THRESHOLD) -> bool:
    """
    True when ``value`` sits implausibly close to the top of the uint256 domain.

    Some indexers report uninitialized fee-growth counters as values near
    MAX_UINT256; a real counter never gets there.
    """
    return value < 0 or value > threshold


def x128_to_token_units(value: int, decimals: int) -> float:
    """
    Convert a Q128 fee-growth amount to real token units.

    Formula:  value / 2^128 / 10^decimals

    The division runs on exact rationals; float is produced last.
    """
    return float(Fraction(value, Q128 * 10 ** decimals))
