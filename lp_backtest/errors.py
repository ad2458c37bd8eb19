"""
LP Backtest — Error Types
=========================

Every failure raised by the engine derives from ``LPBacktestError`` so the
CLI can catch the whole family at the top level.

Fatal vs recoverable:
  • DataValidationError / ConfigurationError abort the current run.
  • DegradedPeriodFeeComputation is raised and caught inside fee accrual;
    the period's fee becomes 0 and the run continues.
  • PositionClosedError / InvariantViolation are programming errors.
"""


class LPBacktestError(Exception):
    """Base class for all backtest engine errors."""


class DataValidationError(LPBacktestError, ValueError):
    """Malformed market data: bad numeric string, price ≤ 0, liquidity ≤ 0."""


class ConfigurationError(LPBacktestError, ValueError):
    """Unsupported width spec, tick spacing, granularity or cooldown."""


class DegradedPeriodFeeComputation(LPBacktestError, ArithmeticError):
    """Fee-growth value is a sentinel, malformed, or produced a garbage delta."""


class PositionClosedError(LPBacktestError, RuntimeError):
    """Update or rebalance attempted on a closed position."""


class InvariantViolation(LPBacktestError, RuntimeError):
    """Internal invariant broken (e.g. tick_lower > tick_upper after rounding)."""
