#!/usr/bin/env python3
"""
Performance Metrics — APR, Impermanent Loss, Range Time, Drawdown
=================================================================

Pure calculators over the position's cumulative counters and epoch ledger.
Percentages are returned unrounded; formatting belongs to the report layer.

Formulas:
  Running APR  = (fees − gas) / initial × (periods_per_year / periods) × 100
  Gross APR    = fees / initial × (periods_per_year / periods) × 100
  Epoch APR    = (fees − gas) / starting_capital × (periods_per_year / duration) × 100
  Weighted APR = Σ(epoch_apr · duration) / Σ duration
  IL           = 2·√r / (1 + r) − 1,  r = P_current / P_baseline   (Pintail, 2019)
  Drawdown     = (peak − trough_after_peak) / peak × 100

Ref: https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from lp_backtest.central_config import PERIODS_PER_YEAR
from lp_backtest.errors import ConfigurationError


@dataclass(frozen=True)
class PositionEpoch:
    """One range episode, appended to the ledger on rebalance or close."""

    duration_periods: int
    fees_earned_usd: float
    gas_cost_usd: float
    starting_capital_usd: float

    @property
    def net_fees_usd(self) -> float:
        return self.fees_earned_usd - self.gas_cost_usd


def periods_per_year(granularity: str) -> int:
    """365 for daily series, 8760 for hourly series."""
    try:
        return PERIODS_PER_YEAR[granularity.strip().lower()]
    except (KeyError, AttributeError):
        raise ConfigurationError(
            f"Unsupported granularity {granularity!r}. Available: {list(PERIODS_PER_YEAR)}"
        ) from None


class PerformanceMetrics:
    """Stateless metric formulas for a simulated LP position."""

    @staticmethod
    def running_apr(
        cumulative_fees: float,
        total_gas_cost: float,
        initial_investment: float,
        total_periods: int,
        periods_per_year: int,
    ) -> float:
        """Net APR on the original investment; 0 before the first period."""
        if total_periods <= 0 or initial_investment <= 0:
            return 0.0
        net_fees = cumulative_fees - total_gas_cost
        return (net_fees / initial_investment) * (periods_per_year / total_periods) * 100

    @staticmethod
    def gross_apr(
        cumulative_fees: float,
        initial_investment: float,
        total_periods: int,
        periods_per_year: int,
    ) -> float:
        """Running APR without the gas deduction."""
        return PerformanceMetrics.running_apr(
            cumulative_fees, 0.0, initial_investment, total_periods, periods_per_year
        )

    @staticmethod
    def epoch_apr(epoch: PositionEpoch, periods_per_year: int) -> float:
        if epoch.duration_periods <= 0 or epoch.starting_capital_usd <= 0:
            return 0.0
        return (
            (epoch.net_fees_usd / epoch.starting_capital_usd)
            * (periods_per_year / epoch.duration_periods)
            * 100
        )

    @staticmethod
    def weighted_apr(epochs: Iterable[PositionEpoch], periods_per_year: int) -> float:
        """
        Duration-weighted mean of each epoch's own APR.

        Each epoch is measured against the capital it started with, so fees
        compounded back in at a rebalance are accounted for. Empty ledger → 0.
        """
        weighted = 0.0
        total_duration = 0
        for epoch in epochs:
            if epoch.duration_periods <= 0:
                continue
            weighted += PerformanceMetrics.epoch_apr(epoch, periods_per_year) * epoch.duration_periods
            total_duration += epoch.duration_periods
        return weighted / total_duration if total_duration > 0 else 0.0

    @staticmethod
    def impermanent_loss(price_baseline: float, price_current: float) -> float:
        """
        Impermanent Loss for a full-range position, in percent.

        Returns a value ≤ 0 (e.g. −5.72 at a 2× move). A non-positive
        baseline yields 0.
        """
        if price_baseline <= 0 or price_current < 0:
            return 0.0
        r = price_current / price_baseline
        return (2 * math.sqrt(r) / (1 + r) - 1) * 100

    @staticmethod
    def time_in_range(periods_in_range: int, total_periods: int) -> float:
        if total_periods <= 0:
            return 0.0
        return min(100.0, max(0.0, periods_in_range / total_periods * 100))

    @staticmethod
    def max_drawdown(
        max_portfolio_value: Optional[float],
        min_portfolio_value_after_peak: Optional[float],
    ) -> float:
        """
        Peak-to-trough drawdown in percent.

        The peak is only recorded once the portfolio exceeds its initial
        value, so None (no peak yet) yields 0.
        """
        if not max_portfolio_value or min_portfolio_value_after_peak is None:
            return 0.0
        drawdown = (max_portfolio_value - min_portfolio_value_after_peak) / max_portfolio_value * 100
        return max(0.0, drawdown)

    @staticmethod
    def max_gain(max_portfolio_value: Optional[float], initial_investment: float) -> float:
        """Best observed gain over the initial investment, in percent."""
        if not max_portfolio_value or initial_investment <= 0:
            return 0.0
        return max(0.0, (max_portfolio_value - initial_investment) / initial_investment * 100)

    @staticmethod
    def average_periods_between_rebalances(total_periods: int, rebalance_count: int) -> float:
        return total_periods / (rebalance_count + 1)
