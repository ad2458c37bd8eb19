#!/usr/bin/env python3
"""
Backtest Runner — Historical LP Performance Replay
==================================================

Replays a chronologically ordered pool series through one Position:

  1. Seed the position from the first data point.
  2. For every period: rebalance if out of range and the cooldown has
     elapsed, then update fees and counters.
  3. Snapshot a UnifiedStatusSnapshot per period.
  4. Close the position to flush the final epoch and summarise.

Series come from the subgraph client or from a local JSON/CSV file using
the subgraph field names (date|periodStartUnix, tick, token0Price, low,
high, feeGrowthGlobal0X128, feeGrowthGlobal1X128, tvlUSD, liquidity).
"""

import csv
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from lp_backtest.central_config import (
    DEFAULT_GAS_COST_USD,
    DEFAULT_INVESTMENT_USD,
    DEFAULT_REBALANCE_COOLDOWN,
)
from lp_backtest.errors import DataValidationError
from performance_metrics import PerformanceMetrics
from position_engine import MarketDataPoint, PeriodResult, Position, UnifiedStatusSnapshot

log = logging.getLogger(__name__)

_SUBGRAPH_COLLECTIONS = ("poolDayDatas", "poolHourDatas")


# ── Series Loading ───────────────────────────────────────────────────────


def _extract_rows(payload: Any) -> List[Dict[str, Any]]:
    """Accept a bare list, a {"data": {...}} GraphQL response or a collection dict."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        body = payload.get("data", payload)
        for key in _SUBGRAPH_COLLECTIONS:
            if isinstance(body.get(key), list):
                return body[key]
    raise DataValidationError("Unrecognised series layout: expected a list or poolDayDatas/poolHourDatas")


def load_series(path: Union[str, Path]) -> List[MarketDataPoint]:
    """
    Load a market series from a .json or .csv file, sorted by timestamp.

    Raises:
        DataValidationError: unknown format or malformed rows.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        rows = _extract_rows(json.loads(path.read_text()))
    elif suffix in (".csv", ".tsv"):
        delimiter = "\t" if suffix == ".tsv" else ","
        with path.open(newline="") as fh:
            rows = list(csv.DictReader(fh, delimiter=delimiter))
    else:
        raise DataValidationError(f"Unsupported series format {suffix!r} (use .json, .csv or .tsv)")

    points = [MarketDataPoint.from_dict(row) for row in rows]
    points.sort(key=lambda p: p.timestamp)
    log.info("Loaded %d data points from %s", len(points), path)
    return points


def filter_series(
    points: Iterable[MarketDataPoint],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[MarketDataPoint]:
    """Keep points whose timestamp lies in [start, end] (UTC, inclusive)."""
    start_ts = int(start.replace(tzinfo=timezone.utc).timestamp()) if start else None
    end_ts = int(end.replace(tzinfo=timezone.utc).timestamp()) if end else None
    return [
        p
        for p in points
        if (start_ts is None or p.timestamp >= start_ts) and (end_ts is None or p.timestamp <= end_ts)
    ]


# ── Results ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BacktestSummary:
    net_apr: float
    gross_apr: float
    weighted_apr: float
    gas_impact_apr: float
    time_in_range: float
    periods_in_range: int
    total_periods: int
    rebalance_count: int
    avg_periods_between_rebalances: float
    real_fee_periods: int
    degraded_periods: int
    range_width_ticks: int
    cumulative_fees: float
    total_gas_cost: float
    final_value: float
    max_drawdown: float
    max_gain: float
    impermanent_loss: float


@dataclass
class BacktestResult:
    position: Position
    summary: BacktestSummary
    periods: List[PeriodResult] = field(default_factory=list)
    snapshots: List[UnifiedStatusSnapshot] = field(default_factory=list)


def summarize(position: Position, periods: List[PeriodResult]) -> BacktestSummary:
    """Final statistics for a run (weighted APR over the whole ledger)."""
    net = position.running_apr
    gross = position.gross_apr
    real_fee_periods = sum(
        1 for p in periods if p.in_range and not p.fee.degraded and not p.fee.bootstrap
    )
    return BacktestSummary(
        net_apr=net,
        gross_apr=gross,
        weighted_apr=position.weighted_apr_with_open_epoch(),
        gas_impact_apr=gross - net,
        time_in_range=position.time_in_range,
        periods_in_range=position.periods_in_range,
        total_periods=position.total_periods,
        rebalance_count=position.rebalance_count,
        avg_periods_between_rebalances=PerformanceMetrics.average_periods_between_rebalances(
            position.total_periods, position.rebalance_count
        ),
        real_fee_periods=real_fee_periods,
        degraded_periods=position.degraded_periods,
        range_width_ticks=position.position_range.width_ticks,
        cumulative_fees=position.cumulative_fees,
        total_gas_cost=position.total_gas_cost,
        final_value=position.portfolio_value,
        max_drawdown=position.max_drawdown,
        max_gain=position.max_gain,
        impermanent_loss=position.impermanent_loss,
    )


# ── Runner ───────────────────────────────────────────────────────────────


def run_backtest(
    points: List[MarketDataPoint],
    initial_investment: float = DEFAULT_INVESTMENT_USD,
    width_spec: Union[str, float] = "10%",
    granularity: str = "daily",
    tick_spacing: int = 2000,
    decimals0: int = 6,
    decimals1: int = 8,
    use_compounding_apr: bool = False,
    rebalance_cooldown: int = DEFAULT_REBALANCE_COOLDOWN,
    gas_cost_usd: float = DEFAULT_GAS_COST_USD,
    enable_rebalancing: bool = True,
    token0_symbol: str = "USDC",
    token1_symbol: str = "TOKEN",
    close_at_end: bool = True,
    logger: Optional[logging.Logger] = None,
) -> BacktestResult:
    """
    Replay ``points`` through a new position and collect per-period output.

    Raises:
        DataValidationError: empty or malformed series.
        ConfigurationError: invalid width, tick spacing or granularity.
    """
    if not points:
        raise DataValidationError("Cannot backtest an empty series")
    logger = logger or log

    position = Position.from_first_point(
        points[0],
        initial_investment=initial_investment,
        position_width_spec=width_spec,
        granularity=granularity,
        tick_spacing=tick_spacing,
        decimals0=decimals0,
        decimals1=decimals1,
        use_compounding_apr=use_compounding_apr,
        rebalance_cooldown=rebalance_cooldown,
        gas_cost_usd=gas_cost_usd,
        token0_symbol=token0_symbol,
        token1_symbol=token1_symbol,
        logger=logger,
    )

    periods: List[PeriodResult] = []
    snapshots: List[UnifiedStatusSnapshot] = []
    last_index = len(points) - 1
    for index, point in enumerate(points):
        periods.append(position.step(point, enable_rebalancing=enable_rebalancing))
        snapshots.append(position.current_status(is_last_period=index == last_index))

    summary = summarize(position, periods)
    if close_at_end:
        position.close()

    logger.info(
        "Backtest done: %d periods, net APR %.2f%%, gross APR %.2f%%, weighted APR %.2f%%, "
        "%d rebalances, %d degraded periods",
        summary.total_periods,
        summary.net_apr,
        summary.gross_apr,
        summary.weighted_apr,
        summary.rebalance_count,
        summary.degraded_periods,
    )
    return BacktestResult(position=position, summary=summary, periods=periods, snapshots=snapshots)
