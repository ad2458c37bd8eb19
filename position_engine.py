#!/usr/bin/env python3
"""
Position Engine — Lifecycle State Machine for a Simulated LP Position
=====================================================================

One configurable engine for every pool: decimals, tick spacing, granularity
and APR mode are parameters, not subclasses.

Lifecycle:
    initializing → active → rebalancing → active (loop) → closed

Design:
  • PositionState is a frozen value; every change goes through a pure
    reducer ``(state, event, cfg) -> (state, result)``.
  • Position wraps the current state, owns the injected logger and exposes
    read-only accessors.
  • Periods must be applied in strictly increasing timestamp order; fee
    accrual depends on the immediately preceding snapshot.

Per-period sequence (Position.step):
  1. Out of range and cooldown elapsed → rebalance around the new price.
  2. Update: counters, in-range status, fees (only when in range),
     portfolio peak/trough tracking.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Literal, Optional, Tuple, Union

from lp_backtest.central_config import (
    DEFAULT_GAS_COST_USD,
    DEFAULT_REBALANCE_COOLDOWN,
    FEE_GROWTH_SENTINEL_THRESHOLD,
)
from lp_backtest.errors import (
    ConfigurationError,
    DataValidationError,
    DegradedPeriodFeeComputation,
    PositionClosedError,
)
from lp_backtest.fixed_point import parse_float_string, parse_int_string
from fee_accrual import FeeAccrual, FeeAccrualTracker, FeeGrowthSnapshot
from lp_math import (
    LiquidityScaleCalculator,
    PositionRange,
    RangeAllocator,
    TokenAllocationSolver,
    TokenHoldings,
    parse_width_spec,
    pool_share,
)
from performance_metrics import PerformanceMetrics, PositionEpoch, periods_per_year

Lifecycle = Literal["initializing", "active", "rebalancing", "closed"]


# ── Market Data ──────────────────────────────────────────────────────────


def _optional_price(raw: Any, field: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    return parse_float_string(raw, field)


@dataclass(frozen=True)
class MarketDataPoint:
    """
    One period of pool data.

    token0_price is the USD price of one token1. Fee-growth counters stay
    as decimal strings; they are parsed during fee accrual so a bad value
    degrades one period instead of aborting the run.
    """

    timestamp: int
    tick: int
    token0_price: float
    fee_growth_global0_x128: Optional[str]
    fee_growth_global1_x128: Optional[str]
    tvl_usd: float = 0.0
    liquidity: int = 0
    low: Optional[float] = None
    high: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "MarketDataPoint":
        """
        Build from a subgraph poolDayData / poolHourData row.

        Accepts ``date``, ``periodStartUnix`` or ``timestamp`` for the period
        start. Raises DataValidationError on malformed tick or price.
        """
        ts_raw = raw.get("timestamp", raw.get("date", raw.get("periodStartUnix")))
        if ts_raw is None:
            raise DataValidationError("Data point has no timestamp/date/periodStartUnix")
        price = parse_float_string(raw.get("token0Price"), "token0Price")
        if price <= 0:
            raise DataValidationError(f"token0Price must be positive, got {price!r}")

        fg0 = raw.get("feeGrowthGlobal0X128")
        fg1 = raw.get("feeGrowthGlobal1X128")
        liquidity = raw.get("liquidity")
        tvl = raw.get("tvlUSD")
        return cls(
            timestamp=parse_int_string(ts_raw, "timestamp"),
            tick=parse_int_string(raw.get("tick"), "tick"),
            token0_price=price,
            fee_growth_global0_x128=None if fg0 is None else str(fg0),
            fee_growth_global1_x128=None if fg1 is None else str(fg1),
            tvl_usd=parse_float_string(tvl, "tvlUSD") if tvl not in (None, "") else 0.0,
            liquidity=parse_int_string(liquidity, "liquidity") if liquidity not in (None, "") else 0,
            low=_optional_price(raw.get("low"), "low"),
            high=_optional_price(raw.get("high"), "high"),
        )


# ── Configuration & State ────────────────────────────────────────────────


@dataclass(frozen=True)
class EngineConfig:
    initial_investment: float
    width_spec: Union[str, float]
    granularity: str = "daily"
    tick_spacing: int = 2000
    decimals0: int = 6
    decimals1: int = 8
    use_compounding_apr: bool = False
    rebalance_cooldown: int = DEFAULT_REBALANCE_COOLDOWN
    gas_cost_usd: float = DEFAULT_GAS_COST_USD
    sentinel_threshold: int = FEE_GROWTH_SENTINEL_THRESHOLD
    token0_symbol: str = "USDC"
    token1_symbol: str = "TOKEN"

    def __post_init__(self):
        if not self.initial_investment > 0:
            raise ConfigurationError(
                f"Initial investment must be positive, got {self.initial_investment!r}"
            )
        if not isinstance(self.tick_spacing, int) or self.tick_spacing <= 0:
            raise ConfigurationError(f"Tick spacing must be a positive integer, got {self.tick_spacing!r}")
        if self.rebalance_cooldown < 0:
            raise ConfigurationError(f"Cooldown must be ≥ 0, got {self.rebalance_cooldown!r}")
        if self.gas_cost_usd < 0:
            raise ConfigurationError(f"Gas cost must be ≥ 0, got {self.gas_cost_usd!r}")
        parse_width_spec(self.width_spec)
        periods_per_year(self.granularity)

    @property
    def periods_per_year(self) -> int:
        return periods_per_year(self.granularity)

    @property
    def decimal_adjustment(self) -> int:
        return self.decimals0 - self.decimals1


@dataclass(frozen=True)
class PositionState:
    lifecycle: Lifecycle
    position_range: PositionRange
    holdings: TokenHoldings
    initial_holdings: TokenHoldings
    liquidity: float
    liquidity_band: Tuple[float, float]
    pool_share: float
    current_tick: int
    current_price: float
    baseline_price: float
    current_tvl: float
    current_capital: float
    cumulative_fees: float = 0.0
    total_gas_cost: float = 0.0
    rebalance_count: int = 0
    periods_in_range: int = 0
    total_periods: int = 0
    current_epoch_periods: int = 0
    current_epoch_fees: float = 0.0
    last_rebalance_period: int = 0
    max_portfolio_value: Optional[float] = None
    min_portfolio_value_after_peak: Optional[float] = None
    max_drawdown_pct: float = 0.0
    degraded_periods: int = 0
    settled_fees: float = 0.0
    last_fee_snapshot: Optional[FeeGrowthSnapshot] = None
    last_timestamp: Optional[int] = None
    last_in_range: bool = True
    last_rebalanced: bool = False
    last_degraded: bool = False
    ledger: Tuple[PositionEpoch, ...] = ()


@dataclass(frozen=True)
class PeriodResult:
    """What happened in one period; kept by the driver for export."""

    timestamp: int
    tick: int
    price: float
    in_range: bool
    was_rebalanced: bool
    active_fraction: float
    fee: FeeAccrual
    portfolio_value: float

    @property
    def fee_usd(self) -> float:
        return self.fee.fee_usd

    @property
    def degraded(self) -> bool:
        return self.fee.degraded


# ── Events ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PeriodUpdate:
    point: MarketDataPoint
    was_rebalanced: bool = False


@dataclass(frozen=True)
class RebalanceEvent:
    tick: int
    tvl: float
    gas_cost: float
    price: Optional[float] = None
    total_pool_liquidity: Optional[float] = None


@dataclass(frozen=True)
class CloseEvent:
    gas_cost: float = 0.0


Event = Union[PeriodUpdate, RebalanceEvent, CloseEvent]


# ── Reducers ─────────────────────────────────────────────────────────────


def lp_value(state: PositionState, price: float, cfg: EngineConfig) -> float:
    """USD value of the liquidity position at ``price`` (fees excluded)."""
    low, high = state.liquidity_band
    held = LiquidityScaleCalculator.amounts_for_liquidity(
        state.liquidity, price, low, high, cfg.decimals0, cfg.decimals1
    )
    return held.value_usd(price)


def portfolio_value(state: PositionState, cfg: EngineConfig) -> float:
    """Liquidity value plus fees not yet redeployed into liquidity."""
    return lp_value(state, state.current_price, cfg) + state.current_epoch_fees + state.settled_fees


def _establish(
    state: PositionState,
    cfg: EngineConfig,
    tick: int,
    price: float,
    total_pool_liquidity: float,
) -> PositionState:
    """Compute range, holdings and liquidity for the current capital."""
    position_range = RangeAllocator(cfg.decimals0, cfg.decimals1).compute_range(
        tick, cfg.width_spec, cfg.tick_spacing, reference_price=price
    )
    holdings = TokenAllocationSolver.solve(
        position_range.price_lower,
        position_range.price_upper,
        state.current_capital,
        price,
        cfg.decimal_adjustment,
    )
    band = LiquidityScaleCalculator.liquidity_bounds(position_range, price)
    liquidity = LiquidityScaleCalculator.compute_liquidity(
        price, band[0], band[1], holdings.amount0, holdings.amount1, cfg.decimals0, cfg.decimals1
    )
    return replace(
        state,
        lifecycle="active",
        position_range=position_range,
        holdings=holdings,
        liquidity=liquidity,
        liquidity_band=band,
        pool_share=pool_share(liquidity, total_pool_liquidity),
        current_tick=tick,
        current_price=price,
        baseline_price=price,
    )


def initial_state(
    cfg: EngineConfig,
    reference_tick: int,
    reference_price: float,
    reference_tvl: float,
    total_pool_liquidity: float,
) -> PositionState:
    """Initializing → Active: first range and holdings."""
    if not reference_price > 0:
        raise DataValidationError(f"Reference price must be positive, got {reference_price!r}")
    if not total_pool_liquidity > 0:
        raise DataValidationError(
            f"Total pool liquidity must be positive, got {total_pool_liquidity!r}"
        )
    seed = PositionState(
        lifecycle="initializing",
        position_range=PositionRange(reference_tick, reference_tick, reference_price, reference_price),
        holdings=TokenHoldings(),
        initial_holdings=TokenHoldings(),
        liquidity=0.0,
        liquidity_band=(reference_price, reference_price),
        pool_share=0.0,
        current_tick=reference_tick,
        current_price=reference_price,
        baseline_price=reference_price,
        current_tvl=reference_tvl,
        current_capital=cfg.initial_investment,
    )
    state = _establish(seed, cfg, reference_tick, reference_price, total_pool_liquidity)
    return replace(state, initial_holdings=state.holdings)


def should_rebalance(state: PositionState, tick: int, cfg: EngineConfig) -> bool:
    """Out of range and at least ``rebalance_cooldown`` periods since the last rebalance."""
    if state.lifecycle != "active" or state.position_range.contains_tick(tick):
        return False
    upcoming_period = state.total_periods + 1
    return upcoming_period > state.last_rebalance_period + cfg.rebalance_cooldown


def _flush_epoch(state: PositionState, gas_cost: float, lifecycle: Lifecycle) -> PositionState:
    """Append the open epoch to the ledger and fold its fees into capital."""
    ledger = state.ledger
    if state.current_epoch_periods > 0:
        ledger = ledger + (
            PositionEpoch(
                duration_periods=state.current_epoch_periods,
                fees_earned_usd=state.current_epoch_fees,
                gas_cost_usd=gas_cost,
                starting_capital_usd=state.current_capital,
            ),
        )
    return replace(
        state,
        lifecycle=lifecycle,
        ledger=ledger,
        current_capital=state.current_capital + state.current_epoch_fees,
        total_gas_cost=state.total_gas_cost + gas_cost,
        current_epoch_periods=0,
        current_epoch_fees=0.0,
        settled_fees=state.current_epoch_fees if lifecycle == "closed" else 0.0,
    )


def apply_rebalance(
    state: PositionState, event: RebalanceEvent, cfg: EngineConfig
) -> Tuple[PositionState, None]:
    """Active → Rebalancing → Active around the new tick and price."""
    if state.lifecycle == "closed":
        raise PositionClosedError("Cannot rebalance a closed position")
    price = event.price if event.price is not None else state.current_price
    total_liquidity = event.total_pool_liquidity
    if total_liquidity is None:
        # Keep the pool share implied by the last known pool depth
        total_liquidity = state.liquidity / state.pool_share if state.pool_share > 0 else 1.0

    rebalancing = _flush_epoch(state, event.gas_cost, "rebalancing")
    rebalanced = _establish(rebalancing, cfg, event.tick, price, total_liquidity)
    return (
        replace(
            rebalanced,
            current_tvl=event.tvl,
            rebalance_count=state.rebalance_count + 1,
            last_rebalance_period=state.total_periods + 1,
        ),
        None,
    )


def apply_close(state: PositionState, event: CloseEvent, cfg: EngineConfig) -> Tuple[PositionState, None]:
    """Active → Closed: flush the final epoch without a new range."""
    if state.lifecycle == "closed":
        raise PositionClosedError("Position is already closed")
    return _flush_epoch(state, event.gas_cost, "closed"), None


def apply_period(
    state: PositionState, event: PeriodUpdate, cfg: EngineConfig
) -> Tuple[PositionState, PeriodResult]:
    """Advance the position by one period."""
    if state.lifecycle == "closed":
        raise PositionClosedError("Cannot update a closed position")
    point = event.point
    if state.last_timestamp is not None and point.timestamp <= state.last_timestamp:
        raise DataValidationError(
            f"Data points out of order: {point.timestamp} after {state.last_timestamp}"
        )

    in_range = state.position_range.contains_tick(point.tick) and not event.was_rebalanced
    price = point.token0_price

    fee = FeeAccrual()
    active_fraction = 0.0
    snapshot: Optional[FeeGrowthSnapshot] = None
    try:
        snapshot = FeeAccrualTracker.parse_snapshot(
            point.fee_growth_global0_x128, point.fee_growth_global1_x128, cfg.sentinel_threshold
        )
    except DegradedPeriodFeeComputation as exc:
        # Next valid snapshot restarts the delta chain
        if in_range:
            fee = FeeAccrual(degraded=True, reason=str(exc))

    if in_range and snapshot is not None:
        active_fraction = FeeAccrualTracker.active_fraction(
            state.position_range, price, point.low, point.high, cfg.decimals0, cfg.decimals1
        )
        fee = FeeAccrualTracker.accrue(
            state.last_fee_snapshot,
            snapshot,
            state.liquidity,
            active_fraction,
            cfg.decimals0,
            cfg.decimals1,
            price,
        )

    advanced = replace(
        state,
        current_tick=point.tick,
        current_price=price,
        current_tvl=point.tvl_usd or state.current_tvl,
        total_periods=state.total_periods + 1,
        current_epoch_periods=state.current_epoch_periods + 1,
        periods_in_range=state.periods_in_range + (1 if in_range else 0),
        cumulative_fees=state.cumulative_fees + fee.fee_usd,
        current_epoch_fees=state.current_epoch_fees + fee.fee_usd,
        degraded_periods=state.degraded_periods + (1 if fee.degraded else 0),
        last_fee_snapshot=snapshot,
        last_timestamp=point.timestamp,
        last_in_range=in_range,
        last_rebalanced=event.was_rebalanced,
        last_degraded=fee.degraded,
    )

    value = portfolio_value(advanced, cfg)
    peak = advanced.max_portfolio_value
    trough = advanced.min_portfolio_value_after_peak
    if value > (peak if peak is not None else cfg.initial_investment):
        peak, trough = value, value
    elif peak is not None and value < trough:
        trough = value
    advanced = replace(
        advanced,
        max_portfolio_value=peak,
        min_portfolio_value_after_peak=trough,
        max_drawdown_pct=max(advanced.max_drawdown_pct, PerformanceMetrics.max_drawdown(peak, trough)),
    )

    result = PeriodResult(
        timestamp=point.timestamp,
        tick=point.tick,
        price=price,
        in_range=in_range,
        was_rebalanced=event.was_rebalanced,
        active_fraction=active_fraction,
        fee=fee,
        portfolio_value=value,
    )
    return advanced, result


def transition(state: PositionState, event: Event, cfg: EngineConfig):
    """Dispatch ``event`` to its reducer."""
    if isinstance(event, PeriodUpdate):
        return apply_period(state, event, cfg)
    if isinstance(event, RebalanceEvent):
        return apply_rebalance(state, event, cfg)
    if isinstance(event, CloseEvent):
        return apply_close(state, event, cfg)
    raise TypeError(f"Unknown event {type(event).__name__}")


# ── Status Snapshot ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class UnifiedStatusSnapshot:
    """Protocol-neutral status row consumed by console and TSV export."""

    timestamp: Optional[int]
    asset_composition: str
    asset_amounts: str
    total_portfolio_value: float
    pnl: float
    return_pct: float
    apr: float
    net_gain_vs_hold: float
    capital_used_in_trading: float
    total_capital_locked: float
    lp_fees_earned: float
    trading_fees_paid: float
    gas_fees_paid: float
    max_drawdown: float
    max_gain: float
    impermanent_loss: float
    asset_exposure: float
    rebalancing_actions: int
    notes: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Position ─────────────────────────────────────────────────────────────


class Position:
    """
    Stateful wrapper around the reducers for one simulated position.

    Not thread-safe; one writer per instance. Independent instances share
    nothing and can run in parallel workers.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        state: PositionState,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = cfg
        self._state = state
        self.log = logger or logging.getLogger(__name__)
        self.last_result: Optional[PeriodResult] = None

    @classmethod
    def create(
        cls,
        initial_investment: float,
        position_width_spec: Union[str, float],
        reference_tick: int,
        reference_tvl: float,
        reference_price: float,
        total_pool_liquidity: float,
        granularity: str = "daily",
        tick_spacing: int = 2000,
        decimals0: int = 6,
        decimals1: int = 8,
        use_compounding_apr: bool = False,
        rebalance_cooldown: int = DEFAULT_REBALANCE_COOLDOWN,
        gas_cost_usd: float = DEFAULT_GAS_COST_USD,
        token0_symbol: str = "USDC",
        token1_symbol: str = "TOKEN",
        sentinel_threshold: int = FEE_GROWTH_SENTINEL_THRESHOLD,
        logger: Optional[logging.Logger] = None,
    ) -> "Position":
        """Validate the configuration and establish the first range."""
        cfg = EngineConfig(
            initial_investment=initial_investment,
            width_spec=position_width_spec,
            granularity=granularity,
            tick_spacing=tick_spacing,
            decimals0=decimals0,
            decimals1=decimals1,
            use_compounding_apr=use_compounding_apr,
            rebalance_cooldown=rebalance_cooldown,
            gas_cost_usd=gas_cost_usd,
            sentinel_threshold=sentinel_threshold,
            token0_symbol=token0_symbol,
            token1_symbol=token1_symbol,
        )
        state = initial_state(cfg, reference_tick, reference_price, reference_tvl, total_pool_liquidity)
        position = cls(cfg, state, logger)
        position.log.info(
            "Position opened: $%.2f %s range ticks [%d, %d] prices [%.4f, %.4f]",
            initial_investment,
            position_width_spec,
            state.position_range.tick_lower,
            state.position_range.tick_upper,
            state.position_range.price_lower,
            state.position_range.price_upper,
        )
        return position

    @classmethod
    def from_first_point(cls, point: MarketDataPoint, **kwargs) -> "Position":
        """Create a position seeded from the first data point of a series."""
        return cls.create(
            reference_tick=point.tick,
            reference_tvl=point.tvl_usd,
            reference_price=point.token0_price,
            total_pool_liquidity=point.liquidity,
            **kwargs,
        )

    # ── Transitions ──────────────────────────────────────────────────

    def should_rebalance(self, tick: int) -> bool:
        return should_rebalance(self._state, tick, self.config)

    def update(self, point: MarketDataPoint, was_rebalanced: bool = False) -> float:
        """Apply one period; returns the fee earned (USD)."""
        self._state, result = apply_period(self._state, PeriodUpdate(point, was_rebalanced), self.config)
        self.last_result = result
        if result.degraded:
            self.log.warning(
                "Period %d (ts=%d): fee data degraded, fee set to 0 (%s)",
                self._state.total_periods,
                point.timestamp,
                result.fee.reason,
            )
        self.log.debug(
            "Period %d: tick=%d price=%.4f in_range=%s active=%.1f%% fee=$%.6f value=$%.2f",
            self._state.total_periods,
            point.tick,
            point.token0_price,
            result.in_range,
            result.active_fraction,
            result.fee_usd,
            result.portfolio_value,
        )
        return result.fee_usd

    def rebalance(
        self,
        current_tick: int,
        current_tvl: float = 0.0,
        gas_cost: Optional[float] = None,
        is_closing: bool = False,
        current_price: Optional[float] = None,
        total_pool_liquidity: Optional[float] = None,
    ) -> None:
        """
        Re-centre the range, or close when ``is_closing`` is set.

        ``gas_cost`` defaults to the configured per-rebalance cost (0 on close).
        """
        if is_closing:
            self.close(gas_cost=gas_cost or 0.0)
            return
        gas = self.config.gas_cost_usd if gas_cost is None else gas_cost
        previous = self._state.position_range
        self._state, _ = apply_rebalance(
            self._state,
            RebalanceEvent(current_tick, current_tvl, gas, current_price, total_pool_liquidity),
            self.config,
        )
        new = self._state.position_range
        self.log.info(
            "Rebalance #%d at tick %d: [%d, %d] → [%d, %d], capital $%.2f, gas $%.2f",
            self._state.rebalance_count,
            current_tick,
            previous.tick_lower,
            previous.tick_upper,
            new.tick_lower,
            new.tick_upper,
            self._state.current_capital,
            gas,
        )

    def close(self, gas_cost: float = 0.0) -> None:
        self._state, _ = apply_close(self._state, CloseEvent(gas_cost), self.config)
        self.log.info(
            "Position closed after %d periods: fees $%.2f, gas $%.2f, %d epochs",
            self._state.total_periods,
            self._state.cumulative_fees,
            self._state.total_gas_cost,
            len(self._state.ledger),
        )

    def step(self, point: MarketDataPoint, enable_rebalancing: bool = True) -> PeriodResult:
        """Rebalance if due, then update with the period's data."""
        rebalanced = enable_rebalancing and self.should_rebalance(point.tick)
        if rebalanced:
            self.rebalance(
                point.tick,
                point.tvl_usd,
                current_price=point.token0_price,
                total_pool_liquidity=point.liquidity or None,
            )
        self.update(point, was_rebalanced=rebalanced)
        return self.last_result

    # ── Accessors ────────────────────────────────────────────────────

    @property
    def state(self) -> PositionState:
        return self._state

    @property
    def lifecycle(self) -> Lifecycle:
        return self._state.lifecycle

    @property
    def is_closed(self) -> bool:
        return self._state.lifecycle == "closed"

    @property
    def position_range(self) -> PositionRange:
        return self._state.position_range

    @property
    def holdings(self) -> TokenHoldings:
        return self._state.holdings

    @property
    def liquidity(self) -> float:
        return self._state.liquidity

    @property
    def pool_share(self) -> float:
        return self._state.pool_share

    @property
    def current_price(self) -> float:
        return self._state.current_price

    @property
    def current_capital(self) -> float:
        return self._state.current_capital

    @property
    def cumulative_fees(self) -> float:
        return self._state.cumulative_fees

    @property
    def total_gas_cost(self) -> float:
        return self._state.total_gas_cost

    @property
    def rebalance_count(self) -> int:
        return self._state.rebalance_count

    @property
    def periods_in_range(self) -> int:
        return self._state.periods_in_range

    @property
    def total_periods(self) -> int:
        return self._state.total_periods

    @property
    def current_epoch_periods(self) -> int:
        return self._state.current_epoch_periods

    @property
    def current_epoch_fees(self) -> float:
        return self._state.current_epoch_fees

    @property
    def degraded_periods(self) -> int:
        return self._state.degraded_periods

    @property
    def max_portfolio_value(self) -> Optional[float]:
        return self._state.max_portfolio_value

    @property
    def min_portfolio_value_after_peak(self) -> Optional[float]:
        return self._state.min_portfolio_value_after_peak

    @property
    def ledger(self) -> Tuple[PositionEpoch, ...]:
        return self._state.ledger

    # ── Metrics ──────────────────────────────────────────────────────

    @property
    def running_apr(self) -> float:
        s = self._state
        return PerformanceMetrics.running_apr(
            s.cumulative_fees,
            s.total_gas_cost,
            self.config.initial_investment,
            s.total_periods,
            self.config.periods_per_year,
        )

    @property
    def gross_apr(self) -> float:
        s = self._state
        return PerformanceMetrics.gross_apr(
            s.cumulative_fees, self.config.initial_investment, s.total_periods, self.config.periods_per_year
        )

    @property
    def weighted_apr(self) -> float:
        """Weighted APR over the closed epochs only."""
        return PerformanceMetrics.weighted_apr(self._state.ledger, self.config.periods_per_year)

    def weighted_apr_with_open_epoch(self) -> float:
        """Weighted APR with the still-open epoch as a provisional entry."""
        s = self._state
        epochs = s.ledger
        if s.current_epoch_periods > 0:
            epochs = epochs + (
                PositionEpoch(s.current_epoch_periods, s.current_epoch_fees, 0.0, s.current_capital),
            )
        return PerformanceMetrics.weighted_apr(epochs, self.config.periods_per_year)

    @property
    def impermanent_loss(self) -> float:
        return PerformanceMetrics.impermanent_loss(self._state.baseline_price, self._state.current_price)

    @property
    def time_in_range(self) -> float:
        return PerformanceMetrics.time_in_range(self._state.periods_in_range, self._state.total_periods)

    @property
    def max_drawdown(self) -> float:
        return self._state.max_drawdown_pct

    @property
    def max_gain(self) -> float:
        return PerformanceMetrics.max_gain(self._state.max_portfolio_value, self.config.initial_investment)

    @property
    def portfolio_value(self) -> float:
        return portfolio_value(self._state, self.config)

    @property
    def hold_value(self) -> float:
        """Value of the construction-time holdings at the current price."""
        return self._state.initial_holdings.value_usd(self._state.current_price)

    def current_status(self, is_last_period: bool = False) -> UnifiedStatusSnapshot:
        """Status row for the most recent period."""
        s = self._state
        cfg = self.config
        price = s.current_price
        low, high = s.liquidity_band
        held = LiquidityScaleCalculator.amounts_for_liquidity(
            s.liquidity, price, low, high, cfg.decimals0, cfg.decimals1
        )
        total_value = self.portfolio_value
        pnl = total_value - cfg.initial_investment - s.total_gas_cost
        apr = self.weighted_apr_with_open_epoch() if cfg.use_compounding_apr else self.running_apr

        notes = []
        if s.total_periods == 1:
            notes.append("Start")
        if s.last_rebalanced:
            notes.append("Rebalanced")
        elif s.total_periods and not s.last_in_range:
            notes.append("Out of range")
        if s.last_degraded:
            notes.append("Degraded fee data")
        if is_last_period or s.lifecycle == "closed":
            notes.append("End")

        return UnifiedStatusSnapshot(
            timestamp=s.last_timestamp,
            asset_composition=f"{cfg.token1_symbol},{cfg.token0_symbol}",
            asset_amounts=f"{held.amount0:.8f},{held.amount1:.6f}",
            total_portfolio_value=total_value,
            pnl=pnl,
            return_pct=pnl / cfg.initial_investment * 100,
            apr=apr,
            net_gain_vs_hold=total_value - self.hold_value,
            capital_used_in_trading=s.current_capital,
            total_capital_locked=lp_value(s, price, cfg),
            lp_fees_earned=s.cumulative_fees,
            trading_fees_paid=0.0,
            gas_fees_paid=s.total_gas_cost,
            max_drawdown=s.max_drawdown_pct,
            max_gain=self.max_gain,
            impermanent_loss=self.impermanent_loss,
            asset_exposure=held.exposure_pct(price),
            rebalancing_actions=s.rebalance_count,
            notes="; ".join(notes),
        )
