"""
LP Backtest — Command Implementations
=====================================

All CLI command handlers live here, keeping run.py as a thin argparse
dispatcher. Each public function corresponds to a subcommand
(info, presets, backtest).
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from lp_backtest.central_config import (
    FULL_RANGE,
    POOL_PRESETS,
    PROJECT_NAME,
    PROJECT_VERSION,
    config,
    get_preset,
)
from lp_backtest.errors import ConfigurationError, DataValidationError
from lp_backtest.report_export import ReportExporter, console_header, format_console_row
from lp_backtest.subgraph_client import SubgraphClient
from backtest_runner import filter_series, load_series, run_backtest


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ConfigurationError(f"Invalid date {value!r}: expected YYYY-MM-DD") from None


def _fetch_series(protocol: str, pool: str, start: datetime, end: datetime, granularity: str):
    client = SubgraphClient(protocol=protocol)
    return asyncio.run(client.fetch_pool_series(pool, start, end, granularity))


def print_summary(result, width: str) -> None:
    """Final APR, fee-data and range statistics."""
    s = result.summary
    print()
    print("=== APR Analysis ===")
    print(f"  Overall APR (net)     : {s.net_apr:.2f}%")
    print(f"  Overall APR (gross)   : {s.gross_apr:.2f}%")
    print(f"  Weighted Position APR : {s.weighted_apr:.2f}%")
    print(f"  Gas Impact            : {s.gas_impact_apr:.2f}% APR reduction")
    print()
    print("=== Fee Calculation Summary ===")
    print(f"  Periods with real fee growth : {s.real_fee_periods}")
    print(f"  Degraded periods (fee = 0)   : {s.degraded_periods}")
    print(f"  Cumulative fees              : ${s.cumulative_fees:,.2f}")
    print(f"  Gas paid                     : ${s.total_gas_cost:,.2f}")
    print()
    print("=== Portfolio ===")
    print(f"  Final value      : ${s.final_value:,.2f}")
    print(f"  Max drawdown     : {s.max_drawdown:.3f}%")
    print(f"  Max gain         : {s.max_gain:.3f}%")
    print(f"  Impermanent loss : {s.impermanent_loss:.3f}%")
    if width.strip().lower() != FULL_RANGE:
        print()
        print("=== Range Management ===")
        print(f"  Time in range      : {s.time_in_range:.1f}%")
        print(f"  Periods in range   : {s.periods_in_range} / {s.total_periods}")
        print(f"  Total rebalances   : {s.rebalance_count}")
        print(f"  Avg periods between rebalances: {s.avg_periods_between_rebalances:.1f}")
        print(f"  Current range width: {s.range_width_ticks} ticks")


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system and architecture information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Model      : Uniswap V3 style concentrated liquidity (single position)")
    print("📡 Data Source: The Graph gateway (poolDayDatas / poolHourDatas) or local JSON/CSV")
    print(f"🔑 API key    : {config.api.API_KEY_ENV} environment variable")
    print()
    print("📁 Files:")
    print("   run.py                 — CLI entry point")
    print("   lp_math.py             — tick/price, range, token allocation, liquidity")
    print("   fee_accrual.py         — fee-growth delta accounting")
    print("   position_engine.py     — lifecycle state machine + status snapshots")
    print("   performance_metrics.py — APR, IL, time in range, drawdown")
    print("   backtest_runner.py     — series loading and replay")
    print("   lp_backtest/           — config, subgraph client, export, commands")
    print()
    print("🔗 Quick Start:")
    print("   python run.py presets")
    print("   python run.py backtest --preset aerodrome-cbbtc-usdc --start 2025-06-01 --end 2025-06-30")
    print("   python run.py backtest --data series.json --tick-spacing 2000 --width 10%")


def cmd_presets() -> None:
    """List the built-in pool presets."""
    print(f"\n🏊 Pool presets ({len(POOL_PRESETS)})")
    print("=" * 55)
    for name, p in POOL_PRESETS.items():
        print(f"   {name:<22} {p.token1_symbol}/{p.token0_symbol:<6} spacing={p.tick_spacing:<5} {p.protocol}")
        print(f"   {'':<22} {p.pool_address}  {p.description}")


def cmd_backtest(
    preset: str | None = None,
    pool: str | None = None,
    protocol: str = "aerodrome",
    data: str | None = None,
    start: str | None = None,
    end: str | None = None,
    granularity: str = "daily",
    width: str = "10%",
    investment: float = 1000.0,
    tick_spacing: int | None = None,
    decimals0: int | None = None,
    decimals1: int | None = None,
    cooldown: int = 1,
    gas: float = 5.0,
    rebalance: bool = True,
    compounding: bool = False,
    export: bool = False,
    quiet: bool = False,
    export_dir: str = "exports",
) -> bool:
    """Run one backtest and print the per-period table and summary."""
    symbols = ("USDC", "TOKEN")
    if preset:
        p = get_preset(preset)
        pool = pool or p.pool_address
        protocol = p.protocol
        tick_spacing = tick_spacing or p.tick_spacing
        decimals0 = p.decimals0 if decimals0 is None else decimals0
        decimals1 = p.decimals1 if decimals1 is None else decimals1
        symbols = (p.token0_symbol, p.token1_symbol)

    if tick_spacing is None:
        raise ConfigurationError("Tick spacing is required (use --tick-spacing or --preset)")
    decimals0 = 6 if decimals0 is None else decimals0
    decimals1 = 8 if decimals1 is None else decimals1

    start_dt = _parse_date(start)
    end_dt = _parse_date(end)
    if data:
        points = filter_series(load_series(data), start_dt, end_dt)
    else:
        if not pool:
            raise ConfigurationError("Provide --data, --pool or --preset")
        if not (start_dt and end_dt):
            raise ConfigurationError("--start and --end are required when fetching from the subgraph")
        print(f"🔍 Fetching {granularity} data for {pool[:12]}… ({protocol})")
        points = _fetch_series(protocol, pool, start_dt, end_dt, granularity)

    if not points:
        raise DataValidationError("No data points in the selected window")

    result = run_backtest(
        points,
        initial_investment=investment,
        width_spec=width,
        granularity=granularity,
        tick_spacing=tick_spacing,
        decimals0=decimals0,
        decimals1=decimals1,
        use_compounding_apr=compounding,
        rebalance_cooldown=cooldown,
        gas_cost_usd=gas,
        enable_rebalancing=rebalance,
        token0_symbol=symbols[0],
        token1_symbol=symbols[1],
    )

    print(f"\n📈 {PROJECT_NAME} — {symbols[1]}/{symbols[0]} {width} ${investment:,.0f} ({len(points)} {granularity} periods)")
    if not quiet:
        print(console_header())
        for status in result.snapshots:
            print(format_console_row(status, granularity))
    print_summary(result, width)

    if export:
        exporter = ReportExporter(protocol, export_dir)
        params = [preset or pool or "file", width, granularity, start, end]
        filename = exporter.generate_filename(*[p for p in params if p])
        path = exporter.export_tsv(filename, result.snapshots, granularity)
        print(f"\n💾 Exported: {path}")
    return True
