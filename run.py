#!/usr/bin/env python3
"""
LP Backtest -- Concentrated-Liquidity Position Backtester
=========================================================

Replays historical Uniswap V3 style pool data through a simulated LP
position and reports fees, APR, impermanent loss and drawdown.

Usage:
  python run.py backtest --preset <name> --start <YYYY-MM-DD> --end <YYYY-MM-DD>
  python run.py backtest --pool <0x…> --protocol aerodrome --tick-spacing 2000 --start … --end …
  python run.py backtest --data <series.json|csv> --tick-spacing 2000
  python run.py presets                                       List pool presets
  python run.py info                                          System overview

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  The Graph gateway     : https://thegraph.com/docs/en/querying/querying-the-graph/
"""

import argparse
import logging
import sys
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lp_backtest.central_config import (  # noqa: E402
    DEFAULT_GAS_COST_USD,
    DEFAULT_INVESTMENT_USD,
    DEFAULT_REBALANCE_COOLDOWN,
    PERIODS_PER_YEAR,
    POOL_PRESETS,
    PROJECT_VERSION,
    config,
)
from lp_backtest.commands import cmd_backtest, cmd_info, cmd_presets  # noqa: E402
from lp_backtest.errors import LPBacktestError  # noqa: E402


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-backtest",
        description=f"LP Backtest v{PROJECT_VERSION} — Concentrated-Liquidity Position Backtester",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py backtest --preset aerodrome-cbbtc-usdc --start 2025-06-01 --end 2025-06-30
  python run.py backtest --preset aerodrome-cbbtc-usdc --start 2025-06-01 --end 2025-06-07 --granularity hourly
  python run.py backtest --preset uniswap-usdc-weth --width full-range --start 2025-01-01 --end 2025-06-30
  python run.py backtest --data series.json --tick-spacing 2000 --width 10% --export
  python run.py presets
  python run.py info

Subgraph access needs an API key from https://thegraph.com/studio/ in SUBGRAPH_API_KEY.
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"LP Backtest v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Debug logging (per-period detail)"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    bt = sub.add_parser("backtest", help="Backtest an LP position over historical data")
    source = bt.add_argument_group("data source")
    source.add_argument(
        "--preset",
        type=str,
        default=None,
        help=f"Pool preset: {', '.join(POOL_PRESETS)}",
    )
    source.add_argument("--pool", type=str, default=None, help="Pool contract address (0x…)")
    source.add_argument(
        "--protocol",
        type=str,
        default="aerodrome",
        choices=list(config.api.SUBGRAPH_IDS),
        help="Subgraph to query (default: aerodrome)",
    )
    source.add_argument("--data", type=str, default=None, help="Local series file (.json, .csv, .tsv)")
    source.add_argument("--start", type=str, default=None, help="Start date YYYY-MM-DD (UTC)")
    source.add_argument("--end", type=str, default=None, help="End date YYYY-MM-DD (UTC)")
    source.add_argument(
        "--granularity",
        type=str,
        default="daily",
        choices=list(PERIODS_PER_YEAR),
        help="Period size (default: daily)",
    )

    strategy = bt.add_argument_group("strategy")
    strategy.add_argument(
        "--width", type=str, default="10%", help="Range width: full-range or a percentage like 10%% (default: 10%%)"
    )
    strategy.add_argument(
        "--investment", type=float, default=DEFAULT_INVESTMENT_USD, help="Initial capital in USD (default: 1000)"
    )
    strategy.add_argument("--tick-spacing", type=int, default=None, help="Pool tick spacing (preset default)")
    strategy.add_argument("--decimals0", type=int, default=None, help="token0 (USD quote) decimals")
    strategy.add_argument("--decimals1", type=int, default=None, help="token1 (priced asset) decimals")
    strategy.add_argument(
        "--cooldown",
        type=int,
        default=DEFAULT_REBALANCE_COOLDOWN,
        help="Periods between rebalances (default: 1)",
    )
    strategy.add_argument(
        "--gas", type=float, default=DEFAULT_GAS_COST_USD, help="Gas cost per rebalance in USD (default: 5)"
    )
    strategy.add_argument("--no-rebalance", action="store_true", help="Hold the initial range")
    strategy.add_argument(
        "--compounding", action="store_true", help="Report weighted (compounded) APR per period"
    )

    output = bt.add_argument_group("output")
    output.add_argument("--export", action="store_true", help="Write a TSV report to exports/<protocol>/")
    output.add_argument("--quiet", action="store_true", help="Skip the per-period table")

    sub.add_parser("presets", help="List pool presets")
    sub.add_parser("info", help="System & architecture info")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0
    if args.command == "presets":
        cmd_presets()
        return 0

    if args.command == "backtest":
        try:
            ok = cmd_backtest(
                preset=args.preset,
                pool=args.pool,
                protocol=args.protocol,
                data=args.data,
                start=args.start,
                end=args.end,
                granularity=args.granularity,
                width=args.width,
                investment=args.investment,
                tick_spacing=args.tick_spacing,
                decimals0=args.decimals0,
                decimals1=args.decimals1,
                cooldown=args.cooldown,
                gas=args.gas,
                rebalance=not args.no_rebalance,
                compounding=args.compounding,
                export=args.export,
                quiet=args.quiet,
            )
        except (LPBacktestError, KeyError, RuntimeError, OSError) as exc:
            print(f"❌ Backtest failed: {exc}")
            return 1
        return 0 if ok else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
