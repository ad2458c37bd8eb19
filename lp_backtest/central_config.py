"""
Project Configuration — Subgraph API, Engine Defaults, Pool Presets
===================================================================

Single home for project metadata, the Graph gateway configuration and the
constants the position engine falls back to when the caller does not
override them.

Sources:
  The Graph gateway : https://thegraph.com/docs/en/querying/querying-the-graph/
  Uniswap V3 ticks  : https://docs.uniswap.org/concepts/protocol/concentrated-liquidity
"""

import os
import re
from dataclasses import dataclass
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Optional

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("lp-backtest")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LP Backtest"


# ── Engine Defaults ──────────────────────────────────────────────────────

# Uniswap V3 TickMath.MIN_TICK / MAX_TICK
MIN_TICK = -887272
MAX_TICK = 887272

FULL_RANGE = "full-range"

# Periods per year by data granularity (immutable mapping)
PERIODS_PER_YEAR = MappingProxyType(
    {
        "daily": 365,
        "hourly": 8760,
    }
)

DEFAULT_GAS_COST_USD = 5.0        # Gas per rebalance, paid in native asset
DEFAULT_REBALANCE_COOLDOWN = 1    # Periods between rebalances
DEFAULT_INVESTMENT_USD = 1000.0

# Full-range liquidity is sized against a proxy band (Q96 math is undefined at 0 / ∞)
FULL_RANGE_PROXY_LOW = 0.01
FULL_RANGE_PROXY_HIGH = 100.0

# Uninitialized fee-growth heuristic: values above MAX_UINT256 − 10^39 are
# treated as sentinels. The threshold is empirical, not protocol-defined.
FEE_GROWTH_SENTINEL_THRESHOLD = (2 ** 256 - 1) - 10 ** 39


@dataclass(frozen=True)
class SubgraphAPI:
    """The Graph decentralized-network gateway configuration."""

    BASE_URL: str = "https://gateway.thegraph.com/api/subgraphs/id"

    # Max rows per GraphQL page (The Graph hard limit)
    PAGE_SIZE: int = 1000

    # Recommended timeout
    TIMEOUT_SECONDS: int = 30

    # Env var carrying the gateway API key (sent as a Bearer token)
    API_KEY_ENV: str = "SUBGRAPH_API_KEY"

    # Subgraph deployment ids per protocol (immutable mapping)
    SUBGRAPH_IDS = MappingProxyType(
        {
            "aerodrome": "GENunSHWLBXm59mBSgPzQ8metBEp9YDfdqwFr91Av1UM",
            "uniswap_v3": "5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV",
        }
    )

    @classmethod
    def get_subgraph_url(cls, protocol: str) -> str:
        """URL for the protocol's subgraph on the gateway."""
        try:
            subgraph_id = cls.SUBGRAPH_IDS[protocol]
        except KeyError:
            raise KeyError(
                f"Unknown protocol {protocol!r}. Available: {list(cls.SUBGRAPH_IDS)}"
            ) from None
        return f"{cls.BASE_URL}/{subgraph_id}"

    @classmethod
    def get_api_key(cls) -> Optional[str]:
        """API key from the environment, or None when unset/blank."""
        key = os.environ.get(cls.API_KEY_ENV, "").strip()
        return key or None


# ── Pool Presets ─────────────────────────────────────────────────────────
# token0 is the USD quote asset, token1 the priced asset (subgraph token0Price
# = USD per token1).


@dataclass(frozen=True)
class PoolPreset:
    name: str
    protocol: str
    pool_address: str
    token0_symbol: str
    token1_symbol: str
    decimals0: int
    decimals1: int
    tick_spacing: int
    description: str = ""


POOL_PRESETS = MappingProxyType(
    {
        "aerodrome-cbbtc-usdc": PoolPreset(
            name="aerodrome-cbbtc-usdc",
            protocol="aerodrome",
            pool_address="0x3e66e55e97ce60096f74b7C475e8249f2D31a9fb",
            token0_symbol="USDC",
            token1_symbol="cbBTC",
            decimals0=6,
            decimals1=8,
            tick_spacing=2000,
            description="Aerodrome Slipstream cbBTC/USDC on Base",
        ),
        "uniswap-usdc-weth": PoolPreset(
            name="uniswap-usdc-weth",
            protocol="uniswap_v3",
            pool_address="0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640",
            token0_symbol="USDC",
            token1_symbol="WETH",
            decimals0=6,
            decimals1=18,
            tick_spacing=10,
            description="Uniswap V3 USDC/WETH 0.05% on Ethereum",
        ),
    }
)


def get_preset(name: str) -> PoolPreset:
    """Look up a pool preset by name (case-insensitive)."""
    preset = POOL_PRESETS.get(name.strip().lower())
    if preset is None:
        raise KeyError(f"Unknown preset {name!r}. Available: {list(POOL_PRESETS)}")
    return preset


# Unified configuration
class BacktestConfig:
    """Unified configuration for data access."""

    api = SubgraphAPI()


# Global instance
config = BacktestConfig()
