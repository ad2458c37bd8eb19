"""
Subgraph Client — Historical Pool Data via The Graph Gateway
============================================================

Async GraphQL client for Uniswap V3 style subgraphs (Uniswap V3, Aerodrome
Slipstream). Fetches pool metadata and poolDayDatas / poolHourDatas pages
and turns them into MarketDataPoint series for the backtest runner.

Docs:
  https://thegraph.com/docs/en/querying/querying-the-graph/
  https://docs.uniswap.org/api/subgraph/guides/examples

Auth: Bearer token from the SUBGRAPH_API_KEY environment variable.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from lp_backtest.central_config import config
from lp_backtest.errors import ConfigurationError
from position_engine import MarketDataPoint

log = logging.getLogger(__name__)


# ── Rate Limiter ──────────────────────────────────────────────────────────


class _RateLimiter:
    """Token-bucket rate limiter for the gateway's per-key query budget."""

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        now = time.monotonic()
        self._timestamps = [t for t in self._timestamps if now - t < self._period]
        if len(self._timestamps) >= self._max:
            sleep_time = self._period - (now - self._timestamps[0]) + 0.1
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
        self._timestamps.append(time.monotonic())


_subgraph_limiter = _RateLimiter(max_requests=60, period_seconds=60)


# ── Queries ──────────────────────────────────────────────────────────────

POOL_INFO_QUERY = """
  query PoolInfo($poolId: ID!) {
    pool(id: $poolId) {
      id
      totalValueLockedUSD
      liquidity
      tick
      token0 { symbol decimals }
      token1 { symbol decimals }
      token0Price
      token1Price
    }
  }
"""

_SERIES_FIELDS = """
      tick
      token0Price
      token1Price
      low
      high
      feeGrowthGlobal0X128
      feeGrowthGlobal1X128
      tvlUSD
      liquidity
      volumeUSD
      feesUSD
"""

POOL_DAY_DATA_QUERY = """
  query PoolDayData($poolId: String!, $start: Int!, $end: Int!, $first: Int!) {
    poolDayDatas(
      where: { pool: $poolId, date_gte: $start, date_lte: $end }
      orderBy: date
      orderDirection: asc
      first: $first
    ) {
      date
%s    }
  }
""" % _SERIES_FIELDS

POOL_HOUR_DATA_QUERY = """
  query PoolHourData($poolId: String!, $start: Int!, $end: Int!, $first: Int!) {
    poolHourDatas(
      where: { pool: $poolId, periodStartUnix_gte: $start, periodStartUnix_lte: $end }
      orderBy: periodStartUnix
      orderDirection: asc
      first: $first
    ) {
      periodStartUnix
%s    }
  }
""" % _SERIES_FIELDS

# granularity → (query, collection, timestamp field)
_SERIES_QUERIES = {
    "daily": (POOL_DAY_DATA_QUERY, "poolDayDatas", "date"),
    "hourly": (POOL_HOUR_DATA_QUERY, "poolHourDatas", "periodStartUnix"),
}


def to_unix(value: datetime) -> int:
    """UTC seconds for a (naive = UTC) datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class SubgraphClient:
    """The Graph gateway client for one protocol's subgraph."""

    def __init__(
        self,
        protocol: str = "aerodrome",
        api_key: Optional[str] = None,
        url: Optional[str] = None,
    ):
        self.protocol = protocol
        self.url = url or config.api.get_subgraph_url(protocol)
        self.api_key = api_key or config.api.get_api_key()
        self.timeout = config.api.TIMEOUT_SECONDS
        self.page_size = config.api.PAGE_SIZE

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError(
                f"Subgraph API key missing: set {config.api.API_KEY_ENV} in the environment"
            )
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one GraphQL query and return its ``data`` object.

        Raises:
            RuntimeError: HTTP failure or GraphQL ``errors`` in the response.
        """
        headers = self._headers()
        await _subgraph_limiter.acquire()
        async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
            resp = await client.post(self.url, json={"query": query, "variables": variables}, headers=headers)
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise RuntimeError(f"Subgraph HTTP error: {exc.response.status_code}") from exc
            result = resp.json()
        if result.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in result["errors"])
            raise RuntimeError(f"GraphQL error: {messages}")
        return result.get("data") or {}

    async def fetch_pool_info(self, pool_address: str) -> Dict[str, Any]:
        """Pool metadata: token symbols/decimals, liquidity, TVL, prices."""
        data = await self.execute(POOL_INFO_QUERY, {"poolId": pool_address.lower()})
        pool = data.get("pool")
        if not pool:
            raise RuntimeError(f"Pool not found: {pool_address}")
        return pool

    async def fetch_pool_rows(
        self,
        pool_address: str,
        start: datetime,
        end: datetime,
        granularity: str = "daily",
    ) -> List[Dict[str, Any]]:
        """
        Raw series rows in ascending time order, paging by timestamp cursor.
        """
        try:
            query, collection, ts_field = _SERIES_QUERIES[granularity]
        except KeyError:
            raise ConfigurationError(
                f"Unsupported granularity {granularity!r}. Available: {list(_SERIES_QUERIES)}"
            ) from None

        cursor = to_unix(start)
        end_ts = to_unix(end)
        rows: List[Dict[str, Any]] = []
        while cursor <= end_ts:
            data = await self.execute(
                query,
                {"poolId": pool_address.lower(), "start": cursor, "end": end_ts, "first": self.page_size},
            )
            batch = data.get(collection) or []
            rows.extend(batch)
            log.debug("Fetched %d %s rows (cursor=%d)", len(batch), collection, cursor)
            if len(batch) < self.page_size:
                break
            cursor = int(batch[-1][ts_field]) + 1
        log.info("Fetched %d %s rows for %s", len(rows), collection, pool_address)
        return rows

    async def fetch_pool_series(
        self,
        pool_address: str,
        start: datetime,
        end: datetime,
        granularity: str = "daily",
    ) -> List[MarketDataPoint]:
        """Series as MarketDataPoint objects, ready for run_backtest()."""
        rows = await self.fetch_pool_rows(pool_address, start, end, granularity)
        return [MarketDataPoint.from_dict(row) for row in rows]
