#!/usr/bin/env python3
"""
DLMM Watch — Market Data Client (Jupiter + GeckoTerminal)
==========================================================

Prices from Jupiter Price API v2; token names, pool discovery and OHLCV
candles from GeckoTerminal.

  Jupiter       : https://station.jup.ag/docs/apis/price-api-v2
  GeckoTerminal : https://api.geckoterminal.com/docs/index.html

Every lookup is best-effort: on a network or decoding failure it prints a
short message and returns a neutral value (0.0 price, shortened mint name,
None pool, no-data RSI) so the caller's report keeps going.
"""

import asyncio
import time
import httpx
from typing import Any, Dict, List, Optional

from dlmm_watch.central_config import config
from rsi_engine import RSIResult, compute_rsi


# ── Rate Limiter (CWE-770 mitigation) ────────────────────────────────────


class _RateLimiter:
    """Token-bucket rate limiter to respect API limits.

    GeckoTerminal's free tier allows 30 calls/minute; going over returns
    429 for everyone sharing the IP.
    """

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        now = time.monotonic()
        # Purge timestamps outside the current window
        self._timestamps = [t for t in self._timestamps if now - t < self._period]
        if len(self._timestamps) >= self._max:
            # Wait until the oldest request expires
            sleep_time = self._period - (now - self._timestamps[0]) + 0.1
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
        self._timestamps.append(time.monotonic())


# Shared rate limiters (module-level singletons)
_gecko_limiter = _RateLimiter(
    max_requests=config.gecko.RATE_LIMIT_PER_MINUTE - 2, period_seconds=60
)  # safety margin under 30/min
_jupiter_limiter = _RateLimiter(max_requests=500, period_seconds=60)


def shorten_mint(mint: str) -> str:
    """'EPjF...Dt1v' style label for a mint address."""
    if len(mint) <= 8:
        return mint
    return f"{mint[:4]}...{mint[-4:]}"


class MarketDataClient:
    """Jupiter prices + GeckoTerminal tokens, pools and candles."""

    def __init__(self, network: str = None):
        self.network = network or config.gecko.NETWORK
        self.timeout = config.gecko.TIMEOUT_SECONDS

    async def _get_json(
        self, url: str, limiter: _RateLimiter, timeout: float = None
    ) -> Any:
        """GET a URL and decode JSON; raises httpx.HTTPError on failure."""
        await limiter.acquire()
        async with httpx.AsyncClient(
            timeout=timeout or self.timeout, verify=True
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    # ── Prices (Jupiter) ──────────────────────────────────────────────

    async def get_token_prices(self, *mints: str) -> Dict[str, float]:
        """USD price per mint; 0.0 for mints Jupiter doesn't price."""
        prices = {mint: 0.0 for mint in mints}
        if not mints:
            return prices

        url = config.jupiter.get_price_url(*mints)
        try:
            data = await self._get_json(
                url, _jupiter_limiter, config.jupiter.TIMEOUT_SECONDS
            )
            entries = (data or {}).get("data") or {}
            for mint in mints:
                entry = entries.get(mint) or {}
                if entry.get("price") is not None:
                    prices[mint] = float(entry["price"])

        except httpx.TimeoutException:
            print("⏰ Timeout fetching token prices")
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            # CWE-209: sanitize error — do not expose internal exception details
            print("❌ Price fetch failed. Using $0 for unpriced tokens.")

        return prices

    async def get_token_price(self, mint: str) -> float:
        """USD price of one mint (0.0 if unavailable)."""
        prices = await self.get_token_prices(mint)
        return prices[mint]

    # ── Tokens & Pools (GeckoTerminal) ────────────────────────────────

    async def get_token_name(self, mint: str) -> str:
        """Token name from GeckoTerminal; shortened mint as fallback."""
        try:
            data = await self._get_json(
                config.gecko.get_token_url(mint, self.network), _gecko_limiter
            )
            name = ((data or {}).get("data") or {}).get("attributes", {}).get("name")
            if name:
                return name
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            print(f"⚠️ Token name lookup failed for {shorten_mint(mint)}")
        return shorten_mint(mint)

    async def get_most_liquid_pool(self, mint: str) -> Optional[str]:
        """Address of the token's pool with the highest USD reserve."""
        try:
            data = await self._get_json(
                config.gecko.get_token_pools_url(mint, self.network), _gecko_limiter
            )
            pools = (data or {}).get("data") or []
            if not pools:
                return None

            best = max(
                pools,
                key=lambda p: float(
                    (p.get("attributes") or {}).get("reserve_in_usd") or 0
                ),
            )
            return best["attributes"]["address"]

        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            print(f"❌ Pool lookup failed for {shorten_mint(mint)}")
            return None

    async def get_ohlcv(
        self, pool: str, timeframe: str = None, aggregate: int = None
    ) -> List[List[float]]:
        """Raw OHLCV rows for a pool, as returned (newest first)."""
        timeframe = timeframe or config.rsi.TIMEFRAME
        aggregate = aggregate or config.rsi.AGGREGATE
        url = config.gecko.get_ohlcv_url(pool, timeframe, aggregate, self.network)
        try:
            data = await self._get_json(url, _gecko_limiter)
            rows = (
                ((data or {}).get("data") or {})
                .get("attributes", {})
                .get("ohlcv_list")
            )
            return list(rows or [])

        except httpx.TimeoutException:
            print("⏰ Timeout fetching candles")
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            print(f"❌ Candle fetch failed for pool {shorten_mint(pool)}")
        return []

    # ── RSI ───────────────────────────────────────────────────────────

    async def calculate_token_rsi(
        self, mint: str, aggregate: int = None
    ) -> RSIResult:
        """
        RSI for a token, using candles from its most liquid pool.

        Returns the no-data sentinel (value 0, current time) when no pool
        or no candles are found.
        """
        pool = await self.get_most_liquid_pool(mint)
        if not pool:
            print(f"🔍 No liquid pool found for token {shorten_mint(mint)}")
            return RSIResult.no_data()

        rows = await self.get_ohlcv(pool, aggregate=aggregate)
        return compute_rsi(rows, period=config.rsi.PERIOD)
