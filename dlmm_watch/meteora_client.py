"""
DLMM Watch — Meteora DLMM API Client
=====================================

Read-only lookups against the public Meteora DLMM REST API:
  • initial deposit of a position  (/position/{address}/deposits)
  • pair fee parameters            (/pair/{address})

Docs: https://dlmm-api.meteora.ag/swagger-ui/
"""

import httpx
from typing import Any, Dict, Optional

from dlmm_watch.central_config import config
from position_math import InitialDeposit


class MeteoraClient:
    """Meteora DLMM API client."""

    def __init__(self):
        self.timeout = config.meteora.TIMEOUT_SECONDS

    async def _get_json(self, url: str) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def get_initial_deposit(self, position: str) -> Optional[InitialDeposit]:
        """First recorded deposit of a position, or None."""
        try:
            deposits = await self._get_json(config.meteora.get_deposits_url(position))
            if isinstance(deposits, list) and deposits:
                return InitialDeposit.from_api(deposits[0])
            return None

        except httpx.TimeoutException:
            print("⏰ Timeout fetching deposit information")
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            print("❌ Deposit lookup failed. Check the position address.")
        return None

    async def get_fee_info(self, pool: str) -> Optional[Dict[str, float]]:
        """Base and max fee percentages of a pair."""
        try:
            data = await self._get_json(config.meteora.get_pair_url(pool))
            return {
                "base_fee_percentage": float(data["base_fee_percentage"]),
                "max_fee_percentage": float(data.get("max_fee_percentage") or 0),
                "name": data.get("name", ""),
            }
        except httpx.TimeoutException:
            print("⏰ Timeout fetching pair information")
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError):
            print("❌ Pair lookup failed. Check the pool address.")
        return None

    async def get_current_dynamic_fee(
        self, pool: str, fee_info: Optional[Dict[str, float]] = None
    ) -> Optional[float]:
        """
        Fee (%) currently charged by the pair.

        Reported as the base fee: that is the figure the Meteora UI shows.
        Pass ``fee_info`` from get_fee_info() to skip a second pair lookup.
        """
        info = fee_info if fee_info is not None else await self.get_fee_info(pool)
        if info is None:
            return None
        return info["base_fee_percentage"]
