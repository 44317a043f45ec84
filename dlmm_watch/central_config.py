"""
Project Configuration — API endpoints, version, constants
==========================================================

Contains Jupiter, GeckoTerminal and Meteora DLMM API configuration,
RSI settings and project metadata.

Sources:
  Jupiter Price API v2 : https://station.jup.ag/docs/apis/price-api-v2
  GeckoTerminal API    : https://api.geckoterminal.com/docs/index.html
  Meteora DLMM API     : https://dlmm-api.meteora.ag/swagger-ui/
"""

import os
import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType

from dotenv import load_dotenv

# Local .env overrides (never required)
load_dotenv()

# Version — single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("dlmm-watch")
except PackageNotFoundError:
    # Dev / CI: package not installed — read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "DLMM Watch"

# Wrapped SOL mint, the quote side of most DLMM pairs
SOL_MINT = "So11111111111111111111111111111111111111112"


def _env_int(name: str, default: int) -> int:
    """Integer environment override; falls back to default on bad input."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"⚠️ Ignoring invalid {name}={raw!r} (expected an integer)")
        return default


@dataclass(frozen=True)
class JupiterAPI:
    """Jupiter Price API v2 configuration."""

    BASE_URL: str = "https://api.jup.ag"
    PRICE_ENDPOINT: str = "/price/v2"

    TIMEOUT_SECONDS: int = field(
        default_factory=lambda: _env_int("DLMM_WATCH_TIMEOUT", 15)
    )

    def get_price_url(self, *mints: str) -> str:
        """URL for one or more token prices (comma-separated ids)."""
        return f"{self.BASE_URL}{self.PRICE_ENDPOINT}?ids={','.join(mints)}"


@dataclass(frozen=True)
class GeckoTerminalAPI:
    """GeckoTerminal public API configuration."""

    BASE_URL: str = "https://api.geckoterminal.com/api/v2"

    NETWORK: str = field(
        default_factory=lambda: os.environ.get("DLMM_WATCH_NETWORK", "solana")
    )

    TIMEOUT_SECONDS: int = field(
        default_factory=lambda: _env_int("DLMM_WATCH_TIMEOUT", 15)
    )

    # Free tier: 30 calls/minute
    RATE_LIMIT_PER_MINUTE: int = 30

    # Valid OHLCV timeframes and their allowed aggregates
    OHLCV_AGGREGATES = MappingProxyType(
        {
            "day": (1,),
            "hour": (1, 4, 12),
            "minute": (1, 5, 15),
        }
    )

    def get_token_url(self, mint: str, network: str = None) -> str:
        return f"{self.BASE_URL}/networks/{network or self.NETWORK}/tokens/{mint}"

    def get_token_pools_url(self, mint: str, network: str = None) -> str:
        return f"{self.get_token_url(mint, network)}/pools?page=1"

    def get_ohlcv_url(
        self,
        pool: str,
        timeframe: str = "minute",
        aggregate: int = 5,
        network: str = None,
    ) -> str:
        return (
            f"{self.BASE_URL}/networks/{network or self.NETWORK}/pools/{pool}"
            f"/ohlcv/{timeframe}?aggregate={aggregate}"
        )


@dataclass(frozen=True)
class MeteoraAPI:
    """Meteora DLMM REST API configuration."""

    BASE_URL: str = "https://dlmm-api.meteora.ag"

    TIMEOUT_SECONDS: int = field(
        default_factory=lambda: _env_int("DLMM_WATCH_TIMEOUT", 15)
    )

    def get_deposits_url(self, position: str) -> str:
        return f"{self.BASE_URL}/position/{position}/deposits"

    def get_pair_url(self, pool: str) -> str:
        return f"{self.BASE_URL}/pair/{pool}"


@dataclass(frozen=True)
class RSISettings:
    """RSI window and candle source."""

    PERIOD: int = 14
    TIMEFRAME: str = "minute"
    AGGREGATE: int = field(
        default_factory=lambda: _env_int("DLMM_WATCH_OHLCV_AGGREGATE", 5)
    )

    @property
    def label(self) -> str:
        """Short label, e.g. '5min'."""
        unit = {"minute": "min", "hour": "h", "day": "d"}.get(
            self.TIMEFRAME, self.TIMEFRAME
        )
        return f"{self.AGGREGATE}{unit}"


# Unified configuration
class WatchConfig:
    """Unified configuration for all data sources."""

    jupiter = JupiterAPI()
    gecko = GeckoTerminalAPI()
    meteora = MeteoraAPI()
    rsi = RSISettings()


# Global instance
config = WatchConfig()
