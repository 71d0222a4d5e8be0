"""
Price Oracle

Fetches USD reference prices for Solana tokens.
Uses Jupiter's price API first and falls back to CoinGecko for tokens the
catalog maps to a CoinGecko id.
"""

import asyncio
import logging
from typing import Dict, Iterable, Optional

import aiohttp

from integrations.solana.tokens import coingecko_id_for
from skimmer.core.errors import OracleUnavailable

logger = logging.getLogger(__name__)


JUPITER_PRICE_URL = "https://lite-api.jup.ag/price/v3"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


class PriceOracle:
    """USD price lookups with a bounded timeout per request."""

    def __init__(
        self,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        jupiter_url: str = JUPITER_PRICE_URL,
        coingecko_url: str = COINGECKO_PRICE_URL,
    ):
        """
        Initialize price oracle.

        Args:
            timeout: Per-request timeout in seconds
            session: Optional shared aiohttp session (owned by caller)
            jupiter_url: Jupiter price endpoint
            coingecko_url: CoinGecko simple price endpoint
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.jupiter_url = jupiter_url
        self.coingecko_url = coingecko_url
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get_json(self, url: str, params: dict) -> Optional[dict]:
        """GET a JSON document, returning None on any transport or status error."""
        try:
            session = await self._get_session()
            async with session.get(url, params=params, timeout=self.timeout) as response:
                if response.status != 200:
                    logger.error(f"Price API {url} returned status {response.status}")
                    return None
                return await response.json()
        except asyncio.TimeoutError:
            logger.error(f"Price API {url} request timed out")
            return None
        except aiohttp.ClientError as e:
            logger.error(f"Network error fetching prices from {url}: {e}")
            return None
        except ValueError as e:
            logger.error(f"Invalid JSON from {url}: {e}")
            return None

    async def _fetch_jupiter(self, mints: Iterable[str]) -> Dict[str, float]:
        ids = ",".join(mints)
        data = await self._get_json(self.jupiter_url, {"ids": ids})
        if not data:
            return {}

        # v3 returns {mint: {...}}; older versions nest under "data"
        entries = data.get("data", data) if isinstance(data, dict) else {}
        prices = {}
        for mint, entry in entries.items():
            if not isinstance(entry, dict):
                continue
            raw = entry.get("usdPrice", entry.get("price"))
            try:
                price = float(raw)
            except (TypeError, ValueError):
                continue
            if price > 0:
                prices[mint] = price
        return prices

    async def _fetch_coingecko(self, coingecko_id: str) -> Optional[float]:
        data = await self._get_json(self.coingecko_url, {"ids": coingecko_id, "vs_currencies": "usd"})
        if not data or coingecko_id not in data:
            return None
        try:
            price = float(data[coingecko_id].get("usd", 0))
        except (TypeError, ValueError, AttributeError):
            return None
        return price if price > 0 else None

    async def get_rate(self, unit: str) -> float:
        """
        Get the USD price of one unit of a token.

        Args:
            unit: Token mint address

        Returns:
            Price in USD, always > 0

        Raises:
            OracleUnavailable: If no source returned a usable price
        """
        prices = await self._fetch_jupiter([unit])
        if unit in prices:
            return prices[unit]

        coingecko_id = coingecko_id_for(unit)
        if coingecko_id:
            logger.warning(f"Jupiter price unavailable for {unit}, trying CoinGecko")
            price = await self._fetch_coingecko(coingecko_id)
            if price:
                return price

        raise OracleUnavailable(f"No price available for {unit}")

    async def get_rates(self, units: Iterable[str]) -> Dict[str, float]:
        """
        Get USD prices for several tokens in one request.

        Units without a price are omitted from the result.
        """
        units = list(dict.fromkeys(units))
        if not units:
            return {}
        return await self._fetch_jupiter(units)

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
