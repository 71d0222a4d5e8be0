"""
Blockonomics Payment Rail

Moves settled profit to external Bitcoin payout addresses by creating
merchant orders. Amounts are sent in US cents.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


BLOCKONOMICS_API_BASE = "https://www.blockonomics.co/api"


@dataclass(frozen=True)
class PaymentReceipt:
    """Outcome of one payment rail call."""
    success: bool
    address: str
    amount_usd: float
    reference: Optional[str] = None
    reason: Optional[str] = None


class BlockonomicsClient:
    """Async client for the Blockonomics merchant order API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        api_base: str = BLOCKONOMICS_API_BASE,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the payment rail client.

        Args:
            api_key: Blockonomics API key (falls back to BLOCKONOMICS_API_KEY)
            timeout: Per-request timeout in seconds
            api_base: API base URL
            session: Optional shared aiohttp session (owned by caller)
        """
        self.api_key = api_key or os.getenv("BLOCKONOMICS_API_KEY")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.api_base = api_base
        self._session = session
        self._owns_session = session is None

        if not self.api_key:
            logger.warning("BLOCKONOMICS_API_KEY not set - payouts will fail")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def pay(self, address: str, amount_usd: float) -> PaymentReceipt:
        """
        Create a merchant order paying `amount_usd` to `address`.

        Never raises for transport or API errors; a failed call yields a
        receipt with success=False and the reason.

        Args:
            address: Bitcoin payout address
            amount_usd: Amount in US dollars

        Returns:
            PaymentReceipt
        """
        payload = {
            "addr": address,
            "value": int(round(amount_usd * 100)),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            session = await self._get_session()
            async with session.post(
                f"{self.api_base}/merchant_order",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Blockonomics returned status {response.status}: {body[:200]}")
                    return PaymentReceipt(
                        success=False,
                        address=address,
                        amount_usd=amount_usd,
                        reason=f"HTTP {response.status}",
                    )
                data = await response.json()

        except asyncio.TimeoutError:
            logger.error(f"Blockonomics request timed out paying {address}")
            return PaymentReceipt(False, address, amount_usd, reason="timeout")
        except aiohttp.ClientError as e:
            logger.error(f"Network error paying {address}: {e}")
            return PaymentReceipt(False, address, amount_usd, reason=str(e))

        order_id = data.get("order_id") if isinstance(data, dict) else None
        if not order_id:
            return PaymentReceipt(False, address, amount_usd, reason="no order_id in response")

        logger.info(f"Payment order {order_id}: ${amount_usd:.2f} -> {address}")
        return PaymentReceipt(True, address, amount_usd, reference=str(order_id))

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
