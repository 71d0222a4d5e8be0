"""
Jupiter Aggregator Integration

Provides API wrapper for the Jupiter swap aggregator:
- Best route quotes for a raw input amount
- Swap transaction construction for a quoted route

Uses the api.jup.ag endpoints (quote-api.jup.ag/v6 is deprecated).
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
import requests

from skimmer.core.errors import ExecutionFailed

logger = logging.getLogger(__name__)


JUPITER_API_BASE = "https://api.jup.ag"

# Error codes Jupiter returns when no route exists for a pair/amount
NO_ROUTE_ERRORS = (
    "COULD_NOT_FIND_ANY_ROUTE",
    "NO_ROUTES_FOUND",
    "TOKEN_NOT_TRADABLE",
    "ROUTE_PLAN_DOES_NOT_CONSUME_ALL_THE_AMOUNT",
)


@dataclass(frozen=True)
class Quote:
    """
    A quoted exchange route.

    Amounts are raw base units. `price_impact` is a fraction (0.01 = 1%).
    `route_handle` is the raw quote response, handed back to Jupiter when
    building the swap transaction.
    """
    input_unit: str
    output_unit: str
    input_amount: int
    expected_output_amount: int
    price_impact: float
    slippage_bps: int
    route_handle: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class JupiterIntegration:
    """
    Jupiter Aggregator integration for token swaps.

    Blocking HTTP via requests; async callers wrap calls in
    asyncio.to_thread.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0, api_base: str = JUPITER_API_BASE):
        """
        Initialize Jupiter integration.

        Args:
            api_key: Jupiter API key (falls back to JUPITER_API_KEY env var)
            timeout: Per-request timeout in seconds
            api_base: API base URL
        """
        self.api_base = api_base
        self.timeout = timeout
        self.api_key = api_key or os.getenv("JUPITER_API_KEY")
        self.session = requests.Session()

        if self.api_key:
            self.session.headers.update({"x-api-key": self.api_key})
            logger.info("Initialized Jupiter integration with API key")
        else:
            logger.warning(
                "Jupiter API key not provided. Using public endpoint. "
                "Get a free API key at https://portal.jup.ag"
            )

    def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50
    ) -> Optional[Quote]:
        """
        Get the best swap route quote.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Input amount in raw base units
            slippage_bps: Slippage tolerance in basis points

        Returns:
            Quote, or None when no route is available or the request failed
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": int(amount),
            "slippageBps": slippage_bps,
        }

        try:
            response = self.session.get(
                f"{self.api_base}/swap/v1/quote",
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Jupiter quote request failed: {e}")
            return None

        if response.status_code >= 400:
            body = response.text or ""
            if any(code in body for code in NO_ROUTE_ERRORS):
                logger.info(f"No route {input_mint} -> {output_mint} for {amount}")
            else:
                logger.error(f"Jupiter quote returned {response.status_code}: {body[:200]}")
            return None

        try:
            data = response.json()
            out_amount = int(data.get("outAmount", 0))
            route_plan = data.get("routePlan") or []
            price_impact = float(data.get("priceImpactPct") or 0)
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to parse Jupiter quote: {e}")
            return None

        if out_amount <= 0 or not route_plan:
            logger.info(f"Empty route set {input_mint} -> {output_mint}")
            return None

        quote = Quote(
            input_unit=input_mint,
            output_unit=output_mint,
            input_amount=int(data.get("inAmount", amount)),
            expected_output_amount=out_amount,
            price_impact=abs(price_impact),
            slippage_bps=slippage_bps,
            route_handle=data,
        )
        logger.debug(
            f"Quote: {quote.input_amount} -> {quote.expected_output_amount} "
            f"(impact: {quote.price_impact:.4%}, hops: {len(route_plan)})"
        )
        return quote

    def build_transaction(self, quote: Quote, user_public_key: str) -> str:
        """
        Request a swap transaction for a quoted route.

        Args:
            quote: Quote returned by get_quote
            user_public_key: Base58 public key that will sign

        Returns:
            Base64-encoded unsigned versioned transaction

        Raises:
            ExecutionFailed: If the transaction could not be built
        """
        swap_request = {
            "quoteResponse": quote.route_handle,
            "userPublicKey": str(user_public_key),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }

        try:
            response = self.session.post(
                f"{self.api_base}/swap/v1/swap",
                json=swap_request,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise ExecutionFailed(f"Failed to build swap transaction: {e}") from e
        except ValueError as e:
            raise ExecutionFailed(f"Failed to parse swap response: {e}") from e

        swap_transaction = data.get("swapTransaction")
        if not swap_transaction:
            raise ExecutionFailed("No swap transaction returned from Jupiter")

        return swap_transaction

    def close(self):
        self.session.close()
