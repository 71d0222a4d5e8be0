"""
Trade Executor for the Skimmer agent

Executes one swap on Solana for a quoted route:
- Swap transaction construction via the quote service
- Signing with the agent wallet
- Submission and confirmation polling with a bounded timeout
- Realized output and fee read back from the confirmed transaction

No retries happen here. A failed attempt returns a FAILED TradeResult and
the caller decides whether to try again on its next tick.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts

from integrations.solana.jupiter import JupiterIntegration, Quote
from integrations.solana.tokens import SOL
from skimmer.core.errors import ExecutionFailed

logger = logging.getLogger(__name__)

CONFIRMED_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


class TradeStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TradeResult:
    """
    Result of one execution attempt. Produced exactly once per attempt.

    `realized_output_amount` is in raw base units of the output token.
    `fee_paid` is in SOL, or None when it could not be read back.
    """
    status: TradeStatus
    input_unit: str
    output_unit: str
    tx_id: Optional[str] = None
    realized_output_amount: int = 0
    fee_paid: Optional[float] = None
    error: Optional[str] = None
    execution_time_ms: int = 0
    confirmation_time_ms: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.status is TradeStatus.SUCCESS


class TradeExecutor:
    """
    Builds, signs, submits and confirms swap transactions.

    Every network round-trip is bounded by `request_timeout`; the whole
    confirmation wait is bounded by `confirmation_timeout`.
    """

    def __init__(
        self,
        rpc_client: AsyncClient,
        wallet_manager,
        quote_client: JupiterIntegration,
        confirmation_timeout: float = 60,
        request_timeout: float = 10,
        poll_interval: float = 2.0,
    ):
        """
        Initialize trade executor.

        Args:
            rpc_client: RPC client used for submission and status polling
            wallet_manager: Wallet used to sign
            quote_client: Quote service that builds swap transactions
            confirmation_timeout: Seconds to wait for confirmation (default 60)
            request_timeout: Seconds allowed per network call (default 10)
            poll_interval: Seconds between status polls (default 2)
        """
        self.rpc_client = rpc_client
        self.wallet_manager = wallet_manager
        self.quote_client = quote_client
        self.confirmation_timeout = confirmation_timeout
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval

        logger.info(
            f"TradeExecutor initialized: "
            f"timeout={confirmation_timeout}s, "
            f"request_timeout={request_timeout}s"
        )

    async def execute(self, quote: Quote) -> TradeResult:
        """
        Execute a swap for a quote.

        Args:
            quote: Quote to execute (consumed; a stale quote simply fails)

        Returns:
            TradeResult with SUCCESS only when the network confirmed the swap
        """
        start_time = time.time()
        signature: Optional[Signature] = None

        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(
                    self.quote_client.build_transaction,
                    quote,
                    self.wallet_manager.get_public_key(),
                ),
                timeout=self.request_timeout,
            )

            unsigned_tx = self._decode_transaction(payload)
            signed_tx = self.wallet_manager.sign_transaction(unsigned_tx)

            signature = await self._submit_transaction(signed_tx)

            confirmation_start = time.time()
            confirmed = await self._wait_for_confirmation(signature)
            confirmation_time_ms = int((time.time() - confirmation_start) * 1000)

            if not confirmed:
                raise ExecutionFailed("Transaction confirmation timeout")

            realized_output, fee_paid = await self._read_settlement(signature, quote)
            execution_time_ms = int((time.time() - start_time) * 1000)

            logger.info(
                f"Trade confirmed: {signature} "
                f"({quote.input_amount} {quote.input_unit[:6]} -> "
                f"{realized_output} {quote.output_unit[:6]}, "
                f"time={execution_time_ms}ms)"
            )

            return TradeResult(
                status=TradeStatus.SUCCESS,
                input_unit=quote.input_unit,
                output_unit=quote.output_unit,
                tx_id=str(signature),
                realized_output_amount=realized_output,
                fee_paid=fee_paid,
                execution_time_ms=execution_time_ms,
                confirmation_time_ms=confirmation_time_ms,
            )

        except asyncio.TimeoutError:
            error = "Timed out waiting for the network"
        except ExecutionFailed as e:
            error = str(e)
        except Exception as e:
            logger.error(f"Unexpected error executing trade: {e}", exc_info=True)
            error = str(e) or type(e).__name__

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Trade failed: {error} "
            f"({quote.input_unit[:6]} -> {quote.output_unit[:6]}, tx={signature})"
        )

        return TradeResult(
            status=TradeStatus.FAILED,
            input_unit=quote.input_unit,
            output_unit=quote.output_unit,
            tx_id=str(signature) if signature else None,
            error=error,
            execution_time_ms=execution_time_ms,
        )

    @staticmethod
    def _decode_transaction(payload: str) -> VersionedTransaction:
        try:
            return VersionedTransaction.from_bytes(base64.b64decode(payload))
        except Exception as e:
            raise ExecutionFailed(f"Could not decode swap transaction: {e}") from e

    async def _submit_transaction(self, signed_tx: VersionedTransaction) -> Signature:
        """
        Submit signed transaction via RPC client.

        Returns:
            Transaction signature
        """
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
        try:
            response = await asyncio.wait_for(
                self.rpc_client.send_raw_transaction(bytes(signed_tx), opts=opts),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            raise ExecutionFailed("Transaction submission timed out")
        except Exception as e:
            raise ExecutionFailed(f"Failed to submit transaction: {e}") from e

        logger.debug(f"Transaction submitted: {response.value}")
        return response.value

    async def _wait_for_confirmation(self, signature: Signature) -> bool:
        """
        Poll the signature status until confirmed, failed or timed out.

        Returns:
            True if confirmed, False on timeout

        Raises:
            ExecutionFailed: If the transaction landed with an error
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout

        while loop.time() < deadline:
            try:
                response = await asyncio.wait_for(
                    self.rpc_client.get_signature_statuses([signature]),
                    timeout=self.request_timeout,
                )
            except Exception as e:
                # Status polling is read-only; keep waiting until the deadline
                logger.debug(f"Error checking confirmation: {e}")
                response = None

            status = response.value[0] if response and response.value else None
            if status is not None:
                if status.err:
                    raise ExecutionFailed(f"Transaction failed: {status.err}")
                if status.confirmation_status in CONFIRMED_STATUSES:
                    logger.debug(f"Transaction confirmed: {signature}")
                    return True

            await asyncio.sleep(self.poll_interval)

        logger.warning(f"Transaction confirmation timeout: {signature}")
        return False

    async def _read_settlement(self, signature: Signature, quote: Quote):
        """
        Read realized output and fee from the confirmed transaction.

        Never raises: the swap is already confirmed, so anything unexpected
        in the metadata falls back to the quoted output and an unknown fee.

        Returns:
            (realized_output_amount, fee_paid_sol)
        """
        try:
            response = await asyncio.wait_for(
                self.rpc_client.get_transaction(signature, max_supported_transaction_version=0),
                timeout=self.request_timeout,
            )
            meta = response.value.transaction.meta if response and response.value else None
        except Exception as e:
            logger.debug(f"Could not fetch transaction {signature}: {e}")
            meta = None

        if meta is None:
            return quote.expected_output_amount, None

        try:
            return self._parse_settlement(meta, quote)
        except Exception as e:
            logger.warning(
                f"Unreadable settlement for {signature} ({type(e).__name__}: {e}), using quoted amount"
            )
            return quote.expected_output_amount, None

    def _parse_settlement(self, meta, quote: Quote):
        fee_paid = meta.fee / 1_000_000_000
        owner = self.wallet_manager.get_public_key()

        if quote.output_unit == SOL.mint:
            # Fee payer is account 0; add the fee back to get the swap proceeds
            realized = meta.post_balances[0] - meta.pre_balances[0] + meta.fee
        else:
            realized = (
                self._token_total(meta.post_token_balances, quote.output_unit, owner) -
                self._token_total(meta.pre_token_balances, quote.output_unit, owner)
            )

        if realized <= 0:
            logger.warning("Could not derive realized output, using quoted amount")
            realized = quote.expected_output_amount

        return int(realized), fee_paid

    @staticmethod
    def _token_total(balances, mint: str, owner: str) -> int:
        total = 0
        for balance in balances or []:
            if str(balance.mint) == mint and str(balance.owner) == owner:
                total += int(balance.ui_token_amount.amount)
        return total
