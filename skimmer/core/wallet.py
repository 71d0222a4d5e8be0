"""Wallet management for Skimmer - balances, holdings and transaction signing."""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts
from spl.token.constants import TOKEN_PROGRAM_ID

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class Holding:
    """
    Balance of one SPL token owned by the wallet.

    `quantity` is in token units (already divided by 10**decimals).
    """
    unit_id: str
    quantity: float
    decimal_precision: int

    @property
    def raw_quantity(self) -> int:
        return int(round(self.quantity * (10 ** self.decimal_precision)))


class WalletManager:
    """
    Manages the agent's Solana wallet.

    Features:
    - Load keypair from base58 or JSON array private key
    - Reserve (SOL) balance
    - SPL token holdings
    - Signing of versioned swap transactions

    Balances are always read fresh; nothing is cached across ticks.
    """

    def __init__(
        self,
        private_key: str,
        rpc_url: str = "https://api.mainnet-beta.solana.com",
        client: Optional[AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize wallet manager.

        Args:
            private_key: Base58 or JSON-array encoded secret key
            rpc_url: RPC endpoint
            client: Optional pre-built AsyncClient (shared with the executor)
            timeout: RPC request timeout in seconds
        """
        self.keypair = self._load_keypair(private_key)
        self.public_key: Pubkey = self.keypair.pubkey()
        self.rpc_url = rpc_url
        self.client = client or AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)

        logger.info(f"Wallet initialized: {self.public_key}")
        logger.info(f"RPC: {rpc_url}")

    @staticmethod
    def _load_keypair(private_key: str) -> Keypair:
        """Load keypair from a base58 string or a JSON array of 64 bytes."""
        if not private_key or not private_key.strip():
            raise ValueError("No wallet private key provided")
        encoded = private_key.strip()
        try:
            if encoded.startswith("["):
                secret_bytes = bytes(json.loads(encoded))
            else:
                secret_bytes = base58.b58decode(encoded)
            return Keypair.from_bytes(secret_bytes)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid private key format: {e}") from e

    async def get_reserve_balance(self) -> float:
        """
        Get the wallet's SOL balance.

        Raises:
            Exception: RPC errors propagate so callers can tell a failed
                read apart from a genuinely empty wallet
        """
        response = await self.client.get_balance(self.public_key)
        return response.value / LAMPORTS_PER_SOL

    async def get_holdings(self) -> List[Holding]:
        """
        Get all non-zero SPL token balances, one Holding per mint.

        Raises:
            Exception: RPC errors propagate
        """
        response = await self.client.get_token_accounts_by_owner_json_parsed(
            self.public_key,
            TokenAccountOpts(program_id=TOKEN_PROGRAM_ID),
        )

        quantities: Dict[str, float] = {}
        decimals: Dict[str, int] = {}
        for keyed_account in response.value or []:
            parsed = keyed_account.account.data.parsed
            info = parsed.get("info", {}) if isinstance(parsed, dict) else {}
            mint = info.get("mint")
            token_amount = info.get("tokenAmount") or {}
            if not mint or not token_amount:
                continue

            precision = int(token_amount.get("decimals", 0))
            quantity = int(token_amount.get("amount", 0)) / (10 ** precision)
            if quantity <= 0:
                continue

            quantities[mint] = quantities.get(mint, 0.0) + quantity
            decimals[mint] = precision

        holdings = [
            Holding(unit_id=mint, quantity=qty, decimal_precision=decimals[mint])
            for mint, qty in quantities.items()
        ]
        logger.debug(f"Wallet holds {len(holdings)} token(s)")
        return holdings

    def sign_transaction(self, transaction: VersionedTransaction) -> VersionedTransaction:
        """
        Sign a versioned transaction with the wallet keypair.

        Args:
            transaction: Unsigned transaction (e.g. from Jupiter)

        Returns:
            New transaction carrying the wallet signature
        """
        return VersionedTransaction(transaction.message, [self.keypair])

    def get_public_key(self) -> str:
        """Return wallet's public key as string."""
        return str(self.public_key)

    async def close(self):
        """Close RPC client connection."""
        await self.client.close()

    def __str__(self) -> str:
        return f"WalletManager({self.public_key})"
