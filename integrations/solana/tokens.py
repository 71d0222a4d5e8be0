"""
Token catalog for the Skimmer agent.

Holds metadata for the reserve unit and the default rotation catalog of
output units. Decimals are needed to convert Jupiter's raw amounts into
token units before valuing them.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class TokenInfo:
    """Metadata for a fungible token on Solana."""
    symbol: str
    mint: str
    decimals: int
    stable: bool = False
    coingecko_id: Optional[str] = None

    def to_raw(self, amount: float) -> int:
        """Convert token units to raw base units."""
        return int(round(amount * (10 ** self.decimals)))

    def from_raw(self, raw_amount: int) -> float:
        """Convert raw base units to token units."""
        return raw_amount / (10 ** self.decimals)


SOL = TokenInfo("SOL", "So11111111111111111111111111111111111111112", 9, coingecko_id="solana")
USDC = TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6, stable=True, coingecko_id="usd-coin")
USDT = TokenInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6, stable=True, coingecko_id="tether")

KNOWN_TOKENS: List[TokenInfo] = [
    SOL,
    USDC,
    USDT,
    TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5, coingecko_id="bonk"),
    TokenInfo("WIF", "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", 6, coingecko_id="dogwifcoin"),
    TokenInfo("JUP", "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", 6, coingecko_id="jupiter-exchange-solana"),
    TokenInfo("JTO", "jtojtomepa8beP8AuQc6eXt5FriJwfFMwQx2v2f9mCL", 9, coingecko_id="jito-governance-token"),
    TokenInfo("PYTH", "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3", 6, coingecko_id="pyth-network"),
    TokenInfo("RAY", "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R", 6, coingecko_id="raydium"),
    TokenInfo("MSOL", "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", 9, coingecko_id="msol"),
    TokenInfo("POPCAT", "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr", 9, coingecko_id="popcat"),
    TokenInfo("SAMO", "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU", 9, coingecko_id="samoyedcoin"),
]

_BY_SYMBOL: Dict[str, TokenInfo] = {t.symbol: t for t in KNOWN_TOKENS}
_BY_MINT: Dict[str, TokenInfo] = {t.mint: t for t in KNOWN_TOKENS}

# Rotation order for the opportunity evaluator
DEFAULT_CATALOG = ["USDC", "USDT", "BONK", "WIF", "JUP", "JTO", "PYTH", "RAY", "MSOL", "POPCAT", "SAMO"]
DEFAULT_STABLE_UNITS = ["USDC", "USDT"]


def resolve_token(symbol_or_mint: str) -> Optional[TokenInfo]:
    """
    Look up a known token by symbol (case-insensitive) or mint address.

    Args:
        symbol_or_mint: Token symbol such as "USDC" or a mint address

    Returns:
        TokenInfo if known, None otherwise
    """
    if not symbol_or_mint:
        return None
    key = symbol_or_mint.strip()
    return _BY_SYMBOL.get(key.upper()) or _BY_MINT.get(key)


def coingecko_id_for(mint: str) -> Optional[str]:
    """Return the CoinGecko id for a mint, if the catalog knows one."""
    token = _BY_MINT.get(mint)
    return token.coingecko_id if token else None
