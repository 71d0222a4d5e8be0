"""
Solana Protocol Integrations

- Jupiter: swap quotes and swap transaction construction
- Tokens: rotation catalog and token metadata
"""

from .jupiter import JupiterIntegration, Quote
from .tokens import TokenInfo, SOL, DEFAULT_CATALOG, resolve_token

__all__ = [
    "JupiterIntegration",
    "Quote",
    "TokenInfo",
    "SOL",
    "DEFAULT_CATALOG",
    "resolve_token",
]
