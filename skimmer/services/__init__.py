"""
Business Services

External data services consumed by the agent core:
- Price oracle
"""

from .price_service import PriceOracle

__all__ = [
    'PriceOracle',
]
