"""
Bitcoin Payment Integrations

- Blockonomics: merchant orders used as the payout rail
"""

from .blockonomics import BlockonomicsClient, PaymentReceipt

__all__ = [
    "BlockonomicsClient",
    "PaymentReceipt",
]
