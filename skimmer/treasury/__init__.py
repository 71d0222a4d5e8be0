"""Profit ledger and payout dispatch."""

from skimmer.treasury.ledger import ProfitLedger, LedgerSnapshot
from skimmer.treasury.payouts import (
    PayoutDispatcher,
    PayoutAttempt,
    PayoutStatus,
    DispatchOutcome,
    DispatchReport,
    allocate,
)

__all__ = [
    "ProfitLedger",
    "LedgerSnapshot",
    "PayoutDispatcher",
    "PayoutAttempt",
    "PayoutStatus",
    "DispatchOutcome",
    "DispatchReport",
    "allocate",
]
