"""Profit ledger - realized profit and the share pending distribution."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of the ledger for status reporting."""
    total_realized_profit: float
    pending_distribution_amount: float
    payout_threshold: float
    last_credit_at: Optional[datetime]
    last_cleared_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "total_realized_profit": round(self.total_realized_profit, 6),
            "pending_distribution_amount": round(self.pending_distribution_amount, 6),
            "payout_threshold": self.payout_threshold,
            "last_credit_at": self.last_credit_at.isoformat() if self.last_credit_at else None,
            "last_cleared_at": self.last_cleared_at.isoformat() if self.last_cleared_at else None,
        }


class ProfitLedger:
    """
    Tracks realized profit in the reference currency.

    `total_realized_profit` is a running total for reporting and never
    decreases. `pending_distribution_amount` holds the configured share of
    each credit that is earmarked for the next payout; the remaining share is
    retained and not tracked as a liability.

    Only the evaluation loop credits and only the payout dispatcher clears.
    """

    def __init__(self, distribution_share: float = 1.0, payout_threshold: float = 50.0):
        """
        Initialize an empty ledger.

        Args:
            distribution_share: Fraction of each credit earmarked for payout (0-1)
            payout_threshold: Pending amount at which a dispatch is due
        """
        if not 0.0 <= distribution_share <= 1.0:
            raise ValueError(f"distribution_share must be within [0, 1], got {distribution_share}")
        if payout_threshold < 0:
            raise ValueError(f"payout_threshold must not be negative, got {payout_threshold}")

        self.distribution_share = distribution_share
        self.payout_threshold = payout_threshold
        self.total_realized_profit = 0.0
        self.pending_distribution_amount = 0.0
        self.last_credit_at: Optional[datetime] = None
        self.last_cleared_at: Optional[datetime] = None

    def credit(self, amount: float) -> float:
        """
        Credit realized net profit from a successful trade.

        Args:
            amount: Net profit in the reference currency, must be > 0

        Returns:
            The portion added to the pending distribution amount

        Raises:
            ValueError: If amount is not positive
        """
        if not amount > 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        earmarked = amount * self.distribution_share
        self.total_realized_profit += amount
        self.pending_distribution_amount += earmarked
        self.last_credit_at = datetime.now()

        logger.info(
            f"Ledger credited ${amount:.4f} (pending +${earmarked:.4f}) | "
            f"total=${self.total_realized_profit:.4f} pending=${self.pending_distribution_amount:.4f}"
        )
        return earmarked

    def should_dispatch(self) -> bool:
        """True iff the pending amount has reached the payout threshold."""
        return self.pending_distribution_amount >= self.payout_threshold

    def clear(self) -> float:
        """
        Reset the pending distribution amount to zero.

        Returns:
            The amount that was pending before clearing
        """
        cleared = self.pending_distribution_amount
        self.pending_distribution_amount = 0.0
        self.last_cleared_at = datetime.now()
        logger.info(f"Ledger cleared ${cleared:.4f} pending distribution")
        return cleared

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            total_realized_profit=self.total_realized_profit,
            pending_distribution_amount=self.pending_distribution_amount,
            payout_threshold=self.payout_threshold,
            last_credit_at=self.last_credit_at,
            last_cleared_at=self.last_cleared_at,
        )
