"""
Payout Dispatcher

Splits pending profit across fixed-percentage payout destinations after
deducting a fee buffer, pays each leg through the payment rail, and clears
the ledger once every leg is terminal.

Dispatches are appended to a JSON history file for later review.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from skimmer.core.config import PayoutDestination
from skimmer.core.errors import PayoutPartialFailure
from skimmer.treasury.ledger import ProfitLedger

logger = logging.getLogger(__name__)


class PayoutStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class DispatchOutcome(Enum):
    NOTHING_PENDING = "nothing_pending"
    SKIPPED = "skipped"
    COMPLETE = "complete"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass
class PayoutAttempt:
    """One payout leg. Terminal once created."""
    destination_id: str
    amount_requested: float
    status: PayoutStatus
    external_reference: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "destination_id": self.destination_id,
            "amount_requested": self.amount_requested,
            "status": self.status.value,
            "external_reference": self.external_reference,
            "reason": self.reason,
        }


@dataclass
class DispatchReport:
    """Result of one dispatch cycle."""
    outcome: DispatchOutcome
    pending_amount: float
    fee_buffer: float
    net_amount: float
    attempts: List[PayoutAttempt] = field(default_factory=list)
    ledger_cleared: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> int:
        return sum(1 for a in self.attempts if a.status is PayoutStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for a in self.attempts if a.status is PayoutStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for a in self.attempts if a.status is PayoutStatus.SKIPPED)

    def raise_for_status(self):
        """Raise PayoutPartialFailure if some legs failed and others did not."""
        if self.outcome is DispatchOutcome.PARTIAL_FAILURE:
            failed = [a.destination_id for a in self.attempts if a.status is PayoutStatus.FAILED]
            raise PayoutPartialFailure(
                f"Payout failed for {', '.join(failed)}",
                attempts=self.attempts,
            )

    def to_dict(self) -> dict:
        return {
            "date": self.timestamp.isoformat(),
            "outcome": self.outcome.value,
            "pending_amount": round(self.pending_amount, 6),
            "fee_buffer": self.fee_buffer,
            "net_amount": round(self.net_amount, 2),
            "ledger_cleared": self.ledger_cleared,
            "attempts": [a.to_dict() for a in self.attempts],
        }


def allocate(net_amount: float, destinations: Sequence[PayoutDestination]) -> Dict[str, float]:
    """
    Split a net amount across destinations by their shares.

    Every leg but the last is floored to whole cents; the last leg takes the
    remainder so the allocations always sum to `net_amount`.

    Args:
        net_amount: Amount to split, in US dollars
        destinations: Ordered destinations whose shares sum to 1.0

    Returns:
        destination_id -> allocated amount, in destination order
    """
    allocations: Dict[str, float] = {}
    if not destinations:
        return allocations

    remaining = net_amount
    for destination in destinations[:-1]:
        amount = math.floor(net_amount * destination.share * 100) / 100
        amount = max(0.0, min(amount, remaining))
        allocations[destination.destination_id] = amount
        remaining -= amount

    allocations[destinations[-1].destination_id] = max(0.0, remaining)
    return allocations


class PayoutDispatcher:
    """
    Distributes pending ledger profit through a payment rail.

    Clearing policy:
    - every leg succeeded, or some failed: ledger cleared (failed legs are
      not re-driven)
    - every leg failed: ledger kept so the next dispatch retries
    - pending at or below the fee buffer: every leg skipped; the ledger is
      cleared when `drop_sub_fee_remainder` is set, otherwise carried forward
    """

    def __init__(
        self,
        ledger: ProfitLedger,
        payment_rail,
        destinations: Sequence[PayoutDestination],
        fee_buffer: float = 1.0,
        drop_sub_fee_remainder: bool = True,
        history_path: Optional[str] = None,
    ):
        """
        Initialize payout dispatcher.

        Args:
            ledger: Ledger to read and clear
            payment_rail: Object with `async pay(address, amount_usd)` returning a receipt
            destinations: Ordered payout destinations, shares summing to 1.0
            fee_buffer: Fixed amount withheld from each dispatch for fees
            drop_sub_fee_remainder: Clear the ledger when pending does not exceed the buffer
            history_path: Optional JSON file that dispatches are appended to
        """
        if not destinations:
            raise ValueError("At least one payout destination is required")
        total_share = sum(d.share for d in destinations)
        if abs(total_share - 1.0) > 1e-6:
            raise ValueError(f"Destination shares must sum to 1.0, got {total_share}")

        self.ledger = ledger
        self.payment_rail = payment_rail
        self.destinations = list(destinations)
        self.fee_buffer = fee_buffer
        self.drop_sub_fee_remainder = drop_sub_fee_remainder
        self.history_path = Path(history_path) if history_path else None
        self.last_report: Optional[DispatchReport] = None

        logger.info(
            f"PayoutDispatcher initialized: {len(self.destinations)} destination(s), "
            f"fee buffer ${fee_buffer:.2f}"
        )

    async def dispatch(self) -> DispatchReport:
        """
        Run one dispatch cycle over the current pending amount.

        Never raises for payment rail failures; inspect the report outcome
        or call `raise_for_status()`.
        """
        pending = self.ledger.pending_distribution_amount
        net = pending - self.fee_buffer

        if pending <= 0:
            report = DispatchReport(DispatchOutcome.NOTHING_PENDING, pending, self.fee_buffer, 0.0)
            self.last_report = report
            return report

        if net <= 0:
            attempts = [
                PayoutAttempt(d.destination_id, 0.0, PayoutStatus.SKIPPED, reason="below fee buffer")
                for d in self.destinations
            ]
            report = DispatchReport(DispatchOutcome.SKIPPED, pending, self.fee_buffer, 0.0, attempts)
            if self.drop_sub_fee_remainder:
                self.ledger.clear()
                report.ledger_cleared = True
                logger.warning(
                    f"Pending ${pending:.2f} does not exceed fee buffer ${self.fee_buffer:.2f}, dropped"
                )
            else:
                logger.info(
                    f"Pending ${pending:.2f} does not exceed fee buffer ${self.fee_buffer:.2f}, carried forward"
                )
            return self._finish(report)

        allocations = allocate(net, self.destinations)
        attempts = []
        for destination in self.destinations:
            amount = allocations[destination.destination_id]
            if amount <= 0:
                attempts.append(PayoutAttempt(
                    destination.destination_id, amount, PayoutStatus.SKIPPED, reason="zero allocation"
                ))
                continue
            attempts.append(await self._pay(destination, amount))

        report = DispatchReport(DispatchOutcome.COMPLETE, pending, self.fee_buffer, net, attempts)
        if report.failed and report.succeeded:
            report.outcome = DispatchOutcome.PARTIAL_FAILURE
        elif report.failed:
            report.outcome = DispatchOutcome.FAILED

        if report.outcome is not DispatchOutcome.FAILED:
            self.ledger.clear()
            report.ledger_cleared = True

        logger.info(
            f"Dispatch {report.outcome.value}: pending=${pending:.2f} net=${net:.2f} "
            f"succeeded={report.succeeded} failed={report.failed}"
        )
        return self._finish(report)

    async def _pay(self, destination: PayoutDestination, amount: float) -> PayoutAttempt:
        try:
            receipt = await self.payment_rail.pay(destination.address, amount)
        except Exception as e:
            logger.error(f"Payment rail error for {destination.destination_id}: {e}", exc_info=True)
            return PayoutAttempt(destination.destination_id, amount, PayoutStatus.FAILED, reason=str(e))

        if receipt.success:
            return PayoutAttempt(
                destination.destination_id, amount, PayoutStatus.SUCCESS,
                external_reference=receipt.reference,
            )
        return PayoutAttempt(
            destination.destination_id, amount, PayoutStatus.FAILED, reason=receipt.reason
        )

    def _finish(self, report: DispatchReport) -> DispatchReport:
        self.last_report = report
        self._append_history(report)
        return report

    def _load_history(self) -> List[dict]:
        if self.history_path and self.history_path.exists():
            try:
                with open(self.history_path, 'r') as f:
                    data = json.load(f)
                return data.get("dispatches", []) if isinstance(data, dict) else []
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load payout history: {e}")
        return []

    def _append_history(self, report: DispatchReport):
        """Append a dispatch to the history file. Failures never touch the ledger."""
        if not self.history_path:
            return
        dispatches = self._load_history()
        dispatches.append(report.to_dict())
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_path, 'w') as f:
                json.dump({"dispatches": dispatches}, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save payout history: {e}")

    def get_history(self) -> List[dict]:
        return self._load_history()
