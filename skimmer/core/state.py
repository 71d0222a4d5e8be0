"""Shared mutable state for one agent instance."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from skimmer.treasury.ledger import ProfitLedger


@dataclass
class ReserveState:
    """Reserve balance observed on the latest replenishment tick."""
    current_balance: float
    threshold: float
    top_up_amount: float
    observed_at: datetime = field(default_factory=datetime.now)

    @property
    def below_threshold(self) -> bool:
        return self.current_balance < self.threshold

    def to_dict(self) -> dict:
        return {
            "current_balance": self.current_balance,
            "threshold": self.threshold,
            "top_up_amount": self.top_up_amount,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass
class AgentState:
    """
    Counters and flags shared by every component of one agent.

    A single instance is created per agent and passed by reference. All
    mutation happens on the agent's work-queue worker, so components do not
    lock around it.
    """
    ledger: ProfitLedger
    running: bool = False
    started_at: Optional[datetime] = None
    rotation_index: int = 0
    reserve: Optional[ReserveState] = None
    last_reference_rate: Optional[float] = None

    def next_catalog_index(self, catalog_size: int) -> int:
        """
        Return the catalog position for this tick and advance the rotation.

        Args:
            catalog_size: Number of units in the rotation catalog

        Returns:
            Index into the catalog, wrapped modulo catalog_size
        """
        if catalog_size <= 0:
            raise ValueError("catalog_size must be positive")
        index = self.rotation_index % catalog_size
        self.rotation_index += 1
        return index

    def uptime_hours(self) -> float:
        if not self.started_at:
            return 0.0
        return (datetime.now() - self.started_at).total_seconds() / 3600
