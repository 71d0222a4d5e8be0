"""Trading components: executor, evaluator, replenisher, work queue and agent loop."""

from skimmer.trading.transaction_executor import TradeExecutor, TradeResult, TradeStatus
from skimmer.trading.evaluator import OpportunityEvaluator, TickOutcome, TickReport
from skimmer.trading.replenisher import (
    ReserveReplenisher,
    ReplenishOutcome,
    ReplenishReport,
    rank_candidates,
    select_liquidation,
)
from skimmer.trading.trade_queue import TradeQueue, JobStatus
from skimmer.trading.loop import SkimmerAgent

__all__ = [
    "TradeExecutor",
    "TradeResult",
    "TradeStatus",
    "OpportunityEvaluator",
    "TickOutcome",
    "TickReport",
    "ReserveReplenisher",
    "ReplenishOutcome",
    "ReplenishReport",
    "rank_candidates",
    "select_liquidation",
    "TradeQueue",
    "JobStatus",
    "SkimmerAgent",
]
