"""Agent lifecycle for Skimmer - schedules evaluation and replenishment ticks."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from skimmer.core.config import AgentSettings
from skimmer.core.state import AgentState
from skimmer.trading.evaluator import OpportunityEvaluator, TickReport
from skimmer.trading.replenisher import ReplenishReport, ReserveReplenisher
from skimmer.trading.trade_queue import TradeQueue
from skimmer.treasury.payouts import DispatchReport, PayoutDispatcher
from skimmer.logging_config import get_activity_logger

logger = logging.getLogger(__name__)
activity_logger = get_activity_logger()

EVALUATE_JOB = "evaluate"
REPLENISH_JOB = "replenish"
WITHDRAW_JOB = "withdraw"


class SkimmerAgent:
    """
    Owns one agent's state and drives its components.

    Two periodic scheduler tasks (fast evaluation, slow replenishment) only
    submit jobs; a single TradeQueue worker runs them, so the executor,
    ledger and reserve state are never touched concurrently.
    """

    def __init__(
        self,
        settings: AgentSettings,
        state: AgentState,
        evaluator: OpportunityEvaluator,
        replenisher: ReserveReplenisher,
        dispatcher: PayoutDispatcher,
        trade_queue: Optional[TradeQueue] = None,
    ):
        self.settings = settings
        self.state = state
        self.evaluator = evaluator
        self.replenisher = replenisher
        self.dispatcher = dispatcher
        self.trade_queue = trade_queue or TradeQueue()

        self._evaluation_task: Optional[asyncio.Task] = None
        self._replenish_task: Optional[asyncio.Task] = None
        # start/stop never interleave; a start waits for a stop still draining
        self._lifecycle_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.state.running

    async def start(self) -> dict:
        """
        Start both schedules. A no-op when already running.

        Raises:
            ConfigurationInvalid: If the settings are invalid; the agent
                stays stopped
        """
        async with self._lifecycle_lock:
            if self.state.running:
                logger.info("Agent already running")
                return self.status()

            self.settings.validate()

            logger.info("Skimmer agent starting...")
            await self.trade_queue.start_processing()

            self.state.running = True
            self.state.started_at = datetime.now()

            self._evaluation_task = asyncio.create_task(
                self._schedule(EVALUATE_JOB, self.evaluator.tick, self.settings.evaluation_interval, immediate=False)
            )
            self._replenish_task = asyncio.create_task(
                self._schedule(REPLENISH_JOB, self.replenisher.tick, self.settings.replenish_interval, immediate=True)
            )

        logger.info(
            f"Agent started: evaluation every {self.settings.evaluation_interval}s, "
            f"replenishment every {self.settings.replenish_interval}s"
        )
        return self.status()

    async def stop(self) -> dict:
        """
        Halt both schedules. A no-op when already stopped.

        A trade already in flight runs to its terminal result; this waits
        for it up to the queue's drain timeout. Queued ticks are dropped.
        """
        async with self._lifecycle_lock:
            if not self.state.running:
                logger.info("Agent already stopped")
                return self.status()

            logger.info("Stopping agent...")
            self.state.running = False

            for task in (self._evaluation_task, self._replenish_task):
                if task and not task.done():
                    task.cancel()
            for task in (self._evaluation_task, self._replenish_task):
                if task:
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            self._evaluation_task = None
            self._replenish_task = None

            await self.trade_queue.stop_processing()
            logger.info("Agent stopped")
        return self.status()

    async def _schedule(self, name: str, tick, interval: float, immediate: bool):
        """Submit `tick` to the work queue every `interval` seconds."""
        if not immediate:
            await asyncio.sleep(interval)
        while self.state.running:
            self.trade_queue.submit(name, tick)
            await asyncio.sleep(interval)

    async def withdraw(self) -> DispatchReport:
        """
        Dispatch pending profit now, serialized behind any queued work.

        Raises:
            RuntimeError: If the agent is not running
        """
        if not self.trade_queue.processing:
            raise RuntimeError("Agent is not running")
        report = await self.trade_queue.run_now(WITHDRAW_JOB, self._dispatch)
        return report

    async def _dispatch(self) -> DispatchReport:
        report = await self.dispatcher.dispatch()
        activity_logger.log_dispatch(
            outcome=report.outcome.value,
            pending=report.pending_amount,
            net=report.net_amount,
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=report.skipped,
        )
        return report

    def status(self) -> dict:
        """Current agent state for the control surface."""
        last_tick: Optional[TickReport] = self.evaluator.last_report
        last_replenish: Optional[ReplenishReport] = self.replenisher.last_report
        last_dispatch: Optional[DispatchReport] = self.dispatcher.last_report

        return {
            "running": self.state.running,
            "started_at": self.state.started_at.isoformat() if self.state.started_at else None,
            "uptime_hours": round(self.state.uptime_hours(), 4) if self.state.running else 0.0,
            "rotation_index": self.state.rotation_index,
            "reference_rate": self.state.last_reference_rate,
            "ledger": self.state.ledger.snapshot().to_dict(),
            "reserve": self.state.reserve.to_dict() if self.state.reserve else None,
            "last_tick": last_tick.to_dict() if last_tick else None,
            "last_replenishment": last_replenish.to_dict() if last_replenish else None,
            "last_dispatch": last_dispatch.to_dict() if last_dispatch else None,
            "queue": self.trade_queue.get_queue_stats(),
        }
