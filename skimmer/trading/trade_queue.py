"""
Work queue that serializes everything touching the executor, ledger and
reserve state.

Both schedulers and the manual withdraw trigger submit named jobs here and
a single worker runs them one at a time in FIFO order, so at most one
trade is ever in flight.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a job in the queue."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass
class QueuedJob:
    """A unit of work in the queue."""
    job_id: str
    name: str
    execute_func: Callable[[], Awaitable[Any]]
    queued_at: datetime
    status: JobStatus = JobStatus.PENDING
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    executed_at: Optional[datetime] = None
    future: Optional[asyncio.Future] = field(default=None, repr=False)


class TradeQueue:
    """
    FIFO queue of named async jobs with one worker.

    `submit` coalesces: a job whose name is already pending is not queued
    a second time, so a slow tick cannot pile up behind itself.
    `stop_processing` lets the job in flight finish and drops the rest.
    """

    def __init__(self, history_size: int = 100, drain_timeout: float = 30.0):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._jobs: Dict[str, QueuedJob] = {}
        self._processing = False
        self._processor_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._drain_timeout = drain_timeout
        self._job_counter = 0
        self._history_size = history_size
        self._current: Optional[QueuedJob] = None

        logger.debug(f"Job queue ready (history {history_size})")

    @property
    def processing(self) -> bool:
        return self._processing

    def _generate_job_id(self, name: str) -> str:
        self._job_counter += 1
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        return f"{name}_{timestamp}_{self._job_counter}"

    def _is_pending(self, name: str) -> bool:
        return any(j.name == name and j.status is JobStatus.PENDING for j in self._jobs.values())

    def _enqueue(self, name: str, execute_func: Callable[[], Awaitable[Any]], future=None) -> QueuedJob:
        job = QueuedJob(
            job_id=self._generate_job_id(name),
            name=name,
            execute_func=execute_func,
            queued_at=datetime.now(),
            future=future,
        )
        self._jobs[job.job_id] = job
        self._queue.put_nowait(job)
        self._prune_history()
        logger.debug(f"Job queued: {job.job_id}")
        return job

    def submit(self, name: str, execute_func: Callable[[], Awaitable[Any]]) -> Optional[str]:
        """
        Queue a job unless one with the same name is already pending.

        Args:
            name: Job name used for coalescing (e.g. "evaluate")
            execute_func: Zero-argument coroutine function to run

        Returns:
            Job id, or None if the job was coalesced or the queue is stopped
        """
        if not self._processing:
            logger.debug(f"Queue stopped, not accepting {name}")
            return None
        if self._is_pending(name):
            logger.debug(f"Job {name} already pending, coalesced")
            return None
        return self._enqueue(name, execute_func).job_id

    async def run_now(self, name: str, execute_func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Queue a job and wait for its result.

        Runs behind whatever is already queued. Exceptions raised by the job
        are re-raised here.

        Raises:
            RuntimeError: If the queue is not processing or drops the job
        """
        if not self._processing:
            raise RuntimeError("Trade queue is not processing")
        future = asyncio.get_running_loop().create_future()
        self._enqueue(name, execute_func, future)
        return await future

    async def start_processing(self):
        """
        Launch the worker task.

        A worker left draining by a timed-out `stop_processing` is awaited
        first so that only one worker ever takes jobs.
        """
        if self._processing:
            logger.warning("Job worker already running")
            return

        self._processing = True
        if self._processor_task and not self._processor_task.done():
            logger.info("Waiting for previous job worker to finish its job")
            await self._processor_task

        self._stop_event = asyncio.Event()
        self._processor_task = asyncio.create_task(self._process_queue(self._stop_event))
        logger.info("Job worker started")

    async def stop_processing(self):
        """
        Stop the worker.

        The job in flight runs to completion; jobs still pending are dropped.
        Waits at most `drain_timeout` seconds. The in-flight job is never
        cancelled: past the timeout it keeps running and the next
        `start_processing` waits for it.
        """
        if not self._processing:
            return

        self._processing = False
        if self._stop_event:
            self._stop_event.set()
        self._drop_pending()

        task = self._processor_task
        if task:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self._drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Job worker still busy after {self._drain_timeout}s, "
                    f"leaving {self._current.name if self._current else 'job'} to finish"
                )

        # Anything queued while the last job was finishing
        self._drop_pending()
        logger.info("Job worker stopped")

    def _drop_pending(self):
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            job.status = JobStatus.DROPPED
            if job.future and not job.future.done():
                job.future.set_exception(RuntimeError(f"Job {job.name} dropped: queue stopped"))
            self._queue.task_done()
            logger.info(f"Dropped pending job {job.job_id}")

    async def _process_queue(self, stop_event: asyncio.Event):
        logger.info("Job worker waiting for work")

        while not stop_event.is_set():
            try:
                # Short timeout so the loop notices its stop event
                job = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue

            job.status = JobStatus.EXECUTING
            job.executed_at = datetime.now()
            self._current = job
            logger.debug(f"Executing job {job.job_id}")

            try:
                job.result = await job.execute_func()
                job.status = JobStatus.COMPLETED
                if job.future and not job.future.done():
                    job.future.set_result(job.result)
            except Exception as e:
                job.status = JobStatus.FAILED
                job.error = e
                logger.error(f"Job {job.job_id} failed: {e}", exc_info=True)
                if job.future and not job.future.done():
                    job.future.set_exception(e)
            finally:
                self._current = None
                self._queue.task_done()

    def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        job = self._jobs.get(job_id)
        return job.status if job else None

    def get_job_result(self, job_id: str) -> Optional[Any]:
        job = self._jobs.get(job_id)
        if job and job.status is JobStatus.COMPLETED:
            return job.result
        return None

    def _prune_history(self):
        finished = [
            job_id for job_id, job in self._jobs.items()
            if job.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.DROPPED)
        ]
        excess = len(self._jobs) - self._history_size
        for job_id in finished[:max(0, excess)]:
            del self._jobs[job_id]

    def get_queue_stats(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1

        return {
            "queue_size": self._queue.qsize(),
            "total_jobs": len(self._jobs),
            "current": self._current.name if self._current else None,
            "processing": self._processing,
            **counts,
        }
