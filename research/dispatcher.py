"""
Background research hand-off.

Sessions that enter BACKGROUND_RESEARCH are queued here; a worker task
runs the aggregator and merges the result back into the session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import EngineError
from lead_scoring.state_machine import StageStateMachine

from .aggregator import ResearchAggregator

logger = logging.getLogger(__name__)


@dataclass
class ResearchJob:
    session_id: str
    email: str
    name: Optional[str] = None
    company_url: Optional[str] = None


class ResearchDispatcher:
    """In-process queue with one worker task."""

    def __init__(
        self,
        aggregator: ResearchAggregator,
        state_machine: StageStateMachine,
        max_queue_size: int = 100,
    ):
        self.aggregator = aggregator
        self.state_machine = state_machine
        self.max_queue_size = max_queue_size
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self):
        """Start the worker on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._worker = asyncio.create_task(self._work())
        logger.info("Research dispatcher started")

    async def stop(self):
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Research dispatcher stopped")

    def submit(self, job: ResearchJob) -> bool:
        """Queue a job. Returns False if the dispatcher is not running or full."""
        if not self.running:
            logger.warning(f"Research dispatcher not running, dropping job for {job.session_id}")
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(f"Research queue full, dropping job for {job.session_id}")
            return False
        logger.info(f"Research queued for session {job.session_id}")
        return True

    async def join(self):
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _work(self):
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
                self.completed += 1
            except EngineError as e:
                self.failed += 1
                logger.warning(f"Research job for {job.session_id} failed: {e.kind}: {e.message}")
            except Exception as e:
                self.failed += 1
                logger.error(f"Research job for {job.session_id} crashed: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def run_job(self, job: ResearchJob):
        """Research one identity and merge it into the session."""
        result = await self.aggregator.research(job.email, job.name, job.company_url)
        await self.state_machine.integrate_research_data(job.session_id, result.to_enrichment())
