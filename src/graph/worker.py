"""
Background spreading-activation worker.

access() only enqueues a job; this worker drains the queue on a fixed tick,
at most batch_size jobs per tick, so a burst of accesses (or one high-degree
node) never stalls foreground searches. Decay of the whole graph runs every
decay_every_ticks ticks from the same loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..models import utcnow
from .activation import ActivationGraph

logger = logging.getLogger(__name__)


@dataclass
class SpreadJob:
    source_id: str
    boost: float
    max_depth: int
    enqueued_at: datetime = field(default_factory=utcnow)


class SpreadingWorker:
    def __init__(
        self,
        graph: ActivationGraph,
        tick_interval: float = 1.0,
        batch_size: int = 5,
        queue_maxsize: int = 1000,
        decay_every_ticks: int = 60,
    ):
        """
        Args:
            graph: Graph whose spread() runs the jobs
            tick_interval: Seconds between ticks
            batch_size: Max jobs drained per tick
            queue_maxsize: Bound of the job queue; new jobs are dropped when full
            decay_every_ticks: Run graph decay every N ticks (0 = never)
        """
        self.graph = graph
        self.tick_interval = tick_interval
        self.batch_size = batch_size
        self.decay_every_ticks = decay_every_ticks
        self.queue: "asyncio.Queue[SpreadJob]" = asyncio.Queue(maxsize=queue_maxsize)

        self.ticks = 0
        self.processed = 0
        self.failed = 0
        self.dropped = 0
        self._task: Optional[asyncio.Task] = None

        graph.attach_worker(self)

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, source_id: str, boost: float, max_depth: int) -> bool:
        """
        Queue a spreading job without blocking.

        Returns:
            False if the queue is full and the job was dropped
        """
        try:
            self.queue.put_nowait(SpreadJob(source_id=source_id, boost=boost, max_depth=max_depth))
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Spreading queue full ({self.queue.maxsize}), dropping job for {source_id}")
            return False

    async def run_once(self) -> int:
        """
        One tick: drain up to batch_size jobs, then decay if due.

        A failing job is logged and skipped; the rest of the batch still runs.

        Returns:
            Number of jobs taken from the queue
        """
        taken = 0
        while taken < self.batch_size:
            try:
                job = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            taken += 1
            try:
                await self.graph.spread(job.source_id, job.boost, job.max_depth)
                self.processed += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"Spreading job for {job.source_id} failed: {e}")
            finally:
                self.queue.task_done()

        self.ticks += 1
        if self.decay_every_ticks and self.ticks % self.decay_every_ticks == 0:
            try:
                await self.graph.decay_all()
            except Exception as e:
                logger.error(f"Activation decay failed: {e}")

        if taken:
            logger.debug(f"Spreading tick {self.ticks}: {taken} jobs, {self.pending} pending")
        return taken

    async def _run(self):
        logger.info(
            f"Spreading worker started (tick={self.tick_interval}s, batch={self.batch_size})"
        )
        while True:
            await self.run_once()
            await asyncio.sleep(self.tick_interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="spreading-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(
            f"Spreading worker stopped (processed={self.processed}, failed={self.failed}, "
            f"dropped={self.dropped}, pending={self.pending})"
        )
