"""
Background work queue for summary generation.

Summary jobs are best-effort: a failing job is logged and dropped, and a
full queue rejects new jobs instead of blocking the caller.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SummaryJob = Callable[[], Awaitable[object]]


class SummaryQueue:
    """Bounded asyncio queue drained by a fixed pool of worker tasks"""

    def __init__(self, maxsize: int = 100, workers: int = 1):
        self.maxsize = maxsize
        self.worker_count = workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.failed_jobs = 0
        self.dropped_jobs = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self):
        """Spawn the worker tasks; must run inside the event loop"""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(f"summary-{i}")) for i in range(self.worker_count)
        ]
        logger.info(f"Summary queue started with {self.worker_count} worker(s)")

    def submit(self, name: str, job: SummaryJob) -> bool:
        """Queue a job without waiting; returns False when it was dropped"""
        if not self.running:
            self.start()
        try:
            self._queue.put_nowait((name, job))
            return True
        except asyncio.QueueFull:
            self.dropped_jobs += 1
            logger.warning(f"Summary queue full, dropping job {name}")
            return False

    async def _worker(self, worker_id: str):
        while True:
            item: Optional[Tuple[str, SummaryJob]] = await self._queue.get()
            if item is None:  # Sentinel value to terminate
                self._queue.task_done()
                break

            name, job = item
            try:
                await job()
                logger.debug(f"{worker_id} finished job {name}")
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception as e:
                self.failed_jobs += 1
                logger.error(f"Summary job {name} failed: {e}")
            self._queue.task_done()

    async def join(self):
        """Wait until every queued job has been processed"""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self):
        """Finish queued jobs, then shut the workers down"""
        if not self.running:
            return
        for _ in self._workers:
            await self._queue.put(None)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Summary queue stopped")
