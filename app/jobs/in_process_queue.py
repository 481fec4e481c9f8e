"""In-process task queue using asyncio for local development and tests.

Tasks live only in memory: a restart loses anything still queued.
"""

import asyncio
import logging
from typing import List, Optional

from app.jobs.dispatcher import JobDispatcher, TaskHandler
from app.jobs.models import RenderTask

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Local async queue. ``concurrency`` tasks run at the same time."""

    def __init__(self, handler: TaskHandler, concurrency: int = 1):
        self._queue: asyncio.Queue[RenderTask] = asyncio.Queue()
        self._handler = handler
        self._concurrency = max(1, concurrency)
        self._tasks: List[asyncio.Task] = []
        self._running = False

    async def enqueue(self, task: RenderTask) -> None:
        await self._queue.put(task)

    async def start(self) -> None:
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(slot))
            for slot in range(self._concurrency)
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def pending_count(self) -> int:
        return self._queue.qsize()

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued task has been handled."""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def _worker_loop(self, slot: int) -> None:
        """Process tasks one at a time from the queue."""
        while self._running:
            try:
                task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                await self._handler(task)
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception:
                logger.exception("Worker slot %d crashed on job_id=%s", slot, task.job_id)
            self._queue.task_done()
