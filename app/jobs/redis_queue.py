"""Durable task queue on Redis lists (at-least-once delivery).

Layout:
  <name>:pending                LPUSH by producers, consumed from the right (FIFO)
  <name>:processing:<consumer>  tasks currently held by one consumer
  <name>:lease:<consumer>       expiring key, renewed while that consumer lives

A consumer atomically moves a payload from pending to its own processing
list with BLMOVE, runs the handler, then removes it from that list (ack).
Processing lists whose lease has expired belong to a dead consumer; they are
pushed back to the consuming end of pending on ``start()`` and on every
heartbeat. Lists of live consumers are never touched. A task can still be
delivered more than once, so the handler must tolerate redelivery.
"""

import asyncio
import logging
import uuid
from typing import List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.jobs.dispatcher import JobDispatcher, TaskHandler
from app.jobs.models import RenderTask

logger = logging.getLogger(__name__)


class RedisQueue(JobDispatcher):
    def __init__(
        self,
        redis: Redis,
        handler: TaskHandler,
        name: str = "render_jobs",
        concurrency: int = 1,
        poll_timeout: float = 1.0,
        lease_seconds: int = 30,
        consumer_id: Optional[str] = None,
    ):
        self._redis = redis
        self._handler = handler
        self._name = name
        self.consumer_id = consumer_id or uuid.uuid4().hex
        self.pending_key = f"{name}:pending"
        self.processing_key = self._processing_key(self.consumer_id)
        self.lease_key = self._lease_key(self.consumer_id)
        self._concurrency = max(1, concurrency)
        self._poll_timeout = poll_timeout
        self._lease_seconds = max(1, int(lease_seconds))
        self._tasks: List[asyncio.Task] = []
        self._running = False

    def _processing_key(self, consumer_id: str) -> str:
        return f"{self._name}:processing:{consumer_id}"

    def _lease_key(self, consumer_id: str) -> str:
        return f"{self._name}:lease:{consumer_id}"

    async def enqueue(self, task: RenderTask) -> None:
        await self._redis.lpush(self.pending_key, task.model_dump_json())

    async def start(self) -> None:
        await self._renew_lease()
        recovered = await self.recover()
        if recovered:
            logger.warning("Requeued %d task(s) left in flight by a dead consumer", recovered)
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(slot))
            for slot in range(self._concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._heartbeat_loop()))
        logger.info("Redis queue consumer %s started on %s", self.consumer_id, self.pending_key)

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
        # anything still held becomes recoverable by the remaining consumers
        try:
            await self._redis.delete(self.lease_key)
        except RedisError as e:
            logger.error("Failed to release lease %s: %s", self.lease_key, e)

    async def pending_count(self) -> int:
        return int(await self._redis.llen(self.pending_key))

    async def recover(self) -> int:
        """Move payloads held by consumers without a live lease back to the
        consuming end of pending. Returns how many were moved."""
        prefix = self._processing_key("")
        keys = [key async for key in self._redis.scan_iter(match=f"{prefix}*")]

        moved = 0
        for key in keys:
            owner = key[len(prefix):]
            if owner == self.consumer_id:
                continue
            if await self._redis.exists(self._lease_key(owner)):
                continue
            while await self._redis.lmove(key, self.pending_key, "RIGHT", "RIGHT"):
                moved += 1
        return moved

    async def process_next(self, timeout: Optional[float] = None) -> bool:
        """Claim, handle and ack one task. Returns False if none arrived.

        Handler exceptions are logged and the task is acked anyway; failures
        are recorded on the job, not retried.
        """
        payload = await self._redis.blmove(
            self.pending_key,
            self.processing_key,
            self._poll_timeout if timeout is None else timeout,
            "RIGHT",
            "LEFT",
        )
        if payload is None:
            return False

        try:
            task = RenderTask.model_validate_json(payload)
        except ValueError as e:
            logger.error("Dropping malformed task payload: %s", e)
            await self._ack(payload)
            return True

        try:
            await self._handler(task)
        except Exception:
            logger.exception("Handler crashed on job_id=%s", task.job_id)
        await self._ack(payload)
        return True

    async def _ack(self, payload) -> None:
        await self._redis.lrem(self.processing_key, 1, payload)

    async def _renew_lease(self) -> None:
        await self._redis.set(self.lease_key, "1", ex=self._lease_seconds)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._lease_seconds / 3)
            try:
                await self._renew_lease()
                recovered = await self.recover()
            except RedisError as e:
                logger.error("Queue heartbeat lost Redis: %s", e)
                continue
            if recovered:
                logger.warning("Requeued %d task(s) from an expired consumer", recovered)

    async def _worker_loop(self, slot: int) -> None:
        while self._running:
            try:
                await self.process_next()
            except asyncio.CancelledError:
                break
            except RedisError as e:
                logger.error("Queue slot %d lost Redis: %s", slot, e)
                await asyncio.sleep(self._poll_timeout)
