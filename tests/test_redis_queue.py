"""
Tests for the Redis list-backed task queue.
"""

import asyncio
import json

import pytest

from app.jobs.models import RenderTask
from app.jobs.redis_queue import RedisQueue


def _task(job_id="j1"):
    return RenderTask(
        job_id=job_id,
        input_path="/in/a.mp4",
        output_path=f"/out/{job_id}_a.mp4",
        filename="a.mp4",
        command='cp "/in/a.mp4" "/out/a.mp4"',
    )


@pytest.fixture
def handled():
    return []


@pytest.fixture
def rqueue(redis, handled):
    async def handler(task):
        handled.append(task.job_id)

    return RedisQueue(redis, handler, name="test_jobs", poll_timeout=1)


class TestRedisQueue:
    async def test_enqueue_is_durable_json(self, rqueue, redis):
        await rqueue.enqueue(_task())

        raw = await redis.lrange(rqueue.pending_key, 0, -1)
        assert len(raw) == 1
        assert json.loads(raw[0])["job_id"] == "j1"
        assert await rqueue.pending_count() == 1

    async def test_process_next_runs_handler_and_acks(self, rqueue, redis, handled):
        await rqueue.enqueue(_task())

        assert await rqueue.process_next() is True

        assert handled == ["j1"]
        assert await redis.llen(rqueue.pending_key) == 0
        assert await redis.llen(rqueue.processing_key) == 0

    async def test_fifo_order(self, rqueue, handled):
        for job_id in ("a", "b", "c"):
            await rqueue.enqueue(_task(job_id))

        while await rqueue.process_next():
            pass

        assert handled == ["a", "b", "c"]

    async def test_empty_queue_returns_false(self, rqueue):
        assert await rqueue.process_next(timeout=1) is False

    async def test_handler_errors_still_ack(self, redis):
        async def broken(task):
            raise RuntimeError("worker bug")

        q = RedisQueue(redis, broken, name="test_jobs", poll_timeout=1)
        await q.enqueue(_task())

        assert await q.process_next() is True
        assert await redis.llen(q.processing_key) == 0

    async def test_malformed_payload_is_dropped(self, rqueue, redis, handled):
        await redis.lpush(rqueue.pending_key, "not-a-task")

        assert await rqueue.process_next() is True
        assert handled == []
        assert await redis.llen(rqueue.processing_key) == 0

    async def test_processing_list_is_per_consumer(self, redis):
        first = RedisQueue(redis, None, name="test_jobs")
        second = RedisQueue(redis, None, name="test_jobs")

        assert first.processing_key != second.processing_key
        assert first.processing_key.startswith("test_jobs:processing:")

    async def test_recover_requeues_in_flight_tasks_first(self, rqueue, redis, handled):
        # a consumer that died after claiming "crashed"; its lease is gone
        await redis.lpush("test_jobs:processing:dead", _task("crashed").model_dump_json())
        await rqueue.enqueue(_task("fresh"))

        assert await rqueue.recover() == 1
        while await rqueue.process_next():
            pass

        assert handled == ["crashed", "fresh"]

    async def test_recover_leaves_live_consumers_alone(self, rqueue, redis):
        await redis.set("test_jobs:lease:peer", "1", ex=30)
        await redis.lpush("test_jobs:processing:peer", _task("running").model_dump_json())

        assert await rqueue.recover() == 0
        assert await redis.llen("test_jobs:processing:peer") == 1
        assert await rqueue.pending_count() == 0

    async def test_starting_a_peer_does_not_steal_in_flight_work(self, redis, handled):
        async def handler(task):
            handled.append(task.job_id)

        first = RedisQueue(redis, handler, name="test_jobs", poll_timeout=1)
        second = RedisQueue(redis, handler, name="test_jobs", poll_timeout=1)
        await first.start()
        try:
            # first has claimed a task and is still working on it
            await redis.lpush(first.processing_key, _task("busy").model_dump_json())
            await second.start()
            try:
                assert await redis.llen(first.processing_key) == 1
                assert await second.pending_count() == 0
            finally:
                await second.stop()
        finally:
            await first.stop()

        assert handled == []

    async def test_stop_releases_the_lease(self, rqueue, redis):
        await rqueue.start()
        assert await redis.exists(rqueue.lease_key)
        assert 0 < await redis.ttl(rqueue.lease_key) <= 30

        await rqueue.stop()

        assert not await redis.exists(rqueue.lease_key)

    async def test_stopped_consumer_work_is_recovered_by_peer(self, redis, handled):
        gone = RedisQueue(redis, None, name="test_jobs")
        await gone.start()
        await redis.lpush(gone.processing_key, _task("orphan").model_dump_json())
        await gone.stop()

        async def handler(task):
            handled.append(task.job_id)

        peer = RedisQueue(redis, handler, name="test_jobs", poll_timeout=1)
        assert await peer.recover() == 1
        assert await peer.process_next() is True
        assert handled == ["orphan"]

    async def test_worker_loop_consumes_until_stopped(self, rqueue, handled):
        await rqueue.start()
        try:
            await rqueue.enqueue(_task("looped"))
            for _ in range(100):
                if handled:
                    break
                await asyncio.sleep(0.02)
        finally:
            await rqueue.stop()

        assert handled == ["looped"]
