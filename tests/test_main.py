"""
Tests for service wiring in the composition root.
"""

import pytest

from app.config import Settings
from app.jobs.in_process_queue import InProcessQueue
from app.jobs.redis_queue import RedisQueue
from app.main import build_render_service
from helpers import wait_for_status


def test_local_mode_uses_in_process_queue(redis, tmp_path):
    service = build_render_service(redis, Settings(media_root=str(tmp_path), dispatch_mode="local"))
    assert isinstance(service.dispatcher, InProcessQueue)


def test_redis_mode_uses_redis_queue(redis, tmp_path):
    config = Settings(media_root=str(tmp_path), dispatch_mode="redis", queue_name="renders")
    service = build_render_service(redis, config)
    assert isinstance(service.dispatcher, RedisQueue)
    assert service.dispatcher.pending_key == "renders:pending"


def test_unknown_mode_is_rejected(redis, tmp_path):
    with pytest.raises(ValueError):
        build_render_service(redis, Settings(media_root=str(tmp_path), dispatch_mode="celery"))


async def test_redis_mode_runs_a_job_end_to_end(redis, tmp_path):
    (tmp_path / "a.mp4").write_bytes(b"frames")
    config = Settings(
        media_root=str(tmp_path),
        dispatch_mode="redis",
        progress_interval_seconds=0.02,
        preview_tool="true",
    )
    service = build_render_service(redis, config)
    service.paths.ensure_dirs()
    await service.dispatcher.start()
    try:
        job_id = await service.submit("a.mp4", "a.mp4", "cp {input} {output}")
        job = await wait_for_status(service, job_id, "completed", "failed")
    finally:
        await service.dispatcher.stop()

    assert job.status.value == "completed"
    assert await service.dispatcher.pending_count() == 0
