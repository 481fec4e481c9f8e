"""Shared test doubles and polling helpers."""

import asyncio

from app.jobs.errors import PreviewGenerationError
from app.render.preview import PreviewGenerator


class FakePreviewGenerator(PreviewGenerator):
    """Writes a stub JPEG instead of shelling out to ffmpeg."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.calls = []

    async def generate(self, job_id, source_path, preview_path):
        self.calls.append((job_id, source_path, preview_path))
        if self.fail:
            raise PreviewGenerationError("ffmpeg unavailable")
        with open(preview_path, "wb") as f:
            f.write(b"\xff\xd8\xff\xd9")
        return preview_path


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02):
    """Poll an async predicate until it returns something truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = await predicate()
        if result:
            return result
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


async def wait_for_status(service, job_id, *statuses, timeout: float = 5.0):
    async def check():
        job = await service.get_job(job_id)
        return job if job is not None and job.status.value in statuses else None

    return await wait_until(check, timeout=timeout)
