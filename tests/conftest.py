# tests/conftest.py
import fakeredis
import pytest

from app.jobs.events import EventBus
from app.jobs.models import Complete, JobRecord, StartProcessing, apply_update
from app.jobs.in_process_queue import InProcessQueue
from app.jobs.store import JobStore
from app.render.executor import CommandExecutor
from app.render.service import RenderService
from app.render.worker import RenderWorker
from app.storage.media_paths import MediaPaths
from helpers import FakePreviewGenerator


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def paths(media_root):
    paths = MediaPaths(str(media_root))
    paths.ensure_dirs()
    return paths


@pytest.fixture
def source_file(media_root):
    path = media_root / "clips" / "a.mp4"
    path.parent.mkdir()
    path.write_bytes(b"not really a video")
    return path


@pytest.fixture
def store(redis):
    return JobStore(redis, ttl_seconds=3600)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def executor():
    return CommandExecutor()


@pytest.fixture
def previews():
    return FakePreviewGenerator()


@pytest.fixture
def worker(store, executor, previews, bus, paths):
    return RenderWorker(
        store,
        executor,
        previews,
        bus,
        paths,
        progress_interval=0.02,
        progress_step=10,
        progress_ceiling=90,
    )


@pytest.fixture
def queue(worker):
    return InProcessQueue(worker.handle, concurrency=1)


@pytest.fixture
def service(store, queue, executor, previews, bus, paths):
    return RenderService(store, queue, executor, previews, bus, paths)


@pytest.fixture
async def running_service(service, queue):
    await queue.start()
    yield service
    await queue.stop()


@pytest.fixture
def completed_job_factory(store, paths):
    """Persist a completed job whose output (and optionally preview) exist."""
    async def make(filename="done.mp4", with_output=True, with_preview=True):
        job = JobRecord(filename=filename, original_path=filename, render_command="cp {input} {output}")
        output_path = paths.output_path_for(job.id, filename)
        job = apply_update(job, StartProcessing())
        job = apply_update(job, Complete(output_path))
        if with_output:
            with open(output_path, "wb") as f:
                f.write(b"rendered")
        if with_preview:
            with open(paths.preview_path_for(job.id, output_path), "wb") as f:
                f.write(b"jpeg")
        await store.put(job)
        return job

    return make
