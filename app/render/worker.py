"""Queue handler that executes one render task and records every transition."""

import logging
import os
from typing import Optional

from app.jobs.errors import ExecutionError, InvalidTransitionError
from app.jobs.events import EventBus, ProgressEvent
from app.jobs.models import (
    Complete,
    Fail,
    JobRecord,
    JobStatus,
    JobUpdate,
    RenderTask,
    ReportProgress,
    StartProcessing,
    apply_update,
)
from app.jobs.store import JobStore
from app.render.executor import CommandExecutor, ProgressTicker
from app.render.preview import PreviewGenerator
from app.storage.media_paths import MediaPaths

logger = logging.getLogger(__name__)

TICK_STAGE = "Processing..."


class RenderWorker:
    """Runs a RenderTask end to end.

    Every update re-reads the record from Redis first, past the local cache.
    If it is gone the job was deleted while running (possibly by another
    process), and nothing more is written for it.
    """

    def __init__(
        self,
        store: JobStore,
        executor: CommandExecutor,
        previews: PreviewGenerator,
        bus: EventBus,
        paths: MediaPaths,
        progress_interval: float = 1.0,
        progress_step: int = 10,
        progress_ceiling: int = 90,
    ):
        self._store = store
        self._executor = executor
        self._previews = previews
        self._bus = bus
        self._paths = paths
        self._progress_interval = progress_interval
        self._progress_step = progress_step
        self._progress_ceiling = progress_ceiling

    async def handle(self, task: RenderTask) -> None:
        job = await self._store.get(task.job_id, fresh=True)
        if job is None:
            logger.warning("Skipping task for unknown job_id=%s", task.job_id)
            return
        if job.is_terminal():
            logger.info("Skipping redelivered task for finished job_id=%s", task.job_id)
            return

        if job.status == JobStatus.PENDING:
            job = await self.update(task.job_id, StartProcessing())
            if job is None:
                return

        try:
            await self._execute(task, job.progress)
        except (ExecutionError, OSError) as e:
            logger.error("Render failed for job_id=%s: %s", task.job_id, e)
            await self.update(task.job_id, Fail(str(e)))
            return
        except Exception as e:
            # a job must never be left in processing
            logger.exception("Unexpected error rendering job_id=%s", task.job_id)
            await self.update(task.job_id, Fail(f"Render failed: {e}"))
            return

        preview_path = self._paths.preview_path_for(task.job_id, task.output_path)
        await self._previews.try_generate(task.job_id, task.output_path, preview_path)

        if await self.update(task.job_id, Complete(task.output_path)) is not None:
            logger.info("job_id=%s completed: %s", task.job_id, task.output_path)

    async def update(self, job_id: str, update: JobUpdate) -> Optional[JobRecord]:
        """Apply ``update`` to the current record, persist and notify.

        Returns the new record, or None if the job no longer exists or the
        update is not allowed in its current state.
        """
        current = await self._store.get(job_id, fresh=True)
        if current is None:
            logger.info("job_id=%s was deleted, dropping %s", job_id, type(update).__name__)
            return None

        try:
            job = apply_update(current, update)
        except InvalidTransitionError as e:
            logger.warning("%s", e)
            return None

        if isinstance(update, ReportProgress) and job.progress == current.progress:
            return job

        if job.status != current.status:
            logger.info("job_id=%s %s -> %s", job_id, current.status.value, job.status.value)

        await self._store.put(job)
        stage = TICK_STAGE if isinstance(update, ReportProgress) else job.status.value
        self._bus.publish(ProgressEvent(job_id=job.id, progress=job.progress, stage=stage))
        return job

    async def _execute(self, task: RenderTask, start_progress: int) -> None:
        if not os.path.exists(task.input_path):
            raise ExecutionError(f"Input file not found: {task.input_path}")

        os.makedirs(os.path.dirname(task.output_path), exist_ok=True)

        async def on_tick(progress: int) -> None:
            await self.update(task.job_id, ReportProgress(progress))

        ticker = ProgressTicker(
            on_tick,
            interval=self._progress_interval,
            step=self._progress_step,
            ceiling=self._progress_ceiling,
            start=start_progress,
        )
        ticker.start()
        try:
            await self._executor.run(task.job_id, task.command)
        finally:
            await ticker.stop()

