"""Render job service: submission, lookup, listing with reconciliation,
deletion and orphan cleanup.

Constructed once by the application's lifespan and handed to the routers;
every collaborator is passed in.
"""

import logging
import os
from typing import List, Optional

from app.jobs.dispatcher import JobDispatcher
from app.jobs.errors import NotFoundError, ValidationError
from app.jobs.events import EventBus, ProgressEvent, ProgressListener, Subscription
from app.jobs.models import JobRecord, JobStatus, RenderTask
from app.jobs.store import JobStore
from app.render.executor import CommandExecutor, substitute_placeholders
from app.render.preview import PreviewGenerator
from app.storage.media_paths import MediaPaths

logger = logging.getLogger(__name__)

DELETED_STAGE = "deleted"


class RenderService:
    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        executor: CommandExecutor,
        previews: PreviewGenerator,
        bus: EventBus,
        paths: MediaPaths,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._executor = executor
        self._previews = previews
        self._bus = bus
        self._paths = paths

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def dispatcher(self) -> JobDispatcher:
        return self._dispatcher

    @property
    def paths(self) -> MediaPaths:
        return self._paths

    # ------------------------------------------------------------------
    # Submission and lookup
    # ------------------------------------------------------------------

    async def submit(
        self,
        filename: str,
        input_path: str,
        command_template: str,
        parent_folder_path: Optional[str] = None,
    ) -> str:
        """Create a pending job, persist it and queue it. Returns the job id
        without waiting for execution."""
        missing = [
            name for name, value in (
                ("filename", filename),
                ("inputPath", input_path),
                ("renderCommand", command_template),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        job = JobRecord(
            filename=filename,
            original_path=input_path,
            render_command=command_template,
            parent_folder_path=parent_folder_path,
        )
        absolute_input = self._paths.absolute_input(input_path)
        output_path = self._paths.output_path_for(job.id, filename)

        await self._store.put(job)
        await self._dispatcher.enqueue(RenderTask(
            job_id=job.id,
            input_path=absolute_input,
            output_path=output_path,
            filename=filename,
            command=substitute_placeholders(command_template, absolute_input, output_path),
        ))
        logger.info("Queued job_id=%s for file=%s", job.id, filename)
        return job.id

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        return await self._store.get(job_id)

    async def require_job(self, job_id: str) -> JobRecord:
        job = await self._store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def preview_path(self, job: JobRecord) -> str:
        return self._paths.preview_path_for(job.id, job.output_path)

    def on_progress(self, listener: ProgressListener) -> Subscription:
        return self._bus.subscribe(listener)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def list_jobs(self) -> List[JobRecord]:
        """Persisted jobs, newest first, after dropping orphans and restoring
        missing previews."""
        jobs = await self._store.list_all()
        valid: List[JobRecord] = []

        for job in jobs:
            if job.status != JobStatus.COMPLETED or not job.output_path:
                valid.append(job)
                continue

            if not os.path.exists(job.output_path):
                logger.info("Cleaning up orphaned job_id=%s: %s", job.id, job.filename)
                await self._discard(job.id)
                continue

            preview_path = self.preview_path(job)
            if not os.path.exists(preview_path):
                await self._previews.try_generate(job.id, job.output_path, preview_path)
            valid.append(job)

        return valid

    async def cleanup_orphaned_jobs(self) -> int:
        """Delete every completed job whose output file is gone. Returns how
        many were removed."""
        cleaned = 0
        for job in await self._store.list_all():
            if job.status != JobStatus.COMPLETED or not job.output_path:
                continue
            if not os.path.exists(job.output_path):
                await self._discard(job.id)
                cleaned += 1

        logger.info("Cleaned up %d orphaned jobs", cleaned)
        return cleaned

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_job(self, job_id: str) -> bool:
        """Remove a job's files (if present) and its record. False only when
        the job does not exist."""
        job = await self._store.get(job_id)
        if job is None:
            return False

        if self._executor.cancel(job_id):
            logger.info("Stopped running render for deleted job_id=%s", job_id)

        # Unfinished jobs may have left a partial file at their derived path.
        output_path = job.output_path or self._paths.output_path_for(job.id, job.filename)
        _unlink_quietly(output_path, "output")
        _unlink_quietly(self.preview_path(job), "preview")

        await self._discard(job_id)
        return True

    async def _discard(self, job_id: str) -> None:
        await self._store.delete(job_id)
        logger.info("job_id=%s deleted", job_id)
        self._bus.publish(ProgressEvent(job_id=job_id, progress=0, stage=DELETED_STAGE))


def _unlink_quietly(path: str, kind: str) -> None:
    try:
        os.remove(path)
        logger.info("Deleted %s file: %s", kind, path)
    except FileNotFoundError:
        logger.info("%s file not found or already deleted: %s", kind.capitalize(), path)
    except OSError as e:
        logger.warning("Could not delete %s file %s: %s", kind, path, e)
