"""Render job API: submit and poll jobs, delete them, clean up orphans, serve previews."""

import os
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional

from app.api.v1.deps import get_render_service
from app.jobs.errors import NotFoundError, ValidationError
from app.jobs.models import JobRecord, JobStatus
from app.render.preview import placeholder_jpeg
from app.render.service import RenderService

router = APIRouter()


class RenderSubmitRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_path: str = ""
    filename: str = ""
    render_command: str = ""
    parent_folder_path: Optional[str] = None


def _job_json(job: JobRecord) -> dict:
    return job.model_dump(mode="json", by_alias=True)


@router.post("/render")
async def submit_render(
    request: RenderSubmitRequest,
    service: RenderService = Depends(get_render_service),
):
    """Queue a render job. Poll GET /api/v1/render/{id} for status."""
    try:
        file_path = request.file_path
        if file_path:
            # keep the stored path relative to the media root
            file_path = os.path.relpath(
                service.paths.resolve_within_root(file_path), service.paths.root
            )
        job_id = await service.submit(
            request.filename,
            file_path,
            request.render_command,
            parent_folder_path=request.parent_folder_path,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "jobId": job_id,
        "message": "Render job queued successfully",
    }


@router.get("/render")
async def list_renders(service: RenderService = Depends(get_render_service)):
    """All jobs, newest first. Jobs whose rendered file vanished are dropped."""
    jobs = await service.list_jobs()
    return {"jobs": [_job_json(job) for job in jobs]}


@router.post("/render/cleanup")
async def cleanup_renders(service: RenderService = Depends(get_render_service)):
    cleaned = await service.cleanup_orphaned_jobs()
    return {
        "success": True,
        "message": f"Cleaned up {cleaned} orphaned jobs",
        "cleanedCount": cleaned,
    }


@router.get("/render/{job_id}")
async def get_render(job_id: str, service: RenderService = Depends(get_render_service)):
    try:
        job = await service.require_job(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"job": _job_json(job)}


@router.delete("/render/{job_id}")
async def delete_render(job_id: str, service: RenderService = Depends(get_render_service)):
    """Delete a job with its rendered file and preview."""
    if not await service.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return {"success": True, "message": "Job deleted successfully"}


@router.get("/render/{job_id}/preview")
async def get_render_preview(job_id: str, service: RenderService = Depends(get_render_service)):
    """Preview JPEG, or a placeholder while the job is unfinished or the
    preview is missing."""
    job = await service.get_job(job_id)
    if job is not None and job.status == JobStatus.COMPLETED:
        preview_path = service.preview_path(job)
        if os.path.exists(preview_path):
            return FileResponse(
                preview_path,
                media_type="image/jpeg",
                headers={"Cache-Control": "public, max-age=3600"},
            )

    return Response(
        content=placeholder_jpeg(),
        media_type="image/jpeg",
        headers={"Cache-Control": "public, max-age=60"},
    )
