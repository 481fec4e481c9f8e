"""Source upload and rendered-file download.

  POST /upload               stream a media file into the media root
  GET  /download/{job_id}    fetch the rendered output of a completed job

Thin glue around MediaPaths and the render service; path checks against the
media root happen here, not in the service.
"""

import logging
import os

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse

from app.api.v1.deps import get_render_service
from app.config import settings
from app.jobs.errors import NotFoundError, ValidationError
from app.jobs.models import JobStatus
from app.render.service import RenderService

logger = logging.getLogger(__name__)

router = APIRouter()

_CHUNK_BYTES = 1024 * 1024


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial upload %s: %s", path, e)


# ---------------------------------------------------------------------------
# POST /upload
# ---------------------------------------------------------------------------

@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    folder: str = Form(""),
    service: RenderService = Depends(get_render_service),
):
    """Save an upload under ``folder`` (relative to the media root).

    Returns:
        {success, filename, filePath, size}
    """
    filename = os.path.basename(file.filename or "")
    if not filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        target_dir = service.paths.resolve_within_root(folder)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    os.makedirs(target_dir, exist_ok=True)
    upload_path = os.path.join(target_dir, filename)
    if os.path.isdir(upload_path):
        raise HTTPException(status_code=400, detail="Upload target is a directory")

    total = 0
    try:
        with open(upload_path, "wb") as dst:
            while True:
                chunk = await file.read(_CHUNK_BYTES)
                if not chunk:
                    break
                total += len(chunk)
                if total > settings.max_upload_bytes:
                    raise HTTPException(status_code=413, detail="File too large")
                dst.write(chunk)
    except HTTPException:
        _remove_partial(upload_path)
        raise
    except OSError as exc:
        logger.error("Failed to save upload %s: %s", upload_path, exc)
        _remove_partial(upload_path)
        raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}")

    return {
        "success": True,
        "filename": filename,
        "filePath": os.path.relpath(upload_path, service.paths.root),
        "size": total,
    }


# ---------------------------------------------------------------------------
# GET /download/{job_id}
# ---------------------------------------------------------------------------

@router.get("/download/{job_id}")
async def download_render(job_id: str, service: RenderService = Depends(get_render_service)):
    """Stream the rendered file of a completed job as an attachment."""
    try:
        job = await service.require_job(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.status != JobStatus.COMPLETED or not job.output_path:
        raise HTTPException(status_code=400, detail="File not ready for download")

    if not os.path.exists(job.output_path):
        raise HTTPException(status_code=404, detail="Rendered file not found")

    # media type is guessed from the file extension
    return FileResponse(job.output_path, filename=os.path.basename(job.output_path))
