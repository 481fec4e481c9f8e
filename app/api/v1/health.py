"""Health check endpoint."""

from fastapi import APIRouter, Depends
import platform
import shutil
import sys

from redis.exceptions import RedisError

from app.api.v1.deps import get_render_service
from app.config import settings
from app.render.service import RenderService

router = APIRouter()


@router.get("/health")
async def health_check(service: RenderService = Depends(get_render_service)):
    """Service health, Redis reachability, queue depth and tool availability."""
    redis_ok = await service.store.ping()
    try:
        queued = await service.dispatcher.pending_count()
    except RedisError:
        queued = None

    return {
        "status": "healthy" if redis_ok else "degraded",
        "redis_available": redis_ok,
        "dispatch_mode": settings.dispatch_mode,
        "queued_tasks": queued,
        "preview_tool": shutil.which(settings.preview_tool),
        "python_version": sys.version,
        "platform": platform.platform(),
    }
