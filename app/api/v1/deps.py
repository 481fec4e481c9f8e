"""Request-scoped access to the render service built during lifespan."""

from fastapi import HTTPException, Request

from app.render.service import RenderService


def get_render_service(request: Request) -> RenderService:
    service = getattr(request.app.state, "render_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Render service not initialized")
    return service
