"""Render Queue Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from app.config import Settings, settings
from app.logging_config import setup_logging
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.jobs.dispatcher import JobDispatcher
from app.jobs.events import EventBus
from app.jobs.in_process_queue import InProcessQueue
from app.jobs.redis_queue import RedisQueue
from app.jobs.store import JobStore
from app.render.executor import CommandExecutor
from app.render.preview import PreviewGenerator
from app.render.service import RenderService
from app.render.worker import RenderWorker
from app.storage.media_paths import MediaPaths

logger = logging.getLogger("app.main")


def build_render_service(redis: Redis, config: Settings) -> RenderService:
    """Wire the store, worker, queue and service together."""
    paths = MediaPaths(config.media_root, config.rendered_subdir)
    store = JobStore(redis, ttl_seconds=config.job_ttl_seconds)
    executor = CommandExecutor()
    previews = PreviewGenerator(
        tool=config.preview_tool,
        offset_seconds=config.preview_offset_seconds,
        timeout_seconds=config.preview_timeout_seconds,
    )
    bus = EventBus()
    worker = RenderWorker(
        store,
        executor,
        previews,
        bus,
        paths,
        progress_interval=config.progress_interval_seconds,
        progress_step=config.progress_step,
        progress_ceiling=config.progress_ceiling,
    )

    dispatcher: JobDispatcher
    if config.dispatch_mode == "redis":
        dispatcher = RedisQueue(
            redis,
            worker.handle,
            name=config.queue_name,
            concurrency=config.worker_concurrency,
            lease_seconds=config.queue_lease_seconds,
        )
    elif config.dispatch_mode == "local":
        dispatcher = InProcessQueue(worker.handle, concurrency=config.worker_concurrency)
    else:
        raise ValueError(f"Unknown dispatch_mode '{config.dispatch_mode}'. Valid: local, redis")

    return RenderService(store, dispatcher, executor, previews, bus, paths)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    setup_logging(settings.log_level, settings.log_file)

    logger.info("Starting Render Queue Service on port %d", settings.compute_port)
    logger.info("Dispatch mode: %s (concurrency=%d)", settings.dispatch_mode, settings.worker_concurrency)
    logger.info("Media root: %s", settings.media_root)

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    service = build_render_service(redis, settings)
    service.paths.ensure_dirs()
    await service.dispatcher.start()
    logger.info("Job dispatcher started")

    app.state.render_service = service

    yield

    logger.info("Shutting down Render Queue Service")
    await service.dispatcher.stop()
    await redis.aclose()


app = FastAPI(
    title="Render Queue Service",
    description="Queued media rendering through an external command-line tool",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
