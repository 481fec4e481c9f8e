"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Redis (job records + durable queue)
    redis_url: str = "redis://localhost:6379/0"
    job_ttl_seconds: int = 3600

    # Media storage
    media_root: str = "/data/uploads"
    rendered_subdir: str = "rendered"
    max_upload_bytes: int = 2 * 1024 * 1024 * 1024

    # Job dispatch
    dispatch_mode: str = "local"  # "local" or "redis"
    queue_name: str = "render_jobs"
    worker_concurrency: int = 1
    queue_lease_seconds: int = 30

    # Progress approximation while the external tool runs
    progress_interval_seconds: float = 1.0
    progress_step: int = 10
    progress_ceiling: int = 90

    # Preview extraction
    preview_tool: str = "ffmpeg"
    preview_offset_seconds: float = 1.0
    preview_timeout_seconds: float = 30.0

    # Service
    compute_port: int = 8001
    log_level: str = "INFO"
    log_file: Optional[str] = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
