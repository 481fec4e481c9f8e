"""Render job record, queue payload and the tagged updates that move a job
through its lifecycle."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid

from app.jobs.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Highest progress value a job may report before it completes.
MAX_RUNNING_PROGRESS = 99


class JobRecord(BaseModel):
    """Tracks the lifecycle of one render request.

    Serialized with camelCase keys (``originalPath``, ``createdAt`` ...) and
    ISO-8601 timestamps; either the alias or the field name is accepted when
    parsing.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    filename: str
    original_path: str
    output_path: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    render_command: str
    parent_folder_path: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "JobRecord":
        return cls.model_validate_json(data)


class RenderTask(BaseModel):
    """Payload handed to the queue. Paths are absolute and ``command`` already
    has its placeholders substituted."""
    job_id: str
    input_path: str
    output_path: str
    filename: str
    command: str


# ---------------------------------------------------------------------------
# Tagged updates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StartProcessing:
    pass


@dataclass(frozen=True)
class ReportProgress:
    progress: int


@dataclass(frozen=True)
class Complete:
    output_path: str


@dataclass(frozen=True)
class Fail:
    error: str


JobUpdate = Union[StartProcessing, ReportProgress, Complete, Fail]


def apply_update(job: JobRecord, update: JobUpdate) -> JobRecord:
    """Return a copy of ``job`` with ``update`` applied.

    Raises InvalidTransitionError for anything the state machine forbids:
    pending -> processing -> completed | failed, with failure also allowed
    straight from pending. Terminal records never change.
    """
    now = utcnow()

    if isinstance(update, StartProcessing):
        _require(job, JobStatus.PROCESSING, JobStatus.PENDING)
        return job.model_copy(update={
            "status": JobStatus.PROCESSING,
            "started_at": job.started_at or now,
        })

    if isinstance(update, ReportProgress):
        _require(job, JobStatus.PROCESSING, JobStatus.PROCESSING)
        progress = max(job.progress, min(update.progress, MAX_RUNNING_PROGRESS))
        return job.model_copy(update={"progress": progress})

    if isinstance(update, Complete):
        _require(job, JobStatus.COMPLETED, JobStatus.PROCESSING)
        if not update.output_path:
            raise ValueError("Complete requires an output path")
        return job.model_copy(update={
            "status": JobStatus.COMPLETED,
            "progress": 100,
            "output_path": update.output_path,
            "error": None,
            "completed_at": max(now, job.started_at) if job.started_at else now,
        })

    if isinstance(update, Fail):
        _require(job, JobStatus.FAILED, JobStatus.PENDING, JobStatus.PROCESSING)
        return job.model_copy(update={
            "status": JobStatus.FAILED,
            "output_path": None,
            "error": update.error or "Render failed",
            "completed_at": max(now, job.started_at) if job.started_at else now,
        })

    raise TypeError(f"Unknown job update: {update!r}")


def _require(job: JobRecord, target: JobStatus, *allowed: JobStatus) -> None:
    if job.status not in allowed:
        raise InvalidTransitionError(job.id, job.status.value, target.value)
