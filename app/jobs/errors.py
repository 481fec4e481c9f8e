"""
Render job error types.

All errors inherit from RenderJobError. Only ValidationError and
NotFoundError are meant to reach callers of the service; the rest are
absorbed into job records or logged.
"""


class RenderJobError(Exception):
    """Base exception for render job failures."""
    pass


class ValidationError(RenderJobError):
    """Submission arguments are missing or malformed."""
    pass


class NotFoundError(RenderJobError):
    """A job id (or a file it points at) does not exist."""

    def __init__(self, job_id: str, detail: str = "Job not found"):
        self.job_id = job_id
        super().__init__(f"{detail}: {job_id}")


class ExecutionError(RenderJobError):
    """The external command could not run or exited non-zero."""
    pass


class PersistenceError(RenderJobError):
    """Redis could not be reached or rejected an operation."""
    pass


class PreviewGenerationError(RenderJobError):
    """Still-frame extraction from a rendered output failed."""
    pass


class InvalidTransitionError(RenderJobError):
    """An update was applied to a job in a state that does not allow it."""

    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid transition for job {job_id}: {current_state} -> {target_state}"
        )
