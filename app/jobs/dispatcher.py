"""Task dispatcher interface shared by the in-process and Redis queues."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from app.jobs.models import RenderTask

# Coroutine run once per dequeued task.
TaskHandler = Callable[[RenderTask], Awaitable[None]]


class JobDispatcher(ABC):
    """Abstract interface for task dispatching (local or Redis-backed)."""

    @abstractmethod
    async def enqueue(self, task: RenderTask) -> None:
        """Queue a task. Returns as soon as the task is accepted."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the worker loop(s)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the worker loop(s) gracefully."""
        ...

    @abstractmethod
    async def pending_count(self) -> int:
        """Number of tasks waiting to be picked up."""
        ...
