"""In-process progress event bus.

Listeners are called synchronously, in subscription order, for every status
or progress change. Nothing here crosses the HTTP boundary; clients poll.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    progress: int
    stage: str


ProgressListener = Callable[[ProgressEvent], None]


class Subscription:
    """Cancellation handle returned by EventBus.subscribe.

    Calling the handle is the same as calling ``cancel()``.
    """

    def __init__(self, bus: "EventBus", token: int):
        self._bus = bus
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> bool:
        if not self._active:
            return False
        self._active = False
        return self._bus._remove(self._token)

    def __call__(self) -> bool:
        return self.cancel()


class EventBus:
    def __init__(self):
        self._listeners: Dict[int, ProgressListener] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> Subscription:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener
        return Subscription(self, token)

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for job_id=%s", event.job_id)

    def listener_count(self) -> int:
        return len(self._listeners)

    def _remove(self, token: int) -> bool:
        with self._lock:
            return self._listeners.pop(token, None) is not None
