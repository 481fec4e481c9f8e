"""
External command execution for render jobs.

The render tool is a black box: we only see its exit code and stderr. Progress
is approximated by a ticker that advances a fixed step on a fixed interval
while the process runs.
"""

import asyncio
import logging
import os
import signal
from typing import Awaitable, Callable, Dict, Optional

from app.jobs.errors import ExecutionError

logger = logging.getLogger(__name__)

INPUT_PLACEHOLDER = "{input}"
OUTPUT_PLACEHOLDER = "{output}"

# Characters that keep their meaning inside double quotes in sh.
_DOUBLE_QUOTE_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "$": "\\$", "`": "\\`"})

# How much of stderr ends up in the job's error field
STDERR_TAIL_CHARS = 2000


def quote_path(path: str) -> str:
    return '"' + path.translate(_DOUBLE_QUOTE_ESCAPES) + '"'


def substitute_placeholders(template: str, input_path: str, output_path: str) -> str:
    """Replace ``{input}``/``{output}`` with double-quoted absolute paths."""
    return (
        template
        .replace(INPUT_PLACEHOLDER, quote_path(input_path))
        .replace(OUTPUT_PLACEHOLDER, quote_path(output_path))
    )


class CommandExecutor:
    """Runs shell commands and keeps track of the live process per job so a
    deleted job can have its process terminated."""

    def __init__(self):
        self._active: Dict[str, asyncio.subprocess.Process] = {}
        self._cancelled: set = set()

    async def run(self, job_id: str, command: str) -> str:
        """Run ``command`` to completion. Returns stderr text on success.

        Raises ExecutionError on launch failure, non-zero exit or cancellation.
        """
        logger.info("Executing render command for job_id=%s: %s", job_id, command)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise ExecutionError(f"Failed to launch render command: {e}") from e

        self._active[job_id] = process
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            _kill(process)
            raise
        finally:
            self._active.pop(job_id, None)

        stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()

        if job_id in self._cancelled:
            self._cancelled.discard(job_id)
            raise ExecutionError("Render cancelled")

        if process.returncode != 0:
            detail = stderr_text[-STDERR_TAIL_CHARS:] or "no error output"
            raise ExecutionError(
                f"Render failed: command exited with code {process.returncode}: {detail}"
            )

        if stderr_text:
            logger.warning("Render warning for job_id=%s: %s", job_id, stderr_text[-500:])
        return stderr_text

    def is_running(self, job_id: str) -> bool:
        return job_id in self._active

    def cancel(self, job_id: str) -> bool:
        """Terminate the process running for ``job_id``, if any."""
        process = self._active.get(job_id)
        if process is None:
            return False
        self._cancelled.add(job_id)
        _kill(process)
        logger.info("Terminated render process pid=%s for job_id=%s", process.pid, job_id)
        return True


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it spawned (own process group)."""
    if process.returncode is None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


class ProgressTicker:
    """Calls ``on_tick(progress)`` every ``interval`` seconds, adding ``step``
    each time and stopping at ``ceiling``."""

    def __init__(
        self,
        on_tick: Callable[[int], Awaitable[None]],
        interval: float = 1.0,
        step: int = 10,
        ceiling: int = 90,
        start: int = 0,
    ):
        self._on_tick = on_tick
        self._interval = interval
        self._step = step
        self._ceiling = ceiling
        self._progress = start
        self._task: Optional[asyncio.Task] = None

    @property
    def progress(self) -> int:
        return self._progress

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while self._progress < self._ceiling:
            await asyncio.sleep(self._interval)
            self._progress = min(self._progress + self._step, self._ceiling)
            try:
                await self._on_tick(self._progress)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Progress tick failed")
