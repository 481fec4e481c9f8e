"""
Still-frame previews for rendered outputs.

A preview is one JPEG frame pulled from the rendered file at a fixed offset
and stored next to it as ``<job_id>_preview.jpg``. Jobs without a preview
are served a placeholder drawn with Pillow.
"""

import asyncio
import io
import logging
import os
import shutil
from functools import lru_cache
from typing import List, Optional

from PIL import Image, ImageDraw

from app.jobs.errors import PreviewGenerationError

logger = logging.getLogger(__name__)

PLACEHOLDER_SIZE = (320, 180)
PLACEHOLDER_BACKGROUND = (40, 40, 40)


class PreviewGenerator:
    def __init__(
        self,
        tool: str = "ffmpeg",
        offset_seconds: float = 1.0,
        timeout_seconds: float = 30.0,
    ):
        self._tool = tool
        self._offset_seconds = offset_seconds
        self._timeout_seconds = timeout_seconds

    def build_command(self, source_path: str, preview_path: str) -> List[str]:
        binary = shutil.which(self._tool) or self._tool
        return [
            binary,
            "-y",
            "-ss", f"{self._offset_seconds:g}",
            "-i", source_path,
            "-vframes", "1",
            "-q:v", "2",
            preview_path,
        ]

    async def generate(self, job_id: str, source_path: str, preview_path: str) -> str:
        """Extract a frame from ``source_path`` into ``preview_path``.

        Raises PreviewGenerationError on any failure; callers log it and move
        on since a missing preview never fails a job.
        """
        if not os.path.exists(source_path):
            raise PreviewGenerationError(f"Rendered file not found: {source_path}")

        cmd = self.build_command(source_path, preview_path)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PreviewGenerationError(f"Could not launch {self._tool}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise PreviewGenerationError(f"Preview extraction timed out for job {job_id}")

        if process.returncode != 0 or not os.path.exists(preview_path):
            tail = (stderr or b"").decode("utf-8", errors="replace")[-500:]
            raise PreviewGenerationError(
                f"Preview extraction exited with code {process.returncode}: {tail}"
            )

        logger.info("Preview generated for job_id=%s: %s", job_id, preview_path)
        return preview_path

    async def try_generate(self, job_id: str, source_path: str, preview_path: str) -> Optional[str]:
        """Best-effort variant: logs and returns None instead of raising."""
        try:
            return await self.generate(job_id, source_path, preview_path)
        except PreviewGenerationError as e:
            logger.warning("Failed to generate preview for job_id=%s: %s", job_id, e)
            return None


@lru_cache(maxsize=1)
def placeholder_jpeg() -> bytes:
    """Neutral grey frame with a play glyph, served when no preview exists."""
    width, height = PLACEHOLDER_SIZE
    img = Image.new("RGB", PLACEHOLDER_SIZE, PLACEHOLDER_BACKGROUND)
    draw = ImageDraw.Draw(img)
    cx, cy = width // 2, height // 2
    draw.polygon(
        [(cx - 18, cy - 24), (cx - 18, cy + 24), (cx + 24, cy)],
        fill=(120, 120, 120),
    )
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=80)
    return buf.getvalue()
