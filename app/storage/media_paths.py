"""Path layout for uploaded sources, rendered outputs and previews."""

import os
from typing import Optional

from app.jobs.errors import ValidationError

PREVIEW_SUFFIX = "_preview.jpg"


class MediaPaths:
    """Resolves every file the render service touches under one media root.

    Layout:
        <root>/<relative source path>          uploaded inputs
        <root>/<rendered>/<job_id>_<filename>  rendered outputs
        <root>/<rendered>/<job_id>_preview.jpg still previews
    """

    def __init__(self, root: str, rendered_subdir: str = "rendered"):
        self._root = os.path.realpath(root)
        self._rendered_dir = os.path.join(self._root, rendered_subdir)

    @property
    def root(self) -> str:
        return self._root

    @property
    def rendered_dir(self) -> str:
        return self._rendered_dir

    def ensure_dirs(self) -> None:
        os.makedirs(self._rendered_dir, exist_ok=True)

    def absolute_input(self, input_path: str) -> str:
        """Absolute path of a source file; relative paths hang off the root."""
        if os.path.isabs(input_path):
            return input_path
        return os.path.join(self._root, input_path)

    def resolve_within_root(self, relative_path: str) -> str:
        """Absolute path for a caller-supplied path, refusing anything that
        escapes the media root."""
        candidate = os.path.realpath(os.path.join(self._root, relative_path.lstrip("/\\")))
        if candidate != self._root and not candidate.startswith(self._root + os.sep):
            raise ValidationError(f"Path escapes media root: {relative_path}")
        return candidate

    def output_path_for(self, job_id: str, filename: str) -> str:
        """Output paths carry the job id so two jobs never share one."""
        return os.path.join(self._rendered_dir, f"{job_id}_{os.path.basename(filename)}")

    def preview_path_for(self, job_id: str, output_path: Optional[str] = None) -> str:
        """Preview sits next to the output it was taken from."""
        directory = os.path.dirname(output_path) if output_path else self._rendered_dir
        return os.path.join(directory, f"{job_id}{PREVIEW_SUFFIX}")
