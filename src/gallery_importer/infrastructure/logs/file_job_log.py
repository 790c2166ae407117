"""File-backed per-job log."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

from gallery_importer.domain.jobs import utcnow

_SAFE_JOB_ID = re.compile(r"[^A-Za-z0-9_.-]")

logger = logging.getLogger(__name__)


class FileJobLog:
    """Appends timestamped blocks to ``<directory>/<job_id>.log``."""

    def __init__(
        self,
        directory: str | Path,
        *,
        url_template: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._directory = Path(directory)
        self._url_template = url_template
        self._clock = clock

    async def append(self, job_id: str, lines: Sequence[str]) -> None:
        """Append one block; write failures are logged, not raised."""

        if not lines:
            return
        block = f"[{self._clock():%Y-%m-%d %H:%M:%S}]\n" + "\n".join(lines) + "\n\n"
        try:
            await asyncio.to_thread(self._write, self._path(job_id), block)
        except OSError as exc:
            logger.warning("Could not write log of job '%s': %s", job_id, exc)

    async def read(self, job_id: str) -> str:
        """Return the log text, empty when nothing was written yet."""

        path = self._path(job_id)
        try:
            return await asyncio.to_thread(path.read_text, "utf-8")
        except FileNotFoundError:
            return ""

    def log_url(self, job_id: str) -> str:
        return self._url_template.format(job_id=job_id)

    def _path(self, job_id: str) -> Path:
        return self._directory / f"{_SAFE_JOB_ID.sub('_', job_id)}.log"

    def _write(self, path: Path, block: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(block)


__all__ = ["FileJobLog"]
