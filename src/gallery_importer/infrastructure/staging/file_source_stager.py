"""Staging of uploaded import documents."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime
from pathlib import Path

from gallery_importer.domain.errors import JobValidationError
from gallery_importer.domain.jobs import utcnow

logger = logging.getLogger(__name__)


class FileSourceStager:
    """Writes uploads to a staging directory under generated names."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def stage(self, document: bytes) -> str:
        """Persist an upload and return its absolute path."""

        path = self._directory / self._file_name(utcnow())
        try:
            await asyncio.to_thread(self._write, path, document)
        except OSError as exc:
            raise JobValidationError(f"Staging directory not writable: {exc}") from exc
        logger.info("Staged import document at '%s' (%d bytes).", path, len(document))
        return str(path.resolve())

    async def discard(self, file_path: str) -> None:
        """Remove a staged document if it still exists."""

        try:
            await asyncio.to_thread(Path(file_path).unlink, True)
        except OSError as exc:
            logger.warning("Could not remove staged document '%s': %s", file_path, exc)

    def _file_name(self, now: datetime) -> str:
        return f"dgi-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(4)}.json"

    def _write(self, path: Path, document: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(document)


__all__ = ["FileSourceStager"]
