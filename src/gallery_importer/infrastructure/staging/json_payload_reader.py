"""JSON import document reader."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from gallery_importer.domain.errors import JobPayloadError
from gallery_importer.domain.jobs import PayloadSource

_UTF8_BOM = b"\xef\xbb\xbf"


def parse_document(raw: bytes) -> list[Any]:
    """Return the item list of an import document.

    Accepts ``{"items": [...]}``, a bare list, or a single record which is
    wrapped into a one-element list.
    """

    if raw.startswith(_UTF8_BOM):
        raw = raw[len(_UTF8_BOM) :]
    try:
        data = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise JobPayloadError(f"Invalid JSON: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        raise JobPayloadError(f"Invalid JSON: {exc.msg}") from exc

    if not isinstance(data, (dict, list)):
        raise JobPayloadError("Invalid JSON: expected an object or a list")
    items = data.get("items", data) if isinstance(data, dict) else data
    if not isinstance(items, list):
        items = [items]
    return items


class JsonPayloadReader:
    """Reads job payloads from staged JSON files or inline item lists."""

    def __init__(self) -> None:
        self._cached_key: tuple[str, int, int] | None = None
        self._cached_items: list[Any] = []

    def parse_document(self, raw: bytes) -> list[Any]:
        return parse_document(raw)

    async def read_items(self, source: PayloadSource) -> list[Any]:
        """Return payload items; raises JobPayloadError for unreadable sources."""

        if source.items is not None:
            return list(source.items)
        if not source.file_path:
            raise JobPayloadError("Source file missing")
        return await asyncio.to_thread(self._read_file, Path(source.file_path))

    def _read_file(self, path: Path) -> list[Any]:
        try:
            stat = path.stat()
        except FileNotFoundError as exc:
            raise JobPayloadError("Source file missing") from exc
        except OSError as exc:
            raise JobPayloadError("Cannot read file") from exc

        key = (str(path), stat.st_mtime_ns, stat.st_size)
        if key == self._cached_key:
            return list(self._cached_items)

        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise JobPayloadError("Source file missing") from exc
        except OSError as exc:
            raise JobPayloadError("Cannot read file") from exc

        items = parse_document(raw)
        self._cached_key = key
        self._cached_items = items
        return list(items)


__all__ = ["JsonPayloadReader", "parse_document"]
