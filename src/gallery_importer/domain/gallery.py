"""Gallery catalog entities and importer options."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

_OPTION_FLAGS = ("skip_existing", "download_images", "delete_images", "delete_terms")


@dataclass(slots=True, frozen=True)
class ImporterOptions:
    """Recognized importer switches, passed explicitly instead of read globally."""

    skip_existing: bool = False
    download_images: bool = False
    delete_images: bool = True
    delete_terms: bool = True
    source_base_url: str = ""

    def with_overrides(self, overrides: Mapping[str, Any]) -> ImporterOptions:
        """Return a copy with recognized keys from a job options blob applied."""

        changes: dict[str, Any] = {}
        for flag in _OPTION_FLAGS:
            if flag in overrides and overrides[flag] is not None:
                changes[flag] = bool(overrides[flag])
        base_url = overrides.get("source_base_url")
        if isinstance(base_url, str):
            changes["source_base_url"] = base_url.strip()
        return replace(self, **changes)

    def to_job_options(self) -> dict[str, Any]:
        """Serialize the per-job import switches."""

        return {
            "skip_existing": self.skip_existing,
            "download_images": self.download_images,
            "source_base_url": self.source_base_url,
        }


@dataclass(slots=True, frozen=True)
class NewGallery:
    """Fields required to create a gallery record."""

    title: str
    description: str = ""
    summary: str = ""
    published_at: str | None = None
    external_id: str | None = None
    source_link: str | None = None
    term_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class Gallery:
    """Persisted gallery record."""

    gallery_id: str
    title: str
    description: str = ""
    summary: str = ""
    published_at: str | None = None
    external_id: str | None = None
    source_link: str | None = None
    term_ids: list[str] = field(default_factory=list)
    image_ids: list[str] = field(default_factory=list)
    representative_image_id: str | None = None


@dataclass(slots=True, frozen=True)
class ClassificationTerm:
    """Gallery type term."""

    term_id: str
    name: str


@dataclass(slots=True, frozen=True)
class StoredImage:
    """Image persisted in the media store."""

    image_id: str
    gallery_id: str | None
    filename: str
    content_type: str | None
    size_bytes: int


@dataclass(slots=True, frozen=True)
class FetchedImage:
    """Downloaded remote image waiting to be stored."""

    url: str
    filename: str
    content: bytes
    content_type: str | None = None


class DeletionTargetType(StrEnum):
    """Dependent resource kinds removed by deletion jobs."""

    IMAGE = "image"
    TERM = "term"


def deletion_targets(
    image_ids: Iterable[str],
    term_ids: Iterable[str] = (),
) -> list[dict[str, str]]:
    """Build the ordered deletion payload: images first, then terms."""

    targets = [{"type": DeletionTargetType.IMAGE.value, "id": str(i)} for i in image_ids]
    targets.extend({"type": DeletionTargetType.TERM.value, "id": str(t)} for t in term_ids)
    return targets


__all__ = [
    "ClassificationTerm",
    "DeletionTargetType",
    "FetchedImage",
    "Gallery",
    "ImporterOptions",
    "NewGallery",
    "StoredImage",
    "deletion_targets",
]
