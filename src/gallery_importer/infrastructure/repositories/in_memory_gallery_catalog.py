"""In-memory gallery, term and image storage."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from itertools import count

from gallery_importer.domain.errors import GalleryNotFoundError
from gallery_importer.domain.gallery import (
    ClassificationTerm,
    FetchedImage,
    Gallery,
    NewGallery,
    StoredImage,
)
from gallery_importer.domain.ports import GalleryStore, MediaStore, TermStore


class InMemoryGalleryCatalog(GalleryStore, TermStore, MediaStore):
    """Simple catalog for local development and tests."""

    def __init__(self) -> None:
        self._galleries: dict[str, Gallery] = {}
        self._by_external_id: dict[str, str] = {}
        self._terms: dict[str, ClassificationTerm] = {}
        self._term_ids_by_name: dict[str, str] = {}
        self._images: dict[str, StoredImage] = {}
        self._image_content: dict[str, bytes] = {}
        self._ids = count(1)
        self._lock = asyncio.Lock()
        self.cache_flushes = 0

    async def create_gallery(self, gallery: NewGallery) -> Gallery:
        """Persist a gallery record."""

        async with self._lock:
            gallery_id = str(next(self._ids))
            record = Gallery(
                gallery_id=gallery_id,
                title=gallery.title,
                description=gallery.description,
                summary=gallery.summary,
                published_at=gallery.published_at,
                external_id=gallery.external_id,
                source_link=gallery.source_link,
                term_ids=list(gallery.term_ids),
            )
            self._galleries[gallery_id] = record
            if gallery.external_id is not None:
                self._by_external_id.setdefault(gallery.external_id, gallery_id)
            return copy.deepcopy(record)

    async def get_gallery(self, gallery_id: str) -> Gallery | None:
        async with self._lock:
            gallery = self._galleries.get(gallery_id)
            return None if gallery is None else copy.deepcopy(gallery)

    async def find_by_external_id(self, external_id: str) -> Gallery | None:
        async with self._lock:
            gallery_id = self._by_external_id.get(external_id)
            if gallery_id is None:
                return None
            return copy.deepcopy(self._galleries[gallery_id])

    async def list_galleries(self) -> list[Gallery]:
        async with self._lock:
            return [copy.deepcopy(gallery) for gallery in self._galleries.values()]

    async def attach_images(
        self,
        gallery_id: str,
        image_ids: Sequence[str],
        *,
        representative_image_id: str | None,
    ) -> None:
        """Replace gallery members and the representative image."""

        async with self._lock:
            gallery = self._galleries.get(gallery_id)
            if gallery is None:
                raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
            gallery.image_ids = list(image_ids)
            gallery.representative_image_id = representative_image_id

    async def delete_gallery(self, gallery_id: str) -> Gallery:
        """Remove a gallery and its external id mapping."""

        async with self._lock:
            gallery = self._galleries.pop(gallery_id, None)
            if gallery is None:
                raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
            if gallery.external_id is not None:
                if self._by_external_id.get(gallery.external_id) == gallery_id:
                    del self._by_external_id[gallery.external_id]
            return gallery

    async def is_image_referenced(self, image_id: str, *, excluding_gallery_id: str | None) -> bool:
        async with self._lock:
            return any(
                image_id in gallery.image_ids or gallery.representative_image_id == image_id
                for gallery in self._galleries.values()
                if gallery.gallery_id != excluding_gallery_id
            )

    async def flush_caches(self) -> None:
        self.cache_flushes += 1

    async def find_or_create_term(self, name: str) -> tuple[ClassificationTerm, bool]:
        """Return the term with the given name, creating it on first use."""

        normalized = name.strip()
        key = normalized.casefold()
        async with self._lock:
            term_id = self._term_ids_by_name.get(key)
            if term_id is not None:
                return self._terms[term_id], False
            term = ClassificationTerm(term_id=str(next(self._ids)), name=normalized)
            self._terms[term.term_id] = term
            self._term_ids_by_name[key] = term.term_id
            return term, True

    async def get_term(self, term_id: str) -> ClassificationTerm | None:
        async with self._lock:
            return self._terms.get(term_id)

    async def term_usage_count(self, term_id: str, *, excluding_gallery_id: str | None) -> int:
        async with self._lock:
            return sum(
                1
                for gallery in self._galleries.values()
                if gallery.gallery_id != excluding_gallery_id and term_id in gallery.term_ids
            )

    async def delete_term(self, term_id: str) -> bool:
        async with self._lock:
            term = self._terms.pop(term_id, None)
            if term is None:
                return False
            self._term_ids_by_name.pop(term.name.casefold(), None)
            return True

    async def store_image(self, image: FetchedImage, *, gallery_id: str) -> StoredImage:
        """Persist image bytes."""

        async with self._lock:
            stored = StoredImage(
                image_id=str(next(self._ids)),
                gallery_id=gallery_id,
                filename=image.filename,
                content_type=image.content_type,
                size_bytes=len(image.content),
            )
            self._images[stored.image_id] = stored
            self._image_content[stored.image_id] = image.content
            return stored

    async def get_image(self, image_id: str) -> StoredImage | None:
        async with self._lock:
            return self._images.get(image_id)

    async def delete_image(self, image_id: str) -> bool:
        async with self._lock:
            self._image_content.pop(image_id, None)
            return self._images.pop(image_id, None) is not None


__all__ = ["InMemoryGalleryCatalog"]
