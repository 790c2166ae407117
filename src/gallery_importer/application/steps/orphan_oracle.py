"""Live-state check deciding whether an image may be physically deleted."""

from __future__ import annotations

import time
from collections.abc import Callable

from gallery_importer.domain.ports import GalleryStore

_DEFAULT_CACHE_TTL_SECONDS = 5.0
_MAX_CACHED_ANSWERS = 4096


class OrphanOracle:
    """Answers "is this image still used by another live gallery?".

    Only positive answers are cached, and only for a few seconds. A cached
    answer can therefore delay a deletion but never cause one.
    """

    def __init__(
        self,
        galleries: GalleryStore,
        *,
        cache_ttl_seconds: float = _DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._galleries = galleries
        self._cache_ttl_seconds = max(cache_ttl_seconds, 0.0)
        self._clock = clock
        self._referenced_until: dict[tuple[str, str | None], float] = {}

    async def is_referenced(self, image_id: str, *, excluding_gallery_id: str | None) -> bool:
        """Return whether any other live gallery references the image."""

        key = (image_id, excluding_gallery_id)
        now = self._clock()
        expires_at = self._referenced_until.get(key)
        if expires_at is not None and expires_at > now:
            return True

        referenced = await self._galleries.is_image_referenced(
            image_id,
            excluding_gallery_id=excluding_gallery_id,
        )
        if referenced and self._cache_ttl_seconds > 0:
            self._remember(key, now + self._cache_ttl_seconds, now)
        else:
            self._referenced_until.pop(key, None)
        return referenced

    async def is_orphan(self, image_id: str, *, excluding_gallery_id: str | None) -> bool:
        return not await self.is_referenced(image_id, excluding_gallery_id=excluding_gallery_id)

    def clear(self) -> None:
        self._referenced_until.clear()

    def _remember(self, key: tuple[str, str | None], expires_at: float, now: float) -> None:
        if len(self._referenced_until) >= _MAX_CACHED_ANSWERS:
            self._referenced_until = {
                cached_key: until
                for cached_key, until in self._referenced_until.items()
                if until > now
            }
        self._referenced_until[key] = expires_at


__all__ = ["OrphanOracle"]
