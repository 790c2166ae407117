"""Gallery deletion with inline or background cleanup of dependent resources."""

from __future__ import annotations

import logging
from typing import Any

from gallery_importer.application.services.batch_job_engine import BatchJobEngine
from gallery_importer.domain.gallery import Gallery, ImporterOptions, deletion_targets
from gallery_importer.domain.jobs import PayloadSource
from gallery_importer.domain.ports import GalleryStore
from gallery_importer.domain.status_models import GalleryDeletionResponse

_DEFAULT_BACKGROUND_IMAGE_THRESHOLD = 30

logger = logging.getLogger(__name__)


def _owned_image_ids(gallery: Gallery) -> list[str]:
    image_ids = list(dict.fromkeys(gallery.image_ids))
    representative = gallery.representative_image_id
    if representative is not None and representative not in image_ids:
        image_ids.append(representative)
    return image_ids


class GalleryDeletionService:
    """Deletes a gallery, then removes its images and terms once unused."""

    def __init__(
        self,
        *,
        engine: BatchJobEngine,
        galleries: GalleryStore,
        defaults: ImporterOptions,
        background_image_threshold: int = _DEFAULT_BACKGROUND_IMAGE_THRESHOLD,
    ) -> None:
        self._engine = engine
        self._galleries = galleries
        self._defaults = defaults
        self._background_image_threshold = max(background_image_threshold, 0)

    @property
    def engine(self) -> BatchJobEngine:
        return self._engine

    async def delete_gallery(
        self,
        gallery_id: str,
        *,
        owner: str | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> GalleryDeletionResponse:
        """Delete the record; large image sets are cleaned up by a background job."""

        options = self._defaults.with_overrides(overrides or {})
        gallery = await self._galleries.delete_gallery(gallery_id)
        image_ids = _owned_image_ids(gallery) if options.delete_images else []
        term_ids = list(gallery.term_ids) if options.delete_terms else []
        targets = deletion_targets(image_ids, term_ids)
        if not targets:
            return GalleryDeletionResponse(gallery_id=gallery.gallery_id)

        if len(image_ids) > self._background_image_threshold:
            job = await self._engine.enqueue(
                PayloadSource.inline(targets),
                owner=owner,
                target_owner_id=gallery.gallery_id,
            )
            logger.info(
                "Gallery '%s' deleted; %d image(s) are being removed in the background.",
                gallery.gallery_id,
                len(image_ids),
            )
            return GalleryDeletionResponse(
                gallery_id=gallery.gallery_id,
                background=True,
                job_id=job.job_id,
            )

        job, _ = await self._engine.run_inline(
            PayloadSource.inline(targets),
            target_owner_id=gallery.gallery_id,
        )
        return GalleryDeletionResponse(
            gallery_id=gallery.gallery_id,
            removed=job.created,
            kept=job.skipped,
        )


__all__ = ["GalleryDeletionService"]
