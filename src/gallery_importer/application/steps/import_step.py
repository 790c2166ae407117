"""Import step: turns gallery records into catalog entries."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from gallery_importer.domain.errors import (
    GalleryNotFoundError,
    GalleryStoreError,
    ImageFetchError,
)
from gallery_importer.domain.gallery import ImporterOptions, NewGallery
from gallery_importer.domain.import_models import GalleryItem
from gallery_importer.domain.jobs import Job, StepOutcome
from gallery_importer.domain.ports import (
    GalleryStore,
    ImageFetcher,
    MediaStore,
    PayloadReader,
    TermStore,
)

_DEFAULT_BATCH_SIZE = 5
_DEFAULT_IMAGE_BATCH_SIZE = 3
_DEFAULT_CACHE_FLUSH_INTERVAL = 5

logger = logging.getLogger(__name__)


def resolve_image_url(reference: str, base_url: str) -> str:
    """Join a relative image reference to the source site URL."""

    reference = reference.strip()
    if urlparse(reference).scheme or not base_url:
        return reference
    return f"{base_url.rstrip('/')}/{reference.lstrip('/')}"


def _chunks(values: Sequence[str], size: int) -> list[Sequence[str]]:
    return [values[start : start + size] for start in range(0, len(values), size)]


class ImportStrategy:
    """Batch step creating galleries, terms and images from import records."""

    def __init__(
        self,
        *,
        payload_reader: PayloadReader,
        galleries: GalleryStore,
        terms: TermStore,
        media: MediaStore,
        image_fetcher: ImageFetcher,
        defaults: ImporterOptions | None = None,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        image_batch_size: int = _DEFAULT_IMAGE_BATCH_SIZE,
        cache_flush_interval: int = _DEFAULT_CACHE_FLUSH_INTERVAL,
    ) -> None:
        self._payload_reader = payload_reader
        self._galleries = galleries
        self._terms = terms
        self._media = media
        self._image_fetcher = image_fetcher
        self._defaults = defaults or ImporterOptions()
        self.default_batch_size = max(batch_size, 1)
        self._image_batch_size = max(image_batch_size, 1)
        self._cache_flush_interval = max(cache_flush_interval, 1)

    async def load_payload(self, job: Job) -> Sequence[Any]:
        return await self._payload_reader.read_items(job.payload_source)

    async def process_batch(self, job: Job, batch: Sequence[Any]) -> StepOutcome:
        """Import each record independently; failures become skips."""

        options = self._defaults.with_overrides(job.options)
        outcome = StepOutcome(processed=len(batch))
        for offset, raw_item in enumerate(batch):
            index = job.processed + offset
            try:
                created = await self._import_item(index, raw_item, options, outcome)
            except (GalleryStoreError, GalleryNotFoundError) as exc:
                outcome.record_skip(f"Item {index}: failed - {exc}")
                continue
            if created and outcome.succeeded % self._cache_flush_interval == 0:
                await self._galleries.flush_caches()
        return outcome

    def summarize(self, job: Job) -> str:
        return (
            f"Gallery import complete (job {job.job_id}): {job.created} created, "
            f"{job.updated} updated, {job.skipped} skipped."
        )

    async def _import_item(
        self,
        index: int,
        raw_item: Any,
        options: ImporterOptions,
        outcome: StepOutcome,
    ) -> bool:
        if not isinstance(raw_item, dict):
            outcome.record_skip(f"Item {index}: skipped (invalid)")
            return False
        try:
            item = GalleryItem.model_validate(raw_item)
        except ValidationError as exc:
            if any(error["loc"][:1] == ("title",) for error in exc.errors()):
                outcome.record_skip(f"Item {index}: skipped (no title)")
            else:
                outcome.record_skip(f"Item {index}: skipped (invalid record)")
            return False

        outcome.log(f"Processing item {index}: NID={item.nid or 0}, Title='{item.title}'")
        term_ids = await self._resolve_terms(item, outcome)

        external_id = item.external_id
        if options.skip_existing and external_id is not None:
            existing = await self._galleries.find_by_external_id(external_id)
            if existing is not None:
                outcome.record_skip(
                    f"Item {index} (NID {external_id}): SKIPPED - already exists as "
                    f"gallery {existing.gallery_id}"
                )
                return False

        gallery = await self._galleries.create_gallery(
            NewGallery(
                title=item.title,
                description=item.description,
                summary=item.summary,
                published_at=item.publish_date,
                external_id=external_id,
                source_link=item.link,
                term_ids=tuple(term_ids),
            )
        )

        if options.download_images and item.images:
            await self._attach_images(gallery.gallery_id, item.images, options, outcome)

        outcome.record_success(f"Item {index}: created gallery {gallery.gallery_id}")
        return True

    async def _resolve_terms(self, item: GalleryItem, outcome: StepOutcome) -> list[str]:
        term_ids: list[str] = []
        for name in item.type_names():
            term, created = await self._terms.find_or_create_term(name)
            if created:
                outcome.log(f"Created gallery type: {name}")
            if term.term_id not in term_ids:
                term_ids.append(term.term_id)
        return term_ids

    async def _attach_images(
        self,
        gallery_id: str,
        references: Sequence[str],
        options: ImporterOptions,
        outcome: StepOutcome,
    ) -> None:
        outcome.log(f"Gallery {gallery_id}: Starting download of {len(references)} images")
        image_ids: list[str] = []
        failed = 0
        sub_batches = _chunks(references, self._image_batch_size)
        for number, sub_batch in enumerate(sub_batches):
            for reference in sub_batch:
                url = resolve_image_url(reference, options.source_base_url)
                try:
                    fetched = await self._image_fetcher.fetch(url)
                    stored = await self._media.store_image(fetched, gallery_id=gallery_id)
                except (ImageFetchError, GalleryStoreError) as exc:
                    failed += 1
                    outcome.log(f"Failed: {reference} - {exc}")
                    continue
                image_ids.append(stored.image_id)
            if number < len(sub_batches) - 1:
                await self._galleries.flush_caches()

        if not image_ids:
            return
        try:
            await self._galleries.attach_images(
                gallery_id,
                image_ids,
                representative_image_id=image_ids[0],
            )
        except (GalleryStoreError, GalleryNotFoundError) as exc:
            outcome.log(f"Gallery {gallery_id}: could not attach images - {exc}")
            return
        outcome.log(f"Gallery {gallery_id}: Saved {len(image_ids)} images ({failed} failed)")


__all__ = ["ImportStrategy", "resolve_image_url"]
