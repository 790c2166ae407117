"""Deletion step: removes a deleted gallery's images and terms when unused."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from gallery_importer.application.steps.orphan_oracle import OrphanOracle
from gallery_importer.domain.errors import GalleryStoreError, JobPayloadError
from gallery_importer.domain.gallery import DeletionTargetType
from gallery_importer.domain.jobs import Job, StepOutcome
from gallery_importer.domain.ports import GalleryStore, MediaStore, TermStore

_DEFAULT_BATCH_SIZE = 15


class DeletionStrategy:
    """Batch step deleting orphaned images and unused terms."""

    def __init__(
        self,
        *,
        galleries: GalleryStore,
        terms: TermStore,
        media: MediaStore,
        oracle: OrphanOracle,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> None:
        self._galleries = galleries
        self._terms = terms
        self._media = media
        self._oracle = oracle
        self.default_batch_size = max(batch_size, 1)

    async def load_payload(self, job: Job) -> Sequence[Any]:
        items = job.payload_source.items
        if items is None:
            raise JobPayloadError("Deletion job has no targets.")
        return items

    async def process_batch(self, job: Job, batch: Sequence[Any]) -> StepOutcome:
        """Delete each target independently; store failures become skips."""

        outcome = StepOutcome(processed=len(batch))
        for target in batch:
            target_type, target_id = self._parse_target(target)
            try:
                if target_type is DeletionTargetType.IMAGE:
                    await self._delete_image(target_id, job.target_owner_id, outcome)
                elif target_type is DeletionTargetType.TERM:
                    await self._delete_term(target_id, job.target_owner_id, outcome)
                else:
                    outcome.record_skip(f"Target {target!r}: skipped (invalid)")
            except GalleryStoreError as exc:
                outcome.record_skip(f"Target {target_id}: failed - {exc}")
        await self._galleries.flush_caches()
        return outcome

    def summarize(self, job: Job) -> str:
        return (
            f"Gallery {job.target_owner_id} cleanup complete (job {job.job_id}): "
            f"{job.created} removed, {job.skipped} kept."
        )

    def _parse_target(self, target: Any) -> tuple[DeletionTargetType | None, str]:
        if not isinstance(target, dict):
            return None, ""
        target_id = str(target.get("id") or "").strip()
        if not target_id:
            return None, ""
        try:
            return DeletionTargetType(target.get("type")), target_id
        except ValueError:
            return None, target_id

    async def _delete_image(
        self,
        image_id: str,
        gallery_id: str | None,
        outcome: StepOutcome,
    ) -> None:
        if await self._media.get_image(image_id) is None:
            outcome.record_skip(f"Image {image_id}: skipped (missing)")
            return
        if not await self._oracle.is_orphan(image_id, excluding_gallery_id=gallery_id):
            outcome.record_skip(f"Image {image_id}: kept (used by another gallery)")
            return
        await self._media.delete_image(image_id)
        outcome.record_success(f"Image {image_id}: deleted")

    async def _delete_term(
        self,
        term_id: str,
        gallery_id: str | None,
        outcome: StepOutcome,
    ) -> None:
        if await self._terms.get_term(term_id) is None:
            outcome.record_skip(f"Term {term_id}: skipped (missing)")
            return
        usage = await self._terms.term_usage_count(term_id, excluding_gallery_id=gallery_id)
        if usage > 0:
            outcome.record_skip(f"Term {term_id}: kept (used by {usage} galleries)")
            return
        await self._terms.delete_term(term_id)
        outcome.record_success(f"Term {term_id}: deleted")


__all__ = ["DeletionStrategy"]
