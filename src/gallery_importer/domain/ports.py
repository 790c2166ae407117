"""Ports for job durability, scheduling, catalog storage and step strategies."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from gallery_importer.domain.gallery import (
    ClassificationTerm,
    FetchedImage,
    Gallery,
    NewGallery,
    StoredImage,
)
from gallery_importer.domain.jobs import (
    ControlAction,
    Job,
    JobRegistryEntry,
    JobStatus,
    OwnerNotification,
    PayloadSource,
    PendingTrigger,
    StepOutcome,
)


class JobRepository(Protocol):
    """Persistence port for job records."""

    async def get_job(self, job_id: str) -> Job | None:
        """Return a job snapshot by id."""

    async def create_job(self, job: Job) -> None:
        """Persist a newly enqueued job."""

    async def try_lock(self, job_id: str, *, lock_token: float, ttl_seconds: float) -> Job | None:
        """Compare-and-set the advisory lock and mark the job running.

        Returns the locked snapshot, or None when the job is missing, not
        eligible for a step, or locked by a holder younger than the TTL.
        """

    async def commit_step(self, job: Job, *, lock_token: float) -> Job | None:
        """Persist step results and release the lock if the token still matches."""

    async def apply_control(self, job_id: str, action: ControlAction) -> Job:
        """Apply a pause, resume or stop command atomically."""

    async def delete_job(self, job_id: str) -> None:
        """Remove a job record."""

    async def list_active_jobs(self) -> list[Job]:
        """Return jobs that are not done."""


@runtime_checkable
class JobRegistry(Protocol):
    """Bounded secondary index of jobs used for listing and GC."""

    async def register(self, job: Job) -> list[str]:
        """Create or refresh the projection of a job.

        Returns the ids of entries evicted to stay within capacity.
        """

    async def update_status(self, job_id: str, status: JobStatus) -> None:
        """Update status and last-seen of a known job."""

    async def list_entries(self, kind: str | None = None) -> list[JobRegistryEntry]:
        """Return entries newest first."""

    async def gc(self, retention_days: float) -> list[str]:
        """Drop entries not seen within the retention window and return their ids."""


@runtime_checkable
class TriggerQueue(Protocol):
    """Durable queue backing the deferred task trigger."""

    async def enqueue_trigger(self, *, topic: str, job_id: str, not_before: datetime) -> None:
        """Persist one trigger request."""

    async def claim_due_triggers(self, *, limit: int, lease_seconds: float) -> list[PendingTrigger]:
        """Claim due triggers and hide them for the lease duration."""

    async def acknowledge_trigger(self, trigger_id: int) -> None:
        """Remove a handled trigger."""


@runtime_checkable
class OwnerOutbox(Protocol):
    """Read-once notifications keyed by owner id and job id."""

    async def deliver_once(self, owner_id: str, job_id: str, message: str) -> bool:
        """Store a notification unless one already exists for the job."""

    async def consume(self, owner_id: str) -> list[OwnerNotification]:
        """Return and clear the owner's pending notifications."""

    async def forget_job(self, job_id: str) -> None:
        """Drop delivery bookkeeping and unread notifications of a collected job."""


class DeferredTaskTrigger(Protocol):
    """At-least-once delayed invocation of a job step."""

    async def schedule(self, job_id: str, not_before: datetime) -> None:
        """Arrange for a step of the job to run no earlier than the given time."""


class JobLog(Protocol):
    """Append-only per-job text log."""

    async def append(self, job_id: str, lines: Sequence[str]) -> None:
        """Append a timestamped block; never raises."""

    async def read(self, job_id: str) -> str:
        """Return the full log text."""

    def log_url(self, job_id: str) -> str:
        """Return the URL clients use to read the log."""


class GalleryStore(Protocol):
    """Gallery record storage."""

    async def create_gallery(self, gallery: NewGallery) -> Gallery:
        """Persist a gallery record."""

    async def get_gallery(self, gallery_id: str) -> Gallery | None:
        """Return a gallery by id."""

    async def find_by_external_id(self, external_id: str) -> Gallery | None:
        """Return the gallery imported for an external id."""

    async def attach_images(
        self,
        gallery_id: str,
        image_ids: Sequence[str],
        *,
        representative_image_id: str | None,
    ) -> None:
        """Set gallery members and the representative image."""

    async def delete_gallery(self, gallery_id: str) -> Gallery:
        """Delete a gallery and return its last state."""

    async def is_image_referenced(self, image_id: str, *, excluding_gallery_id: str | None) -> bool:
        """Return whether another live gallery uses the image as member or representative."""

    async def flush_caches(self) -> None:
        """Drop cached lookups."""


class TermStore(Protocol):
    """Classification term storage."""

    async def find_or_create_term(self, name: str) -> tuple[ClassificationTerm, bool]:
        """Return the term named so, creating it when missing."""

    async def get_term(self, term_id: str) -> ClassificationTerm | None:
        """Return a term by id."""

    async def term_usage_count(self, term_id: str, *, excluding_gallery_id: str | None) -> int:
        """Count galleries referencing the term."""

    async def delete_term(self, term_id: str) -> bool:
        """Delete a term."""


class MediaStore(Protocol):
    """Image storage."""

    async def store_image(self, image: FetchedImage, *, gallery_id: str) -> StoredImage:
        """Persist downloaded image bytes."""

    async def get_image(self, image_id: str) -> StoredImage | None:
        """Return image metadata."""

    async def delete_image(self, image_id: str) -> bool:
        """Delete an image."""


class ImageFetcher(Protocol):
    """Remote image download port."""

    async def fetch(self, url: str) -> FetchedImage:
        """Download one image."""


class PayloadReader(Protocol):
    """Reads the full item list of a job."""

    async def read_items(self, source: PayloadSource) -> list[Any]:
        """Return payload items or raise JobPayloadError."""

    def parse_document(self, raw: bytes) -> list[Any]:
        """Parse an import document into its item list."""


class SourceStager(Protocol):
    """Keeps uploaded import documents until their job has read them."""

    async def stage(self, document: bytes) -> str:
        """Persist an upload and return its path."""

    async def discard(self, file_path: str) -> None:
        """Remove a staged upload."""


class BatchStepStrategy(Protocol):
    """Unit of work applied to contiguous slices of a job payload."""

    default_batch_size: int

    async def load_payload(self, job: Job) -> Sequence[Any]:
        """Return the full ordered payload of the job."""

    async def process_batch(self, job: Job, batch: Sequence[Any]) -> StepOutcome:
        """Process the next slice starting at the job's processed offset."""

    def summarize(self, job: Job) -> str:
        """Return the owner summary for a completed job."""


__all__ = [
    "BatchStepStrategy",
    "DeferredTaskTrigger",
    "GalleryStore",
    "ImageFetcher",
    "JobLog",
    "JobRegistry",
    "JobRepository",
    "MediaStore",
    "OwnerOutbox",
    "PayloadReader",
    "SourceStager",
    "TermStore",
    "TriggerQueue",
]
