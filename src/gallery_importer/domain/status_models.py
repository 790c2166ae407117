"""Response and request models for the job HTTP API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gallery_importer.domain.jobs import ControlAction, Job, JobRegistryEntry, JobStatus


class ApiModel(BaseModel):
    """Base model for API payloads."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class JobStatusResponse(ApiModel):
    """Status snapshot of one job."""

    job_id: str = Field(alias="jobId")
    kind: str
    status: JobStatus
    processed: int = 0
    total: int | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    error: str = ""
    done: bool = False
    log_url: str | None = Field(default=None, alias="logUrl")

    @classmethod
    def from_job(cls, job: Job, *, log_url: str | None = None) -> JobStatusResponse:
        return cls(
            job_id=job.job_id,
            kind=job.kind,
            status=job.status,
            processed=job.processed,
            total=job.total,
            created=job.created,
            updated=job.updated,
            skipped=job.skipped,
            error=job.error,
            done=job.done,
            log_url=log_url,
        )


class JobListItem(ApiModel):
    """Registry projection shown in job listings."""

    job_id: str = Field(alias="jobId")
    kind: str
    status: JobStatus
    owner: str | None = None
    created_at: datetime = Field(alias="createdAt")
    last_seen: datetime = Field(alias="lastSeen")

    @classmethod
    def from_entry(cls, entry: JobRegistryEntry) -> JobListItem:
        return cls(
            job_id=entry.job_id,
            kind=entry.kind,
            status=entry.status,
            owner=entry.owner,
            created_at=entry.created_at,
            last_seen=entry.last_seen,
        )


class JobListResponse(ApiModel):
    """Collection wrapper for job listings."""

    jobs: list[JobListItem]


class HealthResponse(ApiModel):
    """Liveness report including background trigger delivery."""

    status: str
    dispatcher: str


class JobControlRequest(ApiModel):
    """Operator command for one job."""

    action: ControlAction


class JobControlResponse(ApiModel):
    """Result of a control command."""

    job_id: str = Field(alias="jobId")
    status: JobStatus
    success: bool = True


class ImportEnqueuedResponse(ApiModel):
    """Returned when an upload was queued as a background job."""

    job_id: str = Field(alias="jobId")
    status: JobStatus
    background: bool = True
    reason: str | None = None
    log_url: str = Field(alias="logUrl")


class ImportSummaryResponse(ApiModel):
    """Returned when an upload was imported synchronously."""

    background: bool = False
    total: int
    created: int
    updated: int
    skipped: int
    messages: list[str] = Field(default_factory=list)


class ExternalIdLookupResponse(ApiModel):
    """Diagnostic lookup of a gallery by external id."""

    external_id: str = Field(alias="externalId")
    exists: bool
    gallery_id: str | None = Field(default=None, alias="galleryId")
    title: str | None = None


class GalleryDeletionResponse(ApiModel):
    """Result of a gallery deletion request."""

    gallery_id: str = Field(alias="galleryId")
    deleted: bool = True
    background: bool = False
    job_id: str | None = Field(default=None, alias="jobId")
    removed: int = 0
    kept: int = 0


class NotificationItem(ApiModel):
    """One consumed owner notification."""

    job_id: str = Field(alias="jobId")
    message: str
    created_at: datetime = Field(alias="createdAt")


class NotificationListResponse(ApiModel):
    """Notifications consumed by the caller."""

    notifications: list[NotificationItem]


class StepRunResponse(ApiModel):
    """Result of running one step on demand."""

    job_id: str = Field(alias="jobId")
    disposition: str
    job: JobStatusResponse | None = None


__all__ = [
    "ApiModel",
    "ExternalIdLookupResponse",
    "GalleryDeletionResponse",
    "HealthResponse",
    "ImportEnqueuedResponse",
    "ImportSummaryResponse",
    "JobControlRequest",
    "JobControlResponse",
    "JobListItem",
    "JobListResponse",
    "JobStatusResponse",
    "NotificationItem",
    "NotificationListResponse",
    "StepRunResponse",
]
