"""Domain public API."""

from gallery_importer.domain.errors import (
    GalleryNotFoundError,
    GalleryStoreError,
    ImageFetchError,
    ImportJobError,
    JobConflictError,
    JobForbiddenError,
    JobNotFoundError,
    JobPayloadError,
    JobValidationError,
)
from gallery_importer.domain.gallery import (
    ClassificationTerm,
    DeletionTargetType,
    FetchedImage,
    Gallery,
    ImporterOptions,
    NewGallery,
    StoredImage,
    deletion_targets,
)
from gallery_importer.domain.import_models import GalleryItem, GalleryTypeRef
from gallery_importer.domain.jobs import (
    STEP_ELIGIBLE_STATUSES,
    TERMINAL_JOB_STATUSES,
    ControlAction,
    Job,
    JobRegistryEntry,
    JobStatus,
    OwnerNotification,
    PayloadSource,
    PendingTrigger,
    StepDisposition,
    StepOutcome,
)
from gallery_importer.domain.policies import (
    BackgroundExecutionPolicy,
    ExecutionDecision,
    ResourceAwareExecutionPolicy,
    StepPacingPolicy,
)
from gallery_importer.domain.ports import (
    BatchStepStrategy,
    DeferredTaskTrigger,
    GalleryStore,
    ImageFetcher,
    JobLog,
    JobRegistry,
    JobRepository,
    MediaStore,
    OwnerOutbox,
    PayloadReader,
    SourceStager,
    TermStore,
    TriggerQueue,
)

__all__ = [
    "BackgroundExecutionPolicy",
    "BatchStepStrategy",
    "ClassificationTerm",
    "ControlAction",
    "DeferredTaskTrigger",
    "DeletionTargetType",
    "ExecutionDecision",
    "FetchedImage",
    "Gallery",
    "GalleryItem",
    "GalleryNotFoundError",
    "GalleryStore",
    "GalleryStoreError",
    "GalleryTypeRef",
    "ImageFetchError",
    "ImageFetcher",
    "ImportJobError",
    "ImporterOptions",
    "Job",
    "JobConflictError",
    "JobForbiddenError",
    "JobLog",
    "JobNotFoundError",
    "JobPayloadError",
    "JobRegistry",
    "JobRegistryEntry",
    "JobRepository",
    "JobStatus",
    "JobValidationError",
    "MediaStore",
    "NewGallery",
    "OwnerNotification",
    "OwnerOutbox",
    "PayloadReader",
    "PayloadSource",
    "PendingTrigger",
    "ResourceAwareExecutionPolicy",
    "STEP_ELIGIBLE_STATUSES",
    "SourceStager",
    "StepDisposition",
    "StepOutcome",
    "StepPacingPolicy",
    "StoredImage",
    "TERMINAL_JOB_STATUSES",
    "TermStore",
    "TriggerQueue",
    "deletion_targets",
]
