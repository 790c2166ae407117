"""Infrastructure adapters."""

from gallery_importer.infrastructure.logs import FileJobLog
from gallery_importer.infrastructure.media import HttpImageFetcher
from gallery_importer.infrastructure.repositories import (
    InMemoryGalleryCatalog,
    InMemoryJobRepository,
    PostgresGalleryCatalog,
    PostgresJobRepository,
)
from gallery_importer.infrastructure.scheduling import DeferredTaskDispatcher, QueuedTaskTrigger
from gallery_importer.infrastructure.staging import FileSourceStager, JsonPayloadReader

__all__ = [
    "DeferredTaskDispatcher",
    "FileJobLog",
    "FileSourceStager",
    "HttpImageFetcher",
    "InMemoryGalleryCatalog",
    "InMemoryJobRepository",
    "JsonPayloadReader",
    "PostgresGalleryCatalog",
    "PostgresJobRepository",
    "QueuedTaskTrigger",
]
