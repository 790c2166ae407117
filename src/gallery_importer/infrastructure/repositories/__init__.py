"""Repository adapters."""

from gallery_importer.infrastructure.repositories.in_memory_gallery_catalog import (
    InMemoryGalleryCatalog,
)
from gallery_importer.infrastructure.repositories.in_memory_job_repository import (
    InMemoryJobRepository,
)
from gallery_importer.infrastructure.repositories.postgres_gallery_catalog import (
    PostgresGalleryCatalog,
)
from gallery_importer.infrastructure.repositories.postgres_job_repository import (
    PostgresJobRepository,
)

__all__ = [
    "InMemoryGalleryCatalog",
    "InMemoryJobRepository",
    "PostgresGalleryCatalog",
    "PostgresJobRepository",
]
