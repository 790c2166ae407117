"""Application services."""

from gallery_importer.application.services.batch_job_engine import BatchJobEngine
from gallery_importer.application.services.gallery_deletion_service import (
    GalleryDeletionService,
)
from gallery_importer.application.services.gallery_import_service import GalleryImportService

__all__ = ["BatchJobEngine", "GalleryDeletionService", "GalleryImportService"]
