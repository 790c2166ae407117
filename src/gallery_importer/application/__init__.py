"""Application layer."""

from gallery_importer.application.services import (
    BatchJobEngine,
    GalleryDeletionService,
    GalleryImportService,
)
from gallery_importer.application.steps import DeletionStrategy, ImportStrategy, OrphanOracle

__all__ = [
    "BatchJobEngine",
    "DeletionStrategy",
    "GalleryDeletionService",
    "GalleryImportService",
    "ImportStrategy",
    "OrphanOracle",
]
