"""Batch step strategies."""

from gallery_importer.application.steps.deletion_step import DeletionStrategy
from gallery_importer.application.steps.import_step import ImportStrategy, resolve_image_url
from gallery_importer.application.steps.orphan_oracle import OrphanOracle

__all__ = ["DeletionStrategy", "ImportStrategy", "OrphanOracle", "resolve_image_url"]
