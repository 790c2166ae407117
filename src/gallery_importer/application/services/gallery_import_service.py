"""Gallery import use-cases: upload, execution mode and diagnostics."""

from __future__ import annotations

import logging
from typing import Any

from gallery_importer.application.services.batch_job_engine import BatchJobEngine
from gallery_importer.domain.errors import ImportExecutionError, JobValidationError
from gallery_importer.domain.gallery import ImporterOptions
from gallery_importer.domain.jobs import JobStatus, PayloadSource
from gallery_importer.domain.policies import BackgroundExecutionPolicy
from gallery_importer.domain.ports import GalleryStore, PayloadReader, SourceStager
from gallery_importer.domain.status_models import (
    ExternalIdLookupResponse,
    ImportEnqueuedResponse,
    ImportSummaryResponse,
)

logger = logging.getLogger(__name__)


class GalleryImportService:
    """Accepts import documents and runs them inline or as background jobs."""

    def __init__(
        self,
        *,
        engine: BatchJobEngine,
        stager: SourceStager,
        payload_reader: PayloadReader,
        galleries: GalleryStore,
        execution_policy: BackgroundExecutionPolicy,
        defaults: ImporterOptions,
    ) -> None:
        self._engine = engine
        self._stager = stager
        self._payload_reader = payload_reader
        self._galleries = galleries
        self._execution_policy = execution_policy
        self._defaults = defaults

    @property
    def engine(self) -> BatchJobEngine:
        return self._engine

    async def submit(
        self,
        document: bytes,
        *,
        owner: str | None = None,
        overrides: dict[str, Any] | None = None,
        background: bool = False,
    ) -> ImportEnqueuedResponse | ImportSummaryResponse:
        """Import a document now or queue it, following the execution policy."""

        if not document.strip():
            raise JobValidationError("Import document is empty.")

        options = self._defaults.with_overrides(overrides or {})
        decision = self._execution_policy.decide(
            payload_size_bytes=len(document),
            options=options,
            requested=background,
        )
        if decision.background:
            file_path = await self._stager.stage(document)
            try:
                job = await self._engine.enqueue(
                    PayloadSource.staged(file_path),
                    owner=owner,
                    options=options.to_job_options(),
                )
            except Exception:
                await self._stager.discard(file_path)
                raise
            return ImportEnqueuedResponse(
                job_id=job.job_id,
                status=job.status,
                reason=decision.reason,
                log_url=self._engine.log_url(job.job_id),
            )

        items = self._payload_reader.parse_document(document)
        job, messages = await self._engine.run_inline(
            PayloadSource.inline(items),
            options=options.to_job_options(),
        )
        if job.status is JobStatus.FAILED:
            # payload errors were already raised by parse_document
            raise ImportExecutionError(job.error)
        logger.info(
            "Synchronous import finished: %d created, %d skipped.",
            job.created,
            job.skipped,
        )
        return ImportSummaryResponse(
            total=job.total or 0,
            created=job.created,
            updated=job.updated,
            skipped=job.skipped,
            messages=messages,
        )

    async def lookup_external_id(self, external_id: str) -> ExternalIdLookupResponse:
        """Report whether a gallery was already imported for an external id."""

        normalized = external_id.strip()
        if not normalized:
            raise JobValidationError("External id is required.")
        gallery = await self._galleries.find_by_external_id(normalized)
        return ExternalIdLookupResponse(
            external_id=normalized,
            exists=gallery is not None,
            gallery_id=None if gallery is None else gallery.gallery_id,
            title=None if gallery is None else gallery.title,
        )


__all__ = ["GalleryImportService"]
