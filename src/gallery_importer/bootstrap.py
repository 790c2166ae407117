"""Application bootstrap/wiring."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from gallery_importer.application.services import (
    BatchJobEngine,
    GalleryDeletionService,
    GalleryImportService,
)
from gallery_importer.application.steps import DeletionStrategy, ImportStrategy, OrphanOracle
from gallery_importer.config import RepositoryBackend, Settings
from gallery_importer.domain.gallery import ImporterOptions
from gallery_importer.domain.policies import ResourceAwareExecutionPolicy, StepPacingPolicy
from gallery_importer.domain.ports import BatchStepStrategy, DeferredTaskTrigger, OwnerOutbox
from gallery_importer.infrastructure.logs import FileJobLog
from gallery_importer.infrastructure.media import HttpImageFetcher
from gallery_importer.infrastructure.repositories import (
    InMemoryGalleryCatalog,
    InMemoryJobRepository,
    PostgresGalleryCatalog,
    PostgresJobRepository,
)
from gallery_importer.infrastructure.scheduling import DeferredTaskDispatcher
from gallery_importer.infrastructure.staging import FileSourceStager, JsonPayloadReader

IMPORT_JOB_KIND = "gallery_import"
DELETION_JOB_KIND = "gallery_deletion"

_MEGABYTE = 1024 * 1024

logger = logging.getLogger(__name__)


class _Closeable(Protocol):
    async def close(self) -> None: ...


@dataclass(slots=True)
class ImporterApplication:
    """Composed service graph with its background lifecycle."""

    import_service: GalleryImportService
    deletion_service: GalleryDeletionService
    dispatcher: DeferredTaskDispatcher
    outbox: OwnerOutbox
    closeables: tuple[_Closeable, ...] = ()

    @property
    def import_engine(self) -> BatchJobEngine:
        return self.import_service.engine

    @property
    def deletion_engine(self) -> BatchJobEngine:
        return self.deletion_service.engine

    async def startup(self) -> None:
        """Start trigger delivery and re-arm jobs interrupted by a restart."""

        await self.dispatcher.start()
        await self.import_engine.recover_pending()
        await self.deletion_engine.recover_pending()

    async def shutdown(self) -> None:
        """Stop trigger delivery and release connection pools."""

        await self.dispatcher.stop()
        for closeable in self.closeables:
            await closeable.close()


def _build_job_repository(
    settings: Settings,
) -> InMemoryJobRepository | PostgresJobRepository:
    if settings.repository_backend == RepositoryBackend.POSTGRES:
        if settings.postgres_dsn is None:
            raise ValueError(
                "GALLERY_IMPORTER_POSTGRES_DSN is required when "
                "GALLERY_IMPORTER_REPOSITORY_BACKEND=postgres."
            )
        return PostgresJobRepository(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
            max_registry_entries=settings.job_registry_max_entries,
        )
    return InMemoryJobRepository(max_registry_entries=settings.job_registry_max_entries)


def _build_catalog(settings: Settings) -> InMemoryGalleryCatalog | PostgresGalleryCatalog:
    if settings.repository_backend == RepositoryBackend.POSTGRES and settings.postgres_dsn:
        return PostgresGalleryCatalog(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
        )
    return InMemoryGalleryCatalog()


def _api_path(settings: Settings, path: str) -> str:
    api_prefix = settings.api_prefix.strip().rstrip("/")
    if api_prefix and not api_prefix.startswith("/"):
        api_prefix = f"/{api_prefix}"
    return f"{api_prefix}{path}"


def _default_options(settings: Settings) -> ImporterOptions:
    return ImporterOptions(
        skip_existing=settings.skip_existing,
        download_images=settings.download_images,
        delete_images=settings.delete_images,
        delete_terms=settings.delete_terms,
        source_base_url=settings.source_base_url,
    )


def _build_pacing(settings: Settings) -> StepPacingPolicy:
    return StepPacingPolicy(
        step_budget_seconds=settings.step_budget_seconds,
        continue_delay_seconds=settings.continue_delay_seconds,
        slow_step_delay_seconds=settings.slow_step_delay_seconds,
    )


def _build_engine(
    *,
    kind: str,
    strategy: BatchStepStrategy,
    trigger: DeferredTaskTrigger,
    job_log: FileJobLog,
    repository: InMemoryJobRepository | PostgresJobRepository,
    settings: Settings,
    pacing: StepPacingPolicy,
) -> BatchJobEngine:
    return BatchJobEngine(
        kind=kind,
        strategy=strategy,
        repository=repository,
        registry=repository,
        trigger=trigger,
        outbox=repository,
        job_log=job_log,
        pacing=pacing,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        enqueue_delay_seconds=settings.enqueue_delay_seconds,
        lock_retry_delay_seconds=settings.lock_retry_delay_seconds,
        retention_days=settings.job_retention_days,
        contention_warning_threshold=settings.lock_contention_warning_threshold,
    )


def build_application(settings: Settings) -> ImporterApplication:
    """Compose service graph."""

    repository = _build_job_repository(settings)
    catalog = _build_catalog(settings)
    defaults = _default_options(settings)
    pacing = _build_pacing(settings)
    dispatcher = DeferredTaskDispatcher(
        repository,
        poll_interval_seconds=settings.dispatcher_poll_seconds,
        batch_size=settings.dispatcher_batch_size,
        lease_seconds=settings.dispatcher_lease_seconds,
        max_attempts=settings.dispatcher_max_attempts,
    )
    payload_reader = JsonPayloadReader()
    max_image_bytes = (
        None if settings.max_image_mb is None else int(settings.max_image_mb * _MEGABYTE)
    )

    import_engine = _build_engine(
        kind=IMPORT_JOB_KIND,
        strategy=ImportStrategy(
            payload_reader=payload_reader,
            galleries=catalog,
            terms=catalog,
            media=catalog,
            image_fetcher=HttpImageFetcher(
                timeout_seconds=settings.image_download_timeout_seconds,
                max_image_bytes=max_image_bytes,
            ),
            defaults=defaults,
            batch_size=settings.import_batch_size,
            image_batch_size=settings.image_batch_size,
            cache_flush_interval=settings.cache_flush_interval,
        ),
        trigger=dispatcher.trigger_for(IMPORT_JOB_KIND),
        job_log=FileJobLog(
            Path(settings.log_dir) / "imports",
            url_template=_api_path(settings, "/imports/jobs/{job_id}/log"),
        ),
        repository=repository,
        settings=settings,
        pacing=pacing,
    )
    deletion_engine = _build_engine(
        kind=DELETION_JOB_KIND,
        strategy=DeletionStrategy(
            galleries=catalog,
            terms=catalog,
            media=catalog,
            oracle=OrphanOracle(catalog, cache_ttl_seconds=settings.orphan_cache_seconds),
            batch_size=settings.deletion_batch_size,
        ),
        trigger=dispatcher.trigger_for(DELETION_JOB_KIND),
        job_log=FileJobLog(
            Path(settings.log_dir) / "deletions",
            url_template=_api_path(settings, "/deletions/jobs/{job_id}/log"),
        ),
        repository=repository,
        settings=settings,
        pacing=pacing,
    )
    dispatcher.register_handler(IMPORT_JOB_KIND, import_engine.run_step)
    dispatcher.register_handler(DELETION_JOB_KIND, deletion_engine.run_step)

    logger.info(
        "Built gallery importer with %s backend.",
        settings.repository_backend.value,
    )
    closeables: tuple[_Closeable, ...] = ()
    if isinstance(repository, PostgresJobRepository):
        closeables = (repository,)
    if isinstance(catalog, PostgresGalleryCatalog):
        closeables = (*closeables, catalog)

    return ImporterApplication(
        import_service=GalleryImportService(
            engine=import_engine,
            stager=FileSourceStager(settings.staging_dir),
            payload_reader=payload_reader,
            galleries=catalog,
            execution_policy=ResourceAwareExecutionPolicy(
                size_threshold_bytes=int(settings.background_size_threshold_mb * _MEGABYTE),
                memory_budget_bytes=settings.memory_budget_mb * _MEGABYTE,
            ),
            defaults=defaults,
        ),
        deletion_service=GalleryDeletionService(
            engine=deletion_engine,
            galleries=catalog,
            defaults=defaults,
            background_image_threshold=settings.background_deletion_threshold,
        ),
        dispatcher=dispatcher,
        outbox=repository,
        closeables=closeables,
    )


__all__ = ["DELETION_JOB_KIND", "IMPORT_JOB_KIND", "ImporterApplication", "build_application"]
