"""Application settings."""

from enum import StrEnum

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RepositoryBackend(StrEnum):
    """Available persistence adapters for jobs and the gallery catalog."""

    IN_MEMORY = "in_memory"
    POSTGRES = "postgres"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Gallery Importer"
    api_prefix: str = ""
    api_token: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    repository_backend: RepositoryBackend = RepositoryBackend.IN_MEMORY
    postgres_dsn: str | None = None
    postgres_pool_min_size: int = 1
    postgres_pool_max_size: int = 10
    staging_dir: str = "var/staging"
    log_dir: str = "var/logs"
    source_base_url: str = ""
    skip_existing: bool = False
    download_images: bool = False
    delete_images: bool = True
    delete_terms: bool = True
    import_batch_size: int = 5
    image_batch_size: int = 3
    cache_flush_interval: int = 5
    deletion_batch_size: int = 15
    background_deletion_threshold: int = 30
    step_budget_seconds: float = 15.0
    lock_ttl_seconds: float = 45.0
    enqueue_delay_seconds: float = 1.0
    continue_delay_seconds: float = 1.0
    slow_step_delay_seconds: float = 5.0
    lock_retry_delay_seconds: float = 10.0
    lock_contention_warning_threshold: int = 5
    job_retention_days: float = 7.0
    job_registry_max_entries: int = 500
    background_size_threshold_mb: float = 3.0
    memory_budget_mb: int = 512
    image_download_timeout_seconds: float = 45.0
    max_image_mb: float | None = None
    orphan_cache_seconds: float = 5.0
    dispatcher_poll_seconds: float = 0.5
    dispatcher_batch_size: int = 20
    dispatcher_lease_seconds: float = 60.0
    dispatcher_max_attempts: int = 5

    @field_validator("source_base_url", mode="before")
    @classmethod
    def strip_base_url(cls, value: object) -> object:
        """Normalize the image source URL."""

        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject inconsistent settings before anything is wired."""

        if self.repository_backend == RepositoryBackend.POSTGRES and not self.postgres_dsn:
            raise ValueError(
                "GALLERY_IMPORTER_POSTGRES_DSN is required when "
                "GALLERY_IMPORTER_REPOSITORY_BACKEND=postgres."
            )
        if self.postgres_pool_min_size < 1:
            raise ValueError("GALLERY_IMPORTER_POSTGRES_POOL_MIN_SIZE must be >= 1.")
        if self.postgres_pool_max_size < self.postgres_pool_min_size:
            raise ValueError(
                "GALLERY_IMPORTER_POSTGRES_POOL_MAX_SIZE must be >= "
                "GALLERY_IMPORTER_POSTGRES_POOL_MIN_SIZE."
            )
        for name in (
            "import_batch_size",
            "image_batch_size",
            "cache_flush_interval",
            "deletion_batch_size",
            "dispatcher_batch_size",
            "dispatcher_max_attempts",
            "job_registry_max_entries",
            "lock_contention_warning_threshold",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"GALLERY_IMPORTER_{name.upper()} must be >= 1.")
        if self.step_budget_seconds <= 0:
            raise ValueError("GALLERY_IMPORTER_STEP_BUDGET_SECONDS must be > 0.")
        if self.lock_ttl_seconds <= self.step_budget_seconds:
            raise ValueError(
                "GALLERY_IMPORTER_LOCK_TTL_SECONDS must be > GALLERY_IMPORTER_STEP_BUDGET_SECONDS."
            )
        if self.dispatcher_lease_seconds <= self.step_budget_seconds:
            raise ValueError(
                "GALLERY_IMPORTER_DISPATCHER_LEASE_SECONDS must be > "
                "GALLERY_IMPORTER_STEP_BUDGET_SECONDS."
            )
        if self.dispatcher_poll_seconds <= 0:
            raise ValueError("GALLERY_IMPORTER_DISPATCHER_POLL_SECONDS must be > 0.")
        if self.job_retention_days <= 0:
            raise ValueError("GALLERY_IMPORTER_JOB_RETENTION_DAYS must be > 0.")
        if self.background_deletion_threshold < 0:
            raise ValueError("GALLERY_IMPORTER_BACKGROUND_DELETION_THRESHOLD must be >= 0.")
        if self.image_download_timeout_seconds <= 0:
            raise ValueError("GALLERY_IMPORTER_IMAGE_DOWNLOAD_TIMEOUT_SECONDS must be > 0.")
        return self

    model_config = SettingsConfigDict(env_prefix="GALLERY_IMPORTER_", extra="ignore")


__all__ = ["RepositoryBackend", "Settings"]
