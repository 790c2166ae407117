"""Dependency providers for FastAPI routes."""

import secrets
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from gallery_importer.application.services import GalleryDeletionService, GalleryImportService
from gallery_importer.bootstrap import ImporterApplication, build_application
from gallery_importer.config import Settings
from gallery_importer.domain.ports import OwnerOutbox


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return singleton settings."""

    return Settings()


@lru_cache(maxsize=1)
def get_application() -> ImporterApplication:
    """Return singleton service graph."""

    return build_application(get_settings())


def get_import_service() -> GalleryImportService:
    return get_application().import_service


def get_deletion_service() -> GalleryDeletionService:
    return get_application().deletion_service


def get_owner_outbox() -> OwnerOutbox:
    return get_application().outbox


def require_api_token(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests without the configured bearer token."""

    if not settings.api_token:
        return
    expected = f"Bearer {settings.api_token}"
    if authorization is None or not secrets.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Missing or invalid API token."},
        )


def get_caller(x_owner_id: str | None = Header(default=None)) -> str | None:
    """Return the calling owner id, if the client sent one."""

    if x_owner_id is None:
        return None
    return x_owner_id.strip() or None


__all__ = [
    "get_application",
    "get_caller",
    "get_deletion_service",
    "get_import_service",
    "get_owner_outbox",
    "get_settings",
    "require_api_token",
]
