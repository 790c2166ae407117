"""Top-level API router composition."""

from fastapi import APIRouter

from gallery_importer.api.routes import (
    deletions_router,
    galleries_router,
    health_router,
    imports_router,
    notifications_router,
)

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(imports_router)
api_router.include_router(galleries_router)
api_router.include_router(deletions_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
