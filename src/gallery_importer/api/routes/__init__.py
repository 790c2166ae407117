"""Route modules public API."""

from gallery_importer.api.routes.deletions import router as deletions_router
from gallery_importer.api.routes.galleries import router as galleries_router
from gallery_importer.api.routes.health import router as health_router
from gallery_importer.api.routes.imports import router as imports_router
from gallery_importer.api.routes.notifications import router as notifications_router

__all__ = [
    "deletions_router",
    "galleries_router",
    "health_router",
    "imports_router",
    "notifications_router",
]
