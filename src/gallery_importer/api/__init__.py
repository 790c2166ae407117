"""HTTP API."""

from gallery_importer.api.router import api_router

__all__ = ["api_router"]
