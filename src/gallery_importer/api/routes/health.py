"""Health check routes."""

from fastapi import APIRouter, Depends

from gallery_importer.api.dependencies import get_application
from gallery_importer.bootstrap import ImporterApplication
from gallery_importer.domain.status_models import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz(
    application: ImporterApplication = Depends(get_application),
) -> HealthResponse:
    """Report liveness and whether background trigger delivery is running."""

    dispatcher = "running" if application.dispatcher.running else "stopped"
    return HealthResponse(status="ok", dispatcher=dispatcher)


__all__ = ["router"]
