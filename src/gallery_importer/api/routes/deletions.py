"""Background deletion job routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import PlainTextResponse

from gallery_importer.api.dependencies import get_caller, get_deletion_service, require_api_token
from gallery_importer.application.services import GalleryDeletionService
from gallery_importer.domain.errors import JobForbiddenError, JobNotFoundError
from gallery_importer.domain.status_models import JobListResponse, JobStatusResponse

router = APIRouter(
    prefix="/deletions",
    tags=["gallery deletions"],
    dependencies=[Depends(require_api_token)],
)


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, JobNotFoundError):
        raise HTTPException(status_code=404, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobForbiddenError):
        raise HTTPException(status_code=403, detail={"error": exc.code, "message": str(exc)})
    raise HTTPException(
        status_code=500,
        detail={"error": "internal", "message": "Unexpected deletion job error"},
    )


@router.get("/jobs", response_model=JobListResponse, status_code=200)
async def list_deletion_jobs(
    caller: str | None = Depends(get_caller),
    service: GalleryDeletionService = Depends(get_deletion_service),
) -> JobListResponse:
    """List deletion jobs newest first."""

    try:
        return await service.engine.list_jobs(caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, status_code=200)
async def get_deletion_job(
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryDeletionService = Depends(get_deletion_service),
) -> JobStatusResponse:
    """Poll one deletion job."""

    try:
        return await service.engine.get_status(job_id, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/jobs/{job_id}/log", response_class=PlainTextResponse, status_code=200)
async def read_deletion_log(
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryDeletionService = Depends(get_deletion_service),
) -> PlainTextResponse:
    """Return the text log of a deletion job."""

    try:
        text = await service.engine.read_log(job_id, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return PlainTextResponse(text)


__all__ = ["router"]
