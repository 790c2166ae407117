"""Gallery import routes: upload, job status, control and logs."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response
from fastapi.responses import PlainTextResponse

from gallery_importer.api.dependencies import get_caller, get_import_service, require_api_token
from gallery_importer.application.services import GalleryImportService
from gallery_importer.domain.errors import (
    ImportExecutionError,
    JobConflictError,
    JobForbiddenError,
    JobNotFoundError,
    JobPayloadError,
    JobValidationError,
)
from gallery_importer.domain.status_models import (
    ExternalIdLookupResponse,
    ImportEnqueuedResponse,
    ImportSummaryResponse,
    JobControlRequest,
    JobControlResponse,
    JobListResponse,
    JobStatusResponse,
    StepRunResponse,
)

router = APIRouter(
    prefix="/imports",
    tags=["gallery imports"],
    dependencies=[Depends(require_api_token)],
)


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, JobNotFoundError):
        raise HTTPException(status_code=404, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobForbiddenError):
        raise HTTPException(status_code=403, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobConflictError):
        raise HTTPException(status_code=409, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobValidationError):
        raise HTTPException(status_code=400, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobPayloadError):
        raise HTTPException(
            status_code=422,
            detail={"error": "invalid_payload", "message": str(exc)},
        )
    if isinstance(exc, ImportExecutionError):
        raise HTTPException(status_code=500, detail={"error": exc.code, "message": str(exc)})
    raise HTTPException(
        status_code=500,
        detail={"error": "internal", "message": "Unexpected import error"},
    )


@router.post(
    "",
    response_model=ImportEnqueuedResponse | ImportSummaryResponse,
    status_code=200,
)
async def submit_import(
    request: Request,
    response: Response,
    skip_existing: bool | None = Query(default=None),
    download_images: bool | None = Query(default=None),
    source_base_url: str | None = Query(default=None),
    background: bool = Query(default=False),
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> ImportEnqueuedResponse | ImportSummaryResponse:
    """Import a JSON document inline, or queue it as a background job."""

    overrides = {
        "skip_existing": skip_existing,
        "download_images": download_images,
        "source_base_url": source_base_url,
    }
    try:
        result = await service.submit(
            await request.body(),
            owner=caller,
            overrides=overrides,
            background=background,
        )
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    if isinstance(result, ImportEnqueuedResponse):
        response.status_code = 202
    return result


@router.get("/jobs", response_model=JobListResponse, status_code=200)
async def list_import_jobs(
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> JobListResponse:
    """List import jobs newest first."""

    try:
        return await service.engine.list_jobs(caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, status_code=200)
async def get_import_job(
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> JobStatusResponse:
    """Poll one import job."""

    try:
        return await service.engine.get_status(job_id, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.post("/jobs/{job_id}/control", response_model=JobControlResponse, status_code=200)
async def control_import_job(
    request: JobControlRequest,
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> JobControlResponse:
    """Pause, resume or stop an import job."""

    try:
        job = await service.engine.control(job_id, request.action, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return JobControlResponse(job_id=job.job_id, status=job.status)


@router.post("/jobs/{job_id}/step", response_model=StepRunResponse, status_code=200)
async def run_import_step(
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> StepRunResponse:
    """Run one step of an import job now, under the usual locking rules."""

    try:
        await service.engine.get_job(job_id, caller=caller)
        disposition = await service.engine.run_step(job_id)
        status = await service.engine.get_status(job_id, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return StepRunResponse(job_id=job_id, disposition=disposition.value, job=status)


@router.get("/jobs/{job_id}/log", response_class=PlainTextResponse, status_code=200)
async def read_import_log(
    job_id: str = Path(...),
    caller: str | None = Depends(get_caller),
    service: GalleryImportService = Depends(get_import_service),
) -> PlainTextResponse:
    """Return the text log of an import job."""

    try:
        text = await service.engine.read_log(job_id, caller=caller)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return PlainTextResponse(text)


@router.get(
    "/external-ids/{external_id}",
    response_model=ExternalIdLookupResponse,
    status_code=200,
)
async def lookup_external_id(
    external_id: str = Path(...),
    service: GalleryImportService = Depends(get_import_service),
) -> ExternalIdLookupResponse:
    """Report whether a gallery exists for a source system id."""

    try:
        return await service.lookup_external_id(external_id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


__all__ = ["router"]
