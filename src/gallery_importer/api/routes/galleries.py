"""Gallery catalog routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response

from gallery_importer.api.dependencies import get_caller, get_deletion_service, require_api_token
from gallery_importer.application.services import GalleryDeletionService
from gallery_importer.domain.errors import GalleryNotFoundError, JobValidationError
from gallery_importer.domain.status_models import GalleryDeletionResponse

router = APIRouter(
    prefix="/galleries",
    tags=["galleries"],
    dependencies=[Depends(require_api_token)],
)


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, GalleryNotFoundError):
        raise HTTPException(status_code=404, detail={"error": exc.code, "message": str(exc)})
    if isinstance(exc, JobValidationError):
        raise HTTPException(status_code=400, detail={"error": exc.code, "message": str(exc)})
    raise HTTPException(
        status_code=500,
        detail={"error": "internal", "message": "Unexpected gallery error"},
    )


@router.delete("/{gallery_id}", response_model=GalleryDeletionResponse, status_code=200)
async def delete_gallery(
    response: Response,
    gallery_id: str = Path(...),
    delete_images: bool | None = Query(default=None),
    delete_terms: bool | None = Query(default=None),
    caller: str | None = Depends(get_caller),
    service: GalleryDeletionService = Depends(get_deletion_service),
) -> GalleryDeletionResponse:
    """Delete a gallery and clean up images and terms nothing else uses."""

    try:
        result = await service.delete_gallery(
            gallery_id,
            owner=caller,
            overrides={"delete_images": delete_images, "delete_terms": delete_terms},
        )
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    if result.background:
        response.status_code = 202
    return result


__all__ = ["router"]
