"""Owner notification routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from gallery_importer.api.dependencies import get_caller, get_owner_outbox, require_api_token
from gallery_importer.domain.ports import OwnerOutbox
from gallery_importer.domain.status_models import NotificationItem, NotificationListResponse

router = APIRouter(tags=["notifications"], dependencies=[Depends(require_api_token)])


@router.get("/notifications", response_model=NotificationListResponse, status_code=200)
async def consume_notifications(
    caller: str | None = Depends(get_caller),
    outbox: OwnerOutbox = Depends(get_owner_outbox),
) -> NotificationListResponse:
    """Return and clear the caller's completion notices."""

    if caller is None:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid", "message": "X-Owner-Id header is required."},
        )
    notifications = await outbox.consume(caller)
    return NotificationListResponse(
        notifications=[
            NotificationItem(
                job_id=notification.job_id,
                message=notification.message,
                created_at=notification.created_at,
            )
            for notification in notifications
        ]
    )


__all__ = ["router"]
