"""Notification inspection and control endpoints."""

import uuid

from fastapi import APIRouter, HTTPException, Query, Response, status

from circadian.dependencies import DBSession
from circadian.models.notification import NotificationStatus
from circadian.schemas.notification import NotificationResponseRequest, NotificationSummary
from circadian.services import notification_store

router = APIRouter()


async def _get_or_404(db: DBSession, notification_id: uuid.UUID):
    notification = await notification_store.get_notification(db, notification_id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return notification


@router.get("/notifications/users/{user_id}", response_model=list[NotificationSummary])
async def list_user_notifications(
    user_id: uuid.UUID,
    db: DBSession,
    notification_status: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[NotificationSummary]:
    notifications = await notification_store.list_for_user(
        db, user_id, status=notification_status, limit=limit, offset=offset
    )
    return [NotificationSummary.model_validate(n) for n in notifications]


@router.get("/notifications/users/{user_id}/pending", response_model=list[NotificationSummary])
async def list_pending_notifications(
    user_id: uuid.UUID,
    db: DBSession,
    limit: int = Query(default=10, ge=1, le=50),
) -> list[NotificationSummary]:
    """Unexpired pending notifications in the order the dispatcher would send them."""
    notifications = await notification_store.pending_for_user(db, user_id, limit=limit)
    return [NotificationSummary.model_validate(n) for n in notifications]


@router.get("/notifications/{notification_id}", response_model=NotificationSummary)
async def get_notification(notification_id: uuid.UUID, db: DBSession) -> NotificationSummary:
    return NotificationSummary.model_validate(await _get_or_404(db, notification_id))


@router.post("/notifications/{notification_id}/respond", response_model=NotificationSummary)
async def respond_to_notification(
    notification_id: uuid.UUID,
    request: NotificationResponseRequest,
    db: DBSession,
) -> NotificationSummary:
    """Record the user's reply. Only pending or sent notifications accept one."""
    notification = await _get_or_404(db, notification_id)
    if not await notification_store.respond(db, notification_id, request.response_text):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot respond to a {notification.status.value} notification",
        )
    await db.commit()
    return NotificationSummary.model_validate(await _get_or_404(db, notification_id))


@router.post("/notifications/{notification_id}/skip", response_model=NotificationSummary)
async def skip_notification(notification_id: uuid.UUID, db: DBSession) -> NotificationSummary:
    notification = await _get_or_404(db, notification_id)
    if not await notification_store.skip(db, notification_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot skip a {notification.status.value} notification",
        )
    await db.commit()
    return NotificationSummary.model_validate(await _get_or_404(db, notification_id))


@router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: uuid.UUID, db: DBSession) -> Response:
    if not await notification_store.delete_notification(db, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
