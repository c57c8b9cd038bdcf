"""Operator-facing reads and status changes for notifications.

Delivery itself lives in ``notification_dispatch``; this module only lets an
operator inspect a user's queue, record a response, skip or delete.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.core.clock import utc_now
from circadian.core.logging import get_logger
from circadian.models.notification import Notification, NotificationStatus

logger = get_logger(__name__)

RESPONDABLE = (NotificationStatus.PENDING, NotificationStatus.SENT)


async def get_notification(db: AsyncSession, notification_id: uuid.UUID) -> Notification | None:
    return await db.get(Notification, notification_id, populate_existing=True)


async def list_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: NotificationStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Notification]:
    """A user's notifications, newest first."""
    query = select(Notification).where(Notification.user_id == user_id)
    if status is not None:
        query = query.where(Notification.status == status)
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def pending_for_user(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 10, now: datetime | None = None
) -> list[Notification]:
    """Unexpired pending notifications in delivery order."""
    now = now or utc_now()
    result = await db.execute(
        select(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.status == NotificationStatus.PENDING,
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
        .order_by(Notification.priority.desc(), Notification.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def respond(
    db: AsyncSession, notification_id: uuid.UUID, response_text: str, now: datetime | None = None
) -> bool:
    """Record the user's reply. False unless the notification was pending or sent."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.status.in_(RESPONDABLE))
        .values(
            status=NotificationStatus.RESPONDED,
            responded_at=now or utc_now(),
            response_text=response_text,
        )
        .execution_options(synchronize_session=False)
    )
    responded = result.rowcount == 1
    if responded:
        logger.bind(notification_id=str(notification_id)).info("notification_responded")
    return responded


async def skip(db: AsyncSession, notification_id: uuid.UUID) -> bool:
    """Withdraw a pending notification so it is never delivered."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.status == NotificationStatus.PENDING)
        .values(status=NotificationStatus.SKIPPED)
        .execution_options(synchronize_session=False)
    )
    skipped = result.rowcount == 1
    if skipped:
        logger.bind(notification_id=str(notification_id)).info("notification_skipped")
    return skipped


async def delete_notification(db: AsyncSession, notification_id: uuid.UUID) -> bool:
    result = await db.execute(
        delete(Notification)
        .where(Notification.id == notification_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
