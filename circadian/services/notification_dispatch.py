"""Notification delivery under a per-user rolling hourly cap.

Pending notifications are expired once past ``expires_at``; the rest are sent
highest priority first (oldest first on ties). Each run attempts at most the
user's remaining budget for the last hour. Failed sends stay pending for the
next run and only successful sends count toward later budgets.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import get_settings
from circadian.core.clock import utc_now
from circadian.core.logging import get_logger
from circadian.models.notification import Notification, NotificationStatus
from circadian.models.output import OutputRecord

logger = get_logger(__name__)


@dataclass
class PushMessage:
    notification_id: uuid.UUID
    user_id: uuid.UUID
    title: str
    body: str
    category: str
    priority: float


class NotificationChannel(Protocol):
    """Protocol for push transports."""

    name: str

    async def send(self, message: PushMessage) -> bool:
        """Deliver a message. True on success."""
        ...


class WebhookChannel:
    """POSTs notifications as JSON to the push gateway."""

    name = "webhook"

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.url = url or settings.push_webhook_url
        self.timeout = timeout or settings.push_timeout_seconds
        self.transport = transport

    async def send(self, message: PushMessage) -> bool:
        payload = {
            "notification_id": str(message.notification_id),
            "user_id": str(message.user_id),
            "title": message.title,
            "body": message.body[:500],
            "category": message.category,
            "priority": message.priority,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json=payload)
        if response.is_success:
            return True
        logger.bind(status_code=response.status_code, body=response.text[:200]).warning(
            "push_webhook_rejected"
        )
        return False


class LogChannel:
    """Logs notifications instead of sending them (no gateway configured)."""

    name = "log"

    async def send(self, message: PushMessage) -> bool:
        logger.bind(
            notification_id=str(message.notification_id),
            user_id=str(message.user_id),
            title=message.title,
        ).info("notification_logged")
        return True


def get_channel() -> NotificationChannel:
    if get_settings().push_webhook_url:
        return WebhookChannel()
    return LogChannel()


@dataclass
class DispatchSummary:
    expired: int = 0
    sent: int = 0
    failed: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)


async def expire_notifications(db: AsyncSession, now: datetime) -> int:
    """Mark pending notifications past their expiry as expired."""
    result = await db.execute(
        update(Notification)
        .where(
            Notification.status == NotificationStatus.PENDING,
            Notification.expires_at.is_not(None),
            Notification.expires_at < now,
        )
        .values(status=NotificationStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def sent_in_last_hour(db: AsyncSession, user_id: uuid.UUID, now: datetime) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.user_id == user_id,
            # Includes sends the user has since responded to
            Notification.sent_at.is_not(None),
            Notification.sent_at >= now - timedelta(hours=1),
        )
    )
    return result.scalar_one()


async def dispatch_notifications(
    db: AsyncSession,
    channel: NotificationChannel | None = None,
    max_per_hour: int | None = None,
    now: datetime | None = None,
) -> DispatchSummary:
    """Deliver pending notifications within each user's hourly budget. Commits."""
    channel = channel or get_channel()
    max_per_hour = max_per_hour if max_per_hour is not None else get_settings().notification_max_per_hour
    now = now or utc_now()
    summary = DispatchSummary()

    summary.expired = await expire_notifications(db, now)
    await db.commit()

    result = await db.execute(
        select(Notification, OutputRecord)
        .join(OutputRecord, OutputRecord.id == Notification.output_id)
        .where(Notification.status == NotificationStatus.PENDING)
        .order_by(
            Notification.user_id,
            Notification.priority.desc(),
            Notification.created_at.asc(),
        )
    )
    pending: dict[uuid.UUID, list[tuple[Notification, OutputRecord]]] = {}
    for notification, output in result.all():
        pending.setdefault(notification.user_id, []).append((notification, output))

    for user_id, items in pending.items():
        budget = max_per_hour - await sent_in_last_hour(db, user_id, now)
        if budget <= 0:
            summary.deferred += len(items)
            logger.bind(user_id=str(user_id), pending=len(items)).debug("notification_budget_exhausted")
            continue

        # Every attempt counts against this run's selection, delivered or not
        selected = items[:budget]
        summary.deferred += len(items) - len(selected)

        for notification, output in selected:
            message = PushMessage(
                notification_id=notification.id,
                user_id=user_id,
                title=output.title,
                body=output.body,
                category=output.category,
                priority=notification.priority,
            )
            notification.attempts += 1
            try:
                delivered = await channel.send(message)
                error = None if delivered else f"{channel.name} rejected the notification"
            except Exception as e:
                delivered = False
                error = f"{type(e).__name__}: {e}"

            if delivered:
                notification.status = NotificationStatus.SENT
                notification.sent_at = now
                notification.last_error = None
                summary.sent += 1
            else:
                notification.last_error = error
                summary.failed += 1
                summary.errors.append(f"{notification.id}: {error}")
                logger.bind(notification_id=str(notification.id), error=error).warning(
                    "notification_send_failed"
                )
            await db.commit()

    if summary.sent or summary.failed or summary.expired:
        logger.bind(
            sent=summary.sent,
            failed=summary.failed,
            expired=summary.expired,
            deferred=summary.deferred,
        ).info("notifications_dispatched")
    return summary
