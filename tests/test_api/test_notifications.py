"""Tests for notification endpoints."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from circadian.core.clock import utc_now
from circadian.models.notification import Notification, NotificationStatus

pytestmark = pytest.mark.asyncio


class TestListNotifications:
    """Tests for the per-user listings."""

    async def test_lists_user_notifications(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        other = await user_factory(name="Other")
        await notification_factory(user, title="Mine")
        await notification_factory(user, status=NotificationStatus.SENT, sent_at=utc_now())
        await notification_factory(other, title="Not mine")

        response = await client.get(f"/api/notifications/users/{user.id}")

        assert response.status_code == 200
        assert len(response.json()) == 2
        assert {n["user_id"] for n in response.json()} == {str(user.id)}

        response = await client.get(f"/api/notifications/users/{user.id}", params={"status": "sent"})
        assert [n["status"] for n in response.json()] == ["sent"]

    async def test_pending_in_delivery_order(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        low = await notification_factory(user, priority=0.2)
        high = await notification_factory(user, priority=0.9)
        await notification_factory(user, priority=0.99, expires_at=utc_now() - timedelta(minutes=1))
        await notification_factory(user, status=NotificationStatus.SENT, sent_at=utc_now())

        response = await client.get(f"/api/notifications/users/{user.id}/pending")

        assert response.status_code == 200
        assert [n["id"] for n in response.json()] == [str(high.id), str(low.id)]

    async def test_get_notification(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user, priority=0.7)

        response = await client.get(f"/api/notifications/{notification.id}")

        assert response.status_code == 200
        assert response.json()["priority"] == 0.7
        assert response.json()["status"] == "pending"

    async def test_get_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/notifications/{uuid.uuid4()}")
        assert response.status_code == 404


class TestRespond:
    """Tests for POST /api/notifications/{id}/respond."""

    async def test_records_response(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user, status=NotificationStatus.SENT, sent_at=utc_now())

        response = await client.post(
            f"/api/notifications/{notification.id}/respond",
            json={"response_text": "Yes, the walk really helped."},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "responded"
        assert data["response_text"] == "Yes, the walk really helped."
        assert data["responded_at"] is not None

    async def test_expired_cannot_be_answered(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user, status=NotificationStatus.EXPIRED)

        response = await client.post(
            f"/api/notifications/{notification.id}/respond", json={"response_text": "Late reply"}
        )

        assert response.status_code == 409
        assert "expired" in response.json()["detail"]

    async def test_empty_response_rejected(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user)

        response = await client.post(f"/api/notifications/{notification.id}/respond", json={"response_text": ""})

        assert response.status_code == 422


class TestSkipAndDelete:
    """Tests for withdrawing notifications."""

    async def test_skip_pending(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user)

        response = await client.post(f"/api/notifications/{notification.id}/skip")

        assert response.status_code == 200
        assert response.json()["status"] == "skipped"
        pending = await client.get(f"/api/notifications/users/{user.id}/pending")
        assert pending.json() == []

    async def test_sent_cannot_be_skipped(self, client: AsyncClient, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user, status=NotificationStatus.SENT, sent_at=utc_now())

        response = await client.post(f"/api/notifications/{notification.id}/skip")

        assert response.status_code == 409

    async def test_delete(self, client: AsyncClient, db_session, user_factory, notification_factory):
        user = await user_factory()
        notification = await notification_factory(user)
        notification_id = notification.id

        response = await client.delete(f"/api/notifications/{notification_id}")

        assert response.status_code == 204
        remaining = await db_session.execute(select(Notification.id).where(Notification.id == notification_id))
        assert remaining.all() == []
        assert (await client.delete(f"/api/notifications/{notification_id}")).status_code == 404

    async def test_requires_admin_key(self, client: AsyncClient, user_factory):
        user = await user_factory()
        response = await client.get(f"/api/notifications/users/{user.id}", headers={"X-Admin-Key": ""})
        assert response.status_code == 401
