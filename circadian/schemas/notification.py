import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from circadian.models.notification import NotificationStatus


class NotificationSummary(BaseModel):
    """Notification as returned by operator endpoints."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    output_id: uuid.UUID
    status: NotificationStatus
    priority: float
    created_at: datetime
    expires_at: datetime | None = None
    sent_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None
    responded_at: datetime | None = None
    response_text: str | None = None


class NotificationResponseRequest(BaseModel):
    response_text: str = Field(min_length=1, max_length=5000)
