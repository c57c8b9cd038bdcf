import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, Float, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from circadian.models.base import Base, TimestampMixin


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    RESPONDED = "responded"
    SKIPPED = "skipped"
    EXPIRED = "expired"


class Notification(Base, TimestampMixin):
    """Pending push for an output record, delivered under a per-user hourly cap."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    output_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("output_records.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(
            NotificationStatus,
            values_callable=lambda e: [x.value for x in e],
            name="notificationstatus",
            native_enum=False,
            length=20,
        ),
        default=NotificationStatus.PENDING,
        index=True,
    )
    priority: Mapped[float] = mapped_column(Float, default=0.5)
    expires_at: Mapped[datetime | None] = mapped_column(default=None)
    sent_at: Mapped[datetime | None] = mapped_column(default=None)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)
    responded_at: Mapped[datetime | None] = mapped_column(default=None)
    response_text: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<Notification {self.id} status={self.status.value}>"
