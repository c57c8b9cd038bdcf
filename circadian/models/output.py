import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from circadian.core.clock import utc_now
from circadian.models.base import Base


class OutputRecord(Base):
    """Durable result of a pipeline run. Written once, never updated."""

    __tablename__ = "output_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    session_type: Mapped[str] = mapped_column(String(64), index=True)
    category: Mapped[str] = mapped_column(String(64))
    title: Mapped[str] = mapped_column(String(512))
    body: Mapped[str] = mapped_column(Text)
    source_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("agent_jobs.id", ondelete="SET NULL"), default=None
    )
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=None)
    produced_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)

    def __repr__(self) -> str:
        return f"<OutputRecord {self.session_type} {self.title[:40]!r}>"
