"""Scheduled thinking-session jobs."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from circadian.models.base import Base, TimestampMixin


class JobStatus(str, enum.Enum):
    """Job lifecycle. Terminal states are never re-opened."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED)


class SessionType(str, enum.Enum):
    """Known session types. The column itself is an open string."""

    MORNING_BRIEFING = "morning_briefing"
    MIDDAY_CURIOSITY = "midday_curiosity"
    AFTERNOON_SYNTHESIS = "afternoon_synthesis"
    EVENING_CONSOLIDATION = "evening_consolidation"
    NIGHT_DREAM = "night_dream"
    WEEKLY_DIGEST = "weekly_digest"
    SELF_REVIEW = "self_review"
    INVESTMENT_RESEARCH = "investment_research"
    ABILITY_SPENDING = "ability_spending"
    HEALTH_CHECK_MORNING = "health_check_morning"
    HEALTH_CHECK_EVENING = "health_check_evening"


class Job(Base, TimestampMixin):
    """One scheduled run of a session type for a user on a local day.

    ``local_day`` is the reference-timezone calendar day the job belongs to,
    which is not always the day of ``scheduled_for`` (the night session fires
    after midnight).
    """

    __tablename__ = "agent_jobs"
    __table_args__ = (
        UniqueConstraint("user_id", "session_type", "local_day", name="uq_agent_job_user_type_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    session_type: Mapped[str] = mapped_column(String(64), index=True)
    local_day: Mapped[str] = mapped_column(String(10), index=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            values_callable=lambda e: [x.value for x in e],
            name="jobstatus",
            native_enum=False,
            length=20,
        ),
        default=JobStatus.PENDING,
        index=True,
    )

    scheduled_for: Mapped[datetime] = mapped_column(index=True)
    started_at: Mapped[datetime | None] = mapped_column(default=None)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    result_count: Mapped[int] = mapped_column(Integer, default=0)
    output_ref: Mapped[str | None] = mapped_column(String(64), default=None)
    session_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=None)

    def __repr__(self) -> str:
        return f"<Job {self.session_type} {self.local_day} status={self.status.value}>"
