import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from circadian.models.job import JobStatus


class JobSummary(BaseModel):
    """Job as returned by operator endpoints."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    session_type: str
    local_day: str
    status: JobStatus
    scheduled_for: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result_count: int = 0
    output_ref: str | None = None
    session_metadata: dict[str, Any] | None = None
