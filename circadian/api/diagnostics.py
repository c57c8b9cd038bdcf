"""Per-user scheduling diagnostics."""

import uuid
from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from circadian.core.clock import get_cutoff, utc_now
from circadian.dependencies import AppSettings, Clock, DBSession
from circadian.models.job import JobStatus
from circadian.models.user import User
from circadian.schemas.job import JobSummary
from circadian.services import job_store
from circadian.services.eligibility import check_eligibility

router = APIRouter()


class DiagnosticsResponse(BaseModel):
    user_id: uuid.UUID
    local_day: str
    day_start: datetime
    day_end: datetime
    last_active_at: datetime | None
    recently_active: bool
    account_active: bool
    global_agents_enabled: bool
    user_agents_enabled: bool
    eligible: bool
    today: list[JobSummary]
    pending: list[JobSummary]
    recent: list[JobSummary]
    reasons: list[str]


@router.get("/diagnostics/{user_id}", response_model=DiagnosticsResponse)
async def get_diagnostics(
    user_id: uuid.UUID,
    db: DBSession,
    clock: Clock,
    settings: AppSettings,
) -> DiagnosticsResponse:
    """
    Explain why a user's sessions would or would not run.

    Reasons are human readable and ordered from most to least blocking.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    now = utc_now()
    local_day = clock.local_date_key(now)
    day_start, day_end = clock.local_day_bounds(local_day)

    cutoff = get_cutoff(days=settings.active_user_window_days, now=now)
    recently_active = user.last_active_at is not None and user.last_active_at >= cutoff
    eligibility = await check_eligibility(db, user_id, global_enabled=settings.autonomous_agents_enabled)

    today = await job_store.jobs_for_day(db, user_id, local_day)
    pending = await job_store.list_jobs(db, user_id=user_id, status=JobStatus.PENDING, limit=50)
    recent = await job_store.list_jobs(db, user_id=user_id, limit=20)

    reasons = []
    if not eligibility.eligible and eligibility.reason:
        reasons.append(f"Jobs will be skipped: {eligibility.reason}")
    if not recently_active:
        reasons.append(
            f"Not active in the last {settings.active_user_window_days} days, "
            "so the daily sweep will not schedule new sessions"
        )
    if not settings.scheduler_enabled:
        reasons.append("Scheduler is disabled, nothing runs automatically")
    if not today:
        reasons.append(f"No sessions scheduled for {local_day} yet")
    else:
        due = [j for j in pending if j.scheduled_for <= now]
        stale = [j for j in due if j.scheduled_for < get_cutoff(hours=settings.due_lookback_hours, now=now)]
        if stale:
            reasons.append(
                f"{len(stale)} pending job(s) are older than {settings.due_lookback_hours}h "
                "and will never be picked up"
            )
        if len(due) > len(stale):
            reasons.append(f"{len(due) - len(stale)} job(s) are due and waiting for the poller")
    if eligibility.eligible and recently_active and not reasons:
        reasons.append("All good: sessions will run as scheduled")

    return DiagnosticsResponse(
        user_id=user_id,
        local_day=local_day,
        day_start=day_start,
        day_end=day_end,
        last_active_at=user.last_active_at,
        recently_active=recently_active,
        account_active=user.is_active,
        global_agents_enabled=settings.autonomous_agents_enabled,
        user_agents_enabled=user.autonomous_agents_enabled,
        eligible=eligibility.eligible,
        today=[JobSummary.model_validate(j) for j in today],
        pending=[JobSummary.model_validate(j) for j in pending],
        recent=[JobSummary.model_validate(j) for j in recent],
        reasons=reasons,
    )
