"""Job inspection and control endpoints."""

import uuid

from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import BaseModel

from circadian.core.clock import parse_date_key, utc_now
from circadian.core.scheduler import get_job_schedules
from circadian.dependencies import AppSettings, Clock, Config, DBSession, Executor
from circadian.models.job import JobStatus
from circadian.models.user import User
from circadian.schemas.job import JobSummary
from circadian.services import job_store
from circadian.services.daily_scheduler import schedule_day

router = APIRouter()


class ScheduleResponse(BaseModel):
    """Response model for a timer schedule."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class ScheduleDayResponse(BaseModel):
    user_id: uuid.UUID
    date: str
    created: list[JobSummary]


class JobRunResponse(BaseModel):
    job_id: uuid.UUID
    session_type: str
    status: JobStatus
    message: str | None = None
    output_id: uuid.UUID | None = None


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """List the in-process timers with next/last fire times."""
    schedules = await get_job_schedules()
    return [ScheduleResponse(**s) for s in schedules]


@router.get("/jobs", response_model=list[JobSummary])
async def list_jobs(
    db: DBSession,
    user_id: uuid.UUID | None = Query(default=None),
    job_status: JobStatus | None = Query(default=None, alias="status"),
    session_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobSummary]:
    jobs = await job_store.list_jobs(
        db, user_id=user_id, status=job_status, session_type=session_type, limit=limit, offset=offset
    )
    return [JobSummary.model_validate(j) for j in jobs]


@router.get("/jobs/due", response_model=list[JobSummary])
async def list_due_jobs(
    db: DBSession,
    settings: AppSettings,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[JobSummary]:
    """Jobs the poller would pick up right now, ignoring the batch size."""
    jobs = await job_store.find_due_jobs(
        db, now=utc_now(), lookback_hours=settings.due_lookback_hours, limit=limit
    )
    return [JobSummary.model_validate(j) for j in jobs]


@router.get("/jobs/{job_id}", response_model=JobSummary)
async def get_job(job_id: uuid.UUID, db: DBSession) -> JobSummary:
    job = await job_store.get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobSummary.model_validate(job)


@router.post("/jobs/schedule/{user_id}", response_model=ScheduleDayResponse)
async def schedule_user_day(
    user_id: uuid.UUID,
    db: DBSession,
    clock: Clock,
    config: Config,
    date: str | None = Query(default=None, description="Local day YYYY-MM-DD, defaults to today"),
) -> ScheduleDayResponse:
    """
    Schedule one user's sessions for a local day.

    Idempotent: calling it again returns an empty ``created`` list.
    """
    if date is not None:
        try:
            parse_date_key(date)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    if await db.get(User, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    date_key = date or clock.today_key()
    created = await schedule_day(db, user_id, date_key, clock=clock, schedule=config.schedule)
    await db.commit()
    return ScheduleDayResponse(
        user_id=user_id,
        date=date_key,
        created=[JobSummary.model_validate(j) for j in created],
    )


@router.post("/jobs/{job_id}/run", response_model=JobRunResponse)
async def run_job(job_id: uuid.UUID, db: DBSession, executor: Executor) -> JobRunResponse:
    """
    Run a pending job now through the normal executor path.

    Jobs that are no longer pending are rejected with 409.
    """
    result = await executor.run_job(db, job_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if not result.executed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return JobRunResponse(
        job_id=result.job_id,
        session_type=result.session_type,
        status=result.status,
        message=result.message,
        output_id=result.output_id,
    )


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(job_id: uuid.UUID, db: DBSession) -> Response:
    """Delete a job. Running jobs are refused with 409."""
    job = await job_store.get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if not await job_store.delete_job(db, job_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is running")
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
