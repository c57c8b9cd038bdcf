"""Persistence for scheduled session jobs.

All status transitions are conditional updates on the current status, so a job
can only move forward (pending -> running -> completed/failed, or
pending -> skipped) and two workers can never both claim it.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.core.clock import utc_now
from circadian.core.logging import get_logger
from circadian.models.job import Job, JobStatus

logger = get_logger(__name__)

UNIQUE_KEY = ("user_id", "session_type", "local_day")

# Longest error text kept on a job row
MAX_ERROR_LENGTH = 2000


def _dialect_insert(db: AsyncSession) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for job inserts: {dialect}")


async def insert_job_if_absent(
    db: AsyncSession,
    user_id: uuid.UUID,
    session_type: str,
    local_day: str,
    scheduled_for: datetime,
    metadata: dict[str, Any] | None = None,
) -> Job | None:
    """Insert a pending job unless one already exists for the same day and type.

    Returns the new job, or None when the unique key already existed.
    """
    insert = _dialect_insert(db)
    job_id = uuid.uuid4()
    stmt = (
        insert(Job)
        .values(
            id=job_id,
            user_id=user_id,
            session_type=session_type,
            local_day=local_day,
            status=JobStatus.PENDING,
            scheduled_for=scheduled_for,
            session_metadata=metadata,
            result_count=0,
            created_at=utc_now(),
        )
        .on_conflict_do_nothing(index_elements=list(UNIQUE_KEY))
        .returning(Job.id)
    )
    result = await db.execute(stmt)
    inserted_id = result.scalar_one_or_none()
    if inserted_id is None:
        return None
    return await db.get(Job, inserted_id)


async def jobs_for_day(db: AsyncSession, user_id: uuid.UUID, local_day: str) -> list[Job]:
    """All jobs of a user for one local day, in trigger order."""
    result = await db.execute(
        select(Job)
        .where(Job.user_id == user_id, Job.local_day == local_day)
        .order_by(Job.scheduled_for)
    )
    return list(result.scalars().all())


async def find_due_jobs(
    db: AsyncSession,
    now: datetime | None = None,
    lookback_hours: int = 48,
    limit: int = 5,
) -> list[Job]:
    """Pending jobs with ``now - lookback <= scheduled_for <= now``, oldest first."""
    now = now or utc_now()
    cutoff = now - timedelta(hours=lookback_hours)
    result = await db.execute(
        select(Job)
        .where(
            Job.status == JobStatus.PENDING,
            Job.scheduled_for <= now,
            Job.scheduled_for >= cutoff,
        )
        .order_by(Job.scheduled_for, Job.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job | None:
    # Transitions bypass the identity map, so always reload
    return await db.get(Job, job_id, populate_existing=True)


async def list_jobs(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    status: JobStatus | None = None,
    session_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Job]:
    """Jobs newest-trigger first, optionally filtered."""
    query = select(Job)
    if user_id is not None:
        query = query.where(Job.user_id == user_id)
    if status is not None:
        query = query.where(Job.status == status)
    if session_type is not None:
        query = query.where(Job.session_type == session_type)
    result = await db.execute(query.order_by(Job.scheduled_for.desc()).offset(offset).limit(limit))
    return list(result.scalars().all())


async def _transition(
    db: AsyncSession,
    job_id: uuid.UUID,
    from_statuses: Iterable[JobStatus],
    **values: Any,
) -> bool:
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status.in_(list(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    changed = result.rowcount == 1
    if not changed:
        logger.bind(job_id=str(job_id), to=str(values.get("status"))).warning("job_transition_rejected")
    return changed


async def claim_job(db: AsyncSession, job_id: uuid.UUID, now: datetime | None = None) -> bool:
    """Atomically move a job from pending to running. False if someone else won."""
    return await _transition(
        db,
        job_id,
        [JobStatus.PENDING],
        status=JobStatus.RUNNING,
        started_at=now or utc_now(),
    )


async def complete_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    result_count: int = 0,
    output_ref: str | None = None,
    now: datetime | None = None,
) -> bool:
    return await _transition(
        db,
        job_id,
        [JobStatus.RUNNING],
        status=JobStatus.COMPLETED,
        completed_at=now or utc_now(),
        result_count=result_count,
        output_ref=output_ref,
    )


async def fail_job(
    db: AsyncSession, job_id: uuid.UUID, error: str, now: datetime | None = None
) -> bool:
    return await _transition(
        db,
        job_id,
        [JobStatus.RUNNING],
        status=JobStatus.FAILED,
        completed_at=now or utc_now(),
        error_message=error[:MAX_ERROR_LENGTH],
    )


async def skip_job(
    db: AsyncSession, job_id: uuid.UUID, reason: str, now: datetime | None = None
) -> bool:
    """Mark a pending job skipped (ineligible)."""
    return await _transition(
        db,
        job_id,
        [JobStatus.PENDING],
        status=JobStatus.SKIPPED,
        completed_at=now or utc_now(),
        error_message=reason[:MAX_ERROR_LENGTH],
    )


async def fail_stale_running_jobs(
    db: AsyncSession, started_before: datetime, now: datetime | None = None
) -> int:
    """Fail jobs left running since before ``started_before``. Returns how many."""
    result = await db.execute(
        update(Job)
        .where(Job.status == JobStatus.RUNNING, Job.started_at < started_before)
        .values(
            status=JobStatus.FAILED,
            completed_at=now or utc_now(),
            error_message="Abandoned while running",
        )
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.bind(count=count).warning("stale_running_jobs_failed")
    return count


async def delete_job(db: AsyncSession, job_id: uuid.UUID) -> bool:
    """Delete a job unless it is running. False if missing or running."""
    result = await db.execute(
        delete(Job)
        .where(Job.id == job_id, Job.status != JobStatus.RUNNING)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
