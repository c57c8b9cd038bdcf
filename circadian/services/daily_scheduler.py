"""Daily scheduling of thinking sessions.

Runs shortly after each local midnight (and once at startup) and inserts one
pending job per session type due on that local day. Safe to run any number of
times: existing jobs are left alone and concurrent inserts collide on the
unique key instead of duplicating.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import ScheduleConfig, get_config, get_settings
from circadian.core.clock import ReferenceClock, get_clock, get_cutoff
from circadian.core.logging import get_logger
from circadian.models.job import Job
from circadian.models.user import User
from circadian.services.job_store import insert_job_if_absent, jobs_for_day

logger = get_logger(__name__)


@dataclass
class PlannedSession:
    session_type: str
    scheduled_for: datetime
    metadata: dict[str, Any] | None = None


@dataclass
class SweepResult:
    """Outcome of scheduling a day for every active user."""

    date_key: str
    users: int = 0
    jobs_created: int = 0
    errors: list[str] = field(default_factory=list)


def plan_day(date_key: str, clock: ReferenceClock, schedule: ScheduleConfig) -> list[PlannedSession]:
    """The sessions configured for a local day, with trigger instants in naive UTC."""
    weekday = clock.weekday(date_key)
    first_of_month = clock.is_first_weekday_of_month(date_key)

    plan = []
    for entry in schedule.sessions:
        if not entry.runs_on(weekday):
            continue
        metadata = None
        if entry.first_week_variant and first_of_month:
            metadata = {"variant": entry.first_week_variant}
        plan.append(
            PlannedSession(
                session_type=entry.session_type,
                scheduled_for=clock.local_clock_time(
                    date_key, entry.hour, entry.minute, day_offset=entry.day_offset
                ),
                metadata=metadata,
            )
        )
    return sorted(plan, key=lambda p: p.scheduled_for)


async def schedule_day(
    db: AsyncSession,
    user_id: uuid.UUID,
    date_key: str,
    clock: ReferenceClock | None = None,
    schedule: ScheduleConfig | None = None,
) -> list[Job]:
    """Create the missing jobs of one user's local day.

    Returns only jobs inserted by this call. Does not commit.
    """
    clock = clock or get_clock()
    schedule = schedule or get_config().schedule

    day_start, day_end = clock.local_day_bounds(date_key)
    existing = {job.session_type for job in await jobs_for_day(db, user_id, date_key)}

    created = []
    for planned in plan_day(date_key, clock, schedule):
        if planned.session_type in existing:
            continue
        job = await insert_job_if_absent(
            db,
            user_id=user_id,
            session_type=planned.session_type,
            local_day=date_key,
            scheduled_for=planned.scheduled_for,
            metadata=planned.metadata,
        )
        if job is None:
            logger.bind(user_id=str(user_id), session_type=planned.session_type).debug(
                "job_already_scheduled"
            )
            continue
        created.append(job)

    logger.bind(
        user_id=str(user_id),
        date=date_key,
        day_start=day_start.isoformat(),
        day_end=day_end.isoformat(),
        existing=len(existing),
        created=len(created),
    ).info("day_scheduled")
    return created


async def get_active_user_ids(
    db: AsyncSession, window_days: int, now: datetime | None = None
) -> list[uuid.UUID]:
    """Users with activity inside the recency window."""
    cutoff = get_cutoff(days=window_days, now=now)
    result = await db.execute(
        select(User.id).where(
            User.is_active == True,  # noqa: E712
            User.last_active_at.is_not(None),
            User.last_active_at >= cutoff,
        )
    )
    return list(result.scalars().all())


async def schedule_active_users(
    db: AsyncSession,
    date_key: str | None = None,
    clock: ReferenceClock | None = None,
    schedule: ScheduleConfig | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """Schedule a local day for every recently active user.

    Commits per user; one user's failure is logged and does not stop the sweep.
    """
    clock = clock or get_clock()
    date_key = date_key or clock.today_key()
    window_days = get_settings().active_user_window_days

    user_ids = await get_active_user_ids(db, window_days, now=now)
    sweep = SweepResult(date_key=date_key, users=len(user_ids))

    for user_id in user_ids:
        try:
            created = await schedule_day(db, user_id, date_key, clock=clock, schedule=schedule)
            await db.commit()
            sweep.jobs_created += len(created)
        except Exception as e:
            await db.rollback()
            sweep.errors.append(f"{user_id}: {e}")
            logger.bind(user_id=str(user_id), date=date_key, error=str(e)).error("user_schedule_failed")

    logger.bind(
        date=date_key,
        users=sweep.users,
        jobs_created=sweep.jobs_created,
        errors=len(sweep.errors),
    ).info("daily_sweep_completed")
    return sweep
