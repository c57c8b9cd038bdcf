"""
APScheduler integration for FastAPI.

Runs the session engine's timers in-process with in-memory schedule storage.

Jobs:
- Daily sweep: schedules every active user's sessions shortly after local midnight
  (reference timezone), plus once at startup
- Due-job poll: executes due jobs every POLL_INTERVAL_SECONDS
- Notification dispatch: delivers pending notifications every NOTIFICATION_INTERVAL_SECONDS
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from circadian.config import get_config, get_settings
from circadian.core.clock import get_clock
from circadian.core.database import AsyncSessionLocal
from circadian.core.logging import get_logger

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def daily_sweep_job() -> None:
    """Schedule today's sessions for every recently active user."""
    from circadian.services.daily_scheduler import schedule_active_users

    logger.info("scheduled_daily_sweep_started")
    async with AsyncSessionLocal() as db:
        try:
            sweep = await schedule_active_users(db)
            logger.bind(
                date=sweep.date_key, users=sweep.users, jobs_created=sweep.jobs_created
            ).info("scheduled_daily_sweep_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_daily_sweep_failed")
            raise  # Re-raise so APScheduler records the failure


async def due_job_poll() -> None:
    """Run one batch of due jobs. Overlapping ticks are no-ops."""
    from circadian.services.executor import get_executor

    async with AsyncSessionLocal() as db:
        try:
            await get_executor().run_due_jobs(db)
        except Exception as e:
            # The batch itself could not be loaded; the next tick retries
            logger.bind(error=str(e)).error("due_job_poll_failed")


async def notification_dispatch_job() -> None:
    """Deliver pending notifications within each user's hourly budget."""
    from circadian.services.notification_dispatch import dispatch_notifications

    async with AsyncSessionLocal() as db:
        try:
            await dispatch_notifications(db)
        except Exception as e:
            logger.bind(error=str(e)).error("notification_dispatch_failed")


def _sweep_trigger() -> CronTrigger:
    hour, minute = get_config().schedule.daily_sweep_time.split(":")
    return CronTrigger(hour=int(hour), minute=int(minute), timezone=get_clock().tz)


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Jobs are rebuilt from the database at startup, so schedules need no persistence
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        daily_sweep_job,
        _sweep_trigger(),
        id="daily_sweep",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        due_job_poll,
        IntervalTrigger(seconds=settings.poll_interval_seconds),
        id="due_job_poll",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        notification_dispatch_job,
        IntervalTrigger(seconds=settings.notification_interval_seconds),
        id="notification_dispatch",
        conflict_policy=ConflictPolicy.replace,
    )

    # Catch up on today if the process started after the midnight sweep
    await scheduler.add_job(daily_sweep_job)

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=["daily_sweep", "due_job_poll", "notification_dispatch"]).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered timer schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
