"""Due-job executor.

Each poll tick claims a bounded batch of due jobs and runs them one at a time:
eligibility check, atomic claim, pipeline run under a timeout, terminal status.
A failing job never affects the rest of the batch, and a tick that arrives while
the previous batch is still running does nothing.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import Settings, get_settings
from circadian.core.clock import utc_now
from circadian.core.logging import get_logger
from circadian.models.job import Job, JobStatus
from circadian.pipeline.engine import PipelineEngine
from circadian.pipeline.errors import UnknownSessionTypeError
from circadian.pipeline.registry import PipelineRegistry, get_registry
from circadian.services import job_store
from circadian.services.eligibility import check_eligibility
from circadian.services.generation import get_generator
from circadian.services.search import get_search_provider

logger = get_logger(__name__)


@dataclass
class JobResult:
    """Result of executing a single job."""

    job_id: uuid.UUID
    session_type: str
    status: JobStatus
    message: str | None = None
    output_id: uuid.UUID | None = None
    executed: bool = True


@dataclass
class BatchResult:
    """Result of one poll tick."""

    skipped_tick: bool = False
    found: int = 0
    abandoned: int = 0
    results: list[JobResult] = field(default_factory=list)

    def count(self, status: JobStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def completed(self) -> int:
        return self.count(JobStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return self.count(JobStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(JobStatus.SKIPPED)


class JobExecutor:
    """Runs due jobs with a single-flight guard."""

    def __init__(
        self,
        engine: PipelineEngine | None = None,
        registry: PipelineRegistry | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._busy = False

    @property
    def engine(self) -> PipelineEngine:
        if self._engine is None:
            self._engine = PipelineEngine(get_generator(), get_search_provider())
        return self._engine

    @property
    def is_busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        """Take the single-flight guard. False if a batch is already running."""
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False

    async def run_due_jobs(self, db: AsyncSession, now: datetime | None = None) -> BatchResult:
        """Process one bounded batch of due jobs. Never raises for job failures."""
        if not self.try_acquire():
            logger.debug("poll_tick_skipped_busy")
            return BatchResult(skipped_tick=True)

        batch = BatchResult()
        try:
            batch.abandoned = await job_store.fail_stale_running_jobs(
                db,
                started_before=(now or utc_now()) - timedelta(seconds=self.settings.stale_running_seconds),
                now=now,
            )
            await db.commit()

            jobs = await job_store.find_due_jobs(
                db,
                now=now,
                lookback_hours=self.settings.due_lookback_hours,
                limit=self.settings.batch_size,
            )
            batch.found = len(jobs)
            if not jobs:
                logger.debug("no_due_jobs")
                return batch

            # A failed job rolls back the session, so reload each job by id
            job_ids = [job.id for job in jobs]
            for index, job_id in enumerate(job_ids):
                if index > 0 and self.settings.inter_job_delay_seconds > 0:
                    await self._sleep(self.settings.inter_job_delay_seconds)
                job = await job_store.get_job(db, job_id)
                if job is None:
                    continue
                batch.results.append(await self._execute_isolated(db, job))

            logger.bind(
                found=batch.found,
                completed=batch.completed,
                failed=batch.failed,
                skipped=batch.skipped,
                abandoned=batch.abandoned,
            ).info("due_jobs_processed")
            return batch
        finally:
            self.release()

    async def run_job(self, db: AsyncSession, job_id: uuid.UUID) -> JobResult | None:
        """Run one pending job by id, outside the poll loop.

        Returns None when the job does not exist. A job that is not pending is
        returned unchanged with an explanatory message.
        """
        job = await job_store.get_job(db, job_id)
        if job is None:
            return None
        if job.status != JobStatus.PENDING:
            return JobResult(
                job_id=job.id,
                session_type=job.session_type,
                status=job.status,
                message=f"Job is {job.status.value}, only pending jobs can run",
                executed=False,
            )
        return await self._execute_isolated(db, job)

    async def _execute_isolated(self, db: AsyncSession, job: Job) -> JobResult:
        job_id, session_type = job.id, job.session_type
        try:
            return await self._execute(db, job)
        except Exception as e:
            # Status bookkeeping itself failed
            await db.rollback()
            error = f"{type(e).__name__}: {e}"
            log = logger.bind(job_id=str(job_id), session_type=session_type, error=error)
            log.error("job_execution_error")
            # A claimed job must not stay running; an unclaimed one is retried next tick
            try:
                await job_store.fail_job(db, job_id, error)
                await db.commit()
            except Exception as cleanup_error:
                await db.rollback()
                log.bind(cleanup_error=str(cleanup_error)).error("job_fail_mark_error")
            return JobResult(job_id=job_id, session_type=session_type, status=JobStatus.FAILED, message=error)

    async def _execute(self, db: AsyncSession, job: Job) -> JobResult:
        # Copy what we need before any rollback expires the instance
        job_id = job.id
        user_id = job.user_id
        session_type = job.session_type
        local_day = job.local_day
        metadata = dict(job.session_metadata or {})
        log = logger.bind(job_id=str(job_id), user_id=str(user_id), session_type=session_type)

        eligibility = await check_eligibility(
            db, user_id, global_enabled=self.settings.autonomous_agents_enabled
        )
        if not eligibility.eligible:
            reason = eligibility.reason or "Not eligible"
            skipped = await job_store.skip_job(db, job_id, reason)
            await db.commit()
            if not skipped:
                return JobResult(
                    job_id=job_id,
                    session_type=session_type,
                    status=JobStatus.PENDING,
                    message="Job changed status before it could be skipped",
                    executed=False,
                )
            log.bind(reason=reason).info("job_skipped")
            return JobResult(job_id=job_id, session_type=session_type, status=JobStatus.SKIPPED, message=reason)

        claimed = await job_store.claim_job(db, job_id)
        await db.commit()
        if not claimed:
            log.warning("job_claim_lost")
            return JobResult(
                job_id=job_id,
                session_type=session_type,
                status=JobStatus.RUNNING,
                message="Claimed by another worker",
                executed=False,
            )

        log.info("job_started")
        try:
            definition = self.registry.get(session_type)
            outcome = await asyncio.wait_for(
                self.engine.run(
                    db,
                    definition,
                    user_id,
                    job_id=job_id,
                    metadata=metadata,
                    local_day=local_day,
                ),
                timeout=self.settings.pipeline_timeout_seconds,
            )
        except Exception as e:
            await db.rollback()
            if isinstance(e, TimeoutError):
                error = f"Pipeline timed out after {self.settings.pipeline_timeout_seconds:g}s"
            else:
                error = f"{type(e).__name__}: {e}"
            await job_store.fail_job(db, job_id, error)
            await db.commit()
            if isinstance(e, UnknownSessionTypeError):
                log.bind(error=error).error("job_failed_unknown_session_type")
            else:
                log.bind(error=error).error("job_failed")
            return JobResult(job_id=job_id, session_type=session_type, status=JobStatus.FAILED, message=error)

        output_ref = str(outcome.output_id) if outcome.output_id else None
        await job_store.complete_job(db, job_id, result_count=outcome.result_count, output_ref=output_ref)
        await db.commit()
        log.bind(produced=outcome.produced, reason=outcome.reason).info("job_completed")
        return JobResult(
            job_id=job_id,
            session_type=session_type,
            status=JobStatus.COMPLETED,
            message=outcome.reason,
            output_id=outcome.output_id,
        )


_executor: JobExecutor | None = None


def get_executor() -> JobExecutor:
    """Process-wide executor, so every caller shares one single-flight guard."""
    global _executor
    if _executor is None:
        _executor = JobExecutor()
    return _executor
