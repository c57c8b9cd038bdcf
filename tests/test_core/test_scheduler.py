"""Tests for the in-process timers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circadian.core import scheduler as scheduler_module

pytestmark = pytest.mark.asyncio


class TestStartScheduler:
    """Tests for start_scheduler."""

    async def test_disabled_by_config(self, test_settings):
        with patch.object(scheduler_module, "get_settings", return_value=test_settings):
            assert await scheduler_module.start_scheduler() is None
        assert await scheduler_module.get_job_schedules() == []

    async def test_sweep_trigger_uses_reference_timezone(self, clock):
        with patch.object(scheduler_module, "get_clock", return_value=clock):
            trigger = scheduler_module._sweep_trigger()
        assert trigger.timezone == clock.tz


class TestTimerJobs:
    """Tests for the job wrappers the timers call."""

    async def test_due_job_poll_survives_errors(self):
        executor = MagicMock()
        executor.run_due_jobs = AsyncMock(side_effect=RuntimeError("database unavailable"))
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=None)

        with (
            patch.object(scheduler_module, "AsyncSessionLocal", return_value=session),
            patch("circadian.services.executor.get_executor", return_value=executor),
        ):
            await scheduler_module.due_job_poll()

        executor.run_due_jobs.assert_awaited_once_with(session)

    async def test_daily_sweep_reraises(self):
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=None)

        with (
            patch.object(scheduler_module, "AsyncSessionLocal", return_value=session),
            patch(
                "circadian.services.daily_scheduler.schedule_active_users",
                AsyncMock(side_effect=RuntimeError("boom")),
            ),
            pytest.raises(RuntimeError),
        ):
            await scheduler_module.daily_sweep_job()
