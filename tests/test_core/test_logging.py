"""Tests for the production log filter."""

from types import SimpleNamespace

from circadian.core.logging import _poll_log_filter


def _record(message: str, level_no: int = 20) -> dict:
    return {"message": message, "level": SimpleNamespace(no=level_no)}


class TestPollLogFilter:
    """Tests for _poll_log_filter."""

    def test_idle_ticks_hidden_at_info(self):
        assert not _poll_log_filter(_record("no_due_jobs"))
        assert not _poll_log_filter(_record("poll_tick_skipped_busy"))
        assert not _poll_log_filter(_record('"GET /health HTTP/1.1" 200'))

    def test_idle_ticks_kept_at_debug(self):
        assert _poll_log_filter(_record("no_due_jobs", level_no=10))

    def test_job_events_pass(self):
        assert _poll_log_filter(_record("job_completed"))
        assert _poll_log_filter(_record("due_jobs_processed"))
