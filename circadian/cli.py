"""
Circadian CLI - run scheduler passes by hand.

Usage:
    circadian --help                          Show all commands
    circadian schedule                        Schedule today for all active users
    circadian schedule --date 2026-03-08      Schedule a specific local day
    circadian schedule --user <uuid>          Schedule one user only
    circadian poll                            Run one batch of due jobs
    circadian dispatch                        Deliver pending notifications
    circadian run-session <type> <user_id>    Run one pipeline right now
    circadian sessions                        List session types
"""

import asyncio
import uuid

import typer

app = typer.Typer(
    name="circadian",
    help="Circadian CLI - thinking-session scheduler",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _parse_user_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        _print_error(f"Invalid user id: {value}")
        raise typer.Exit(code=2) from e


@app.command()
def schedule(
    date: str | None = typer.Option(None, "--date", "-d", help="Local day YYYY-MM-DD (default: today)"),
    user: str | None = typer.Option(None, "--user", "-u", help="Only schedule this user id"),
):
    """Create the day's session jobs (idempotent)."""
    from circadian.core.clock import get_clock, parse_date_key
    from circadian.core.database import AsyncSessionLocal
    from circadian.core.logging import setup_logging
    from circadian.services.daily_scheduler import schedule_active_users, schedule_day

    setup_logging()
    if date is not None:
        try:
            parse_date_key(date)
        except ValueError as e:
            _print_error(str(e))
            raise typer.Exit(code=2) from e
    user_id = _parse_user_id(user) if user else None

    async def _run() -> None:
        async with AsyncSessionLocal() as db:
            if user_id is not None:
                date_key = date or get_clock().today_key()
                created = await schedule_day(db, user_id, date_key)
                await db.commit()
                _print_success(f"{date_key}: created {len(created)} job(s) for {user_id}")
                for job in created:
                    typer.echo(f"    {job.scheduled_for.isoformat()}Z  {job.session_type}")
                return

            sweep = await schedule_active_users(db, date_key=date)
            _print_success(
                f"{sweep.date_key}: {sweep.jobs_created} job(s) for {sweep.users} active user(s)"
            )
            for error in sweep.errors:
                _print_warning(error)

    asyncio.run(_run())


@app.command()
def poll():
    """Run one batch of due jobs."""
    from circadian.core.database import AsyncSessionLocal
    from circadian.core.logging import setup_logging
    from circadian.services.executor import get_executor

    setup_logging()

    async def _run() -> None:
        async with AsyncSessionLocal() as db:
            batch = await get_executor().run_due_jobs(db)
        if batch.found == 0:
            _print_success("No due jobs")
            return
        _print_success(
            f"{batch.found} due: {batch.completed} completed, "
            f"{batch.failed} failed, {batch.skipped} skipped"
        )
        for result in batch.results:
            if result.message:
                typer.echo(f"    {result.session_type} [{result.status.value}] {result.message}")

    asyncio.run(_run())


@app.command()
def dispatch():
    """Deliver pending notifications under the hourly cap."""
    from circadian.core.database import AsyncSessionLocal
    from circadian.core.logging import setup_logging
    from circadian.services.notification_dispatch import dispatch_notifications

    setup_logging()

    async def _run() -> None:
        async with AsyncSessionLocal() as db:
            summary = await dispatch_notifications(db)
        _print_success(
            f"sent={summary.sent} failed={summary.failed} "
            f"deferred={summary.deferred} expired={summary.expired}"
        )

    asyncio.run(_run())


@app.command("run-session")
def run_session(
    session_type: str = typer.Argument(..., help="Session type, e.g. evening_consolidation"),
    user: str = typer.Argument(..., help="User id"),
):
    """Run one session pipeline immediately, without a job."""
    from circadian.core.database import AsyncSessionLocal
    from circadian.core.logging import setup_logging
    from circadian.pipeline.errors import PipelineError
    from circadian.pipeline.registry import get_registry
    from circadian.services.executor import get_executor

    setup_logging()
    user_id = _parse_user_id(user)
    try:
        definition = get_registry().get(session_type)
    except PipelineError as e:
        _print_error(str(e))
        raise typer.Exit(code=2) from e

    async def _run() -> None:
        async with AsyncSessionLocal() as db:
            outcome = await get_executor().engine.run(db, definition, user_id)
            await db.commit()
        if outcome.produced:
            _print_success(f"{outcome.title} ({outcome.output_id})")
        else:
            _print_warning(f"Nothing produced ({outcome.reason})")

    asyncio.run(_run())


@app.command()
def sessions():
    """List registered session types."""
    from circadian.config import get_config
    from circadian.pipeline.registry import get_registry

    schedule_entries = {s.session_type: s for s in get_config().schedule.sessions}
    for info in get_registry().describe():
        entry = schedule_entries.get(info["session_type"])
        when = entry.time if entry else "manual"
        days = ",".join(entry.days) if entry and entry.days else "daily"
        typer.echo(f"{info['session_type']:<24} {when:>6} {days:<20} {' -> '.join(info['steps'])}")


if __name__ == "__main__":
    app()
