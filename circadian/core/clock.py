"""Reference-timezone clock for every scheduling decision.

All "which day is it", "is it time yet" and "did we already run today" questions
are answered here. Database timestamps stay naive UTC; the local calendar day is
always computed in one reference timezone (``REFERENCE_TIMEZONE``).

Usage:
    from circadian.core.clock import get_clock, utc_now

    clock = get_clock()
    today = clock.local_date_key(utc_now())          # "2026-03-08"
    start, end = clock.local_day_bounds(today)        # naive UTC, half-open
    run_at = clock.local_clock_time(today, 7, 0)      # 07:00 local, as naive UTC
"""

from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from circadian.config import get_settings


class ReferenceTimezoneError(RuntimeError):
    """The configured reference timezone cannot be resolved."""


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Naive inputs are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def get_cutoff(hours: int = 0, days: int = 0, now: datetime | None = None) -> datetime:
    """Get a naive UTC cutoff in the past for filtering queries."""
    return (now or utc_now()) - timedelta(hours=hours, days=days)


def get_expiry(minutes: int = 0, hours: int = 0, days: int = 0, now: datetime | None = None) -> datetime:
    """Get a naive UTC expiry in the future."""
    return (now or utc_now()) + timedelta(minutes=minutes, hours=hours, days=days)


def parse_date_key(date_key: str) -> date:
    """Parse a ``YYYY-MM-DD`` day key."""
    try:
        return date.fromisoformat(date_key)
    except ValueError as e:
        raise ValueError(f"Invalid date key {date_key!r}, expected YYYY-MM-DD") from e


class ReferenceClock:
    """Converts between absolute instants and local days in one timezone."""

    def __init__(self, timezone_name: str) -> None:
        try:
            self.tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ReferenceTimezoneError(
                f"Reference timezone {timezone_name!r} is not in the timezone database"
            ) from e
        self.timezone_name = timezone_name

    def __repr__(self) -> str:
        return f"<ReferenceClock {self.timezone_name}>"

    def _offset_at(self, instant: datetime) -> timedelta:
        """UTC offset of the reference zone at a naive UTC instant."""
        offset = instant.replace(tzinfo=UTC).astimezone(self.tz).utcoffset()
        return offset or timedelta(0)

    def to_local(self, instant: datetime) -> datetime:
        """Aware local datetime for a (naive UTC or aware) instant."""
        return to_naive_utc(instant).replace(tzinfo=UTC).astimezone(self.tz)

    def local_date_key(self, instant: datetime) -> str:
        """Calendar-day key (``YYYY-MM-DD``) of an instant in the reference zone."""
        return self.to_local(instant).date().isoformat()

    def today_key(self) -> str:
        return self.local_date_key(utc_now())

    def local_clock_time(self, date_key: str, hour: int, minute: int, day_offset: int = 0) -> datetime:
        """Naive UTC instant for a wall-clock time on a local day.

        The wall clock is first read as if it were UTC, the zone offset is measured
        at that estimate and applied. If the offset at the corrected instant is
        different (the estimate and the answer straddle a DST transition), the
        second offset is applied instead.
        """
        day = parse_date_key(date_key) + timedelta(days=day_offset)
        estimate = datetime(day.year, day.month, day.day, hour, minute)

        first_offset = self._offset_at(estimate)
        corrected = estimate - first_offset

        second_offset = self._offset_at(corrected)
        if second_offset != first_offset:
            return estimate - second_offset
        return corrected

    def local_day_bounds(self, date_key: str) -> tuple[datetime, datetime]:
        """Naive UTC ``[start, end)`` bounding a local calendar day.

        ``end`` is the next local midnight, so days are 23 or 25 hours long
        on DST transition days.
        """
        start = self.local_clock_time(date_key, 0, 0)
        end = self.local_clock_time(date_key, 0, 0, day_offset=1)
        return start, end

    def weekday(self, date_key: str) -> int:
        """Weekday of a local day (0=Monday ... 6=Sunday)."""
        return parse_date_key(date_key).weekday()

    def is_first_weekday_of_month(self, date_key: str) -> bool:
        """True for the first Monday/Tuesday/... of its month."""
        return parse_date_key(date_key).day <= 7

    def shift_key(self, date_key: str, days: int) -> str:
        return (parse_date_key(date_key) + timedelta(days=days)).isoformat()

    def time_of_day(self, instant: datetime) -> str:
        """Period label of the local day: morning, afternoon, evening or night."""
        hour = self.to_local(instant).hour
        if hour < 5:
            return "night"
        if hour < 12:
            return "morning"
        if hour < 17:
            return "afternoon"
        if hour < 21:
            return "evening"
        return "night"

    def format_local(self, instant: datetime, fmt: str = "%A, %b %d") -> str:
        return self.to_local(instant).strftime(fmt)


@lru_cache
def get_clock() -> ReferenceClock:
    """Get the cached clock for the configured reference timezone."""
    return ReferenceClock(get_settings().reference_timezone)
