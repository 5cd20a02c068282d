# File: utils/dt_utils.py
"""Date and time utilities for FocusHearts.

Pure Python date/time functions with ZERO Home Assistant dependencies.
All functions here can be unit tested without Home Assistant mocking.

UTILS PURITY: NO `homeassistant.*` imports allowed. Uses standard library
datetime and zoneinfo only.

Functions:
    - set_default_timezone: Local timezone for midnight math
    - dt_now_utc: Current datetime in UTC
    - as_utc / as_local: Timezone conversion
    - start_of_local_day: Local midnight for a datetime
    - has_crossed_local_midnight: Midnight boundary detection
    - local_date_key: ISO date of a datetime in local time
    - dt_to_utc / dt_to_iso: Storage (ISO string) conversions
    - dt_format_duration: Format timedelta to "3h 59m" or "12m 5s"

Classes:
    - Clock: Injectable time source (wall clock + local midnight boundary)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
from zoneinfo import ZoneInfo

# Module-level logger (no HA dependency)
_LOGGER = logging.getLogger(__name__)

# Default timezone - can be overridden by caller
DEFAULT_TIME_ZONE: ZoneInfo = ZoneInfo("UTC")


# ==============================================================================
# Timezone Configuration
# ==============================================================================


def set_default_timezone(tz: ZoneInfo) -> None:
    """Set the default timezone for all dt_utils functions.

    Call this during integration setup to configure the user's timezone.

    Args:
        tz: ZoneInfo object representing the default timezone
    """
    global DEFAULT_TIME_ZONE  # noqa: PLW0603
    DEFAULT_TIME_ZONE = tz


# ==============================================================================
# Current Date/Time Functions
# ==============================================================================


def dt_now_utc() -> datetime:
    """Return the current datetime in UTC (timezone-aware)."""
    return datetime.now(UTC)


# ==============================================================================
# Timezone Conversion
# ==============================================================================


def as_utc(dt_obj: datetime) -> datetime:
    """Convert a datetime to UTC timezone.

    Naive datetimes are assumed to be in the default timezone.
    """
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=DEFAULT_TIME_ZONE)
    return dt_obj.astimezone(UTC)


def as_local(dt_obj: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert a datetime to local timezone.

    Naive datetimes are assumed to be in UTC.
    """
    tz_info = tz or DEFAULT_TIME_ZONE
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=UTC)
    return dt_obj.astimezone(tz_info)


def start_of_local_day(dt_obj: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Get the start of day (00:00:00) for a datetime in local timezone.

    Args:
        dt_obj: Datetime object (can be in any timezone)
        tz: Optional timezone override. Uses DEFAULT_TIME_ZONE if not provided.

    Returns:
        Datetime at 00:00:00 in local timezone (timezone-aware)
    """
    local_dt = as_local(dt_obj, tz)
    return local_dt.replace(hour=0, minute=0, second=0, microsecond=0)


def has_crossed_local_midnight(
    last_reset: datetime | None,
    now: datetime,
    tz: ZoneInfo | None = None,
) -> bool:
    """Return True if a local midnight lies in (last_reset, now].

    A missing last_reset counts as crossed so legacy records get one reset.

    Examples:
        last_reset=23:50 yesterday, now=00:05 today → True
        last_reset=00:05 today, now=23:59 today → False
    """
    if last_reset is None:
        return True
    return start_of_local_day(now, tz) > as_utc(last_reset)


def local_date_key(dt_obj: datetime, tz: ZoneInfo | None = None) -> str:
    """Return the local calendar date of dt_obj as "YYYY-MM-DD"."""
    return as_local(dt_obj, tz).date().isoformat()


# ==============================================================================
# Storage Conversions
# ==============================================================================


def dt_to_utc(dt_str: str | None) -> datetime | None:
    """Parse an ISO datetime string and convert to UTC.

    Naive strings are interpreted in the default timezone.

    Returns:
        UTC-aware datetime, or None if the input is empty or unparseable.

    Example:
        "2025-04-07T14:30:00+00:00" → datetime.datetime(2025, 4, 7, 14, 30, tzinfo=UTC)
    """
    if not dt_str or not isinstance(dt_str, str):
        return None
    try:
        parsed = datetime.fromisoformat(dt_str)
    except ValueError:
        _LOGGER.warning("Invalid datetime string: %s", dt_str)
        return None
    return as_utc(parsed)


def dt_to_iso(dt_obj: datetime | None) -> str | None:
    """Format a datetime as an ISO 8601 UTC string for storage."""
    if dt_obj is None:
        return None
    return as_utc(dt_obj).isoformat()


# ==============================================================================
# Duration Formatting
# ==============================================================================


def dt_format_duration(td: timedelta | None) -> str:
    """Format a timedelta into a human-readable duration string.

    Args:
        td: timedelta object to format, or None

    Returns:
        Duration string like "1d 6h 30m", "12m 5s" below one hour, "45s" for
        sub-minute values, or "0" if None/zero.

    Examples:
        dt_format_duration(timedelta(hours=3, minutes=59)) → "3h 59m"
        dt_format_duration(timedelta(minutes=12, seconds=5)) → "12m 5s"
        dt_format_duration(timedelta(seconds=42)) → "42s"
        dt_format_duration(None) → "0"
    """
    if td is None or td <= timedelta():
        return "0"

    total_seconds = int(td.total_seconds())
    if total_seconds <= 0:
        return "0"
    if total_seconds < 60:
        return f"{total_seconds}s"
    if total_seconds < 3600:
        minutes, seconds = divmod(total_seconds, 60)
        return f"{minutes}m {seconds}s"

    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    parts: list[str] = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    return " ".join(parts)


# ==============================================================================
# Clock
# ==============================================================================


class Clock:
    """Wall-clock time source.

    Managers take a Clock so tests can inject time. Engines never call now();
    they receive `now` as an argument and ask the Clock only where the local
    day starts.
    """

    def __init__(self, tz: ZoneInfo | None = None) -> None:
        """Initialize the clock with an optional timezone override."""
        self._tz = tz

    @property
    def timezone(self) -> ZoneInfo:
        """Timezone used for local-midnight boundaries."""
        return self._tz or DEFAULT_TIME_ZONE

    def now(self) -> datetime:
        """Return the current time (UTC, timezone-aware)."""
        return dt_now_utc()

    def local_midnight(self, now: datetime | None = None) -> datetime:
        """Return the most recent local midnight at or before now."""
        return start_of_local_day(now or self.now(), self.timezone)

    def has_crossed_midnight(self, last_reset: datetime | None, now: datetime) -> bool:
        """Return True if a local midnight lies between last_reset and now."""
        return has_crossed_local_midnight(last_reset, now, self.timezone)


class FixedClock(Clock):
    """Clock frozen at a settable instant (tests and replays)."""

    def __init__(self, now: datetime, tz: ZoneInfo | None = None) -> None:
        """Initialize the clock at a fixed instant."""
        super().__init__(tz)
        self._now = as_utc(now)

    def now(self) -> datetime:
        """Return the frozen instant."""
        return self._now

    def set(self, now: datetime) -> None:
        """Move the clock to an absolute instant."""
        self._now = as_utc(now)

    def advance(self, delta: timedelta) -> None:
        """Move the clock forward by delta."""
        self._now = self._now + delta
