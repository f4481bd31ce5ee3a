"""Time parsing and formatting utilities."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo

from zoneinfo import ZoneInfo

SECONDS_PER_DAY = 24 * 60 * 60


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Europe/Rome".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"invalid time zone: {tz_name!r}, e.g. Europe/Rome") from exc


def parse_hhmm(text: str) -> time:
    """Parse a schedule time of day such as "09:30".

    Raises:
        ValueError: If the text is not ``H:MM``/``HH:MM`` within a day.
    """

    s = str(text).strip()
    try:
        hh, mm = s.split(":", 1)
        return time(hour=int(hh), minute=int(mm))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cannot parse time of day: {text!r}, expected HH:MM") from exc


def minutes_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def seconds_since_midnight(now: datetime, day: date) -> float:
    """Seconds elapsed since local midnight of ``day``, in ``now``'s time zone.

    The value keeps growing past 86400 once ``now`` is on a later day, and is negative
    before ``day`` starts, so a clock crossing midnight stays monotonic.
    """

    midnight = datetime.combine(day, time.min, tzinfo=now.tzinfo)
    return (now - midnight).total_seconds()


def now_local(tz_name: str) -> datetime:
    """Current wall-clock time in ``tz_name``."""

    return datetime.now(tzinfo_from_name(tz_name))


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Convert epoch milliseconds to timezone-aware datetime."""

    tz = tzinfo_from_name(tz_name)
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tz)


def epoch_ms_from_dt(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Args:
        dt: Datetime. If naive, will be treated as UTC (discouraged).
    """

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def window_minutes(start: time, end: time) -> int:
    """Length of a ``[start, end)`` window in minutes; wraps past midnight if end < start."""

    diff = minutes_of_day(end) - minutes_of_day(start)
    if diff < 0:
        diff += 24 * 60
    return diff


def format_minutes(mins: int) -> str:
    """Gap label: "1h 30min", "2h" or "45min"."""

    h, m = divmod(max(0, int(mins)), 60)
    if h > 0 and m > 0:
        return f"{h}h {m}min"
    if h > 0:
        return f"{h}h"
    return f"{m}min"


def format_duration(start: time, end: time) -> str:
    """Activity length label: "2h 30m", "2h" or "45 min"."""

    h, m = divmod(window_minutes(start, end), 60)
    if h > 0 and m > 0:
        return f"{h}h {m}m"
    if h > 0:
        return f"{h}h"
    return f"{m} min"


def countdown_to(now: datetime, deadline: time) -> timedelta | None:
    """Time left until ``deadline`` on ``now``'s day, or None once it has passed."""

    target = datetime.combine(now.date(), deadline, tzinfo=now.tzinfo)
    left = target - now
    if left <= timedelta(0):
        return None
    return left


def format_countdown(left: timedelta) -> str:
    """Format as "01h 02m 03s"."""

    s = int(left.total_seconds())
    h = s // 3600
    m = (s % 3600) // 60
    sec = s % 60
    return f"{h:02d}h {m:02d}m {sec:02d}s"
