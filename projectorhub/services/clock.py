"""
Clock and time-window helpers.
Every "relative to now" rule reads time from a Clock so tests can pin it.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
import pytz

from ..config import settings
from ..errors import ValidationError


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(pytz.UTC)


class FixedClock:
    """Clock pinned to one instant; advance() moves it forward."""

    def __init__(self, at: datetime):
        self._at = as_utc(at)

    def now(self) -> datetime:
        return self._at

    def advance(self, **kwargs) -> datetime:
        self._at = self._at + timedelta(**kwargs)
        return self._at


system_clock = SystemClock()


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a stored or supplied datetime to timezone-aware UTC.
    Naive values are UTC by convention (SQLite drops tzinfo on read).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def parse_instant(value: Union[str, date, datetime, None], field: str = "date") -> datetime:
    """
    Parse a caller-supplied instant into aware UTC.

    Accepts datetime, date (midnight UTC) or an ISO-8601 string ("Z" suffix allowed).
    Raises ValidationError for anything else.
    """
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return pytz.UTC.localize(datetime.combine(value, time.min))
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(raw))
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}: {value!r}", field=field)


def parse_day(value: Union[str, date, None], field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r} (expected YYYY-MM-DD)", field=field)


def _zone(timezone_str: Optional[str]):
    try:
        return pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {timezone_str}", field="timezone")


def local_day_bounds(day: date, timezone_str: Optional[str] = None) -> Tuple[datetime, datetime]:
    """First and last instant (UTC) of a calendar day in the given timezone."""
    tz = _zone(timezone_str)
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day, time.max))
    return start.astimezone(pytz.UTC), end.astimezone(pytz.UTC)


def local_today(now: datetime, timezone_str: Optional[str] = None) -> date:
    return as_utc(now).astimezone(_zone(timezone_str)).date()


ACTIVITY_WINDOWS = ("today", "7days", "month", "custom")


def activity_window(
    filter_type: str,
    now: datetime,
    custom_day: Union[str, date, None] = None,
    timezone_str: Optional[str] = None,
) -> Tuple[datetime, datetime]:
    """
    Resolve an engineer-activity window to a [start, end] UTC range.

    today: local midnight until end of today; 7days/month: local midnight 7/30 days
    back until end of today; custom: the whole given local day (today when omitted).
    """
    today = local_today(now, timezone_str)
    _, end_of_today = local_day_bounds(today, timezone_str)
    if filter_type == "today":
        start, _ = local_day_bounds(today, timezone_str)
        return start, end_of_today
    if filter_type == "7days":
        start, _ = local_day_bounds(today - timedelta(days=7), timezone_str)
        return start, end_of_today
    if filter_type == "month":
        start, _ = local_day_bounds(today - timedelta(days=30), timezone_str)
        return start, end_of_today
    if filter_type == "custom":
        day = parse_day(custom_day) if custom_day else today
        return local_day_bounds(day, timezone_str)
    raise ValidationError(
        f"Unknown filter {filter_type!r}; expected one of {', '.join(ACTIVITY_WINDOWS)}",
        field="filter",
    )


def get_clock():
    """FastAPI dependency; tests override it with a FixedClock."""
    return system_clock
