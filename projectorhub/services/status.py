"""
Status derivation.

The only place that turns raw visit fields into a visit status, and a projector's
service history into a maintenance status. Scheduler, reconciler, aggregator and
the HTTP views all call into this module; none of them re-derive status inline.
"""
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..config import settings
from ..errors import ValidationError
from ..schemas.services import ActivityBucket, EquipmentStatus, VisitStatus
from .clock import as_utc


def derive_visit_status(
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    report_generated: bool,
    has_worker: bool,
) -> VisitStatus:
    if end_time is not None or report_generated:
        return VisitStatus.completed
    if start_time is not None:
        return VisitStatus.in_progress
    if has_worker:
        return VisitStatus.scheduled
    return VisitStatus.pending


def visit_status(visit) -> VisitStatus:
    """Derived status of a service record (or any object with the same fields)."""
    return derive_visit_status(
        visit.start_time,
        visit.end_time,
        bool(visit.report_generated),
        visit.assigned_to_id is not None,
    )


def is_completed(visit) -> bool:
    return visit_status(visit) is VisitStatus.completed


def is_open(visit) -> bool:
    """Not completed yet, whether assigned, started or waiting for a worker."""
    return not is_completed(visit)


def maintenance_interval(days: Optional[int] = None) -> timedelta:
    days = settings.maintenance_interval_days if days is None else days
    if days < 0:
        raise ValidationError("Maintenance interval must not be negative", field="interval")
    return timedelta(days=days)


def equipment_maintenance_status(
    last_served_at: Optional[datetime],
    now: datetime,
    interval: Optional[timedelta] = None,
) -> EquipmentStatus:
    """completed while the last service is younger than the interval, pending otherwise."""
    if interval is None:
        interval = maintenance_interval()
    if not isinstance(interval, timedelta):
        raise ValidationError("Maintenance interval must be a timedelta", field="interval")
    if interval < timedelta(0):
        raise ValidationError("Maintenance interval must not be negative", field="interval")
    if not isinstance(now, datetime):
        raise ValidationError("now must be a datetime", field="now")
    if last_served_at is None:
        return EquipmentStatus.pending
    if not isinstance(last_served_at, datetime):
        raise ValidationError("last_served_at must be a datetime", field="last_served_at")
    if as_utc(now) - as_utc(last_served_at) < interval:
        return EquipmentStatus.completed
    return EquipmentStatus.pending


def last_served_at(visits: Iterable) -> Optional[datetime]:
    """Date of the most recent completed visit, or None."""
    dates = [as_utc(v.date) for v in visits if is_completed(v) and v.date is not None]
    return max(dates) if dates else None


def equipment_status(
    visits: Iterable,
    now: datetime,
    interval: Optional[timedelta] = None,
    served_at: Optional[datetime] = None,
) -> EquipmentStatus:
    """
    Externally reported projector status.

    Any open visit wins over the interval rule, so an overdue projector with an open
    visit reads "scheduled" rather than "pending". An unassigned visit still counts:
    the projector stays on the scheduled worklist until the visit is reassigned.
    """
    visits = list(visits)
    if any(is_open(v) for v in visits):
        return EquipmentStatus.scheduled
    if served_at is None:
        served_at = last_served_at(visits)
    return equipment_maintenance_status(served_at, now, interval)


def next_service_due(served_at: Optional[datetime], interval: Optional[timedelta] = None) -> Optional[datetime]:
    if served_at is None:
        return None
    if interval is None:
        interval = maintenance_interval()
    return as_utc(served_at) + interval


def activity_bucket(visit, now: datetime, stale_after: Optional[timedelta] = None) -> ActivityBucket:
    """
    Engineer-activity bucket for windowed dashboards.

    Unlike visit_status this ignores start_time: an open visit counts as pending only
    once its scheduled date is older than ``stale_after`` (24h by default); younger
    open visits are in_progress.
    """
    if stale_after is None:
        stale_after = timedelta(hours=settings.stale_after_hours)
    if is_completed(visit):
        return ActivityBucket.completed
    assigned_at = as_utc(visit.date or visit.created_at)
    if assigned_at < as_utc(now) - stale_after:
        return ActivityBucket.pending
    return ActivityBucket.in_progress


_ORDINALS = [
    "First", "Second", "Third", "Fourth", "Fifth", "Sixth", "Seventh", "Eighth", "Ninth", "Tenth",
    "Eleventh", "Twelfth", "Thirteenth", "Fourteenth", "Fifteenth", "Sixteenth", "Seventeenth",
    "Eighteenth", "Nineteenth",
]
_TENS = ["Twentieth", "Thirtieth", "Fortieth", "Fiftieth", "Sixtieth", "Seventieth", "Eightieth", "Ninetieth"]
_TENS_PREFIX = ["Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def service_number_label(number: int) -> str:
    """Display label for a service number: First, Second, ... One Hundredth, then 101th."""
    if 1 <= number <= 19:
        return _ORDINALS[number - 1]
    if 20 <= number <= 99:
        tens, unit = divmod(number, 10)
        if unit == 0:
            return _TENS[tens - 2]
        return f"{_TENS_PREFIX[tens - 2]}-{_ORDINALS[unit - 1]}"
    if number == 100:
        return "One Hundredth"
    return f"{number}th"
