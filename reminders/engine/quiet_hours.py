"""
Quiet-hours filter: defers (never drops) an occurrence that lands inside the quiet window.
"""
from datetime import datetime, timedelta
from typing import Optional

from .clock import ZoneLike, local_instant, resolve_zone, to_utc
from .settings import QuietHours


def is_quiet(instant: datetime, quiet_hours: Optional[QuietHours], tz: ZoneLike) -> bool:
    if quiet_hours is None:
        return False
    local = to_utc(instant).astimezone(resolve_zone(tz))
    return quiet_hours.contains(local.time())


def adjust(
    occurrence: Optional[datetime],
    quiet_hours: Optional[QuietHours],
    tz: ZoneLike,
) -> Optional[datetime]:
    """Move an occurrence inside quiet hours to the end of the window; otherwise return it as is.

    For a window wrapping midnight, an occurrence in the evening part moves to `end` on the
    next local date and one in the morning part to `end` the same date.
    """
    if occurrence is None or not is_quiet(occurrence, quiet_hours, tz):
        return occurrence
    zone = resolve_zone(tz)
    local = to_utc(occurrence).astimezone(zone)
    day = local.date()
    if quiet_hours.wraps and local.time() >= quiet_hours.start:
        day += timedelta(days=1)
    return local_instant(day, quiet_hours.end, zone)
