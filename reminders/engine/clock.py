"""
Time helpers shared by the engine: zone resolution and local <-> absolute conversion.

Every instant the engine hands out is a timezone-aware UTC datetime. Local wall-clock
composition goes through zoneinfo so DST transitions are the timezone library's problem.
"""
from datetime import date, datetime, time, timezone, tzinfo
from typing import Union
from zoneinfo import ZoneInfo

ZoneLike = Union[str, tzinfo]


def resolve_zone(tz: ZoneLike) -> tzinfo:
    """Return a tzinfo for an IANA name or pass a tzinfo through. Unknown names raise."""
    if isinstance(tz, tzinfo):
        return tz
    return ZoneInfo(str(tz))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime, zone: ZoneLike = timezone.utc) -> datetime:
    """Absolute UTC instant for value; a naive value is read as wall-clock time in zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_zone(zone))
    return value.astimezone(timezone.utc)


def local_instant(day: date, clock: time, zone: ZoneLike) -> datetime:
    """Compose day @ clock in zone and return it as a UTC instant."""
    return datetime.combine(day, clock.replace(tzinfo=None), tzinfo=resolve_zone(zone)).astimezone(timezone.utc)


def local_date(instant: datetime, zone: ZoneLike) -> date:
    return to_utc(instant).astimezone(resolve_zone(zone)).date()


def local_clock(instant: datetime, zone: ZoneLike) -> time:
    return to_utc(instant).astimezone(resolve_zone(zone)).time()
