"""
Occurrence calculator: the next instant a Schedule qualifies strictly after a reference instant.

Day-based modes walk a lazy, ascending stream of (local date, instant) candidates and take
the first one that is after the reference, inside [start_date, end_date] and not an exdate.
Interval mode is solved arithmetically so the cost does not grow with elapsed time.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .clock import ZoneLike, local_date, local_instant, resolve_zone, to_utc
from .schedule import (
    IntervalSchedule,
    PrayerSchedule,
    Schedule,
    ScheduleMode,
    TimedSchedule,
    WeeklySchedule,
    parse_time,
    weekday_code,
)

logger = logging.getLogger(__name__)

PrayerLookup = Callable[[date], Optional[Mapping[str, str]]]
Candidate = Tuple[date, datetime]

# Upper bound on how far a day scan may run before giving up
MAX_SCAN_DAYS = 366 * 5
# Dates without prayer data tolerated before a Prayer scan gives up until the next call
PRAYER_LOOKUP_MISSES = 7


def next_occurrence(
    schedule: Schedule,
    prayer_lookup: Optional[PrayerLookup],
    after: datetime,
    tz: ZoneLike,
) -> Optional[datetime]:
    """Earliest qualifying instant strictly after `after`, as UTC, or None when there is none.

    A naive `after` is read as wall-clock time in tz. prayer_lookup is only consulted for
    Prayer schedules; it may return None, miss names or raise for a date, in which case that
    date is skipped.
    """
    zone = resolve_zone(tz)
    after = to_utc(after, zone)

    if schedule.mode == ScheduleMode.INTERVAL:
        return _next_interval(schedule, after, zone)

    first_day = max(schedule.start_date, local_date(after, zone))
    if schedule.mode == ScheduleMode.PRAYER:
        # Start a day early: a shifted prayer can spill past midnight
        candidates = _prayer_candidates(schedule, prayer_lookup, first_day - timedelta(days=1), zone)
    else:
        candidates = _GENERATORS[schedule.mode](schedule, first_day, zone)

    for day, instant in candidates:
        if schedule.end_date is not None and day > schedule.end_date:
            return None
        if instant <= after or not schedule.allows(day):
            continue
        return instant
    return None


def _days(first_day: date) -> Iterator[date]:
    for offset in range(MAX_SCAN_DAYS):
        yield first_day + timedelta(days=offset)
    logger.warning(f"Occurrence scan stopped after {MAX_SCAN_DAYS} days from {first_day}")


def _once(schedule: TimedSchedule, first_day: date, zone) -> Iterator[Candidate]:
    yield schedule.start_date, local_instant(schedule.start_date, schedule.times[0], zone)


def _daily(schedule: TimedSchedule, first_day: date, zone) -> Iterator[Candidate]:
    for day in _days(first_day):
        for clock in schedule.times:
            yield day, local_instant(day, clock, zone)


def _weekly(schedule: WeeklySchedule, first_day: date, zone) -> Iterator[Candidate]:
    for day in _days(first_day):
        if weekday_code(day) not in schedule.days_of_week:
            continue
        for clock in schedule.times:
            yield day, local_instant(day, clock, zone)


def _monthly(schedule: TimedSchedule, first_day: date, zone) -> Iterator[Candidate]:
    start = schedule.start_date
    first_month = max(0, (first_day.year - start.year) * 12 + first_day.month - start.month)
    for k in range(first_month, first_month + MAX_SCAN_DAYS // 28):
        # relativedelta clamps day 29-31 to the month's last day
        day = start + relativedelta(months=k)
        for clock in schedule.times:
            yield day, local_instant(day, clock, zone)


def _prayer_candidates(
    schedule: PrayerSchedule,
    prayer_lookup: Optional[PrayerLookup],
    first_day: date,
    zone,
) -> Iterator[Candidate]:
    misses = 0
    last_day = schedule.end_date + timedelta(days=1) if schedule.end_date is not None else None
    for day in _days(first_day):
        if last_day is not None and day > last_day:
            return
        clock = _prayer_clock(prayer_lookup, day, schedule.prayer.name)
        if clock is None:
            misses += 1
            if misses >= PRAYER_LOOKUP_MISSES:
                logger.debug(f"No {schedule.prayer.name} time available for {misses} dates from {first_day}")
                return
            continue
        instant = local_instant(day, clock, zone) + schedule.prayer.delta
        yield local_date(instant, zone), instant


def _prayer_clock(prayer_lookup: Optional[PrayerLookup], day: date, name: str) -> Optional[time]:
    if prayer_lookup is None:
        return None
    try:
        table = prayer_lookup(day)
    except Exception as e:
        logger.warning(f"Prayer time lookup failed for {day}: {e}")
        return None
    if not table:
        return None
    return parse_time(table.get(name))


def _next_interval(schedule: IntervalSchedule, after: datetime, zone) -> Optional[datetime]:
    anchor = local_instant(schedule.start_date, schedule.anchor, zone)
    step = schedule.step
    k = _first_step_after(anchor, step, after)
    # Each pass either returns or jumps past one exdate
    for _ in range(len(schedule.exdates) + 1):
        candidate = _interval_candidate(anchor, step, k)
        day = local_date(candidate, zone)
        if schedule.end_date is not None and day > schedule.end_date:
            return None
        if day not in schedule.exdates:
            return candidate
        next_midnight = local_instant(day + timedelta(days=1), time.min, zone)
        k = _first_step_after(anchor, step, next_midnight - timedelta(microseconds=1))
    return None


def _first_step_after(anchor: datetime, step: timedelta, after: datetime) -> int:
    if after < anchor:
        return 0
    return (after - anchor) // step + 1


def _interval_candidate(anchor: datetime, step: timedelta, k: int) -> datetime:
    return anchor + step * k


_GENERATORS = {
    ScheduleMode.ONCE: _once,
    ScheduleMode.DAILY: _daily,
    ScheduleMode.WEEKLY: _weekly,
    ScheduleMode.MONTHLY: _monthly,
}
