"""
Schedule variants (one frozen dataclass per mode) and the normalizer that builds them
from the loosely-shaped payloads the CRUD layer and config file hand us.

normalize() is total: anything it cannot make sense of falls back to a default.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


class ScheduleMode(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    INTERVAL = "interval"
    PRAYER = "prayer"


class IntervalUnit(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


class PrayerDirection(str, Enum):
    BEFORE = "before"
    AFTER = "after"


PRAYER_NAMES = ("Fajr", "Dhuhr", "Asr", "Maghrib", "Isha")

# Indexed by date.weekday()
WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

DEFAULT_TIME = time(9, 0)

_UNIT_DELTAS = {
    IntervalUnit.MINUTE: timedelta(minutes=1),
    IntervalUnit.HOUR: timedelta(hours=1),
    IntervalUnit.DAY: timedelta(days=1),
}

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?(?!\d)")
_MERIDIEM_RE = re.compile(r"\d\s*[ap]\.?m(?![a-z])", re.IGNORECASE)


_DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
# Exact two-letter codes, three-letter abbreviations and full names
_DAY_ALIASES = {
    alias: code
    for code, name in zip(WEEKDAY_CODES, _DAY_NAMES)
    for alias in (code.lower(), name[:3], name)
}


def weekday_code(day: date) -> str:
    return WEEKDAY_CODES[day.weekday()]


@dataclass(frozen=True)
class PrayerOffset:
    """Which prayer, and how far before/after it."""
    name: str = "Fajr"
    direction: PrayerDirection = PrayerDirection.BEFORE
    offset_minutes: int = 10

    @property
    def delta(self) -> timedelta:
        minutes = self.offset_minutes if self.direction == PrayerDirection.AFTER else -self.offset_minutes
        return timedelta(minutes=minutes)


@dataclass(frozen=True)
class Schedule:
    """Fields every mode shares. Concrete modes are the subclasses below."""
    mode: ClassVar[ScheduleMode]

    start_date: date
    end_date: Optional[date] = None
    exdates: FrozenSet[date] = frozenset()
    timezone: Optional[str] = None

    def allows(self, day: date) -> bool:
        """True if day lies in [start_date, end_date] and is not an exdate."""
        if day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        return day not in self.exdates

    def to_dict(self) -> Dict[str, Any]:
        """camelCase payload in the shape normalize() accepts."""
        data: Dict[str, Any] = {
            "mode": self.mode.value,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "exdates": sorted(d.isoformat() for d in self.exdates),
            "timezone": self.timezone,
        }
        data.update(self._mode_fields())
        return data

    def _mode_fields(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class TimedSchedule(Schedule):
    times: Tuple[time, ...] = (DEFAULT_TIME,)

    def _mode_fields(self) -> Dict[str, Any]:
        return {"times": [t.strftime("%H:%M") for t in self.times]}


@dataclass(frozen=True)
class OnceSchedule(TimedSchedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.ONCE


@dataclass(frozen=True)
class DailySchedule(TimedSchedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.DAILY


@dataclass(frozen=True)
class WeeklySchedule(TimedSchedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.WEEKLY
    days_of_week: FrozenSet[str] = frozenset(WEEKDAY_CODES)

    def _mode_fields(self) -> Dict[str, Any]:
        data = super()._mode_fields()
        data["daysOfWeek"] = [code for code in WEEKDAY_CODES if code in self.days_of_week]
        return data


@dataclass(frozen=True)
class MonthlySchedule(TimedSchedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.MONTHLY


@dataclass(frozen=True)
class IntervalSchedule(Schedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.INTERVAL
    anchor: time = DEFAULT_TIME
    every: int = 1
    unit: IntervalUnit = IntervalUnit.HOUR

    @property
    def step(self) -> timedelta:
        return _UNIT_DELTAS[self.unit] * self.every

    def _mode_fields(self) -> Dict[str, Any]:
        return {
            "times": [self.anchor.strftime("%H:%M")],
            "interval": {"every": self.every, "unit": self.unit.value},
        }


@dataclass(frozen=True)
class PrayerSchedule(Schedule):
    mode: ClassVar[ScheduleMode] = ScheduleMode.PRAYER
    prayer: PrayerOffset = PrayerOffset()

    def _mode_fields(self) -> Dict[str, Any]:
        return {
            "prayer": {
                "name": self.prayer.name,
                "direction": self.prayer.direction.value,
                "offsetMinutes": self.prayer.offset_minutes,
            }
        }


_TIMED_VARIANTS = {
    ScheduleMode.ONCE: OnceSchedule,
    ScheduleMode.DAILY: DailySchedule,
    ScheduleMode.MONTHLY: MonthlySchedule,
}


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_time(value: Any) -> Optional[time]:
    """Parse "HH:MM", "HH:MM:SS", "h:mm AM/PM" (or a time/datetime) to a naive minute-precision time."""
    if isinstance(value, datetime):
        return value.time().replace(second=0, microsecond=0)
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if not isinstance(value, str) or not value.strip():
        return None
    if _MERIDIEM_RE.search(value):
        try:
            parsed = dateutil_parser.parse(value, default=datetime(2000, 1, 1))
        except (ValueError, OverflowError):
            return None
        return parsed.time().replace(second=0, microsecond=0)
    match = _CLOCK_RE.match(value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def parse_date(value: Any, zone: Optional[ZoneInfo] = None) -> Optional[date]:
    """Parse an ISO date/datetime string (or date object) to a calendar date.

    Aware datetimes are converted to zone first when one is given.
    """
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = dateutil_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    if isinstance(value, datetime):
        if value.tzinfo is not None and zone is not None:
            value = value.astimezone(zone)
        return value.date()
    if isinstance(value, date):
        return value
    return None


def parse_zone(value: Any) -> Optional[str]:
    """Return value if it names a known IANA zone, else None."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        ZoneInfo(value.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return value.strip()


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (str, bytes, Mapping)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


def _parse_mode(value: Any) -> ScheduleMode:
    if isinstance(value, ScheduleMode):
        return value
    try:
        return ScheduleMode(str(value).strip().lower())
    except ValueError:
        return ScheduleMode.DAILY


def _parse_times(value: Any) -> Tuple[time, ...]:
    parsed = {parse_time(item) for item in _as_list(value)}
    parsed.discard(None)
    return tuple(sorted(parsed)) or (DEFAULT_TIME,)


def _first_time(value: Any) -> time:
    """First valid entry in the order given, unsorted."""
    for item in _as_list(value):
        parsed = parse_time(item)
        if parsed is not None:
            return parsed
    return DEFAULT_TIME


def _parse_days(value: Any) -> FrozenSet[str]:
    codes = set()
    for item in _as_list(value):
        if not isinstance(item, str):
            continue
        code = _DAY_ALIASES.get(item.strip().lower())
        if code is not None:
            codes.add(code)
    # No days chosen means every day, not never
    return frozenset(codes) or frozenset(WEEKDAY_CODES)


def _parse_exdates(value: Any, zone: Optional[ZoneInfo]) -> FrozenSet[date]:
    days = {parse_date(item, zone) for item in _as_list(value)}
    days.discard(None)
    return frozenset(days)


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _parse_unit(value: Any) -> IntervalUnit:
    if isinstance(value, IntervalUnit):
        return value
    text = str(value or "").strip().lower()
    if text.endswith("s"):
        text = text[:-1]
    aliases = {"m": "minute", "min": "minute", "h": "hour", "hr": "hour", "d": "day"}
    try:
        return IntervalUnit(aliases.get(text, text))
    except ValueError:
        return IntervalUnit.HOUR


def _parse_prayer(value: Any) -> PrayerOffset:
    if isinstance(value, PrayerOffset):
        return value
    if not isinstance(value, Mapping):
        return PrayerOffset()
    raw_name = str(value.get("name") or "").strip().lower()
    name = next((p for p in PRAYER_NAMES if p.lower() == raw_name), "Fajr")
    try:
        direction = PrayerDirection(str(value.get("direction") or "").strip().lower())
    except ValueError:
        direction = PrayerDirection.BEFORE
    offset = _pick(value, "offsetMinutes", "offsetMin", "offset_minutes", "offset")
    try:
        minutes = max(0, int(offset))
    except (TypeError, ValueError):
        minutes = 0
    return PrayerOffset(name=name, direction=direction, offset_minutes=minutes)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

def normalize(
    raw: Any,
    today: Optional[date] = None,
    default_timezone: Optional[str] = None,
) -> Schedule:
    """Build a Schedule from a raw payload, filling defaults. Never raises.

    Accepts camelCase (CRUD payload) or snake_case keys. Only the fields the chosen
    mode uses are read; the rest are ignored.
    """
    if isinstance(raw, Schedule):
        return raw
    if not isinstance(raw, Mapping):
        raw = {}

    tz_name = parse_zone(raw.get("timezone"))
    zone_name = tz_name or parse_zone(default_timezone)
    zone = ZoneInfo(zone_name) if zone_name else None
    if today is None:
        today = datetime.now(zone).date()

    mode = _parse_mode(raw.get("mode"))
    common = {
        "start_date": parse_date(_pick(raw, "startDate", "start_date"), zone) or today,
        "end_date": parse_date(_pick(raw, "endDate", "end_date"), zone),
        "exdates": _parse_exdates(raw.get("exdates"), zone),
        "timezone": tz_name,
    }
    times = _parse_times(raw.get("times"))

    if mode in _TIMED_VARIANTS:
        return _TIMED_VARIANTS[mode](times=times, **common)
    if mode == ScheduleMode.WEEKLY:
        days = _parse_days(_pick(raw, "daysOfWeek", "days_of_week"))
        return WeeklySchedule(times=times, days_of_week=days, **common)
    if mode == ScheduleMode.INTERVAL:
        interval = raw.get("interval")
        if not isinstance(interval, Mapping):
            interval = {}
        return IntervalSchedule(
            anchor=_first_time(raw.get("times")),
            every=_positive_int(interval.get("every"), 1),
            unit=_parse_unit(interval.get("unit")),
            **common,
        )
    return PrayerSchedule(prayer=_parse_prayer(raw.get("prayer")), **common)
