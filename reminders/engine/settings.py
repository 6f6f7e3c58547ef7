"""
Per-user settings the engine reads on every tick: timezone, quiet hours, snooze default,
and the location the prayer provider looks times up for.

Settings are immutable snapshots; a config reload builds a new one and hands it to the ticker.
"""
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .schedule import parse_time

DEFAULT_TIMEZONE = "Africa/Cairo"
DEFAULT_SNOOZE_MINUTES = 10
DEFAULT_CALCULATION_METHOD = 5


@dataclass(frozen=True)
class QuietHours:
    """Local time-of-day window; start > end wraps past midnight, start == end is empty."""
    start: time
    end: time

    @property
    def wraps(self) -> bool:
        return self.start > self.end

    def contains(self, clock: time) -> bool:
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= clock < self.end
        return clock >= self.start or clock < self.end

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["QuietHours"]:
        """Build from {"start": ..., "end": ...}; None when missing or unparsable."""
        if isinstance(raw, QuietHours):
            return raw
        if not isinstance(raw, Mapping):
            return None
        start = parse_time(raw.get("start"))
        end = parse_time(raw.get("end"))
        if start is None or end is None:
            return None
        return cls(start=start, end=end)

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


def _default_quiet_hours() -> QuietHours:
    return QuietHours(start=time(22, 0), end=time(7, 0))


@dataclass(frozen=True)
class Settings:
    timezone: str = DEFAULT_TIMEZONE
    quiet_hours: Optional[QuietHours] = field(default_factory=_default_quiet_hours)
    default_snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
    city: str = "Cairo"
    country: str = "Egypt"
    calculation_method: int = DEFAULT_CALCULATION_METHOD

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from e
        if self.default_snooze_minutes <= 0:
            raise ValueError(f"default_snooze_minutes must be positive, got {self.default_snooze_minutes}")

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "Settings":
        """Build Settings from the config "settings" section.

        Missing keys take defaults. An explicit "quiet_hours: null" disables quiet hours.
        Raises ValueError for an unknown timezone.
        """
        raw = raw or {}
        kwargs: Dict[str, Any] = {}
        if raw.get("timezone"):
            kwargs["timezone"] = str(raw["timezone"]).strip()
        if "quiet_hours" in raw or "quietHours" in raw:
            kwargs["quiet_hours"] = QuietHours.from_dict(raw.get("quiet_hours", raw.get("quietHours")))
        snooze = raw.get("default_snooze_minutes", raw.get("defaultSnooze"))
        if snooze is not None:
            kwargs["default_snooze_minutes"] = int(snooze)
        for key in ("city", "country"):
            if raw.get(key):
                kwargs[key] = str(raw[key])
        if raw.get("calculation_method") is not None:
            kwargs["calculation_method"] = int(raw["calculation_method"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timezone": self.timezone,
            "quiet_hours": self.quiet_hours.to_dict() if self.quiet_hours else None,
            "default_snooze_minutes": self.default_snooze_minutes,
            "city": self.city,
            "country": self.country,
            "calculation_method": self.calculation_method,
        }
