"""
Reminder entity and the state mutators the UI layer calls (snooze, acknowledge, toggle).

Each reminder carries its own lock; the ticker holds it while it reads and writes the
reminder so a concurrent edit is never seen half-applied.
"""
import logging
import threading
from collections import namedtuple
from datetime import date, datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from .clock import to_utc, utcnow
from .schedule import Schedule, normalize

logger = logging.getLogger(__name__)

# Consistent view of a reminder's mutable fields, taken under its lock
ReminderState = namedtuple(
    "ReminderState",
    [
        "schedule",
        "active",
        "snoozed_until",
        "last_fired_at",
        "completed_at",
        "revision",
    ],
)


def _instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


class Reminder:
    """A scheduled reminder plus the fields the ticker reads and writes.

    revision increments whenever the schedule or active flag changes; the ticker uses it
    to invalidate what it has cached about the reminder.
    """

    def __init__(
        self,
        id: Any,
        schedule: Schedule,
        title: str = "",
        notes: str = "",
        active: bool = True,
        snoozed_until: Optional[datetime] = None,
        last_fired_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ):
        self.id = id
        self.schedule = schedule
        self.title = title
        self.notes = notes
        self.active = active
        self.snoozed_until = snoozed_until
        self.last_fired_at = last_fired_at
        self.completed_at = completed_at
        self.fired_count = 0
        self.done_count = 0
        self.revision = 0
        self.lock = threading.RLock()

    def __repr__(self) -> str:
        return f"Reminder(id={self.id!r}, mode={self.schedule.mode.value}, active={self.active})"

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        today: Optional[date] = None,
        default_timezone: Optional[str] = None,
    ) -> "Reminder":
        """Build a reminder from a CRUD/config payload. The schedule goes through normalize()."""
        active = raw.get("active", raw.get("isActive", True))
        return cls(
            id=raw.get("id"),
            schedule=normalize(raw.get("schedule"), today=today, default_timezone=default_timezone),
            title=str(raw.get("title") or ""),
            notes=str(raw.get("notes") or raw.get("description") or ""),
            active=bool(active),
            snoozed_until=_instant(raw.get("snoozed_until", raw.get("snoozedUntil"))),
            last_fired_at=_instant(raw.get("last_fired_at", raw.get("lastFiredAt"))),
            completed_at=_instant(raw.get("completed_at", raw.get("completedAt"))),
        )

    def snapshot(self) -> ReminderState:
        with self.lock:
            return ReminderState(
                schedule=self.schedule,
                active=self.active,
                snoozed_until=self.snoozed_until,
                last_fired_at=self.last_fired_at,
                completed_at=self.completed_at,
                revision=self.revision,
            )

    def to_dict(self) -> Dict[str, Any]:
        state = self.snapshot()

        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "title": self.title,
            "notes": self.notes,
            "active": state.active,
            "schedule": state.schedule.to_dict(),
            "snoozed_until": iso(state.snoozed_until),
            "last_fired_at": iso(state.last_fired_at),
            "completed_at": iso(state.completed_at),
            "fired_count": self.fired_count,
            "done_count": self.done_count,
        }


def snooze(reminder: Reminder, minutes: int, now: Optional[datetime] = None) -> datetime:
    """Suppress the reminder for `minutes` and have it fire again when that runs out."""
    if minutes <= 0:
        raise ValueError(f"Snooze minutes must be positive, got {minutes}")
    now = to_utc(now) if now is not None else utcnow()
    until = now + timedelta(minutes=minutes)
    with reminder.lock:
        reminder.snoozed_until = until
    logger.info(f"Reminder {reminder.id} snoozed until {until.isoformat()}")
    return until


def acknowledge(reminder: Reminder, now: Optional[datetime] = None) -> datetime:
    """Mark the reminder done. Does not touch last_fired_at or the schedule."""
    now = to_utc(now) if now is not None else utcnow()
    with reminder.lock:
        reminder.completed_at = now
        reminder.done_count += 1
    logger.info(f"Reminder {reminder.id} acknowledged at {now.isoformat()}")
    return now


def set_active(reminder: Reminder, active: bool) -> None:
    with reminder.lock:
        if reminder.active == active:
            return
        reminder.active = active
        reminder.revision += 1
    logger.info(f"Reminder {reminder.id} {'activated' if active else 'deactivated'}")


def update_schedule(reminder: Reminder, schedule: Any) -> Schedule:
    """Replace the schedule (raw payloads are normalized). Takes effect on the next tick."""
    schedule = normalize(schedule)
    with reminder.lock:
        reminder.schedule = schedule
        reminder.revision += 1
    logger.info(f"Reminder {reminder.id} schedule updated to {schedule.mode.value}")
    return schedule
