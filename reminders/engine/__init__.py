from .occurrence import next_occurrence
from .quiet_hours import adjust, is_quiet
from .schedule import Schedule, ScheduleMode, normalize
from .settings import QuietHours, Settings
from .state import Reminder, acknowledge, set_active, snooze, update_schedule
from .ticker import DueTicker, next_due, tick

__all__ = [
    "DueTicker",
    "QuietHours",
    "Reminder",
    "Schedule",
    "ScheduleMode",
    "Settings",
    "acknowledge",
    "adjust",
    "is_quiet",
    "next_due",
    "next_occurrence",
    "normalize",
    "set_active",
    "snooze",
    "tick",
    "update_schedule",
]
