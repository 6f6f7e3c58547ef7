"""
Due ticker: on each tick, decide for every reminder whether an occurrence is due and fire it once.

tick() is the pure-ish core (its only side effects are the state writes on fired reminders).
DueTicker wraps it with a working set, a timer loop and an event queue; listeners run when
the queue is drained, never inside a tick.
"""
import logging
import threading
from datetime import datetime, time, timedelta
from queue import Empty, Queue
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .clock import local_instant, resolve_zone, to_utc, utcnow
from .occurrence import PrayerLookup, next_occurrence
from .quiet_hours import adjust
from .schedule import Schedule, ScheduleMode
from .settings import Settings
from .state import Reminder

logger = logging.getLogger(__name__)

Fired = Tuple[Reminder, datetime]
DueListener = Callable[[Reminder, datetime], None]

EPSILON = timedelta(microseconds=1)
# How far back catch-up looks for the latest missed occurrence
CATCH_UP_HORIZON = timedelta(hours=48)


def schedule_zone(schedule: Schedule, settings: Settings):
    return resolve_zone(schedule.timezone or settings.timezone)


def reference_instant(
    schedule: Schedule,
    last_fired_at: Optional[datetime],
    zone,
    now: Optional[datetime] = None,
) -> datetime:
    """Where the search for the next occurrence starts: the last fire, or just before start_date.

    With `now` given the search never starts more than CATCH_UP_HORIZON before it, so a
    long-idle reminder resumes from recent history (and a Prayer scan reaches dates the
    provider still holds).
    """
    if last_fired_at is not None:
        reference = last_fired_at
    else:
        reference = local_instant(schedule.start_date, time.min, zone) - EPSILON
    if now is not None:
        reference = max(reference, now - CATCH_UP_HORIZON)
    return reference


def next_due(
    reminder: Reminder,
    settings: Settings,
    prayer_lookup: Optional[PrayerLookup] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """When the reminder will next fire (snooze expiry or quiet-adjusted occurrence), or None.

    May lie in the past when the reminder is overdue; the next tick fires it.
    """
    now = to_utc(now, settings.zone) if now is not None else utcnow()
    state = reminder.snapshot()
    if not state.active:
        return None
    if state.snoozed_until is not None:
        return adjust(state.snoozed_until, settings.quiet_hours, settings.zone)
    zone = schedule_zone(state.schedule, settings)
    raw = next_occurrence(
        state.schedule,
        prayer_lookup,
        reference_instant(state.schedule, state.last_fired_at, zone, now),
        zone,
    )
    return adjust(raw, settings.quiet_hours, settings.zone)


def tick(
    reminders: Iterable[Reminder],
    settings: Settings,
    now: Optional[datetime] = None,
    prayer_lookup: Optional[PrayerLookup] = None,
    terminal_cache: Optional[Dict[Any, int]] = None,
) -> List[Fired]:
    """Evaluate every reminder once and return the ones that fired with their due instants.

    Fired reminders get last_fired_at = due and their snooze cleared. terminal_cache, when
    given, remembers (by revision) reminders whose schedule has no further occurrence.
    A naive `now` is read as wall-clock time in the settings zone.
    """
    now = to_utc(now, settings.zone) if now is not None else utcnow()
    fired: List[Fired] = []
    for reminder in reminders:
        with reminder.lock:
            due = _due_instant(reminder, settings, now, prayer_lookup, terminal_cache)
            if due is None:
                continue
            if reminder.last_fired_at is None or due > reminder.last_fired_at:
                reminder.last_fired_at = due
            reminder.snoozed_until = None
            reminder.fired_count += 1
        logger.info(f"Reminder {reminder.id} due at {due.isoformat()}")
        fired.append((reminder, due))
    return fired


def _due_instant(
    reminder: Reminder,
    settings: Settings,
    now: datetime,
    prayer_lookup: Optional[PrayerLookup],
    terminal_cache: Optional[Dict[Any, int]],
) -> Optional[datetime]:
    """The instant to fire at if the reminder is due at `now`. Caller holds reminder.lock."""
    if not reminder.active:
        return None

    if reminder.snoozed_until is not None:
        if reminder.snoozed_until > now:
            return None
        due = adjust(reminder.snoozed_until, settings.quiet_hours, settings.zone)
        return due if due <= now else None

    if terminal_cache is not None and terminal_cache.get(reminder.id) == reminder.revision:
        return None

    schedule = reminder.schedule
    zone = schedule_zone(schedule, settings)
    reference = reference_instant(schedule, reminder.last_fired_at, zone, now)
    raw = next_occurrence(schedule, prayer_lookup, reference, zone)
    if raw is None:
        # A Prayer miss may only mean the provider has no data yet
        if terminal_cache is not None and schedule.mode != ScheduleMode.PRAYER:
            terminal_cache[reminder.id] = reminder.revision
            logger.debug(f"Reminder {reminder.id} has no further occurrences")
        return None

    due = adjust(raw, settings.quiet_hours, settings.zone)
    if due > now:
        return None
    return _latest_overdue(schedule, prayer_lookup, raw, due, now, zone, settings, reminder.id)


def _latest_overdue(
    schedule: Schedule,
    prayer_lookup: Optional[PrayerLookup],
    raw: datetime,
    due: datetime,
    now: datetime,
    zone,
    settings: Settings,
    reminder_id: Any,
) -> datetime:
    """Collapse a backlog of overdue occurrences into the latest one so it fires only once."""
    skipped = 0
    while True:
        following = next_occurrence(schedule, prayer_lookup, raw, zone)
        following_due = adjust(following, settings.quiet_hours, settings.zone)
        if following_due is None or following_due > now:
            break
        raw, due = following, following_due
        skipped += 1
    if skipped:
        logger.info(f"Reminder {reminder_id}: folded {skipped} missed occurrence(s) into one fire")
    return due


class DueTicker:
    """Working set of reminders polled on a fixed interval.

    Fired events go onto `events`; drain() hands them to listeners. The timer runs through
    the TaskManager, which reschedules the next tick only after the current one returns.
    """

    TASK_NAME = "due_ticker"

    def __init__(
        self,
        settings: Settings,
        prayer_lookup: Optional[PrayerLookup] = None,
        interval_seconds: float = 15,
        task_manager: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.prayer_lookup = prayer_lookup
        self.interval_seconds = interval_seconds
        self.task_manager = task_manager
        self.clock = clock or utcnow
        self.events: Queue = Queue()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._reminders: Dict[Any, Reminder] = {}
        self._lock = threading.Lock()
        self._terminal: Dict[Any, int] = {}
        self._listeners: List[DueListener] = []
        self.running = False

    # Working set

    def add(self, reminder: Reminder) -> Reminder:
        """Add or replace (by id) a reminder."""
        with self._lock:
            self._reminders[reminder.id] = reminder
            self._terminal.pop(reminder.id, None)
        self.logger.debug(f"Tracking reminder {reminder.id}")
        return reminder

    def remove(self, reminder_id: Any) -> Optional[Reminder]:
        with self._lock:
            self._terminal.pop(reminder_id, None)
            return self._reminders.pop(reminder_id, None)

    def get(self, reminder_id: Any) -> Optional[Reminder]:
        with self._lock:
            return self._reminders.get(reminder_id)

    def reminders(self) -> List[Reminder]:
        with self._lock:
            return list(self._reminders.values())

    def update_settings(self, settings: Settings) -> None:
        with self._lock:
            self.settings = settings
            # Schedules without their own zone follow the settings zone
            self._terminal.clear()
        self.logger.info(f"Settings updated (timezone={settings.timezone})")

    # Ticking

    def run_once(self, now: Optional[datetime] = None) -> List[Fired]:
        """Run a single tick and queue what fired."""
        now = now if now is not None else self.clock()
        fired = tick(self.reminders(), self.settings, now, self.prayer_lookup, self._terminal)
        for event in fired:
            self.events.put(event)
        return fired

    def upcoming(self) -> List[Tuple[Reminder, Optional[datetime]]]:
        """Active reminders with their next due instant, soonest first (None last)."""
        now = self.clock()
        entries = [(r, next_due(r, self.settings, self.prayer_lookup, now)) for r in self.reminders()]
        entries = [(r, due) for r, due in entries if r.active]
        return sorted(entries, key=lambda e: (e[1] is None, e[1] or datetime.min))

    # Listeners

    def add_listener(self, listener: DueListener) -> None:
        self._listeners.append(listener)

    def drain(self) -> int:
        """Deliver queued fire events to listeners. Returns how many events were delivered."""
        delivered = 0
        while True:
            try:
                reminder, due = self.events.get_nowait()
            except Empty:
                break
            for listener in list(self._listeners):
                try:
                    listener(reminder, due)
                except Exception as e:
                    self.logger.exception(f"Due listener failed for reminder {reminder.id}: {e}")
            delivered += 1
        return delivered

    # Loop

    def start(self) -> None:
        if self.task_manager is None:
            raise RuntimeError("DueTicker.start() needs a task_manager")
        self.logger.info(f"Starting due ticker every {self.interval_seconds}s")
        self.task_manager.schedule_task(self.TASK_NAME, self._scheduled_tick, self.interval_seconds, one_time=False)
        self.running = True

    def stop(self) -> None:
        if self.task_manager is not None:
            self.task_manager.cancel_task(self.TASK_NAME)
        self.running = False
        self.logger.info("Due ticker stopped")

    def _scheduled_tick(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            self.logger.exception(f"Tick failed: {e}")
