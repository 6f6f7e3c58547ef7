"""
In-memory prayer time table the occurrence calculator reads through lookup().

lookup() never touches the network; refresh() (run by PrayerTimesTask) fetches from the
backend, fills the table and persists each day so a restart can warm up from the DB.
"""
import logging
import threading
from datetime import date
from typing import Any, Dict, Iterable, Mapping, Optional

from reminders.plugins.prayer import service
from reminders.plugins.prayer.prayer_base import PrayerBackend, create_backend


class PrayerTimeProvider:
    def __init__(
        self,
        config: Dict[str, Any],
        backend: Optional[PrayerBackend] = None,
        persist: bool = True,
    ):
        """
        Args:
            config: city, country, calculation_method, backend, cache_dir
            backend: overrides the backend named in config
            persist: save fetched days to the DB and allow load_saved()
        """
        self.config = dict(config)
        self.backend = backend if backend is not None else create_backend(self.config)
        self.persist = persist
        self.logger = logging.getLogger(self.__class__.__name__)
        self._times: Dict[date, Dict[str, str]] = {}
        self._lock = threading.Lock()

    @property
    def location(self) -> str:
        return f"{self.config.get('city', 'Cairo')}, {self.config.get('country', 'Egypt')}"

    def __call__(self, day: date) -> Optional[Mapping[str, str]]:
        return self.lookup(day)

    def lookup(self, day: date) -> Optional[Mapping[str, str]]:
        with self._lock:
            times = self._times.get(day)
            return dict(times) if times else None

    def store(self, day: date, times: Mapping[str, str]) -> None:
        with self._lock:
            self._times[day] = dict(times)

    def known_dates(self):
        with self._lock:
            return sorted(self._times)

    def load_saved(self, since: date) -> int:
        """Warm the table from persisted records dated on/after `since`. Returns days loaded."""
        if not self.persist:
            return 0
        try:
            records = service.get_prayer_times_since(self.location, since)
        except Exception as e:
            self.logger.error(f"Could not load saved prayer times: {e}")
            return 0
        for record in records:
            self.store(record.prayer_date, record.data)
        self.logger.info(f"Loaded {len(records)} saved prayer day(s) for {self.location}")
        return len(records)

    def refresh(self, days: Iterable[date], force_fetch: bool = False) -> int:
        """Fetch the given dates from the backend. Returns how many dates now have times."""
        if self.backend is None:
            self.logger.warning("No prayer backend configured, skipping refresh")
            return 0
        refreshed = 0
        for day in days:
            if not force_fetch and self.lookup(day):
                refreshed += 1
                continue
            times = self.backend.get_prayer_times(day, force_fetch=force_fetch)
            if not times:
                self.logger.warning(f"No prayer times for {day} ({self.location})")
                continue
            self.store(day, times)
            refreshed += 1
            if self.persist:
                try:
                    service.save_prayer_times(self.location, day, times)
                except Exception as e:
                    self.logger.error(f"Could not save prayer times for {day}: {e}")
        return refreshed

    def forget_before(self, day: date) -> None:
        """Drop in-memory days older than `day`."""
        with self._lock:
            for old in [d for d in self._times if d < day]:
                del self._times[old]

    def update_location(self, config: Dict[str, Any]) -> bool:
        """Apply a new city/country/method. Clears the table when the location changes."""
        keys = ("city", "country", "calculation_method", "backend")
        if all(self.config.get(k) == config.get(k) for k in keys if k in config):
            return False
        self.config.update({k: config[k] for k in keys if k in config})
        self.backend = create_backend(self.config)
        with self._lock:
            self._times.clear()
        self.logger.info(f"Prayer location changed to {self.location}")
        return True
