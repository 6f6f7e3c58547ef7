from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional
import logging
import sys
import threading
from .task_manager import TaskManager
from .config import Config
from .db import init_db, dispose_db
from reminders.engine import DueTicker, Reminder, Settings
from reminders.plugins.prayer.provider import PrayerTimeProvider
from reminders.plugins.prayer.task import PrayerTimesTask

DRAIN_INTERVAL_SECONDS = 1.0


class ReminderApp:
    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        # Database before managers so tables exist
        init_db(self.config.data)

        self.task_manager = TaskManager()
        self.settings = self._load_settings(self.config.get_section("settings"))

        self.prayer_provider: Optional[PrayerTimeProvider] = None
        self.prayer_task: Optional[PrayerTimesTask] = None
        if self.config.get_section("prayer").get("enable", True):
            self._setup_prayer()

        ticker_config = self.config.get_section("ticker")
        self.ticker = DueTicker(
            self.settings,
            prayer_lookup=self.prayer_provider,
            interval_seconds=float(ticker_config.get("interval_seconds", 15)),
            task_manager=self.task_manager,
        )
        self.ticker.add_listener(self._log_due)
        self._config_reminder_ids: set = set()
        self.sync_reminders(self.config.get_reminders())

        self._stop_event = threading.Event()

        # Start API server if enabled (api.enabled in config)
        try:
            from reminders.api.server import run_api_server
            run_api_server(self)
        except Exception as e:
            self.logger.warning(f"API server not started: {e}")

    def _setup_logging(self):
        """Configure logging to write to both file and stdout"""
        logging_config = self.config.get_section("logging")
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        if logging_config.get("file"):
            file_handler = logging.FileHandler(logging_config["file"])
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Reminder service starting...")

    def _load_settings(self, raw: Dict[str, Any], fallback: Optional[Settings] = None) -> Settings:
        try:
            return Settings.from_dict(raw)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Invalid settings: {e}")
            if fallback is not None:
                self.logger.info("Keeping previous settings")
                return fallback
            self.logger.info("Using default settings")
            return Settings()

    def _prayer_config(self) -> Dict[str, Any]:
        prayer_config = dict(self.config.get_section("prayer"))
        prayer_config.setdefault("city", self.settings.city)
        prayer_config.setdefault("country", self.settings.country)
        prayer_config.setdefault("calculation_method", self.settings.calculation_method)
        return prayer_config

    def _setup_prayer(self) -> None:
        prayer_config = self._prayer_config()
        self.prayer_provider = PrayerTimeProvider(prayer_config)
        today = datetime.now(self.settings.zone).date()
        self.prayer_provider.load_saved(today - timedelta(days=1))

        self.prayer_task = PrayerTimesTask(self.prayer_provider, prayer_config, self.settings.timezone)
        self.prayer_task.ensure_scheduled()
        self.task_manager.register_task(self.prayer_task.task_name, self.prayer_task.run)
        self.task_manager.schedule_registered_task(self.prayer_task.task_name, prayer_config, self.config.data)

    def sync_reminders(self, entries: List[Dict[str, Any]]) -> None:
        """Make the config's reminders the ticker's config-owned working set.

        Existing reminders keep their fire/snooze state; a changed schedule or active flag
        is applied through the same path as an edit. Reminders pushed over the API are
        left alone.
        """
        seen = set()
        for entry in entries:
            if entry.get("id") is None:
                self.logger.warning(f"Skipping reminder without id: {entry}")
                continue
            try:
                incoming = self.reminder_from_entry(entry)
            except Exception as e:
                self.logger.error(f"Invalid reminder {entry.get('id')}: {e}")
                continue
            seen.add(incoming.id)
            self.upsert_reminder(incoming)

        for stale in self._config_reminder_ids - seen:
            self.logger.info(f"Reminder {stale} removed from config")
            self.ticker.remove(stale)
        self._config_reminder_ids = seen

    def reminder_from_entry(self, entry: Dict[str, Any]) -> Reminder:
        """Parse a raw reminder with dates defaulted in the settings zone.

        A reminder already tracked keeps its start date when the entry gives none, so a
        re-sync on a later day does not move it.
        """
        current = self.ticker.get(entry.get("id"))
        today = current.schedule.start_date if current is not None else None
        return Reminder.from_dict(entry, today=today, default_timezone=self.settings.timezone)

    def upsert_reminder(self, incoming: Reminder) -> Reminder:
        """Add a reminder or apply an incoming copy's editable fields to the tracked one."""
        current = self.ticker.get(incoming.id)
        if current is None:
            return self.ticker.add(incoming)
        with current.lock:
            current.title = incoming.title
            current.notes = incoming.notes
            if current.schedule != incoming.schedule or current.active != incoming.active:
                current.schedule = incoming.schedule
                current.active = incoming.active
                current.revision += 1
        return current

    def _log_due(self, reminder: Reminder, due: datetime) -> None:
        local_due = due.astimezone(self.settings.zone)
        self.logger.info(f"DUE: {reminder.title or reminder.id} at {local_due.strftime('%Y-%m-%d %H:%M %Z')}")

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Handle configuration changes"""
        self.logger.info("Handling config change")
        try:
            settings = self._load_settings(new_config.get("settings") or {}, fallback=self.settings)
            if settings != self.settings:
                self.settings = settings
                self.ticker.update_settings(settings)
            if self.prayer_provider is not None and self.prayer_provider.update_location(self._prayer_config()):
                self.task_manager.run_task_now(self.prayer_task.task_name)
            interval = (new_config.get("ticker") or {}).get("interval_seconds")
            if interval and float(interval) != self.ticker.interval_seconds:
                self.ticker.interval_seconds = float(interval)
                if self.ticker.running:
                    self.ticker.start()
            self.sync_reminders(self.config.get_reminders())
        except Exception as e:
            self.logger.error(f"Error handling config change: {e}", exc_info=True)

    def run(self):
        """Tick in the background and deliver due events on this thread until stop()."""
        self.ticker.start()
        try:
            while not self._stop_event.is_set():
                self.ticker.drain()
                self._drain_result_queue()
                self._stop_event.wait(DRAIN_INTERVAL_SECONDS)
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.shutdown()

    def _drain_result_queue(self) -> None:
        """Log background task results (called from main thread)."""
        try:
            while not self.task_manager.result_queue.empty():
                task_name, result = self.task_manager.result_queue.get_nowait()
                self.logger.debug(f"Task result for {task_name}: {result}")
        except Exception as e:
            self.logger.error(f"Error draining result queue: {e}")

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self.ticker.stop()
        self.task_manager.stop()
        self.config.cleanup()
        dispose_db()
        self.logger.info("Reminder service stopped")
