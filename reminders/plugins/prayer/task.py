"""
Background task: refresh prayer times for today and tomorrow, persist next_run in DB.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from reminders.core.task import (
    BaseTask,
    TaskType,
    update_after_run,
)
from reminders.plugins.prayer.provider import PrayerTimeProvider
from reminders.plugins.prayer.service import delete_prayer_times_before

TASK_NAME = "prayer_times"
DAYS_AHEAD = 2
# Stored days older than this are pruned
KEEP_DAYS = 30


class PrayerTimesTask(BaseTask):
    """Fill the provider for the next DAYS_AHEAD local dates, then update next_run."""

    def __init__(self, provider: PrayerTimeProvider, config: Dict[str, Any], timezone: str):
        schedule_type, schedule_config = self._schedule_from_config(config, timezone)
        super().__init__(TASK_NAME, schedule_type, schedule_config)
        self.provider = provider
        self.timezone = timezone

    def _schedule_from_config(self, config: Dict[str, Any], timezone: str) -> tuple:
        refresh_time = config.get("refresh_time")
        if refresh_time:
            try:
                parts = str(refresh_time).strip().split(":")
                hour = int(parts[0]) if parts else 0
                minute = int(parts[1]) if len(parts) > 1 else 0
                return TaskType.DAILY, {"time": f"{hour:02d}:{minute:02d}", "timezone": timezone}
            except (ValueError, IndexError):
                return TaskType.DAILY, {"time": "00:30", "timezone": timezone}
        sec = int(config.get("update_interval", 21600))
        return TaskType.INTERVAL_SECONDS, {"interval_seconds": sec}

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        today = datetime.now(ZoneInfo(self.timezone)).date()
        days = [today + timedelta(days=i) for i in range(DAYS_AHEAD)]
        try:
            refreshed = self.provider.refresh(days, force_fetch=bool(config.get("force_fetch", False)))
        except Exception as e:
            self.logger.exception(f"Prayer times refresh failed: {e}")
            update_after_run(self.task_name, error=str(e))
            result_queue.put((self.task_name, None))
            return
        # Yesterday stays: a prayer shifted past midnight is looked up from the day before
        self.provider.forget_before(today - timedelta(days=1))
        if self.provider.persist:
            pruned = delete_prayer_times_before(self.provider.location, today - timedelta(days=KEEP_DAYS))
            if pruned:
                self.logger.info(f"Pruned {pruned} stored prayer day(s)")
        error = None if refreshed == len(days) else f"refreshed {refreshed}/{len(days)} days"
        self.logger.info(f"Prayer times refreshed for {refreshed}/{len(days)} day(s) from {today}")
        update_after_run(self.task_name, error=error)
        result_queue.put((self.task_name, refreshed))
