"""
Base task type and abstract BaseTask with next_run persistence in DB.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from queue import Queue
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from reminders.core.db import session_scope
from reminders.core.models import TaskSchedule

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    INTERVAL_SECONDS = "interval_seconds"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_hh_mm(value: Any) -> tuple:
    parts = str(value or "00:00").strip().split(":")
    hour = int(parts[0]) if parts and parts[0] else 0
    minute = int(parts[1]) if len(parts) > 1 else 0
    return hour, minute


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """Compute next run (naive UTC) from schedule_type, schedule_config, and last_run (naive UTC).

    DAILY reads {"time": "HH:MM", "timezone": IANA name (optional, default UTC)}.
    INTERVAL_SECONDS reads {"interval_seconds": N}. Anything else runs again a day later.
    """
    if last_run is None:
        last_run = now if now is not None else _utc_now()

    if schedule_type == TaskType.DAILY and schedule_config:
        hour, minute = _parse_hh_mm(schedule_config.get("time", "00:00"))
        zone = ZoneInfo(schedule_config.get("timezone") or "UTC")
        local_last = last_run.replace(tzinfo=timezone.utc).astimezone(zone)
        next_local = local_last.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_local <= local_last:
            next_local = (next_local + timedelta(days=1)).replace(hour=hour, minute=minute)
        return next_local.astimezone(timezone.utc).replace(tzinfo=None)

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    return last_run + timedelta(days=1)


def get_next_run_from_db(task_name: str) -> Optional[datetime]:
    """Read next_run_at for a task from DB. None if no row or next_run_at is null (task will run immediately)."""
    try:
        with session_scope() as session:
            row = session.execute(
                select(TaskSchedule).where(TaskSchedule.task_name == task_name)
            ).scalars().first()
            if row and row.next_run_at is not None:
                return row.next_run_at
    except Exception as e:
        logger.debug(f"get_next_run_from_db {task_name}: {e}")
    return None


def upsert_task_schedule(
    task_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
    last_run_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
) -> None:
    """Create or update a TaskSchedule row. next_run_at is left as is unless given (null on a new row)."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = _utc_now()
        if row:
            if row.schedule_type != schedule_type or row.schedule_config != schedule_config:
                # Schedule changed: recompute from the last run
                row.next_run_at = compute_next_run(schedule_type, schedule_config, row.last_run_at, now)
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            if next_run_at is not None:
                row.next_run_at = next_run_at
            if last_run_at is not None:
                row.last_run_at = last_run_at
            if last_error is not None:
                row.last_error = last_error
            row.updated_at = now
        else:
            session.add(TaskSchedule(
                task_name=task_name,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                next_run_at=next_run_at,
                last_run_at=last_run_at,
                last_error=last_error,
                created_at=now,
                updated_at=now,
            ))


def update_after_run(task_name: str, error: Optional[str] = None) -> None:
    """Update last_run_at and next_run_at in DB after a task run; error is kept in last_error."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if not row:
            return
        now = _utc_now()
        row.last_run_at = now
        row.last_error = error
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now


class BaseTask(ABC):
    """
    Abstract base for background tasks. Subclasses implement run();
    base helps with get_next_run and persisting next_run in DB.
    """

    def __init__(self, task_name: str, schedule_type: str, schedule_config: Optional[Dict[str, Any]] = None):
        self.task_name = task_name
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        return compute_next_run(self.schedule_type, self.schedule_config, last_run)

    def ensure_scheduled(self, next_run_at: Optional[datetime] = None) -> None:
        """Ensure the TaskSchedule row exists so the next run survives restarts."""
        upsert_task_schedule(
            self.task_name,
            self.schedule_type,
            self.schedule_config,
            next_run_at=next_run_at,
        )

    @abstractmethod
    def run(
        self,
        config: Dict[str, Any],
        result_queue: Queue,
        **kwargs: Any,
    ) -> None:
        """
        Execute the task. Subclass should: do work, then call update_after_run(self.task_name),
        then result_queue.put((task_name, result)).
        """
        pass
