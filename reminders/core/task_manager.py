"""
Single place for scheduling: in-memory timers and DB-backed registered tasks.
"""
import logging
import threading
from datetime import datetime, timezone
from queue import Queue
from threading import Timer
from typing import Any, Callable, Dict, List, Optional

from reminders.core.task import get_next_run_from_db


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Any] = {}
        self.result_queue = Queue()
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, Callable[..., None]] = {}
        self._registered_config: Dict[str, tuple] = {}  # task_name -> (config, config_data)
        self._lock = threading.RLock()
        self._stopped = False

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds. A repeating task is rescheduled once its run returns."""
        with self._lock:
            if self._stopped:
                self.logger.debug(f"Not scheduling {name}: task manager stopped")
                return
            try:
                self.logger.debug(f"Scheduling task {name} with delay {delay} seconds")
                if name in self.tasks:
                    self.tasks[name].cancel()

                scheduled_time = datetime.now().timestamp() + delay
                timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
                timer.daemon = True
                timer.scheduled_time = scheduled_time

                self.tasks[name] = timer
                timer.start()
            except Exception as e:
                self.logger.error(f"Error scheduling task {name}: {e}")

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        try:
            callback()
            if name in self.tasks:
                self.tasks[name].last_run = datetime.now().timestamp()
        except Exception as e:
            self.logger.error(f"Error running task {name}: {e}")
        if not one_time:
            with self._lock:
                # Cancelled while running
                if name not in self.tasks:
                    return
            self.schedule_task(name, callback, delay, one_time)

    def cancel_task(self, name: str) -> bool:
        """Cancel a scheduled timer. Returns False when no task has that name."""
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is None:
            return False
        timer.cancel()
        self.logger.info(f"Cancelled task {name}")
        return True

    def register_task(self, task_name: str, runnable: Callable[..., None]) -> None:
        """Register a runnable. runnable(config, result_queue, **kwargs) does the work and updates next_run in DB."""
        self._registered_tasks[task_name] = runnable
        self.logger.debug(f"Registered task: {task_name}")

    def schedule_registered_task(
        self,
        task_name: str,
        config: Dict[str, Any],
        config_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Schedule a registered task: run at next_run from DB (or immediately if past due).
        After running, the runnable updates next_run in DB; we reschedule again for the new next_run.
        """
        if task_name not in self._registered_tasks:
            self.logger.warning(f"No task registered with name: {task_name}")
            return
        self._registered_config[task_name] = (config, config_data)
        next_run = get_next_run_from_db(task_name)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        if next_run is None:
            delay = 0
        else:
            delay = max(0, int((next_run - now).total_seconds()))
        self.logger.info(f"Task {task_name} runs in {delay} seconds")
        callback = lambda: self._run_registered_and_reschedule(task_name)
        self.schedule_task(task_name, callback, delay, one_time=True)

    def _run_registered_and_reschedule(self, task_name: str) -> None:
        self.run_task_now(task_name)
        config, config_data = self._registered_config.get(task_name, (None, None))
        if config is not None:
            self.schedule_registered_task(task_name, config, config_data)

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._lock:
            timers = list(self.tasks.items())
        for name, timer in timers:
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def run_task_now(
        self,
        task_name: str,
        config: Optional[Dict[str, Any]] = None,
        config_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Run a registered task once immediately (e.g. manual refresh). Results go on result_queue."""
        runnable = self._registered_tasks.get(task_name)
        if not runnable:
            self.logger.warning(f"No task registered with name: {task_name}")
            return
        if config is None:
            config, config_data = self._registered_config.get(task_name, (None, None))
            if config is None:
                return
        try:
            if config_data is not None:
                runnable(config, self.result_queue, config_data=config_data)
            else:
                runnable(config, self.result_queue)
        except Exception as e:
            self.logger.exception(f"Task {task_name} failed: {e}")

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        with self._lock:
            self._stopped = True
            timers = list(self.tasks.values())
            self.tasks.clear()
        for task in timers:
            task.cancel()
