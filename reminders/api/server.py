"""
FastAPI server for the reminder service. Run with run_api_server(app) in a background thread.
Central endpoints: /api/reminders, /api/settings, /api/tasks. Per-plugin routes are mounted
from reminders.plugins.<package>.api (get_router(reminder_app)) under /api/components/<package>/.
Docs when enabled: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from reminders.engine import Reminder, acknowledge, next_due, set_active, snooze

logger = logging.getLogger(__name__)


class ReminderPayload(BaseModel):
    """Reminder as pushed by the CRUD layer. The schedule is normalized, never rejected."""

    title: str = ""
    notes: str = ""
    active: bool = True
    schedule: Dict[str, Any] = Field(default_factory=dict)


class SnoozeRequest(BaseModel):
    minutes: Optional[int] = Field(default=None, gt=0)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def create_app(reminder_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given ReminderApp instance."""
    app = FastAPI(title="Reminders API", description="Reminders, settings, and background tasks")
    ticker = reminder_app.ticker

    def find(reminder_id: str) -> Reminder:
        reminder = ticker.get(reminder_id)
        if reminder is None and reminder_id.lstrip("-").isdigit():
            # Config-defined reminders may use integer ids
            reminder = ticker.get(int(reminder_id))
        if reminder is None:
            raise HTTPException(status_code=404, detail=f"Reminder {reminder_id} not found")
        return reminder

    def describe(reminder: Reminder, due: Optional[datetime] = None) -> Dict[str, Any]:
        data = reminder.to_dict()
        if due is None:
            due = next_due(reminder, ticker.settings, ticker.prayer_lookup, ticker.clock())
        data["next_due"] = _serialize_datetime(due)
        return data

    @app.get("/api/reminders")
    def list_reminders() -> List[Dict[str, Any]]:
        """Active reminders, soonest next due first."""
        return [describe(reminder, due) for reminder, due in ticker.upcoming()]

    @app.get("/api/reminders/{reminder_id}")
    def get_reminder(reminder_id: str) -> Dict[str, Any]:
        return describe(find(reminder_id))

    @app.put("/api/reminders/{reminder_id}")
    def put_reminder(reminder_id: str, payload: ReminderPayload) -> Dict[str, Any]:
        """Create or replace a reminder in the working set."""
        try:
            existing_id = find(reminder_id).id
        except HTTPException:
            existing_id = reminder_id
        incoming = reminder_app.reminder_from_entry({**payload.model_dump(), "id": existing_id})
        return describe(reminder_app.upsert_reminder(incoming))

    @app.delete("/api/reminders/{reminder_id}")
    def delete_reminder(reminder_id: str) -> Dict[str, Any]:
        reminder = find(reminder_id)
        ticker.remove(reminder.id)
        return {"deleted": reminder.id}

    @app.put("/api/reminders/{reminder_id}/snooze")
    def snooze_reminder(reminder_id: str, request: Optional[SnoozeRequest] = None) -> Dict[str, Any]:
        reminder = find(reminder_id)
        minutes = request.minutes if request and request.minutes else ticker.settings.default_snooze_minutes
        snooze(reminder, minutes)
        return describe(reminder)

    @app.put("/api/reminders/{reminder_id}/complete")
    def complete_reminder(reminder_id: str) -> Dict[str, Any]:
        reminder = find(reminder_id)
        acknowledge(reminder)
        return describe(reminder)

    @app.put("/api/reminders/{reminder_id}/toggle")
    def toggle_reminder(reminder_id: str) -> Dict[str, Any]:
        reminder = find(reminder_id)
        set_active(reminder, not reminder.active)
        return describe(reminder)

    @app.get("/api/settings")
    def get_settings() -> Dict[str, Any]:
        return ticker.settings.to_dict()

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List scheduled tasks: DB schedules and active in-memory timers."""
        from reminders.core.models import get_all_task_schedules

        db_schedules = get_all_task_schedules()
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_timers = reminder_app.task_manager.get_active_timers()
        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in active_timers
        ]

        return {"db_schedules": db_schedules, "active_timers": active_list}

    # Mount per-plugin API routers from reminders.plugins.<name>.api (get_router(reminder_app))
    try:
        plugins_pkg = importlib.import_module("reminders.plugins")
        for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
            if not is_pkg:
                continue
            try:
                api_module = importlib.import_module(f"reminders.plugins.{name}.api")
            except ImportError:
                continue
            if not hasattr(api_module, "get_router") or not callable(api_module.get_router):
                continue
            try:
                router = api_module.get_router(reminder_app)
                if router is not None:
                    app.include_router(router, prefix=f"/api/components/{name}")
            except Exception as e:
                logger.warning(f"Failed to mount API router for plugin {name}: {e}", exc_info=True)
    except Exception as e:
        logger.warning(f"Plugin API discovery failed: {e}", exc_info=True)

    return app


def run_api_server(reminder_app: Any) -> None:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = reminder_app.config.get_section("api")
    enabled = api_config.get("enabled", False)
    if not enabled:
        logger.info(
            "API server not started: set api.enabled to true in your config file to enable."
        )
        return
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(reminder_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
