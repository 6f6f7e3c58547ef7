"""
Per-plugin API for prayer times. Mounted at /api/components/prayer/.
Uses PrayerTimesRecord ORM with Pydantic from_attributes.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from .service import get_latest_prayer_times_record
from .task import TASK_NAME


class PrayerTimesRecordResponse(BaseModel):
    """Pydantic view of PrayerTimesRecord for API; serializes from ORM."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    location: Optional[str] = None
    fetched_at: Optional[datetime] = None
    prayer_date: Optional[date] = None
    data: Optional[Dict[str, Any]] = None


def get_router(reminder_app) -> Optional[APIRouter]:
    """Return router for this plugin; None when the app runs without a prayer provider."""
    provider = getattr(reminder_app, "prayer_provider", None)
    if provider is None:
        return None
    router = APIRouter(tags=["Prayer Times"])

    @router.get("/data", response_model=PrayerTimesRecordResponse)
    def get_data(day: Optional[date] = Query(None, alias="date")) -> PrayerTimesRecordResponse:
        """Latest stored prayer times, for one date when ?date=YYYY-MM-DD is given."""
        record = get_latest_prayer_times_record(provider.location, day)
        if record is None:
            raise HTTPException(status_code=404, detail="No prayer times data available")
        return PrayerTimesRecordResponse.model_validate(record)

    @router.post("/refresh")
    def refresh() -> Dict[str, Any]:
        """Run the prayer times task now."""
        reminder_app.task_manager.run_task_now(TASK_NAME)
        return {"known_dates": [d.isoformat() for d in provider.known_dates()]}

    return router
