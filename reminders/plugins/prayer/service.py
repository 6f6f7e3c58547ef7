"""
Service layer: save and load prayer times from DB.
"""
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, delete

from reminders.core.db import session_scope
from reminders.plugins.prayer.models import PrayerTimesRecord


def save_prayer_times(location: str, prayer_date: date, times_dict: Dict[str, str]) -> None:
    """Replace this location's prayer times for the given date."""
    fetched_at = datetime.now(timezone.utc).replace(tzinfo=None)
    with session_scope() as session:
        session.execute(
            delete(PrayerTimesRecord).where(
                PrayerTimesRecord.location == location,
                PrayerTimesRecord.prayer_date == prayer_date,
            )
        )
        session.add(
            PrayerTimesRecord(
                location=location,
                fetched_at=fetched_at,
                prayer_date=prayer_date,
                data=dict(times_dict),
            )
        )


def get_prayer_times_since(location: str, since: date) -> List[PrayerTimesRecord]:
    """Stored records for dates on or after `since`, oldest first."""
    with session_scope() as session:
        return list(
            session.execute(
                select(PrayerTimesRecord)
                .where(
                    PrayerTimesRecord.location == location,
                    PrayerTimesRecord.prayer_date >= since,
                )
                .order_by(PrayerTimesRecord.prayer_date)
            )
            .scalars().all()
        )


def get_latest_prayer_times_record(location: str, prayer_date: Optional[date] = None) -> Optional[PrayerTimesRecord]:
    """Most recent fetch for this location, restricted to prayer_date when given (for API serialization)."""
    query = select(PrayerTimesRecord).where(PrayerTimesRecord.location == location)
    if prayer_date is not None:
        query = query.where(PrayerTimesRecord.prayer_date == prayer_date)
    with session_scope() as session:
        return (
            session.execute(query.order_by(PrayerTimesRecord.fetched_at.desc()).limit(1))
            .scalars().first()
        )


def delete_prayer_times_before(location: str, before: date) -> int:
    with session_scope() as session:
        result = session.execute(
            delete(PrayerTimesRecord).where(
                PrayerTimesRecord.location == location,
                PrayerTimesRecord.prayer_date < before,
            )
        )
        return result.rowcount or 0
