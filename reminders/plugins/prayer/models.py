"""
SQLAlchemy models for prayer times: one row per date per location.
"""
from sqlalchemy import Column, String, Date, DateTime, Integer, JSON

from reminders.core.db import Base


class PrayerTimesRecord(Base):
    """Prayer times for one date. data is JSON: {prayer_name: "HH:MM"}."""
    __tablename__ = "prayer_times_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location = Column(String(255), nullable=False, index=True)  # "city, country"
    fetched_at = Column(DateTime(timezone=False), nullable=False, index=True)
    prayer_date = Column(Date, nullable=False, index=True)
    data = Column(JSON, nullable=False)
