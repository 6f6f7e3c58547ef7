from datetime import date, datetime, timedelta, timezone

import pytest

from reminders.engine import Reminder, acknowledge, normalize, set_active, snooze, update_schedule
from reminders.engine.schedule import DailySchedule, WeeklySchedule

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def reminder():
    return Reminder("r1", normalize({"mode": "Daily", "startDate": "2026-03-01", "times": ["08:00"]}), title="Water")


def test_snooze_sets_expiry(reminder):
    until = snooze(reminder, 10, now=NOW)
    assert until == NOW + timedelta(minutes=10)
    assert reminder.snoozed_until == until


@pytest.mark.parametrize("minutes", [0, -5])
def test_snooze_rejects_non_positive_minutes(reminder, minutes):
    with pytest.raises(ValueError):
        snooze(reminder, minutes, now=NOW)
    assert reminder.snoozed_until is None


def test_acknowledge_only_records_completion(reminder):
    reminder.last_fired_at = NOW
    acknowledge(reminder, now=NOW + timedelta(minutes=1))
    assert reminder.completed_at == NOW + timedelta(minutes=1)
    assert reminder.done_count == 1
    assert reminder.last_fired_at == NOW
    assert reminder.active


def test_set_active_bumps_revision_only_on_change(reminder):
    set_active(reminder, True)
    assert reminder.revision == 0
    set_active(reminder, False)
    assert not reminder.active
    assert reminder.revision == 1


def test_update_schedule_normalizes_raw_payload(reminder):
    schedule = update_schedule(reminder, {"mode": "weekly", "daysOfWeek": ["FR"], "startDate": "2026-03-01"})
    assert isinstance(schedule, WeeklySchedule)
    assert reminder.schedule is schedule
    assert reminder.revision == 1


def test_from_dict_accepts_crud_payload():
    reminder = Reminder.from_dict(
        {
            "id": 7,
            "title": "Stretch",
            "description": "5 minutes",
            "isActive": False,
            "lastFiredAt": "2026-03-01T08:00:00Z",
            "schedule": {"mode": "Daily", "startDate": "2026-03-01"},
        }
    )
    assert reminder.id == 7
    assert reminder.notes == "5 minutes"
    assert not reminder.active
    assert reminder.last_fired_at == NOW
    assert isinstance(reminder.schedule, DailySchedule)
    assert reminder.schedule.start_date == date(2026, 3, 1)


def test_naive_timestamps_are_read_as_utc():
    reminder = Reminder.from_dict({"id": 1, "snoozed_until": "2026-03-01T08:00:00"})
    assert reminder.snoozed_until == NOW


def test_to_dict(reminder):
    snooze(reminder, 5, now=NOW)
    data = reminder.to_dict()
    assert data["id"] == "r1"
    assert data["title"] == "Water"
    assert data["schedule"]["mode"] == "daily"
    assert data["snoozed_until"] == "2026-03-01T08:05:00+00:00"
    assert data["last_fired_at"] is None
