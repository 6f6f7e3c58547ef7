from datetime import datetime, time, timezone

import pytest

from reminders.engine import QuietHours, Settings, adjust, is_quiet

NIGHT = QuietHours(start=time(22, 0), end=time(7, 0))
LUNCH = QuietHours(start=time(12, 0), end=time(13, 0))


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "occurrence, expected",
    [
        (utc(2026, 3, 1, 23, 0), utc(2026, 3, 2, 7, 0)),
        (utc(2026, 3, 1, 22, 0), utc(2026, 3, 2, 7, 0)),
        (utc(2026, 3, 2, 3, 0), utc(2026, 3, 2, 7, 0)),
        (utc(2026, 3, 2, 7, 0), utc(2026, 3, 2, 7, 0)),
        (utc(2026, 3, 1, 21, 59), utc(2026, 3, 1, 21, 59)),
    ],
)
def test_wrapping_window(occurrence, expected):
    assert adjust(occurrence, NIGHT, "UTC") == expected


def test_same_day_window():
    assert adjust(utc(2026, 3, 1, 12, 30), LUNCH, "UTC") == utc(2026, 3, 1, 13, 0)
    assert adjust(utc(2026, 3, 1, 13, 0), LUNCH, "UTC") == utc(2026, 3, 1, 13, 0)


def test_no_window_leaves_occurrence_alone():
    occurrence = utc(2026, 3, 1, 23, 0)
    assert adjust(occurrence, None, "UTC") == occurrence
    assert adjust(occurrence, QuietHours(time(22, 0), time(22, 0)), "UTC") == occurrence
    assert adjust(None, NIGHT, "UTC") is None


def test_window_is_evaluated_in_local_time():
    # 21:30 UTC is 23:30 in Cairo (UTC+2 in January)
    assert is_quiet(utc(2026, 1, 10, 21, 30), NIGHT, "Africa/Cairo")
    assert not is_quiet(utc(2026, 1, 10, 21, 30), NIGHT, "UTC")
    assert adjust(utc(2026, 1, 10, 21, 30), NIGHT, "Africa/Cairo") == utc(2026, 1, 11, 5, 0)


def test_quiet_hours_parse_twelve_hour_clock():
    quiet = QuietHours.from_dict({"start": "10:00 PM", "end": "7:00 AM"})
    assert quiet == NIGHT
    assert quiet.to_dict() == {"start": "22:00", "end": "07:00"}
    assert QuietHours.from_dict({"start": "late"}) is None


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.timezone == "Africa/Cairo"
        assert settings.quiet_hours == NIGHT
        assert settings.default_snooze_minutes == 10
        assert settings.calculation_method == 5

    def test_from_dict_accepts_camel_case(self):
        settings = Settings.from_dict(
            {"timezone": "Asia/Riyadh", "quietHours": {"start": "23:00", "end": "06:00"}, "defaultSnooze": 5}
        )
        assert settings.timezone == "Asia/Riyadh"
        assert settings.quiet_hours == QuietHours(time(23, 0), time(6, 0))
        assert settings.default_snooze_minutes == 5

    def test_explicit_null_disables_quiet_hours(self):
        assert Settings.from_dict({"quiet_hours": None}).quiet_hours is None

    def test_unknown_timezone_is_rejected(self):
        with pytest.raises(ValueError):
            Settings.from_dict({"timezone": "Nowhere/City"})

    def test_non_positive_snooze_is_rejected(self):
        with pytest.raises(ValueError):
            Settings(default_snooze_minutes=0)

    def test_to_dict(self):
        data = Settings(timezone="UTC", quiet_hours=None).to_dict()
        assert data["timezone"] == "UTC"
        assert data["quiet_hours"] is None
