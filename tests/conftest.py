import logging
from datetime import date

import pytest

from reminders.core.db import dispose_db, init_db
from reminders.engine import QuietHours, Settings
from reminders.engine.schedule import parse_time

PRAYER_TABLE = {
    "Fajr": "04:30",
    "Dhuhr": "12:00",
    "Asr": "15:30",
    "Maghrib": "18:00",
    "Isha": "23:50",
}


@pytest.fixture
def utc_settings():
    return Settings(timezone="UTC", quiet_hours=None)


@pytest.fixture
def night_quiet_settings():
    return Settings(timezone="UTC", quiet_hours=QuietHours(parse_time("22:00"), parse_time("07:00")))


@pytest.fixture
def prayer_lookup():
    def lookup(day: date):
        return dict(PRAYER_TABLE)

    return lookup


@pytest.fixture
def db(tmp_path):
    dispose_db()
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    dispose_db()


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
