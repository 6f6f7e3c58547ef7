from datetime import date, datetime, timedelta, timezone
from unittest import mock

import pytest

from reminders.engine import DueTicker, Reminder, Settings, normalize, set_active, snooze, tick, update_schedule
from reminders.engine.ticker import next_due


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def make(reminder_id="r1", **raw):
    raw.setdefault("startDate", "2026-03-01")
    return Reminder(reminder_id, normalize(raw))


def fired_at(results):
    return [due for _, due in results]


class TestTick:
    def test_fires_once_per_occurrence(self, utc_settings):
        r = make(mode="Daily", times=["08:00"])
        assert tick([r], utc_settings, utc(2026, 3, 1, 7, 59)) == []
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 1, 8, 0))) == [utc(2026, 3, 1, 8, 0)]
        assert tick([r], utc_settings, utc(2026, 3, 1, 8, 0, 15)) == []
        assert tick([r], utc_settings, utc(2026, 3, 1, 20, 0)) == []
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 2, 8, 0))) == [utc(2026, 3, 2, 8, 0)]
        assert r.last_fired_at == utc(2026, 3, 2, 8, 0)
        assert r.fired_count == 2

    def test_quiet_hours_defer_instead_of_dropping(self, night_quiet_settings):
        r = make(mode="Daily", times=["23:00"])
        assert tick([r], night_quiet_settings, utc(2026, 3, 1, 23, 5)) == []
        assert tick([r], night_quiet_settings, utc(2026, 3, 2, 6, 59)) == []
        assert fired_at(tick([r], night_quiet_settings, utc(2026, 3, 2, 7, 0))) == [utc(2026, 3, 2, 7, 0)]
        assert tick([r], night_quiet_settings, utc(2026, 3, 2, 7, 0, 15)) == []
        assert tick([r], night_quiet_settings, utc(2026, 3, 2, 23, 30)) == []
        assert fired_at(tick([r], night_quiet_settings, utc(2026, 3, 3, 7, 0))) == [utc(2026, 3, 3, 7, 0)]

    def test_snooze_silences_then_fires_when_it_runs_out(self, utc_settings):
        r = make(mode="Daily", times=["08:00"])
        assert len(tick([r], utc_settings, utc(2026, 3, 1, 8, 0))) == 1
        snooze(r, 10, now=utc(2026, 3, 1, 8, 0))

        for minute in range(1, 10):
            assert tick([r], utc_settings, utc(2026, 3, 1, 8, minute)) == []
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 1, 8, 10))) == [utc(2026, 3, 1, 8, 10)]

        assert r.snoozed_until is None
        assert tick([r], utc_settings, utc(2026, 3, 1, 8, 11)) == []
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 2, 8, 0))) == [utc(2026, 3, 2, 8, 0)]

    def test_snooze_expiring_in_quiet_hours_waits_for_the_window_end(self, night_quiet_settings):
        r = make(mode="Daily", times=["21:00"])
        assert len(tick([r], night_quiet_settings, utc(2026, 3, 1, 21, 0))) == 1
        snooze(r, 120, now=utc(2026, 3, 1, 21, 0))
        assert tick([r], night_quiet_settings, utc(2026, 3, 1, 23, 30)) == []
        assert fired_at(tick([r], night_quiet_settings, utc(2026, 3, 2, 7, 0))) == [utc(2026, 3, 2, 7, 0)]
        assert r.snoozed_until is None

    def test_inactive_reminders_never_fire(self, utc_settings):
        r = make(mode="Daily", times=["08:00"])
        set_active(r, False)
        assert tick([r], utc_settings, utc(2026, 3, 1, 9, 0)) == []
        set_active(r, True)
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 1, 9, 0))) == [utc(2026, 3, 1, 8, 0)]

    def test_backlog_collapses_into_one_fire(self, utc_settings):
        r = make(mode="Daily", times=["08:00"])
        r.last_fired_at = utc(2026, 3, 1, 8, 0)
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 4, 9, 0))) == [utc(2026, 3, 4, 8, 0)]
        assert tick([r], utc_settings, utc(2026, 3, 4, 9, 0, 15)) == []

    def test_fresh_interval_reminder_with_old_start_fires_latest_step(self, utc_settings):
        r = make(mode="Interval", times=["00:00"], interval={"every": 1, "unit": "hour"})
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 3, 10, 30))) == [utc(2026, 3, 3, 10, 0)]
        assert tick([r], utc_settings, utc(2026, 3, 3, 10, 45)) == []
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 3, 11, 0))) == [utc(2026, 3, 3, 11, 0)]

    def test_once_is_terminal_and_cached_per_revision(self, utc_settings):
        r = make(mode="Once", times=["08:00"])
        cache = {}
        assert len(tick([r], utc_settings, utc(2026, 3, 1, 8, 0), terminal_cache=cache)) == 1
        assert tick([r], utc_settings, utc(2026, 3, 2), terminal_cache=cache) == []
        assert cache == {"r1": r.revision}

        update_schedule(r, {"mode": "Once", "startDate": "2026-03-05", "times": ["09:00"]})
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 5, 9, 0), terminal_cache=cache)) == [utc(2026, 3, 5, 9, 0)]

    def test_prayer_without_data_is_retried(self, utc_settings, prayer_lookup):
        r = make(mode="Prayer", prayer={"name": "Fajr", "direction": "before", "offsetMinutes": 10})
        r.last_fired_at = utc(2026, 3, 5, 4, 20)
        cache = {}
        assert tick([r], utc_settings, utc(2026, 3, 6, 5, 0), prayer_lookup=lambda day: None, terminal_cache=cache) == []
        assert cache == {}
        fired = tick([r], utc_settings, utc(2026, 3, 6, 5, 0), prayer_lookup=prayer_lookup, terminal_cache=cache)
        assert fired_at(fired) == [utc(2026, 3, 6, 4, 20)]

    def test_prayer_reminder_with_old_start_fires_from_a_short_provider_window(self, utc_settings, prayer_lookup):
        def recent_only(day):
            return prayer_lookup(day) if date(2026, 3, 19) <= day <= date(2026, 3, 21) else None

        r = make(mode="Prayer", prayer={"name": "Fajr", "direction": "before", "offsetMinutes": 10})
        cache = {}
        fired = []
        now = utc(2026, 3, 20, 6, 0)
        while now < utc(2026, 3, 22, 6, 0):
            fired += fired_at(tick([r], utc_settings, now, prayer_lookup=recent_only, terminal_cache=cache))
            now += timedelta(minutes=15)
        assert fired == [utc(2026, 3, 20, 4, 20), utc(2026, 3, 21, 4, 20)]

    def test_prayer_reminder_fired_long_ago_resumes(self, utc_settings, prayer_lookup):
        def recent_only(day):
            return prayer_lookup(day) if date(2026, 3, 19) <= day <= date(2026, 3, 21) else None

        r = make(mode="Prayer", prayer={"name": "Fajr", "direction": "before", "offsetMinutes": 10})
        r.last_fired_at = utc(2026, 3, 10, 4, 20)
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 21, 5, 0), prayer_lookup=recent_only)) == [
            utc(2026, 3, 21, 4, 20)
        ]
        assert next_due(r, utc_settings, recent_only, now=utc(2026, 3, 21, 5, 0)) is None

    def test_reactivation_after_a_long_pause_fires_recent_occurrence_only(self, utc_settings):
        r = make(mode="Daily", times=["08:00"])
        assert len(tick([r], utc_settings, utc(2026, 3, 1, 8, 0))) == 1
        set_active(r, False)
        assert tick([r], utc_settings, utc(2026, 3, 10, 8, 0)) == []
        set_active(r, True)
        assert fired_at(tick([r], utc_settings, utc(2026, 3, 20, 9, 0))) == [utc(2026, 3, 20, 8, 0)]
        assert tick([r], utc_settings, utc(2026, 3, 20, 9, 0, 15)) == []

    def test_occurrences_older_than_the_catch_up_horizon_are_dropped(self, utc_settings):
        r = make(mode="Monthly", startDate="2026-01-15", times=["10:00"])
        assert tick([r], utc_settings, utc(2026, 3, 20, 12, 0)) == []
        assert next_due(r, utc_settings, now=utc(2026, 3, 20, 12, 0)) == utc(2026, 4, 15, 10, 0)

        once = make("o", mode="Once", startDate="2026-03-01", times=["08:00"])
        assert tick([once], utc_settings, utc(2026, 3, 4, 9, 0)) == []

    def test_naive_now_is_settings_local_time(self):
        settings = Settings(timezone="Africa/Cairo", quiet_hours=None)
        r = make(mode="Daily", startDate="2026-01-10", times=["09:00"])
        assert fired_at(tick([r], settings, datetime(2026, 1, 10, 9, 0))) == [utc(2026, 1, 10, 7, 0)]

    def test_schedule_timezone_overrides_settings(self, utc_settings):
        r = make(mode="Daily", startDate="2026-01-10", times=["09:00"], timezone="Asia/Tokyo")
        assert fired_at(tick([r], utc_settings, utc(2026, 1, 10, 0, 0))) == [utc(2026, 1, 10, 0, 0)]

    def test_one_tick_handles_many_reminders(self, utc_settings):
        due = make("a", mode="Daily", times=["08:00"])
        later = make("b", mode="Daily", times=["18:00"])
        off = make("c", mode="Daily", times=["07:00"])
        set_active(off, False)
        fired = tick([due, later, off], utc_settings, utc(2026, 3, 1, 8, 30))
        assert [r.id for r, _ in fired] == ["a"]


def test_next_due_reports_snooze_and_quiet_adjustment(night_quiet_settings):
    r = make(mode="Daily", times=["23:00"])
    now = utc(2026, 3, 1, 12, 0)
    assert next_due(r, night_quiet_settings, now=now) == utc(2026, 3, 2, 7, 0)
    snooze(r, 30, now=now)
    assert next_due(r, night_quiet_settings, now=now) == utc(2026, 3, 1, 12, 30)
    set_active(r, False)
    assert next_due(r, night_quiet_settings, now=now) is None


class TestDueTicker:
    def test_run_once_queues_and_drain_delivers(self, utc_settings):
        ticker = DueTicker(utc_settings)
        r = ticker.add(make(mode="Daily", times=["08:00"]))
        received = []
        ticker.add_listener(lambda reminder, due: received.append((reminder.id, due)))

        assert len(ticker.run_once(utc(2026, 3, 1, 8, 0))) == 1
        assert received == []
        assert ticker.drain() == 1
        assert received == [(r.id, utc(2026, 3, 1, 8, 0))]
        assert ticker.drain() == 0

    def test_failing_listener_does_not_stop_delivery(self, utc_settings):
        ticker = DueTicker(utc_settings)
        ticker.add(make(mode="Daily", times=["08:00"]))
        received = []
        ticker.add_listener(mock.Mock(side_effect=RuntimeError("boom")))
        ticker.add_listener(lambda reminder, due: received.append(reminder.id))

        ticker.run_once(utc(2026, 3, 1, 8, 0))
        assert ticker.drain() == 1
        assert received == ["r1"]

    def test_uses_its_clock_when_no_now_given(self, utc_settings):
        ticker = DueTicker(utc_settings, clock=lambda: utc(2026, 3, 1, 8, 0))
        ticker.add(make(mode="Daily", times=["08:00"]))
        assert len(ticker.run_once()) == 1

    def test_working_set(self, utc_settings):
        ticker = DueTicker(utc_settings)
        first = ticker.add(make("a", mode="Daily"))
        replacement = ticker.add(make("a", mode="Weekly"))
        assert ticker.get("a") is replacement
        assert ticker.reminders() == [replacement]
        assert ticker.remove("a") is replacement
        assert ticker.remove("a") is None
        assert first is not replacement

    def test_upcoming_is_sorted_and_skips_inactive(self, utc_settings):
        ticker = DueTicker(utc_settings, clock=lambda: utc(2026, 3, 1, 0, 0))
        evening = ticker.add(make("evening", mode="Daily", times=["20:00"]))
        morning = ticker.add(make("morning", mode="Daily", times=["06:00"]))
        done = ticker.add(make("done", mode="Once", times=["05:00"]))
        done.last_fired_at = utc(2026, 3, 1, 5, 0)
        off = ticker.add(make("off", mode="Daily", times=["01:00"]))
        set_active(off, False)

        upcoming = ticker.upcoming()
        assert [r.id for r, _ in upcoming] == ["morning", "evening", "done"]
        assert upcoming[0][1] == utc(2026, 3, 1, 6, 0)
        assert upcoming[-1][1] is None
        assert morning in [r for r, _ in upcoming] and evening in [r for r, _ in upcoming]

    def test_update_settings_applies_on_next_tick(self, utc_settings, night_quiet_settings):
        ticker = DueTicker(utc_settings)
        ticker.add(make(mode="Daily", times=["23:00"]))
        ticker.update_settings(night_quiet_settings)
        assert ticker.run_once(utc(2026, 3, 1, 23, 0)) == []

    def test_start_and_stop_go_through_the_task_manager(self, utc_settings):
        task_manager = mock.Mock()
        ticker = DueTicker(utc_settings, interval_seconds=15, task_manager=task_manager)
        ticker.start()
        task_manager.schedule_task.assert_called_once_with(
            DueTicker.TASK_NAME, ticker._scheduled_tick, 15, one_time=False
        )
        assert ticker.running
        ticker.stop()
        task_manager.cancel_task.assert_called_once_with(DueTicker.TASK_NAME)
        assert not ticker.running

    def test_start_requires_a_task_manager(self, utc_settings):
        with pytest.raises(RuntimeError):
            DueTicker(utc_settings).start()

    def test_scheduled_tick_swallows_errors(self, utc_settings):
        ticker = DueTicker(utc_settings)
        with mock.patch.object(ticker, "run_once", side_effect=RuntimeError("boom")):
            ticker._scheduled_tick()
