"""
Tests for the schedule engine.

Covers next_run for every recurrence shape (including the monthly clamp
and timezone handling), the window/blackout gate, eligibility, bitmaps,
validation and describe().
"""

from datetime import UTC, datetime, timedelta

import pytest

from backplane.core.errors import ScheduleError
from backplane.core.scheduling.engine import (
    describe,
    monthdays_bitmap,
    next_eligible_run,
    next_run,
    selected_monthdays,
    selected_weekdays,
    should_fire_now,
    upcoming_runs,
    validate_schedule,
    weekdays_bitmap,
)
from backplane.core.scheduling.models import BackupSchedule, BlackoutPeriod, ScheduleType


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def _schedule(**kwargs) -> BackupSchedule:
    return BackupSchedule(id="sch-1", job_id="bj-1", **kwargs)


class TestDaily:
    """Daily schedules."""

    def test_later_today(self):
        schedule = _schedule(type=ScheduleType.DAILY, time="02:00:00")
        assert next_run(schedule, _utc(2024, 1, 1, 1, 0)) == _utc(2024, 1, 1, 2, 0)

    def test_rolls_to_tomorrow(self):
        schedule = _schedule(type=ScheduleType.DAILY, time="02:00:00")
        assert next_run(schedule, _utc(2024, 1, 1, 3, 0)) == _utc(2024, 1, 2, 2, 0)

    def test_strictly_after(self):
        schedule = _schedule(type=ScheduleType.DAILY, time="02:00:00")
        assert next_run(schedule, _utc(2024, 1, 1, 2, 0)) == _utc(2024, 1, 2, 2, 0)

    def test_timezone_and_dst(self):
        schedule = _schedule(type=ScheduleType.DAILY, time="02:00", timezone="America/New_York")
        assert next_run(schedule, _utc(2024, 1, 1, 0, 0)) == _utc(2024, 1, 1, 7, 0)
        assert next_run(schedule, _utc(2024, 7, 1, 0, 0)) == _utc(2024, 7, 1, 6, 0)


class TestWeekly:
    """Weekly schedules; bit 0 is Monday."""

    MON_WED = 0b0000101

    def test_tuesday_to_wednesday(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=self.MON_WED, time="09:00:00")
        # 2024-01-02 is a Tuesday.
        assert next_run(schedule, _utc(2024, 1, 2, 10, 0)) == _utc(2024, 1, 3, 9, 0)

    def test_same_day_before_time(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=self.MON_WED, time="09:00:00")
        assert next_run(schedule, _utc(2024, 1, 1, 8, 0)) == _utc(2024, 1, 1, 9, 0)

    def test_wraps_to_next_week(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=self.MON_WED, time="09:00:00")
        assert next_run(schedule, _utc(2024, 1, 3, 10, 0)) == _utc(2024, 1, 8, 9, 0)

    def test_single_day_a_week_later(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=0b1, time="09:00:00")
        assert next_run(schedule, _utc(2024, 1, 1, 10, 0)) == _utc(2024, 1, 8, 9, 0)

    def test_empty_mask(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=0, time="09:00:00")
        assert next_run(schedule, _utc(2024, 1, 1)) is None


class TestMonthly:
    """Monthly schedules clamp to the last day of the month."""

    def test_day_31_in_leap_february(self):
        schedule = _schedule(type=ScheduleType.MONTHLY, monthdays=monthdays_bitmap([31]), time="02:00:00")
        assert next_run(schedule, _utc(2024, 2, 15)) == _utc(2024, 2, 29, 2, 0)

    def test_day_31_in_common_february(self):
        schedule = _schedule(type=ScheduleType.MONTHLY, monthdays=monthdays_bitmap([31]), time="02:00:00")
        assert next_run(schedule, _utc(2023, 2, 15)) == _utc(2023, 2, 28, 2, 0)

    def test_after_clamped_day_moves_to_march_31(self):
        schedule = _schedule(type=ScheduleType.MONTHLY, monthdays=monthdays_bitmap([31]), time="02:00:00")
        assert next_run(schedule, _utc(2024, 2, 29, 2, 0)) == _utc(2024, 3, 31, 2, 0)

    def test_several_days(self):
        schedule = _schedule(
            type=ScheduleType.MONTHLY, monthdays=monthdays_bitmap([1, 15, 31]), time="00:00:00"
        )
        assert next_run(schedule, _utc(2024, 4, 20)) == _utc(2024, 4, 30)
        assert next_run(schedule, _utc(2024, 4, 30)) == _utc(2024, 5, 1)

    def test_year_rollover(self):
        schedule = _schedule(type=ScheduleType.MONTHLY, monthdays=monthdays_bitmap([1]), time="00:00:00")
        assert next_run(schedule, _utc(2024, 12, 5)) == _utc(2025, 1, 1)


class TestIntervalCronManual:
    """Non-calendar shapes."""

    def test_interval(self):
        schedule = _schedule(type=ScheduleType.INTERVAL, interval_hours=6)
        assert next_run(schedule, _utc(2024, 1, 1, 1, 30)) == _utc(2024, 1, 1, 7, 30)

    def test_interval_unset(self):
        assert next_run(_schedule(type=ScheduleType.INTERVAL), _utc(2024, 1, 1)) is None

    def test_cron_weekdays(self):
        schedule = _schedule(type=ScheduleType.CRON, cron_expression="0 3 * * 1-5")
        # Friday 04:00 → Monday 03:00
        assert next_run(schedule, _utc(2024, 1, 5, 4, 0)) == _utc(2024, 1, 8, 3, 0)

    def test_cron_in_timezone(self):
        schedule = _schedule(type=ScheduleType.CRON, cron_expression="30 1 * * *", timezone="Europe/Berlin")
        assert next_run(schedule, _utc(2024, 1, 1, 12, 0)) == _utc(2024, 1, 2, 0, 30)

    def test_manual_never_runs(self):
        assert next_run(_schedule(type=ScheduleType.MANUAL), _utc(2024, 1, 1)) is None


class TestGate:
    """Maintenance windows and blackout periods."""

    def test_window_crossing_midnight(self):
        schedule = _schedule(window_start="22:00:00", window_end="06:00:00")
        assert should_fire_now(schedule, _utc(2024, 1, 1, 10, 0)) is False
        assert should_fire_now(schedule, _utc(2024, 1, 1, 23, 0)) is True
        assert should_fire_now(schedule, _utc(2024, 1, 1, 5, 59)) is True
        assert should_fire_now(schedule, _utc(2024, 1, 1, 6, 0)) is True
        assert should_fire_now(schedule, _utc(2024, 1, 1, 6, 1)) is False

    def test_window_same_day(self):
        schedule = _schedule(window_start="01:00", window_end="03:00")
        assert should_fire_now(schedule, _utc(2024, 1, 1, 2, 0))
        assert not should_fire_now(schedule, _utc(2024, 1, 1, 4, 0))

    def test_window_in_schedule_timezone(self):
        schedule = _schedule(timezone="Asia/Tokyo", window_start="01:00", window_end="03:00")
        # 17:00 UTC is 02:00 in Tokyo
        assert should_fire_now(schedule, _utc(2024, 1, 1, 17, 0))

    def test_recurring_blackout(self):
        schedule = _schedule(blackout_periods=[BlackoutPeriod("08:00", "18:00")])
        assert not should_fire_now(schedule, _utc(2024, 1, 1, 12, 0))
        assert should_fire_now(schedule, _utc(2024, 1, 1, 19, 0))

    def test_absolute_blackout(self):
        schedule = _schedule(
            blackout_periods=[BlackoutPeriod("2024-01-02T00:00:00+00:00", "2024-01-02T12:00:00+00:00")]
        )
        assert not should_fire_now(schedule, _utc(2024, 1, 2, 2, 0))
        assert should_fire_now(schedule, _utc(2024, 1, 2, 13, 0))

    def test_date_only_end_covers_whole_day(self):
        schedule = _schedule(blackout_periods=[BlackoutPeriod("2024-01-02", "2024-01-02")])
        assert not should_fire_now(schedule, _utc(2024, 1, 2, 23, 59))
        assert should_fire_now(schedule, _utc(2024, 1, 3, 0, 0))

    def test_no_constraints(self):
        assert should_fire_now(_schedule(), _utc(2024, 1, 1, 12, 0))


class TestEligibility:
    """next_eligible_run skips gated candidates."""

    def test_skips_blackout_day(self):
        schedule = _schedule(
            type=ScheduleType.DAILY,
            time="02:00:00",
            blackout_periods=[BlackoutPeriod("2024-01-02", "2024-01-02")],
        )
        assert next_eligible_run(schedule, _utc(2024, 1, 1, 3, 0)) == _utc(2024, 1, 3, 2, 0)

    def test_interval_waits_for_window(self):
        schedule = _schedule(
            type=ScheduleType.INTERVAL, interval_hours=4, window_start="00:00", window_end="05:00"
        )
        assert next_eligible_run(schedule, _utc(2024, 1, 1, 2, 0)) == _utc(2024, 1, 2, 2, 0)

    def test_never_eligible(self):
        schedule = _schedule(
            type=ScheduleType.DAILY, time="02:00", blackout_periods=[BlackoutPeriod("01:00", "03:00")]
        )
        assert next_eligible_run(schedule, _utc(2024, 1, 1), max_candidates=20) is None

    def test_upcoming_runs(self):
        schedule = _schedule(type=ScheduleType.DAILY, time="02:00:00")
        runs = upcoming_runs(schedule, _utc(2024, 1, 1, 3, 0), count=3)
        assert runs == [_utc(2024, 1, 2, 2) + timedelta(days=i) for i in range(3)]

    def test_upcoming_runs_manual(self):
        assert upcoming_runs(_schedule(type=ScheduleType.MANUAL), _utc(2024, 1, 1)) == []


class TestBitmaps:
    """Weekday and monthday masks."""

    def test_weekdays_from_names_and_indexes(self):
        assert weekdays_bitmap(["Mon", "wednesday"]) == 0b101
        assert weekdays_bitmap([0, 2]) == 0b101
        assert selected_weekdays(0b1000001) == [0, 6]

    def test_invalid_weekday(self):
        with pytest.raises(ScheduleError):
            weekdays_bitmap(["Funday"])
        with pytest.raises(ScheduleError):
            weekdays_bitmap([7])

    def test_monthdays(self):
        mask = monthdays_bitmap([1, 31])
        assert mask == 1 | (1 << 30)
        assert selected_monthdays(mask) == [1, 31]

    def test_invalid_monthday(self):
        with pytest.raises(ScheduleError):
            monthdays_bitmap([32])


class TestValidation:
    """validate_schedule."""

    def test_valid(self):
        validate_schedule(_schedule(type=ScheduleType.CRON, cron_expression="*/15 * * * *"))

    @pytest.mark.parametrize("expression", [None, "", "* * *", "61 * * * *", "0 0 * * * *"])
    def test_bad_cron(self, expression):
        with pytest.raises(ScheduleError):
            validate_schedule(_schedule(type=ScheduleType.CRON, cron_expression=expression))

    def test_unknown_timezone(self):
        with pytest.raises(ScheduleError):
            validate_schedule(_schedule(timezone="Mars/Olympus"))

    def test_bad_time(self):
        with pytest.raises(ScheduleError):
            validate_schedule(_schedule(time="25:00"))

    def test_half_window(self):
        with pytest.raises(ScheduleError):
            validate_schedule(_schedule(window_start="22:00"))

    def test_bad_blackout(self):
        with pytest.raises(ScheduleError):
            validate_schedule(_schedule(blackout_periods=[BlackoutPeriod("2024-13-01", "2024-13-02")]))


class TestDescribe:
    """Human-readable summaries."""

    def test_weekly(self):
        schedule = _schedule(type=ScheduleType.WEEKLY, weekdays=0b101, time="09:00:00")
        assert describe(schedule) == "Weekly on Mon, Wed at 09:00:00 (UTC)"

    def test_interval(self):
        assert describe(_schedule(type=ScheduleType.INTERVAL, interval_hours=1)) == "Every hour"
        assert describe(_schedule(type=ScheduleType.INTERVAL, interval_hours=6)) == "Every 6 hours"

    def test_with_window_and_blackouts(self):
        schedule = _schedule(
            type=ScheduleType.DAILY,
            time="02:00:00",
            timezone="Europe/Berlin",
            window_start="22:00",
            window_end="06:00",
            blackout_periods=[BlackoutPeriod("12:00", "13:00")],
        )
        assert describe(schedule) == "Daily at 02:00:00 (Europe/Berlin), window 22:00-06:00, 1 blackout period"

    def test_manual_and_cron(self):
        assert describe(_schedule(type=ScheduleType.MANUAL)) == "Manual only"
        assert describe(_schedule(type=ScheduleType.CRON, cron_expression="0 3 * * *")) == "Cron '0 3 * * *' (UTC)"
