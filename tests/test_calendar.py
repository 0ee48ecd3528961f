"""
Service Calendar Tests.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from core import ConfigurationException
from sla.domain import (
    BusinessHoursCalendar,
    SLABudget,
    SLACalculator,
    WallClockCalendar,
    WorkingWindow,
    add_business_duration,
)

WEEKDAY_WINDOWS = {
    day: WorkingWindow(start=time(8, 0), end=time(18, 0))
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
}


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestWallClockCalendar:
    def test_adds_duration_as_is(self):
        start = _utc(2024, 1, 13, 23, 0)  # Saturday night
        assert WallClockCalendar().add_business_duration(start, timedelta(hours=2)) == _utc(2024, 1, 14, 1, 0)

    def test_module_helper_delegates(self):
        start = _utc(2024, 1, 15, 10, 0)
        assert add_business_duration(start, timedelta(minutes=30), WallClockCalendar()) == _utc(2024, 1, 15, 10, 30)


class TestBusinessHoursCalendar:
    def setup_method(self):
        self.calendar = BusinessHoursCalendar(
            timezone_name="America/Sao_Paulo",
            windows=WEEKDAY_WINDOWS,
            holidays=frozenset({date(2026, 1, 1)}),
        )

    def test_within_one_window(self):
        # Monday 10:00 local (13:00 UTC) + 2h
        start = _utc(2026, 1, 5, 13, 0)
        assert self.calendar.add_business_duration(start, timedelta(hours=2)) == _utc(2026, 1, 5, 15, 0)

    def test_skips_night_and_holiday(self):
        """Wed 17:00 local + 2h: 1h on Wed, Thu is a holiday, 1h on Fri."""
        start = _utc(2025, 12, 31, 20, 0)
        due = self.calendar.add_business_duration(start, timedelta(hours=2))
        assert due == _utc(2026, 1, 2, 12, 0)

    def test_weekend_start_waits_for_monday(self):
        # Saturday 10:00 local
        start = _utc(2026, 1, 3, 13, 0)
        due = self.calendar.add_business_duration(start, timedelta(minutes=30))
        assert due == _utc(2026, 1, 5, 11, 30)

    def test_before_opening_starts_at_opening(self):
        # Monday 06:00 local
        start = _utc(2026, 1, 5, 9, 0)
        assert self.calendar.add_business_duration(start, timedelta(hours=1)) == _utc(2026, 1, 5, 12, 0)

    def test_budget_spanning_several_days(self):
        # Monday 08:00 local + 24h of business time = Wednesday 12:00 local
        start = _utc(2026, 1, 5, 11, 0)
        assert self.calendar.add_business_duration(start, timedelta(hours=24)) == _utc(2026, 1, 7, 15, 0)

    def test_zero_duration_returns_start(self):
        start = _utc(2026, 1, 3, 13, 0)
        assert self.calendar.add_business_duration(start, timedelta(0)) == start

    def test_naive_start_rejected(self):
        with pytest.raises(ValueError):
            self.calendar.add_business_duration(datetime(2026, 1, 5, 10, 0), timedelta(hours=1))

    def test_holiday_has_no_window(self):
        assert self.calendar.window_on(date(2026, 1, 1)) is None
        assert self.calendar.window_on(date(2026, 1, 3)) is None
        assert self.calendar.window_on(date(2026, 1, 2)) == (_utc(2026, 1, 2, 11, 0), _utc(2026, 1, 2, 21, 0))

    def test_deadlines_through_calculator(self):
        budget = SLABudget.from_minutes(60, 600, source="default")
        start = _utc(2026, 1, 5, 20, 0)  # Monday 17:00 local
        deadlines = SLACalculator.calculate_deadlines(start, budget, self.calendar)

        assert deadlines.response_due_at == _utc(2026, 1, 5, 21, 0)
        assert deadlines.solution_due_at == _utc(2026, 1, 6, 20, 0)


class TestDaylightSaving:
    def test_spring_forward_keeps_local_opening(self):
        """New York jumps to EDT on 2024-03-10; Monday opens at 12:00 UTC."""
        calendar = BusinessHoursCalendar(timezone_name="America/New_York", windows=WEEKDAY_WINDOWS)
        start = _utc(2024, 3, 8, 22, 0)  # Friday 17:00 EST
        due = calendar.add_business_duration(start, timedelta(hours=2))
        assert due == _utc(2024, 3, 11, 13, 0)


class TestCalendarValidation:
    def test_unknown_weekday(self):
        with pytest.raises(ConfigurationException):
            BusinessHoursCalendar(timezone_name="UTC", windows={"funday": WorkingWindow(time(8), time(9))})

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationException):
            BusinessHoursCalendar(timezone_name="Mars/Olympus_Mons", windows=WEEKDAY_WINDOWS)

    def test_empty_windows(self):
        with pytest.raises(ConfigurationException):
            BusinessHoursCalendar(timezone_name="UTC", windows={})

    def test_inverted_window(self):
        with pytest.raises(ConfigurationException):
            WorkingWindow(start=time(18, 0), end=time(8, 0))

    def test_exhausted_calendar(self):
        start = date(2024, 1, 1)
        holidays = frozenset(start + timedelta(days=i) for i in range(4 * 366))
        calendar = BusinessHoursCalendar(timezone_name="UTC", windows=WEEKDAY_WINDOWS, holidays=holidays)

        with pytest.raises(ConfigurationException):
            calendar.add_business_duration(_utc(2024, 1, 1, 9, 0), timedelta(hours=1))
