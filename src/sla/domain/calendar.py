"""
SLA Service Calendars
=====================

Pure calculators that advance an instant by an SLA budget.

- WallClockCalendar: business hours disabled, the budget is added as-is.
- BusinessHoursCalendar: the budget only elapses inside working windows
  (per weekday start/end in a fixed timezone), skipping nights, days
  without a window and holidays.

All inputs and outputs are aware instants; local wall time is used only
to place the window boundaries, so DST shifts never move a deadline by
an hour.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core import ConfigurationException

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# A full year of consecutive holidays is a configuration mistake, not a deadline.
MAX_CALENDAR_DAYS = 3 * 366


class ServiceCalendar(ABC):
    """Adds an SLA budget to a start instant."""

    @abstractmethod
    def add_business_duration(self, start: datetime, duration: timedelta) -> datetime:
        """Return the instant at which ``duration`` of service time has elapsed."""

    @property
    def label(self) -> str:
        """Short name stored with each calculation."""
        return type(self).__name__


class WallClockCalendar(ServiceCalendar):
    """Every minute counts; used when business hours are disabled."""

    @property
    def label(self) -> str:
        return "wall_clock"

    def add_business_duration(self, start: datetime, duration: timedelta) -> datetime:
        return start + duration

    def __repr__(self) -> str:
        return "WallClockCalendar()"


@dataclass(frozen=True)
class WorkingWindow:
    """Working hours of one weekday, local to the calendar timezone."""
    start: time
    end: time

    def __post_init__(self):
        if self.end <= self.start:
            raise ConfigurationException(
                f"working window end {self.end} must be after start {self.start}"
            )


@dataclass(frozen=True)
class BusinessHoursCalendar(ServiceCalendar):
    """
    Working windows per weekday plus holidays.

    Args:
        timezone_name: IANA zone the windows are expressed in
        windows: weekday name -> WorkingWindow; missing days are non-working
        holidays: local dates on which no time elapses
    """

    timezone_name: str
    windows: Dict[str, WorkingWindow]
    holidays: FrozenSet[date] = field(default_factory=frozenset)

    def __post_init__(self):
        unknown = set(self.windows) - set(WEEKDAYS)
        if unknown:
            raise ConfigurationException(f"unknown weekdays in calendar: {sorted(unknown)}")
        if not self.windows:
            raise ConfigurationException("business calendar has no working day")
        try:
            ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationException(f"unknown timezone: {self.timezone_name}") from e

    @property
    def label(self) -> str:
        return f"business_hours:{self.timezone_name}"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    def window_on(self, day: date) -> Optional[tuple[datetime, datetime]]:
        """UTC bounds of the working window on a local date, or None."""
        if day in self.holidays:
            return None
        window = self.windows.get(WEEKDAYS[day.weekday()])
        if window is None:
            return None
        tz = self.tz
        opens = datetime.combine(day, window.start, tzinfo=tz).astimezone(timezone.utc)
        closes = datetime.combine(day, window.end, tzinfo=tz).astimezone(timezone.utc)
        return opens, closes

    def add_business_duration(self, start: datetime, duration: timedelta) -> datetime:
        if start.tzinfo is None:
            raise ValueError("start must be timezone-aware")
        if duration <= timedelta(0):
            return start

        current = start.astimezone(timezone.utc)
        remaining = duration
        day = current.astimezone(self.tz).date()

        for _ in range(MAX_CALENDAR_DAYS):
            bounds = self.window_on(day)
            if bounds is not None:
                opens, closes = bounds
                if current < opens:
                    current = opens
                if current < closes:
                    available = closes - current
                    if remaining <= available:
                        return current + remaining
                    remaining -= available
                    current = closes
            day += timedelta(days=1)

        raise ConfigurationException(
            "business calendar exhausted while computing deadline",
            {"start": start.isoformat(), "duration_minutes": duration.total_seconds() / 60}
        )


def add_business_duration(start: datetime, duration: timedelta, calendar: ServiceCalendar) -> datetime:
    """Advance ``start`` by ``duration`` of service time on ``calendar``."""
    return calendar.add_business_duration(start, duration)
