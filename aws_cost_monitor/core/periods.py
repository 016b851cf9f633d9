"""
Comparison windows.

Derives every date window the analysis compares from a reference day.
All windows are inclusive on both ends.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

ROLLING_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Window:
    """Inclusive date range."""
    start: date
    end: date

    def __post_init__(self):
        """Validate the window is not inverted."""
        if self.start > self.end:
            raise ValueError("window start must not be after window end")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def label(self) -> str:
        """Short display form, e.g. ``Mar 1 - Mar 15``."""
        return f"{_short(self.start)} - {_short(self.end)}"


def _short(day: date) -> str:
    return f"{day:%b} {day.day}"


def month_start(day: date) -> date:
    return day.replace(day=1)


def previous_month_start(day: date) -> date:
    """First day of the month before ``day``'s month."""
    return month_start(month_start(day) - timedelta(days=1))


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def month_to_date(today: date) -> Window:
    """Current month from its first day through ``today``."""
    return Window(month_start(today), today)


def last_month_to_same_day(today: date) -> Window:
    """Previous month through the same day-of-month as ``today``.

    The end day is clamped to the previous month's last day, so March 31
    compares against February 28 or 29.
    """
    start = previous_month_start(today)
    end_day = min(today.day, calendar.monthrange(start.year, start.month)[1])
    return Window(start, start.replace(day=end_day))


def last_full_month(today: date) -> Window:
    """The most recent fully completed calendar month."""
    start = previous_month_start(today)
    return Window(start, month_end(start))


def month_before_last(today: date) -> Window:
    """The calendar month before the last completed one."""
    start = previous_month_start(previous_month_start(today))
    return Window(start, month_end(start))


def rolling_30_days(today: date) -> Window:
    """The 30 days ending yesterday."""
    yesterday = today - timedelta(days=1)
    return Window(yesterday - timedelta(days=ROLLING_WINDOW_DAYS - 1), yesterday)


def previous_30_days(today: date) -> Window:
    """The 30 days immediately before the rolling window."""
    end = rolling_30_days(today).start - timedelta(days=1)
    return Window(end - timedelta(days=ROLLING_WINDOW_DAYS - 1), end)
