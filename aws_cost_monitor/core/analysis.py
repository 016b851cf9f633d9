"""
Cost comparison analysis.

Derives period-over-period comparisons from the stored daily facts.
Nothing is cached: every call reads the store afresh, so identical store
contents, reference day and credits toggle always give identical output.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from .notifications import NotificationCenter
from .periods import (
    Window,
    last_full_month,
    last_month_to_same_day,
    month_before_last,
    month_to_date,
    previous_30_days,
    rolling_30_days,
)
from ..storage.models import AccountSummary, Dimension
from ..storage.repository import CostRepository

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class Period(Enum):
    """Reporting periods for account summaries."""
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"


@dataclass(frozen=True)
class ComparisonResult:
    """Total for one period against the period it is compared with."""
    label: str
    current: Decimal
    previous: Decimal
    difference: Decimal
    percent_change: Decimal

    @property
    def is_up(self) -> bool:
        return self.difference >= 0


@dataclass(frozen=True)
class DayComparison:
    """This month's total for a day-of-month against last month's."""
    day_of_month: int
    this_month: Decimal
    last_month: Decimal
    difference: Decimal
    percent_change: Decimal


@dataclass(frozen=True)
class DimensionComparison:
    """Four-window comparison for one service or account."""
    key: str
    name: str
    mtd_cost: Decimal
    last_month_same_day_cost: Decimal
    mtd_change_percent: Decimal
    mtd_is_up: bool
    rolling_30_cost: Decimal
    previous_30_cost: Decimal
    rolling_change_percent: Decimal
    rolling_is_up: bool


@dataclass(frozen=True)
class CreditsSummary:
    """Credits applied month-to-date and over the whole of last month."""
    mtd_credits: Decimal
    last_month_credits: Decimal


@dataclass(frozen=True)
class DateRanges:
    """The four comparison windows with their display labels."""
    mtd_window: Window
    last_mtd_window: Window
    rolling_30_window: Window
    previous_30_window: Window

    @property
    def mtd(self) -> str:
        return self.mtd_window.label()

    @property
    def last_mtd(self) -> str:
        return self.last_mtd_window.label()

    @property
    def rolling_30(self) -> str:
        return self.rolling_30_window.label()

    @property
    def previous_30(self) -> str:
        return self.previous_30_window.label()


def percent_change(current: Decimal, previous: Decimal) -> Decimal:
    """Percentage change from previous to current.

    A zero previous value gives 100 when current is non-zero and 0 when
    both are zero.
    """
    if previous != 0:
        return (current - previous) / previous * HUNDRED
    return HUNDRED if current != 0 else ZERO


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class CostAnalysisService:
    """Read model over the cost store.

    The reference day comes from ``today_provider`` so every window can be
    pinned in tests.
    """

    def __init__(
        self,
        repository: CostRepository,
        include_credits: bool = True,
        today_provider: Callable[[], date] = utc_today,
        notifications: Optional[NotificationCenter] = None
    ):
        self.repository = repository
        self._include_credits = include_credits
        self.today_provider = today_provider
        self.notifications = notifications

    @property
    def include_credits(self) -> bool:
        return self._include_credits

    @include_credits.setter
    def include_credits(self, value: bool) -> None:
        if value == self._include_credits:
            return
        self._include_credits = value
        if self.notifications is not None:
            self.notifications.notify_credits_toggled(value)

    def toggle_credits(self) -> bool:
        """Flip whether credits count toward totals; returns the new value."""
        self.include_credits = not self._include_credits
        return self._include_credits

    def has_data(self) -> bool:
        """False until the first successful sync has stored anything."""
        return self.repository.get_latest_date() is not None

    def _total(self, window: Window) -> Decimal:
        return self.repository.get_total_for_range(window.start, window.end, self._include_credits)

    def month_to_date_comparison(self) -> ComparisonResult:
        """This month so far against last month up to the same day."""
        today = self.today_provider()
        current = self._total(month_to_date(today))
        previous = self._total(last_month_to_same_day(today))
        return create_comparison("Month-to-Date", current, previous)

    def full_month_comparison(self) -> ComparisonResult:
        """Last complete month against the month before it."""
        today = self.today_provider()
        last = last_full_month(today)
        before = month_before_last(today)
        label = f"{last.start:%B} vs {before.start:%B}"
        return create_comparison(label, self._total(last), self._total(before))

    def day_by_day_comparison(self) -> List[DayComparison]:
        """Pair each day-of-month this month with the same day last month.

        Runs from day 1 to the latest day-of-month holding data in either
        month. Days without data count as zero.
        """
        today = self.today_provider()
        this_window = month_to_date(today)
        last_window = last_full_month(today)

        this_month = {
            day.day: total
            for day, total in self.repository.get_daily_totals(
                this_window.start, this_window.end, self._include_credits)
        }
        last_month = {
            day.day: total
            for day, total in self.repository.get_daily_totals(
                last_window.start, last_window.end, self._include_credits)
        }

        max_day = max(max(this_month, default=0), max(last_month, default=0))
        comparisons = []
        for day in range(1, max_day + 1):
            current = this_month.get(day, ZERO)
            previous = last_month.get(day, ZERO)
            comparisons.append(DayComparison(
                day_of_month=day,
                this_month=current,
                last_month=previous,
                difference=current - previous,
                percent_change=percent_change(current, previous),
            ))
        return comparisons

    def account_summaries(self, period: Period = Period.THIS_MONTH) -> List[AccountSummary]:
        """Per-account totals and service split, highest total first."""
        today = self.today_provider()
        window = month_to_date(today) if period == Period.THIS_MONTH else last_full_month(today)
        return self.repository.get_account_summaries(window.start, window.end, self._include_credits)

    def service_or_account_comparison(self, group_by: Dimension = Dimension.SERVICE) -> List[DimensionComparison]:
        """Compare every service or account across the four windows.

        Any key seen in at least one window is reported, with zero for
        the windows it is absent from. Results are ordered by name.
        """
        ranges = self.date_ranges()
        totals = [
            self.repository.get_dimension_totals(
                window.start, window.end, self._include_credits, group_by)
            for window in (
                ranges.mtd_window,
                ranges.last_mtd_window,
                ranges.rolling_30_window,
                ranges.previous_30_window,
            )
        ]
        mtd, last_mtd, rolling, previous = (
            {key: total.total for key, total in window_totals.items()} for window_totals in totals
        )

        names: Dict[str, str] = {}
        # Oldest window first so the most recent name wins
        for index in (3, 1, 2, 0):
            names.update({key: total.name for key, total in totals[index].items()})

        comparisons = []
        for key in sorted(names, key=lambda k: (names[k], k)):
            mtd_cost = mtd.get(key, ZERO)
            last_cost = last_mtd.get(key, ZERO)
            rolling_cost = rolling.get(key, ZERO)
            previous_cost = previous.get(key, ZERO)
            comparisons.append(DimensionComparison(
                key=key,
                name=names[key],
                mtd_cost=mtd_cost,
                last_month_same_day_cost=last_cost,
                mtd_change_percent=percent_change(mtd_cost, last_cost),
                mtd_is_up=mtd_cost >= last_cost,
                rolling_30_cost=rolling_cost,
                previous_30_cost=previous_cost,
                rolling_change_percent=percent_change(rolling_cost, previous_cost),
                rolling_is_up=rolling_cost >= previous_cost,
            ))
        return comparisons

    def service_comparison(self) -> List[DimensionComparison]:
        """Per-service comparison, highest month-to-date cost first."""
        rows = self.service_or_account_comparison(Dimension.SERVICE)
        return sorted(rows, key=lambda r: r.mtd_cost, reverse=True)

    def account_comparison(self) -> List[DimensionComparison]:
        """Per-account comparison, highest month-to-date cost first."""
        rows = self.service_or_account_comparison(Dimension.ACCOUNT)
        return sorted(rows, key=lambda r: r.mtd_cost, reverse=True)

    def credits_summary(self) -> CreditsSummary:
        """Credits month-to-date and for all of last month.

        Always counts credits, whatever the include-credits toggle says.
        """
        today = self.today_provider()
        mtd = month_to_date(today)
        last = last_full_month(today)
        return CreditsSummary(
            mtd_credits=self.repository.get_credits_for_range(mtd.start, mtd.end),
            last_month_credits=self.repository.get_credits_for_range(last.start, last.end),
        )

    def date_ranges(self) -> DateRanges:
        """The windows behind the service and account comparisons."""
        today = self.today_provider()
        return DateRanges(
            mtd_window=month_to_date(today),
            last_mtd_window=last_month_to_same_day(today),
            rolling_30_window=rolling_30_days(today),
            previous_30_window=previous_30_days(today),
        )


def create_comparison(label: str, current: Decimal, previous: Decimal) -> ComparisonResult:
    return ComparisonResult(
        label=label,
        current=current,
        previous=previous,
        difference=current - previous,
        percent_change=percent_change(current, previous),
    )
