"""
Unit tests for the incremental cost sync.
"""

import os
import shutil
import tempfile
from datetime import date, timedelta
from decimal import Decimal
from threading import Event
from unittest.mock import Mock

import pytest

from aws_cost_monitor.core import sync as sync_module
from aws_cost_monitor.core.notifications import NotificationCenter
from aws_cost_monitor.core.sync import CostSyncService, SyncCancelled, SyncPlan
from aws_cost_monitor.sdk.cost_explorer import FetchCancelled, TransientFetchError
from aws_cost_monitor.storage.models import DailyCostFact
from aws_cost_monitor.storage.repository import CostRepository

TODAY = date(2024, 3, 15)


def make_fact(day: date, service: str = "Amazon EC2", cost: str = "1.00") -> DailyCostFact:
    """Create a daily cost fact for testing."""
    return DailyCostFact(
        date=day,
        account_id="111111111111",
        account_name="Production",
        service=service,
        cost=Decimal(cost)
    )


def seed_days(repository: CostRepository, first: date, last: date) -> None:
    """Store one fact for every day of [first, last]."""
    facts = []
    day = first
    while day <= last:
        facts.append(make_fact(day))
        day += timedelta(days=1)
    repository.upsert_costs(facts)


class SyncTestCase:
    """Fresh store and mocked cost source per test."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.repository = CostRepository(os.path.join(self.temp_dir, "test.db"))
        self.source = Mock()
        self.source.fetch_daily_costs.return_value = []
        self.service = CostSyncService(
            self.repository,
            self.source,
            today_provider=lambda: TODAY
        )

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def all_facts(self):
        return self.repository.get_costs_for_range(date(2000, 1, 1), date(2100, 1, 1))


class TestSyncPlan(SyncTestCase):
    """Test window selection."""

    def test_forced_full_sync(self):
        """A forced sync covers the last 60 days up to yesterday."""
        plan = self.service.plan(force_full_sync=True)

        assert plan.sync_from == date(2024, 1, 15)
        assert plan.sync_to == date(2024, 3, 14)
        assert plan.forced is True

    def test_forced_sync_ignores_complete_store(self):
        """A forced sync keeps the full window even without gaps."""
        seed_days(self.repository, date(2024, 1, 15), date(2024, 3, 14))

        plan = self.service.plan(force_full_sync=True)

        assert plan.sync_from == date(2024, 1, 15)
        assert plan.missing_dates == []

    def test_empty_store_bootstraps(self):
        """An empty store triggers the full lookback window."""
        plan = self.service.plan()

        assert plan.sync_from == date(2024, 1, 15)
        assert plan.sync_to == date(2024, 3, 14)
        assert len(plan.missing_dates) == 60

    def test_store_far_behind(self):
        """A stale store resumes from the day after its latest day."""
        self.repository.upsert_costs([make_fact(date(2024, 3, 10))])

        plan = self.service.plan()

        assert plan.sync_from == date(2024, 3, 11)
        assert plan.sync_to == date(2024, 3, 14)
        assert plan.missing_dates == [
            date(2024, 3, 11), date(2024, 3, 12), date(2024, 3, 13), date(2024, 3, 14)
        ]

    def test_recent_store_uses_catch_up_window(self):
        """A recent store re-pulls the trailing three days."""
        seed_days(self.repository, date(2024, 3, 1), date(2024, 3, 13))

        plan = self.service.plan()

        assert plan.sync_from == date(2024, 3, 12)
        assert plan.missing_dates == [date(2024, 3, 14)]

    def test_complete_store_still_catches_up(self):
        """Without gaps the catch-up window is fetched anyway."""
        seed_days(self.repository, date(2024, 3, 1), date(2024, 3, 14))

        plan = self.service.plan()

        assert plan.sync_from == date(2024, 3, 12)
        assert plan.sync_to == date(2024, 3, 14)
        assert plan.missing_dates == []
        assert not plan.is_empty

    def test_empty_plan(self):
        """A plan ending before it starts is empty."""
        assert SyncPlan(sync_from=TODAY, sync_to=TODAY - timedelta(days=1)).is_empty
        assert not SyncPlan(sync_from=TODAY, sync_to=TODAY).is_empty


class TestSyncRefresh(SyncTestCase):
    """Test fetching and storing."""

    def test_refresh_fetches_planned_range(self):
        """The source is asked for exactly the planned range."""
        self.service.refresh(force_full_sync=True)

        self.source.fetch_daily_costs.assert_called_once_with(
            date(2024, 1, 15), date(2024, 3, 14), None)

    def test_refresh_stores_fetched_facts(self):
        """Fetched facts end up in the store."""
        facts = [make_fact(date(2024, 3, 14)), make_fact(date(2024, 3, 13), service="Amazon S3")]
        self.source.fetch_daily_costs.return_value = facts

        result = self.service.refresh()

        assert result.facts_fetched == 2
        assert result.sync_from == date(2024, 1, 15)
        assert result.sync_to == date(2024, 3, 14)
        assert result.forced is False
        assert sorted(self.all_facts(), key=lambda f: f.date) == sorted(facts, key=lambda f: f.date)

    def test_refresh_is_idempotent(self):
        """Running the same sync twice leaves the store unchanged."""
        self.source.fetch_daily_costs.return_value = [
            make_fact(date(2024, 3, 14)),
            make_fact(date(2024, 3, 14), service="Amazon S3", cost="2.50"),
        ]

        self.service.refresh()
        first = self.all_facts()
        self.service.refresh()

        assert self.all_facts() == first
        assert len(first) == 2

    def test_refresh_corrects_late_records(self):
        """Re-fetched days overwrite previously stored amounts."""
        seed_days(self.repository, date(2024, 3, 1), date(2024, 3, 14))
        self.source.fetch_daily_costs.return_value = [make_fact(date(2024, 3, 13), cost="9.99")]

        self.service.refresh()

        stored = self.repository.get_costs_for_range(date(2024, 3, 13), date(2024, 3, 13))
        assert [f.cost for f in stored] == [Decimal("9.99")]

    def test_empty_range_skips_fetch(self, monkeypatch):
        """An empty plan never calls the source."""
        monkeypatch.setattr(sync_module, "FULL_SYNC_DAYS", 0)

        result = self.service.refresh(force_full_sync=True)

        self.source.fetch_daily_costs.assert_not_called()
        assert result.facts_fetched == 0

    def test_fetch_error_leaves_store_unchanged(self):
        """A failed fetch propagates and stores nothing."""
        seed_days(self.repository, date(2024, 3, 1), date(2024, 3, 5))
        before = self.all_facts()
        self.source.fetch_daily_costs.side_effect = TransientFetchError("throttled")

        with pytest.raises(TransientFetchError):
            self.service.refresh()

        assert self.all_facts() == before

    def test_subscribers_notified(self):
        """A completed sync notifies data-refreshed subscribers."""
        notifications = NotificationCenter()
        callback = Mock()
        notifications.subscribe_data_refreshed(callback)
        service = CostSyncService(
            self.repository,
            self.source,
            today_provider=lambda: TODAY,
            notifications=notifications
        )

        result = service.refresh()

        callback.assert_called_once_with(result)


class TestSyncCancellation(SyncTestCase):
    """Test cancelled runs store nothing."""

    def test_cancelled_before_fetch(self):
        """A pre-set cancel event stops the run before fetching."""
        cancel = Event()
        cancel.set()

        with pytest.raises(SyncCancelled):
            self.service.refresh(cancel_event=cancel)

        self.source.fetch_daily_costs.assert_not_called()
        assert self.all_facts() == []

    def test_cancelled_after_fetch(self):
        """Cancelling during the fetch discards the fetched facts."""
        cancel = Event()

        def fetch(start, end, cancel_event):
            cancel_event.set()
            return [make_fact(date(2024, 3, 14))]

        self.source.fetch_daily_costs.side_effect = fetch

        with pytest.raises(SyncCancelled):
            self.service.refresh(cancel_event=cancel)

        assert self.all_facts() == []

    def test_source_cancellation_is_translated(self):
        """A cancelled fetch surfaces as a cancelled sync."""
        self.source.fetch_daily_costs.side_effect = FetchCancelled("stopped between pages")

        with pytest.raises(SyncCancelled):
            self.service.refresh(cancel_event=Event())

        assert self.all_facts() == []

    def test_cancelled_sync_does_not_notify(self):
        """Subscribers only hear about completed syncs."""
        notifications = NotificationCenter()
        callback = Mock()
        notifications.subscribe_data_refreshed(callback)
        service = CostSyncService(
            self.repository,
            self.source,
            today_provider=lambda: TODAY,
            notifications=notifications
        )
        cancel = Event()
        cancel.set()

        with pytest.raises(SyncCancelled):
            service.refresh(cancel_event=cancel)

        callback.assert_not_called()
