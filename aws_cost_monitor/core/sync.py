"""
Incremental cost sync.

Decides which days to re-fetch from the remote cost source and stores
the result. Each run is independent; nothing is remembered between runs
except what the store itself holds.

Window selection:
1. Forced full sync or empty store - the last 60 days
2. Store far behind - from the day after the latest stored day
3. Store recent, or no gaps found - the trailing 3-day catch-up window,
   re-pulled every run to pick up late or corrected billing records
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from threading import Event
from typing import Callable, List, Optional, Protocol, Sequence

import structlog

from .analysis import utc_today
from .notifications import NotificationCenter
from ..sdk.cost_explorer import FetchCancelled
from ..storage.models import DailyCostFact
from ..storage.repository import CostRepository

logger = structlog.get_logger()

FULL_SYNC_DAYS = 60
CATCH_UP_DAYS = 3


class CostSource(Protocol):
    """Anything that can supply daily cost facts for an inclusive range."""

    def fetch_daily_costs(
        self,
        start: date,
        end: date,
        cancel_event: Optional[Event] = None
    ) -> Sequence[DailyCostFact]:
        ...


class SyncCancelled(Exception):
    """Raised when a sync is cancelled before its results are stored."""


@dataclass(frozen=True)
class SyncPlan:
    """Date range a sync run will fetch."""
    sync_from: date
    sync_to: date
    missing_dates: List[date] = field(default_factory=list)
    forced: bool = False

    @property
    def is_empty(self) -> bool:
        return self.sync_to < self.sync_from


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a completed sync run."""
    sync_from: date
    sync_to: date
    missing_dates: List[date]
    facts_fetched: int
    forced: bool
    completed_at: datetime


class CostSyncService:
    """Keeps the local store in step with the remote cost source."""

    def __init__(
        self,
        repository: CostRepository,
        source: CostSource,
        today_provider: Callable[[], date] = utc_today,
        notifications: Optional[NotificationCenter] = None
    ):
        self.repository = repository
        self.source = source
        self.today_provider = today_provider
        self.notifications = notifications

    def plan(self, force_full_sync: bool = False) -> SyncPlan:
        """Work out which days the next sync must fetch.

        Args:
            force_full_sync: Re-fetch the whole lookback window

        Returns:
            SyncPlan covering [sync_from, yesterday]
        """
        today = self.today_provider()
        yesterday = today - timedelta(days=1)
        catch_up_from = today - timedelta(days=CATCH_UP_DAYS)

        if force_full_sync:
            sync_from = today - timedelta(days=FULL_SYNC_DAYS)
        else:
            latest = self.repository.get_latest_date()
            if latest is None:
                sync_from = today - timedelta(days=FULL_SYNC_DAYS)
            elif latest < catch_up_from:
                sync_from = latest + timedelta(days=1)
            else:
                sync_from = catch_up_from

        missing = self.repository.get_missing_dates(sync_from, yesterday)
        if not missing and not force_full_sync:
            sync_from = catch_up_from

        return SyncPlan(
            sync_from=sync_from,
            sync_to=yesterday,
            missing_dates=missing,
            forced=force_full_sync,
        )

    def refresh(
        self,
        force_full_sync: bool = False,
        cancel_event: Optional[Event] = None
    ) -> SyncResult:
        """Fetch the planned range and upsert it into the store.

        Cancellation is honoured before the fetch, between fetched pages
        and before the upsert. A cancelled run stores nothing.

        Args:
            force_full_sync: Re-fetch the whole lookback window
            cancel_event: Set from another thread to cancel the run

        Returns:
            SyncResult describing the completed run

        Raises:
            SyncCancelled: If cancel_event was set before the upsert
            TransientFetchError: If the remote source failed; the store is unchanged
            PersistenceError: If the upsert failed; the store is unchanged
        """
        plan = self.plan(force_full_sync)
        logger.info(
            "cost_sync_started",
            sync_from=str(plan.sync_from),
            sync_to=str(plan.sync_to),
            missing_days=len(plan.missing_dates),
            forced=force_full_sync,
        )

        _check_cancelled(cancel_event, "before fetch")
        facts: Sequence[DailyCostFact] = []
        if not plan.is_empty:
            try:
                facts = self.source.fetch_daily_costs(plan.sync_from, plan.sync_to, cancel_event)
            except FetchCancelled as e:
                logger.info("cost_sync_cancelled", stage="fetch")
                raise SyncCancelled(str(e)) from e

        _check_cancelled(cancel_event, "before upsert", fetched=len(facts))
        self.repository.upsert_costs(facts)

        result = SyncResult(
            sync_from=plan.sync_from,
            sync_to=plan.sync_to,
            missing_dates=plan.missing_dates,
            facts_fetched=len(facts),
            forced=force_full_sync,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "cost_sync_complete",
            sync_from=str(result.sync_from),
            sync_to=str(result.sync_to),
            records=result.facts_fetched,
        )
        if self.notifications is not None:
            self.notifications.notify_data_refreshed(result)
        return result


def _check_cancelled(cancel_event: Optional[Event], stage: str, fetched: int = 0) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("cost_sync_cancelled", stage=stage, discarded=fetched)
        raise SyncCancelled(f"Cost sync cancelled {stage}")
