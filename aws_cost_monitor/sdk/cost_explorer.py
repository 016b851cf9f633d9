"""
AWS Cost Explorer cost source.

Fetches daily unblended cost per linked account and service.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from threading import Event
from typing import Any, Dict, List, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound

from ..storage.models import DailyCostFact

logger = structlog.get_logger()

COST_METRIC = "UnblendedCost"


class TransientFetchError(Exception):
    """Raised when Cost Explorer cannot be reached or rejects the request."""


class FetchCancelled(Exception):
    """Raised when a fetch is cancelled between result pages."""


def _create_client(profile: Optional[str], region: str) -> Any:
    """Build a ce client from the named profile, or the default credential chain.

    A profile missing from the shared config falls back to the default
    chain (environment variables, instance role, ...).
    """
    try:
        return boto3.Session(profile_name=profile).client("ce", region_name=region)
    except ProfileNotFound:
        logger.warning("aws_profile_not_found", profile=profile)
        return boto3.Session().client("ce", region_name=region)


class CostExplorerSource:
    """Daily cost source backed by the Cost Explorer API.

    Account display names are looked up once per instance and cached.
    Failures are loud: any API error aborts the fetch.
    """

    def __init__(
        self,
        profile: Optional[str] = "default",
        region: str = "us-east-1",
        client: Any = None
    ):
        """Initialize the Cost Explorer source.

        Args:
            profile: AWS shared-config profile name (None for the default chain)
            region: Region for the Cost Explorer endpoint
            client: Pre-built ``ce`` client, mainly for tests
        """
        self.profile = profile
        self.region = region
        self.client = client or _create_client(profile, region)
        self.dropped_records = 0
        self._account_names: Dict[str, str] = {}
        self._account_names_loaded = False

    def fetch_daily_costs(
        self,
        start: date,
        end: date,
        cancel_event: Optional[Event] = None
    ) -> List[DailyCostFact]:
        """Fetch daily costs for every day in [start, end].

        Pages are followed until Cost Explorer stops returning a
        NextPageToken. Only positive amounts are kept.

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            cancel_event: Checked before each page request

        Returns:
            Facts grouped by (date, account, service)

        Raises:
            TransientFetchError: If any Cost Explorer call fails
            FetchCancelled: If cancel_event is set while paging
        """
        self.dropped_records = 0
        if end < start:
            return []

        request = {
            "TimePeriod": {
                "Start": start.isoformat(),
                # Cost Explorer end dates are exclusive
                "End": (end + timedelta(days=1)).isoformat(),
            },
            "Granularity": "DAILY",
            "Metrics": [COST_METRIC],
            "GroupBy": [
                {"Type": "DIMENSION", "Key": "LINKED_ACCOUNT"},
                {"Type": "DIMENSION", "Key": "SERVICE"},
            ],
        }

        facts: List[DailyCostFact] = []
        next_token = None
        pages = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelled(f"Cost fetch cancelled after {pages} pages")

            if next_token:
                request["NextPageToken"] = next_token
            try:
                response = self.client.get_cost_and_usage(**request)
            except (ClientError, BotoCoreError) as e:
                logger.error("cost_explorer_fetch_failed", start=str(start), end=str(end), error=str(e))
                raise TransientFetchError(f"Cost Explorer request failed: {e}") from e
            pages += 1

            for result in response.get("ResultsByTime", []):
                facts.extend(self._parse_result(result))

            next_token = response.get("NextPageToken")
            if not next_token:
                break

        if self.dropped_records:
            logger.warning("cost_explorer_records_dropped", dropped=self.dropped_records)
        logger.info("cost_explorer_fetch_complete", start=str(start), end=str(end), pages=pages, records=len(facts))
        return facts

    def _parse_result(self, result: Dict[str, Any]) -> List[DailyCostFact]:
        facts = []
        try:
            day = date.fromisoformat(result["TimePeriod"]["Start"])
        except (KeyError, TypeError, ValueError):
            self.dropped_records += len(result.get("Groups", [])) or 1
            logger.warning("cost_explorer_bad_period", period=result.get("TimePeriod"))
            return facts

        for group in result.get("Groups", []):
            keys = group.get("Keys", [])
            metric = group.get("Metrics", {}).get(COST_METRIC)
            if len(keys) < 2 or not metric:
                self.dropped_records += 1
                logger.warning("cost_explorer_bad_group", date=str(day), keys=keys)
                continue

            try:
                amount = Decimal(metric["Amount"])
            except (KeyError, TypeError, InvalidOperation):
                self.dropped_records += 1
                logger.warning("cost_explorer_bad_amount", date=str(day), keys=keys)
                continue

            if amount <= 0:
                continue

            account_id, service = keys[0], keys[1]
            facts.append(DailyCostFact(
                date=day,
                account_id=account_id,
                account_name=self.get_account_name(account_id),
                service=service,
                cost=amount,
                currency=metric.get("Unit", "USD"),
            ))
        return facts

    def get_account_name(self, account_id: str) -> str:
        """Resolve an account's display name, falling back to its id."""
        if account_id in self._account_names:
            return self._account_names[account_id]
        if self._account_names_loaded:
            return account_id

        self._account_names_loaded = True
        today = datetime.now(timezone.utc).date()
        try:
            response = self.client.get_dimension_values(
                TimePeriod={
                    "Start": (today - timedelta(days=30)).isoformat(),
                    "End": today.isoformat(),
                },
                Dimension="LINKED_ACCOUNT",
                Context="COST_AND_USAGE",
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("account_name_lookup_failed", account_id=account_id, error=str(e))
            return account_id

        for value in response.get("DimensionValues", []):
            attributes = value.get("Attributes", {})
            self._account_names[value["Value"]] = attributes.get("description", value["Value"])

        return self._account_names.get(account_id, account_id)
