"""
Data models for storage layer.

Defines the persisted daily cost fact and store-level aggregates.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict


class Dimension(Enum):
    """Dimension facts can be grouped by."""
    ACCOUNT = "account"
    SERVICE = "service"


@dataclass(frozen=True)
class DailyCostFact:
    """One day's cost for a single (account, service) pair.

    Keyed by (date, account_id, service). Storing a fact with an existing
    key replaces its account_name, cost and currency.
    """
    date: date
    account_id: str
    account_name: str
    service: str
    cost: Decimal
    currency: str = "USD"

    @property
    def key(self):
        return (self.date, self.account_id, self.service)


@dataclass(frozen=True)
class DimensionTotal:
    """Total cost for one account or service over a date range."""
    key: str
    name: str
    total: Decimal
    breakdown: Dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class AccountSummary:
    """Per-account total with its cost split by service."""
    account_id: str
    account_name: str
    total_cost: Decimal
    cost_by_service: Dict[str, Decimal] = field(default_factory=dict)
