"""
Credit detection.

A fact counts as a credit when its service name carries a credit or
refund marker, or when its cost is negative. Both the Python predicate
and the SQL filter are built from the same markers.
"""

from decimal import Decimal
from typing import Tuple

CREDIT_MARKERS: Tuple[str, ...] = ("credit", "refund")


def is_credit(service: str, cost: Decimal) -> bool:
    """Return True if a fact with this service and cost is a credit."""
    name = service.lower()
    if any(marker in name for marker in CREDIT_MARKERS):
        return True
    return cost < 0


def credit_condition_sql() -> str:
    """SQL condition matching credit rows of the daily_costs table.

    LIKE is case-insensitive for ASCII in SQLite, matching ``is_credit``.
    Markers are module constants, never user input.
    """
    name_checks = " OR ".join(f"service LIKE '%{marker}%'" for marker in CREDIT_MARKERS)
    return f"({name_checks} OR CAST(cost AS REAL) < 0)"


def non_credit_condition_sql() -> str:
    """SQL condition matching rows that are not credits."""
    return f"NOT {credit_condition_sql()}"
