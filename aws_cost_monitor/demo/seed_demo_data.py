# aws_cost_monitor/demo/seed_demo_data.py

from datetime import date, timedelta
from decimal import Decimal
from typing import List

from aws_cost_monitor.core.periods import previous_month_start
from aws_cost_monitor.storage.models import DailyCostFact
from aws_cost_monitor.storage.repository import CostRepository

ACCOUNTS = {
    "111111111111": "Production",
    "222222222222": "Staging",
}

# Daily base cost per (account, service)
DAILY_COSTS = {
    ("111111111111", "Amazon Elastic Compute Cloud - Compute"): Decimal("42.10"),
    ("111111111111", "Amazon Relational Database Service"): Decimal("18.75"),
    ("111111111111", "Amazon Simple Storage Service"): Decimal("3.20"),
    ("222222222222", "Amazon Elastic Compute Cloud - Compute"): Decimal("9.40"),
    ("222222222222", "AWS Lambda"): Decimal("0.85"),
}

MONTHLY_CREDIT = Decimal("-25.00")


def build_demo_facts(today: date) -> List[DailyCostFact]:
    """Deterministic facts from the start of last month through yesterday."""
    facts = []
    day = previous_month_start(today)
    while day < today:
        # Small weekly wobble so comparisons are not all flat
        factor = Decimal(100 + (day.day % 7) * 3) / Decimal(100)
        for (account_id, service), base in DAILY_COSTS.items():
            facts.append(DailyCostFact(
                date=day,
                account_id=account_id,
                account_name=ACCOUNTS[account_id],
                service=service,
                cost=(base * factor).quantize(Decimal("0.01")),
            ))
        if day.day == 1:
            facts.append(DailyCostFact(
                date=day,
                account_id="111111111111",
                account_name=ACCOUNTS["111111111111"],
                service="Promotional Credit",
                cost=MONTHLY_CREDIT,
            ))
        day += timedelta(days=1)
    return facts


def seed_demo_data(db_path: str, today: date) -> int:
    """Write demo facts into the store at db_path.

    Returns:
        Number of facts written
    """
    repository = CostRepository(db_path)
    return repository.upsert_costs(build_demo_facts(today))
