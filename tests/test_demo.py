"""
Tests for demo data seeding.
"""

import os
import tempfile
from datetime import date
from decimal import Decimal

from aws_cost_monitor.core.analysis import CostAnalysisService
from aws_cost_monitor.demo.seed_demo_data import MONTHLY_CREDIT, build_demo_facts, seed_demo_data
from aws_cost_monitor.storage.repository import CostRepository


class TestDemoData:
    """Test demo facts are deterministic and usable by every report."""

    def test_covers_last_month_through_yesterday(self):
        """Test the date span of demo facts."""
        facts = build_demo_facts(date(2024, 3, 15))

        assert min(f.date for f in facts) == date(2024, 2, 1)
        assert max(f.date for f in facts) == date(2024, 3, 14)

    def test_is_deterministic(self):
        """Test the same day always yields the same facts."""
        assert build_demo_facts(date(2024, 3, 15)) == build_demo_facts(date(2024, 3, 15))

    def test_includes_monthly_credit(self):
        """Test each month starts with a promotional credit."""
        facts = build_demo_facts(date(2024, 3, 15))
        credits = [f for f in facts if f.cost < 0]

        assert [f.date for f in credits] == [date(2024, 2, 1), date(2024, 3, 1)]
        assert all(f.cost == MONTHLY_CREDIT for f in credits)

    def test_seeding_twice_is_idempotent(self):
        """Test re-seeding overwrites rather than duplicates."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "demo.db")
            today = date(2024, 3, 15)

            first = seed_demo_data(db_path, today)
            second = seed_demo_data(db_path, today)

            repository = CostRepository(db_path)
            stored = repository.get_costs_for_range(date(2024, 2, 1), date(2024, 3, 14))
            assert first == second == len(stored)

            analysis = CostAnalysisService(repository, today_provider=lambda: today)
            assert analysis.credits_summary().mtd_credits == Decimal("25.00")
