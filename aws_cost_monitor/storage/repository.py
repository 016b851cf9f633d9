"""
Repository pattern for data access.

Owns the daily_costs table: range and gap queries, aggregates and
idempotent upserts of daily cost facts.
"""

import sqlite3
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from .credits import credit_condition_sql, non_credit_condition_sql
from .db import PersistenceError, get_connection
from .models import AccountSummary, DailyCostFact, Dimension, DimensionTotal

logger = structlog.get_logger()

SCHEMA = """
    CREATE TABLE IF NOT EXISTS daily_costs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL,
        account_id TEXT NOT NULL,
        account_name TEXT NOT NULL,
        service TEXT NOT NULL,
        cost TEXT NOT NULL,
        currency TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(date, account_id, service)
    );

    CREATE INDEX IF NOT EXISTS idx_daily_costs_date ON daily_costs(date);
    CREATE INDEX IF NOT EXISTS idx_daily_costs_account ON daily_costs(account_id);
"""

UPSERT_SQL = """
    INSERT INTO daily_costs (date, account_id, account_name, service, cost, currency)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(date, account_id, service) DO UPDATE SET
        account_name = excluded.account_name,
        cost = excluded.cost,
        currency = excluded.currency
"""


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _credit_filter(include_credits: bool) -> str:
    return "" if include_credits else f"AND {non_credit_condition_sql()}"


class CostRepository:
    """Repository for the local store of daily cost facts.

    Every call opens its own connection, so a reader never observes a
    half-applied upsert batch.
    """

    def __init__(self, db_path: str = "costs.db"):
        """Initialize the repository and make sure the schema exists.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def _fetch_all(self, query: str, params: Sequence = ()) -> List[tuple]:
        conn = get_connection(self.db_path)
        try:
            return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cost store query failed: {e}") from e
        finally:
            conn.close()

    def get_latest_date(self) -> Optional[date]:
        """Return the most recent date with any fact, or None if the store is empty."""
        rows = self._fetch_all("SELECT MAX(date) FROM daily_costs")
        if not rows or rows[0][0] is None:
            return None
        return date.fromisoformat(rows[0][0])

    def get_missing_dates(self, start: date, end: date) -> List[date]:
        """List every day in [start, end] that has no facts.

        Args:
            start: First day to check (inclusive)
            end: Last day to check (inclusive)

        Returns:
            Missing days in ascending order; empty if end is before start
        """
        if end < start:
            return []

        rows = self._fetch_all(
            "SELECT DISTINCT date FROM daily_costs WHERE date >= ? AND date <= ?",
            (start.isoformat(), end.isoformat()),
        )
        existing = {date.fromisoformat(row[0]) for row in rows}

        missing = []
        day = start
        while day <= end:
            if day not in existing:
                missing.append(day)
            day += timedelta(days=1)
        return missing

    def upsert_costs(self, facts: Iterable[DailyCostFact]) -> int:
        """Insert or replace facts atomically.

        All facts are written in a single transaction. On a key collision
        the stored account_name, cost and currency are overwritten.

        Args:
            facts: Facts to store

        Returns:
            Number of facts written

        Raises:
            PersistenceError: If the write fails; nothing is persisted
        """
        rows = [
            (
                fact.date.isoformat(),
                fact.account_id,
                fact.account_name,
                fact.service,
                str(fact.cost),
                fact.currency,
            )
            for fact in facts
        ]
        if not rows:
            return 0

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.executemany(UPSERT_SQL, rows)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("cost_upsert_failed", records=len(rows), error=str(e))
            raise PersistenceError(f"Failed to store {len(rows)} cost records: {e}") from e
        finally:
            conn.close()

        logger.info("cost_upsert_success", records=len(rows))
        return len(rows)

    def get_costs_for_range(
        self,
        start: date,
        end: date,
        include_credits: bool = True
    ) -> List[DailyCostFact]:
        """Get all facts dated within [start, end].

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            include_credits: When False, credit and negative-cost facts are left out

        Returns:
            Facts ordered by date, account and service
        """
        rows = self._fetch_all(
            f"""
            SELECT date, account_id, account_name, service, cost, currency
            FROM daily_costs
            WHERE date >= ? AND date <= ? {_credit_filter(include_credits)}
            ORDER BY date, account_id, service
            """,
            (start.isoformat(), end.isoformat()),
        )
        return [
            DailyCostFact(
                date=date.fromisoformat(row[0]),
                account_id=row[1],
                account_name=row[2],
                service=row[3],
                cost=_to_decimal(row[4]),
                currency=row[5],
            )
            for row in rows
        ]

    def get_total_for_range(
        self,
        start: date,
        end: date,
        include_credits: bool = True
    ) -> Decimal:
        """Sum of cost over [start, end]; zero when nothing matches."""
        rows = self._fetch_all(
            f"""
            SELECT DSUM(cost) FROM daily_costs
            WHERE date >= ? AND date <= ? {_credit_filter(include_credits)}
            """,
            (start.isoformat(), end.isoformat()),
        )
        return _to_decimal(rows[0][0]) if rows else Decimal("0")

    def get_daily_totals(
        self,
        start: date,
        end: date,
        include_credits: bool = True
    ) -> List[Tuple[date, Decimal]]:
        """Total cost per day within [start, end], ascending by date.

        Days without facts are absent from the result.
        """
        rows = self._fetch_all(
            f"""
            SELECT date, DSUM(cost)
            FROM daily_costs
            WHERE date >= ? AND date <= ? {_credit_filter(include_credits)}
            GROUP BY date
            ORDER BY date
            """,
            (start.isoformat(), end.isoformat()),
        )
        return [(date.fromisoformat(row[0]), _to_decimal(row[1])) for row in rows]

    def get_dimension_totals(
        self,
        start: date,
        end: date,
        include_credits: bool = True,
        group_by: Dimension = Dimension.SERVICE
    ) -> Dict[str, DimensionTotal]:
        """Totals per account or per service over [start, end].

        Accounts are keyed by account_id and named with the account_name
        of their latest fact in the range; their breakdown is per service.
        Services are keyed and named by service; their breakdown is per
        account_id.

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            include_credits: When False, credit and negative-cost facts are left out
            group_by: Dimension to group by

        Returns:
            Mapping of dimension key to its total
        """
        if group_by == Dimension.ACCOUNT:
            key_column, other_column = "account_id", "service"
        else:
            key_column, other_column = "service", "account_id"

        params = (start.isoformat(), end.isoformat())
        credit_filter = _credit_filter(include_credits)
        rows = self._fetch_all(
            f"""
            SELECT {key_column}, {other_column}, DSUM(cost)
            FROM daily_costs
            WHERE date >= ? AND date <= ? {credit_filter}
            GROUP BY {key_column}, {other_column}
            ORDER BY {key_column}, {other_column}
            """,
            params,
        )

        names: Dict[str, str] = {}
        if group_by == Dimension.ACCOUNT:
            # SQLite takes bare columns from the row holding MAX(date)
            name_rows = self._fetch_all(
                f"""
                SELECT account_id, account_name, MAX(date)
                FROM daily_costs
                WHERE date >= ? AND date <= ? {credit_filter}
                GROUP BY account_id
                """,
                params,
            )
            names = {row[0]: row[1] for row in name_rows}

        breakdowns: Dict[str, Dict[str, Decimal]] = {}
        for key, other, cost in rows:
            breakdowns.setdefault(key, {})[other] = _to_decimal(cost)

        return {
            key: DimensionTotal(
                key=key,
                name=names.get(key, key),
                total=sum(breakdown.values(), Decimal("0")),
                breakdown=breakdown,
            )
            for key, breakdown in breakdowns.items()
        }

    def get_account_summaries(
        self,
        start: date,
        end: date,
        include_credits: bool = True
    ) -> List[AccountSummary]:
        """Per-account totals with service breakdown, highest total first."""
        totals = self.get_dimension_totals(start, end, include_credits, Dimension.ACCOUNT)
        summaries = [
            AccountSummary(
                account_id=total.key,
                account_name=total.name,
                total_cost=total.total,
                cost_by_service=total.breakdown,
            )
            for total in sorted(totals.values(), key=lambda t: t.key)
        ]
        return sorted(summaries, key=lambda s: s.total_cost, reverse=True)

    def get_credits_for_range(self, start: date, end: date) -> Decimal:
        """Sum of absolute credit amounts in [start, end], whatever the toggle."""
        rows = self._fetch_all(
            f"""
            SELECT DSUM(DABS(cost))
            FROM daily_costs
            WHERE date >= ? AND date <= ? AND {credit_condition_sql()}
            """,
            (start.isoformat(), end.isoformat()),
        )
        return _to_decimal(rows[0][0]) if rows else Decimal("0")


def initialize_schema(db_path: str = "costs.db") -> None:
    """Create the daily_costs table and its indexes if they don't exist.

    Args:
        db_path: Path to SQLite database file

    Raises:
        PersistenceError: If the schema cannot be created
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    except sqlite3.Error as e:
        raise PersistenceError(f"Cannot initialize cost database {db_path}: {e}") from e
    finally:
        conn.close()


_default_repository: Optional[CostRepository] = None


def get_repository(db_path: str = "costs.db") -> CostRepository:
    """Get a repository instance, reusing the one created for the same path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of CostRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = CostRepository(db_path)
    return _default_repository
