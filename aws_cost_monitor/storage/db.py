"""
Database connection management.

Provides SQLite connections for the local cost store.
"""

import sqlite3
from decimal import Decimal
from pathlib import Path


class PersistenceError(Exception):
    """Raised when the cost store cannot be read or written."""


class DecimalSum:
    """SQLite aggregate summing decimal text without float rounding."""

    def __init__(self):
        self.total = Decimal("0")

    def step(self, value):
        if value is not None:
            self.total += Decimal(str(value))

    def finalize(self) -> str:
        return str(self.total)


def decimal_abs(value):
    """Absolute value of a decimal text column."""
    if value is None:
        return None
    return str(abs(Decimal(str(value))))


def get_connection(db_path: str = "costs.db") -> sqlite3.Connection:
    """Create and return a SQLite connection for the cost store.

    The connection carries a ``DSUM`` aggregate and a ``DABS`` function so
    totals are computed as exact decimals.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection

    Raises:
        PersistenceError: If the database cannot be opened
    """
    path = Path(db_path)
    try:
        conn = sqlite3.connect(str(path))
    except sqlite3.Error as e:
        raise PersistenceError(f"Cannot open cost database {db_path}: {e}") from e
    conn.create_aggregate("DSUM", 1, DecimalSum)
    conn.create_function("DABS", 1, decimal_abs, deterministic=True)
    return conn
