"""
Database connection management.

Provides the SQLite connection backing the usage event store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "skill_usage.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection to the event store.

    Rows come back as ``sqlite3.Row`` so aggregation code can address
    columns by name.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn
