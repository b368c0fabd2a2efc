"""
Repository for the usage event store.

Creates the schema and performs append-only writes and plain reads.
Aggregations live in ``skill_tracker.core.analytics``.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import EventStatus, NewUsageEvent, UsageEvent

TABLE_NAME = "skill_usage_events"

# SQLite's DATE()/datetime() understand this layout, and it sorts lexically.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_INDEXES = {
    "idx_user_hash": "user_id_hash",
    "idx_tool_name": "tool_name",
    "idx_timestamp": "timestamp",
    "idx_status": "status",
    "idx_tool_timestamp": "tool_name, timestamp",
    "idx_user_timestamp": "user_id_hash, timestamp",
}


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the store's UTC text layout.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into a naive UTC datetime."""
    return datetime.fromisoformat(value)


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def initialize_schema(db_path: str = DEFAULT_DB_PATH, default_category: str = "default") -> None:
    """Create the skill_usage_events table and its indexes if missing.

    This is an append-only ledger: no UPDATE or DELETE is ever issued
    against it by this package.

    Args:
        db_path: Path to SQLite database file
        default_category: Column default for tool_category
    """
    conn = get_connection(db_path)
    try:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id_hash TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                tool_category TEXT DEFAULT '{default_category.replace("'", "''")}',
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                duration_ms INTEGER,
                status TEXT NOT NULL CHECK(status IN ('success', 'error', 'timeout')),
                error_type TEXT,
                error_message TEXT,
                request_size_bytes INTEGER,
                response_size_bytes INTEGER,
                metadata TEXT
            )
        """)
        for name, columns in _INDEXES.items():
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {name} ON {TABLE_NAME}({columns})"
            )
        conn.commit()
    finally:
        conn.close()


def insert_usage_event(
    event: NewUsageEvent,
    db_path: str = DEFAULT_DB_PATH,
    recorded_at: Optional[datetime] = None
) -> int:
    """Append a single usage event and return its assigned id.

    The timestamp is assigned here, at insert time. ``recorded_at`` only
    exists so seeding and tests can place events on a fixed clock.

    Args:
        event: The validated event to record
        db_path: Path to SQLite database file
        recorded_at: Override for the insert time (UTC)

    Returns:
        The surrogate key of the new row
    """
    timestamp = format_timestamp(recorded_at or utc_now())
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"""
            INSERT INTO {TABLE_NAME}
            (user_id_hash, tool_name, tool_category, timestamp, duration_ms,
             status, error_type, error_message, request_size_bytes,
             response_size_bytes, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            event.user_id_hash,
            event.tool_name,
            event.tool_category,
            timestamp,
            event.duration_ms,
            event.status.value,
            event.error_type,
            event.error_message,
            event.request_size_bytes,
            event.response_size_bytes,
            event.metadata
        ))
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def fetch_recent_usage_events(
    tool_name: Optional[str] = None,
    status: Optional[EventStatus] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[UsageEvent]:
    """Fetch recent usage events, optionally filtered by tool and status.

    Returns events newest first. Read-only.

    Args:
        tool_name: Optional filter for a specific tool
        status: Optional filter for a specific outcome
        limit: Maximum number of events to return
        db_path: Path to SQLite database file

    Returns:
        List of usage events ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"""
            SELECT id, user_id_hash, tool_name, tool_category, timestamp,
                   duration_ms, status, error_type, error_message, metadata
            FROM {TABLE_NAME}
        """
        params = []
        conditions = []

        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [
            UsageEvent(
                id=row["id"],
                user_id_hash=row["user_id_hash"],
                tool_name=row["tool_name"],
                tool_category=row["tool_category"],
                timestamp=parse_timestamp(row["timestamp"]),
                status=EventStatus(row["status"]),
                duration_ms=row["duration_ms"],
                error_type=row["error_type"],
                error_message=row["error_message"],
                metadata=row["metadata"]
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()
