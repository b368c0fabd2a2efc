"""
Usage analytics over the event store.

Four read-only views feed the dashboard: an overall summary, per-tool
statistics, daily/weekly active users and a recent error log. Each one
depends only on its window arguments and the rows in the store.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from skill_tracker.storage.db import DEFAULT_DB_PATH, get_connection
from skill_tracker.storage.repository import TABLE_NAME, format_timestamp, utc_now

WEEK_DAYS = 7
MAX_WINDOW_DAYS = 36500


def _since(days: int, now: Optional[datetime]) -> str:
    # Longer windows cover the whole store anyway
    days = min(days, MAX_WINDOW_DAYS)
    return format_timestamp((now or utc_now()) - timedelta(days=days))


def _rate(count: int, total: int) -> str:
    """Percentage of ``total`` with two decimals; ``"0.00"`` when empty."""
    if not total:
        return "0.00"
    return f"{count / total * 100:.2f}"


def _mean_ms(value: Optional[float]) -> int:
    return int(round(value or 0))


def get_summary(
    days: int = 7,
    db_path: str = DEFAULT_DB_PATH,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Overall usage summary for the last ``days`` days.

    Args:
        days: Lookback window in days
        db_path: Path to SQLite database file
        now: Reference time (UTC); defaults to the current time

    Returns:
        Dictionary with period, total_invocations, unique_users,
        avg_duration_ms, success_rate and error_rate
    """
    conn = get_connection(db_path)
    try:
        row = conn.execute(f"""
            SELECT
                COUNT(*) AS total_invocations,
                COUNT(DISTINCT user_id_hash) AS unique_users,
                AVG(duration_ms) AS avg_duration_ms,
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count,
                SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END) AS error_count
            FROM {TABLE_NAME}
            WHERE timestamp >= ?
        """, (_since(days, now),)).fetchone()
    finally:
        conn.close()

    total = row["total_invocations"] if row else 0
    if not total:
        return {
            "period": f"{days} days",
            "total_invocations": 0,
            "unique_users": 0,
            "avg_duration_ms": 0,
            "success_rate": "0.00",
            "error_rate": "0.00",
        }

    return {
        "period": f"{days} days",
        "total_invocations": total,
        "unique_users": row["unique_users"],
        "avg_duration_ms": _mean_ms(row["avg_duration_ms"]),
        "success_rate": _rate(row["success_count"], total),
        "error_rate": _rate(row["error_count"], total),
    }


def get_tool_stats(
    days: int = 7,
    db_path: str = DEFAULT_DB_PATH,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """Per-tool statistics, busiest tool first.

    Ties on invocation count are ordered by tool name.

    Args:
        days: Lookback window in days
        db_path: Path to SQLite database file
        now: Reference time (UTC); defaults to the current time

    Returns:
        List of per-tool stat dictionaries
    """
    conn = get_connection(db_path)
    try:
        rows = conn.execute(f"""
            SELECT
                tool_name,
                COUNT(*) AS invocations,
                COUNT(DISTINCT user_id_hash) AS unique_users,
                AVG(duration_ms) AS avg_duration_ms,
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count,
                SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END) AS error_count
            FROM {TABLE_NAME}
            WHERE timestamp >= ?
            GROUP BY tool_name
            ORDER BY invocations DESC, tool_name ASC
        """, (_since(days, now),)).fetchall()
    finally:
        conn.close()

    return [
        {
            "tool_name": row["tool_name"],
            "invocations": row["invocations"],
            "unique_users": row["unique_users"],
            "avg_duration_ms": _mean_ms(row["avg_duration_ms"]),
            "success_rate": _rate(row["success_count"], row["invocations"]),
            "error_rate": _rate(row["error_count"], row["invocations"]),
        }
        for row in rows
    ]


def get_retention_stats(
    days: int = 30,
    db_path: str = DEFAULT_DB_PATH,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Daily active users over the window plus a rolling 7-day count.

    The weekly figure always covers the last seven days, whatever
    ``days`` is.

    Args:
        days: Lookback window in days for the daily series
        db_path: Path to SQLite database file
        now: Reference time (UTC); defaults to the current time

    Returns:
        Dictionary with daily_active_users (newest date first),
        weekly_active_users and period
    """
    now = now or utc_now()
    conn = get_connection(db_path)
    try:
        daily = conn.execute(f"""
            SELECT
                DATE(timestamp) AS date,
                COUNT(DISTINCT user_id_hash) AS dau
            FROM {TABLE_NAME}
            WHERE timestamp >= ?
            GROUP BY DATE(timestamp)
            ORDER BY date DESC
        """, (_since(days, now),)).fetchall()

        weekly = conn.execute(f"""
            SELECT COUNT(DISTINCT user_id_hash) AS wau
            FROM {TABLE_NAME}
            WHERE timestamp >= ?
        """, (_since(WEEK_DAYS, now),)).fetchone()
    finally:
        conn.close()

    return {
        "daily_active_users": [{"date": row["date"], "dau": row["dau"]} for row in daily],
        "weekly_active_users": (weekly["wau"] if weekly else 0) or 0,
        "period": f"{days} days",
    }


def get_recent_errors(
    days: int = 7,
    limit: int = 50,
    db_path: str = DEFAULT_DB_PATH,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Most recent error events, newest first.

    Args:
        days: Lookback window in days
        limit: Maximum number of errors to return
        db_path: Path to SQLite database file
        now: Reference time (UTC); defaults to the current time

    Returns:
        Dictionary with the errors list and its count
    """
    conn = get_connection(db_path)
    try:
        rows = conn.execute(f"""
            SELECT
                timestamp,
                tool_name,
                error_type,
                error_message,
                duration_ms
            FROM {TABLE_NAME}
            WHERE status = 'error' AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
        """, (_since(days, now), limit)).fetchall()
    finally:
        conn.close()

    errors = [dict(row) for row in rows]
    return {
        "errors": errors,
        "count": len(errors),
    }
