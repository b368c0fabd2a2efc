"""
Event ingestion.

Validates one raw event in the ``/api/track`` wire shape, hashes the
caller identity and appends a single immutable row to the store.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from skill_tracker.core.hashing import hash_user_id
from skill_tracker.storage.db import DEFAULT_DB_PATH
from skill_tracker.storage.models import EventStatus, NewUsageEvent
from skill_tracker.storage.repository import insert_usage_event

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "default"

_ALLOWED_FIELDS = {
    "tool_name",
    "tool_category",
    "duration_ms",
    "status",
    "error_type",
    "error_message",
    "metadata",
    "request_size_bytes",
    "response_size_bytes",
}


class InvalidEventError(ValueError):
    """Raised when a raw event fails validation at the ingestion boundary."""


@dataclass(frozen=True)
class TrackedEvent:
    """A raw event after validation, before identity is attached."""
    tool_name: str
    status: EventStatus
    tool_category: Optional[str] = None
    duration_ms: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[str] = None
    request_size_bytes: Optional[int] = None
    response_size_bytes: Optional[int] = None


def validate_event(raw: Any) -> TrackedEvent:
    """Validate a raw event payload.

    Error fields are dropped unless the status is ``error``. Mapping
    metadata is serialised to JSON; string metadata is stored as given.

    Args:
        raw: Decoded JSON body of a track request

    Returns:
        Validated TrackedEvent

    Raises:
        InvalidEventError: If a required field is missing or a value is
            of the wrong type
    """
    if not isinstance(raw, Mapping):
        raise InvalidEventError("event must be a JSON object")

    unknown = set(raw.keys()) - _ALLOWED_FIELDS
    if unknown:
        logger.debug(f"Ignoring unknown event fields: {sorted(unknown)}")

    tool_name = raw.get("tool_name")
    if not isinstance(tool_name, str) or not tool_name.strip():
        raise InvalidEventError("tool_name is required and cannot be empty")

    status_value = raw.get("status")
    if status_value is None:
        raise InvalidEventError("status is required")
    try:
        status = EventStatus(status_value)
    except ValueError:
        valid = [s.value for s in EventStatus]
        raise InvalidEventError(f"status must be one of: {valid}")

    tool_category = _optional_str(raw, "tool_category")
    duration_ms = _optional_non_negative_int(raw, "duration_ms")

    error_type = _optional_str(raw, "error_type")
    error_message = _optional_str(raw, "error_message")
    if status is not EventStatus.ERROR:
        error_type = None
        error_message = None

    return TrackedEvent(
        tool_name=tool_name,
        status=status,
        tool_category=tool_category or None,
        duration_ms=duration_ms,
        error_type=error_type or None,
        error_message=error_message or None,
        metadata=_serialize_metadata(raw.get("metadata")),
        request_size_bytes=_optional_non_negative_int(raw, "request_size_bytes"),
        response_size_bytes=_optional_non_negative_int(raw, "response_size_bytes"),
    )


def ingest_event(
    raw: Any,
    identifier: str,
    db_path: str = DEFAULT_DB_PATH,
    default_category: str = DEFAULT_CATEGORY,
    recorded_at: Optional[datetime] = None
) -> int:
    """Validate and persist one event.

    Persistence failures are logged and re-raised; callers that must
    stay fail-silent (the execution wrapper) absorb them through their
    sink.

    Args:
        raw: Decoded JSON body of a track request
        identifier: Caller identity to anonymise
        db_path: Path to SQLite database file
        default_category: Category applied when the event carries none
        recorded_at: Override for the insert time (UTC)

    Returns:
        Id of the inserted row

    Raises:
        InvalidEventError: If validation fails
        sqlite3.Error: If the write fails
    """
    tracked = validate_event(raw)
    event = NewUsageEvent(
        user_id_hash=hash_user_id(identifier),
        tool_name=tracked.tool_name,
        tool_category=tracked.tool_category or default_category,
        status=tracked.status,
        duration_ms=tracked.duration_ms,
        error_type=tracked.error_type,
        error_message=tracked.error_message,
        metadata=tracked.metadata,
        request_size_bytes=tracked.request_size_bytes,
        response_size_bytes=tracked.response_size_bytes,
    )

    try:
        event_id = insert_usage_event(event, db_path, recorded_at=recorded_at)
    except Exception as e:
        logger.error(f"Failed to store usage event for {event.tool_name}: {e}")
        raise

    logger.debug(f"Stored usage event {event_id} ({event.tool_name}, {event.status.value})")
    return event_id


def _optional_str(raw: Mapping, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidEventError(f"{key} must be a string")
    return value


def _optional_non_negative_int(raw: Mapping, key: str) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidEventError(f"{key} must be an integer")
    if value < 0:
        raise InvalidEventError(f"{key} must be >= 0")
    return value


def _serialize_metadata(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return json.dumps(dict(value), separators=(",", ":"), default=str)
    raise InvalidEventError("metadata must be a JSON string or an object")
