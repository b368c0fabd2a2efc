"""
Data models for storage layer.

Defines the usage event record and its status vocabulary.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class EventStatus(Enum):
    """Outcome of a single skill invocation."""
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class NewUsageEvent:
    """A validated event waiting to be appended to the store.

    The store assigns ``id`` and ``timestamp``; callers never supply them.
    """
    user_id_hash: str
    tool_name: str
    tool_category: str
    status: EventStatus
    duration_ms: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[str] = None
    request_size_bytes: Optional[int] = None
    response_size_bytes: Optional[int] = None

    def __post_init__(self):
        """Validate the fields the schema depends on."""
        if not self.user_id_hash:
            raise ValueError("user_id_hash cannot be empty")
        if not self.tool_name:
            raise ValueError("tool_name cannot be empty")
        if self.duration_ms is not None and self.duration_ms < 0:
            raise ValueError("duration_ms cannot be negative")


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one skill invocation, as stored.

    Append-only: once written, these records are never modified.
    """
    id: int
    user_id_hash: str
    tool_name: str
    tool_category: str
    timestamp: datetime
    status: EventStatus
    duration_ms: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[str] = None
