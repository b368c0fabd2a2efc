"""
Event sinks for the execution wrapper.

A sink delivers one event payload (the ``/api/track`` wire shape) to the
store, either over HTTP or in-process. ``deliver`` is the only way the
wrapper talks to a sink: it turns every failure into a ``SubmitResult``
and a log line, so nothing a sink does can reach the wrapped skill's
caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests

from skill_tracker.core.hashing import ANONYMOUS_IDENTIFIER
from skill_tracker.core.ingest import DEFAULT_CATEGORY, ingest_event
from skill_tracker.storage.db import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

TRACK_PATH = "/api/track"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one submission attempt."""
    ok: bool
    error: Optional[str] = None

    @classmethod
    def accepted(cls) -> "SubmitResult":
        return cls(ok=True)

    @classmethod
    def failed(cls, error: str) -> "SubmitResult":
        return cls(ok=False, error=error)


class EventSink(Protocol):
    """Anything that can send an event payload. May raise."""

    def send(self, payload: Dict[str, Any]) -> None:
        ...


def deliver(sink: EventSink, payload: Dict[str, Any]) -> SubmitResult:
    """Send a payload through a sink without ever raising.

    Args:
        sink: Destination for the event
        payload: Event in the wire shape

    Returns:
        SubmitResult describing whether the sink accepted the event
    """
    try:
        sink.send(payload)
    except Exception as e:
        logger.warning(f"Failed to submit usage event for {payload.get('tool_name')}: {e}")
        return SubmitResult.failed(str(e) or type(e).__name__)
    return SubmitResult.accepted()


class HttpEventSink:
    """Posts events to a remote ``/api/track`` endpoint."""

    def __init__(
        self,
        api_base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None
    ):
        """Initialize the HTTP sink.

        Args:
            api_base_url: Base URL of the tracking API (required)
            api_key: Bearer key sent in the Authorization header
            timeout: Request timeout in seconds
            session: Optional requests session to reuse connections

        Raises:
            ValueError: If api_base_url is missing/empty
        """
        if not api_base_url or not api_base_url.strip():
            raise ValueError("api_base_url is required and cannot be empty")

        self.url = api_base_url.rstrip("/") + TRACK_PATH
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, payload: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = self.session.post(
            self.url,
            json=payload,
            headers=headers,
            timeout=self.timeout
        )
        response.raise_for_status()


class LocalEventSink:
    """Writes events straight into a local store through the ingest path."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        identifier: str = ANONYMOUS_IDENTIFIER,
        default_category: str = DEFAULT_CATEGORY
    ):
        self.db_path = db_path
        self.identifier = identifier
        self.default_category = default_category

    def send(self, payload: Dict[str, Any]) -> None:
        ingest_event(
            payload,
            self.identifier,
            db_path=self.db_path,
            default_category=self.default_category
        )


class BackgroundSink:
    """Fire-and-forget wrapper around another sink.

    ``send`` only queues the payload; delivery happens on a worker
    thread and its failures are visible in the log alone. Events still
    queued when the process exits may be lost.
    """

    def __init__(self, inner: EventSink, max_workers: int = 1):
        self.inner = inner
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="skill-tracker"
        )

    def send(self, payload: Dict[str, Any]) -> None:
        self._executor.submit(deliver, self.inner, payload)

    def close(self, wait: bool = True) -> None:
        """Stop accepting events, optionally draining the queue first."""
        self._executor.shutdown(wait=wait)
