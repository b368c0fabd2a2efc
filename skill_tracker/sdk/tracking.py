"""
Skill execution tracking.

Times a skill, records its outcome as a usage event and hands the event
to a sink. Tracking is purely observational: the wrapped skill's return
value and exceptions reach the caller exactly as if it ran untracked.
"""

import asyncio
import functools
import inspect
import json
import logging
import time
from collections.abc import Mapping, Sized
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from skill_tracker.config.loader import TrackerConfig, default_config
from skill_tracker.core.ingest import DEFAULT_CATEGORY
from skill_tracker.sdk.sinks import (
    BackgroundSink,
    EventSink,
    HttpEventSink,
    LocalEventSink,
    SubmitResult,
    deliver,
)
from skill_tracker.storage.models import EventStatus

logger = logging.getLogger(__name__)

CountExtractor = Callable[[Any], Optional[int]]


class ExecutionState(Enum):
    """Lifecycle of one tracked invocation."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class TrackingContext:
    """Timing and outcome of a single invocation.

    Moves NOT_STARTED -> RUNNING -> SUCCESS | ERROR exactly once and
    produces the event payload on completion.
    """

    def __init__(
        self,
        tool_name: str,
        tool_category: str = DEFAULT_CATEGORY,
        clock: Callable[[], float] = time.perf_counter
    ):
        self.tool_name = tool_name
        self.tool_category = tool_category
        self.state = ExecutionState.NOT_STARTED
        self._clock = clock
        self._started_at: Optional[float] = None

    def start(self) -> "TrackingContext":
        if self.state is not ExecutionState.NOT_STARTED:
            raise RuntimeError(f"Tracking context already {self.state.value}")
        self._started_at = self._clock()
        self.state = ExecutionState.RUNNING
        return self

    @property
    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return max(0, int((self._clock() - self._started_at) * 1000))

    def complete(
        self,
        status: EventStatus = EventStatus.SUCCESS,
        error: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Finish the invocation and build its event payload.

        Args:
            status: Outcome to record
            error: The exception raised by the skill, if any
            metadata: Free-form details, serialised to a JSON string

        Returns:
            Event payload in the ``/api/track`` wire shape
        """
        if self.state is not ExecutionState.RUNNING:
            raise RuntimeError(f"Cannot complete a tracking context that is {self.state.value}")

        failed = error is not None or status is EventStatus.ERROR
        if error is not None:
            status = EventStatus.ERROR
        self.state = ExecutionState.ERROR if failed else ExecutionState.SUCCESS

        return {
            "tool_name": self.tool_name,
            "tool_category": self.tool_category,
            "duration_ms": self.elapsed_ms,
            "status": status.value,
            "error_type": type(error).__name__ if error is not None else None,
            "error_message": str(error) if error is not None else None,
            "metadata": json.dumps(metadata, default=str) if metadata is not None else None,
        }


def default_count_extractor(result: Any) -> Optional[int]:
    """Best-effort item count: a numeric ``count`` or the length of ``pages``."""
    if isinstance(result, Mapping):
        count = result.get("count")
        pages = result.get("pages")
    else:
        count = getattr(result, "count", None)
        pages = getattr(result, "pages", None)

    if isinstance(count, int) and not isinstance(count, bool):
        return count
    if isinstance(pages, Sized) and not isinstance(pages, (str, bytes)):
        return len(pages)
    return None


def _param_keys(params: Any) -> list:
    if isinstance(params, Mapping):
        return [str(key) for key in params.keys()]
    return []


class SkillTracker:
    """Wraps skills so every invocation emits one usage event.

    Submission failures of any kind are logged and dropped. The caller
    of a tracked skill sees the skill's own result or exception, never
    anything from tracking.
    """

    def __init__(
        self,
        sink: EventSink,
        tool_category: str = DEFAULT_CATEGORY,
        count_extractor: Optional[CountExtractor] = default_count_extractor,
        submit_timeout: Optional[float] = None
    ):
        """Initialize the tracker.

        Args:
            sink: Where events are sent
            tool_category: Category stamped on every event
            count_extractor: Strategy that pulls an item count out of a
                skill result; None disables result counts
            submit_timeout: Upper bound in seconds on awaiting a
                submission from ``atrack``
        """
        self.sink = sink
        self.tool_category = tool_category
        self.count_extractor = count_extractor
        self.submit_timeout = submit_timeout

    @classmethod
    def from_config(cls, config: TrackerConfig, **kwargs: Any) -> "SkillTracker":
        """Build a tracker whose sink follows the tracking config.

        Events go over HTTP when ``api_base_url`` is set, otherwise into
        the local database.
        """
        tracking = config.tracking
        if tracking.api_base_url:
            sink: EventSink = HttpEventSink(
                tracking.api_base_url,
                api_key=tracking.api_key,
                timeout=tracking.timeout_seconds
            )
        else:
            sink = LocalEventSink(
                db_path=config.database.path,
                default_category=tracking.default_category
            )
        if tracking.background:
            sink = BackgroundSink(sink)

        kwargs.setdefault("submit_timeout", tracking.timeout_seconds)
        return cls(sink, tool_category=tracking.default_category, **kwargs)

    def track(
        self,
        name: str,
        fn: Callable[[Any, Any], Any],
        params: Any = None,
        context: Any = None
    ) -> Any:
        """Run ``fn(params, context)`` and record the outcome.

        When ``fn`` returns an awaitable, the event is recorded once that
        awaitable settles and a coroutine resolving to its result is
        returned instead.

        Returns:
            Whatever ``fn`` returned

        Raises:
            Whatever ``fn`` raised, unchanged
        """
        tracking = TrackingContext(name, self.tool_category).start()
        try:
            result = fn(params, context)
        except Exception as exc:
            self._submit(self._failure_payload(tracking, exc))
            raise

        if inspect.isawaitable(result):
            return self._settle(tracking, result, params)

        self._submit(self._success_payload(tracking, result, params))
        return result

    async def atrack(
        self,
        name: str,
        fn: Callable[[Any, Any], Awaitable[Any]],
        params: Any = None,
        context: Any = None
    ) -> Any:
        """Async counterpart of ``track`` for coroutine skills.

        Submission runs on a worker thread and is abandoned after
        ``submit_timeout`` seconds.
        """
        tracking = TrackingContext(name, self.tool_category).start()
        try:
            pending = fn(params, context)
        except Exception as exc:
            await self._asubmit(self._failure_payload(tracking, exc), name)
            raise

        return await self._settle(tracking, pending, params)

    async def _settle(self, tracking: TrackingContext, pending: Awaitable[Any], params: Any) -> Any:
        name = tracking.tool_name
        try:
            result = await pending
        except Exception as exc:
            await self._asubmit(self._failure_payload(tracking, exc), name)
            raise

        await self._asubmit(self._success_payload(tracking, result, params), name)
        return result

    def skill(self, name: str) -> Callable:
        """Decorator form of ``track``/``atrack``.

        Usage:
            @tracker.skill("query_data")
            def query_data(params, context): ...
        """
        def decorator(fn: Callable) -> Callable:
            if inspect.iscoroutinefunction(fn):
                @functools.wraps(fn)
                async def async_wrapper(params: Any = None, context: Any = None) -> Any:
                    return await self.atrack(name, fn, params, context)
                return async_wrapper

            @functools.wraps(fn)
            def wrapper(params: Any = None, context: Any = None) -> Any:
                return self.track(name, fn, params, context)
            return wrapper
        return decorator

    def _success_payload(self, tracking: TrackingContext, result: Any, params: Any) -> Optional[Dict[str, Any]]:
        try:
            metadata: Dict[str, Any] = {"params_keys": _param_keys(params)}
            count = self._extract_count(result, tracking.tool_name)
            if count is not None:
                metadata["result_count"] = count
            return tracking.complete(EventStatus.SUCCESS, metadata=metadata)
        except Exception as e:
            logger.warning(f"Could not build usage event for {tracking.tool_name}: {e}")
            return None

    def _extract_count(self, result: Any, name: str) -> Optional[int]:
        if self.count_extractor is None:
            return None
        try:
            return self.count_extractor(result)
        except Exception as e:
            logger.warning(f"Count extractor failed for {name}: {e}")
            return None

    def _failure_payload(self, tracking: TrackingContext, exc: Exception) -> Optional[Dict[str, Any]]:
        try:
            return tracking.complete(EventStatus.ERROR, error=exc)
        except Exception as e:
            logger.warning(f"Could not build usage event for {tracking.tool_name}: {e}")
            return None

    def _submit(self, payload: Optional[Dict[str, Any]]) -> SubmitResult:
        if payload is None:
            return SubmitResult.failed("event could not be built")
        return deliver(self.sink, payload)

    async def _asubmit(self, payload: Optional[Dict[str, Any]], name: str) -> SubmitResult:
        if payload is None:
            return SubmitResult.failed("event could not be built")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(deliver, self.sink, payload),
                timeout=self.submit_timeout
            )
        except Exception as e:
            logger.warning(f"Usage event submission for {name} did not complete: {e!r}")
            return SubmitResult.failed(repr(e))


# Global tracker instance
_default_tracker: Optional[SkillTracker] = None


def get_tracker(config: Optional[TrackerConfig] = None) -> SkillTracker:
    """Get the shared tracker, building it from config on first use.

    Args:
        config: Configuration used only when the tracker is first built

    Returns:
        An instance of SkillTracker
    """
    global _default_tracker
    if _default_tracker is None:
        _default_tracker = SkillTracker.from_config(config or default_config())
    return _default_tracker


def track_skill_execution(
    skill_name: str,
    skill_fn: Callable[[Any, Any], Any],
    params: Any = None,
    context: Any = None,
    tracker: Optional[SkillTracker] = None
) -> Any:
    """Run a skill under tracking.

    Coroutine functions, and callables returning an awaitable, are
    supported: the call then returns a coroutine to await. When no
    tracker is given and ``context`` is a mapping with an
    ``api_base_url`` (and optionally ``api_key``), events are posted
    there; otherwise, or when those settings are unusable, the shared
    tracker is used.

    Args:
        skill_name: Name recorded as the event's tool_name
        skill_fn: The skill, called as ``skill_fn(params, context)``
        params: Skill parameters; only their names are recorded
        context: Passed through to the skill untouched
        tracker: Tracker to use instead of the default

    Returns:
        The skill's result (or a coroutine resolving to it)
    """
    if tracker is None:
        tracker = _tracker_for_context(context)

    if inspect.iscoroutinefunction(skill_fn):
        return tracker.atrack(skill_name, skill_fn, params, context)
    return tracker.track(skill_name, skill_fn, params, context)


def _tracker_for_context(context: Any) -> SkillTracker:
    if isinstance(context, Mapping) and context.get("api_base_url"):
        try:
            return _context_tracker(
                context["api_base_url"],
                context.get("api_key"),
                context.get("tool_category") or DEFAULT_CATEGORY
            )
        except Exception as e:
            logger.warning(f"Ignoring tracking settings in skill context: {e}")
    return get_tracker()


@functools.lru_cache(maxsize=32)
def _context_tracker(api_base_url: str, api_key: Optional[str], tool_category: str) -> SkillTracker:
    """One tracker, and so one HTTP session, per endpoint and key."""
    sink = HttpEventSink(api_base_url, api_key=api_key)
    return SkillTracker(sink, tool_category=tool_category)
