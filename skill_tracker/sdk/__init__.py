"""
SDK for the skill usage tracker.

Wraps skills so their invocations are timed and recorded.
"""

from .sinks import BackgroundSink, HttpEventSink, LocalEventSink, SubmitResult
from .tracking import SkillTracker, TrackingContext, track_skill_execution

__all__ = [
    "BackgroundSink",
    "HttpEventSink",
    "LocalEventSink",
    "SkillTracker",
    "SubmitResult",
    "TrackingContext",
    "track_skill_execution",
]
