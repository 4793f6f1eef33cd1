"""Core functionality for session tracking."""

from worktime.core.clock import PreconditionViolation, SessionClock
from worktime.core.context import TrackingContext
from worktime.core.models import ClockState, SessionEvent, TrackingSession, format_elapsed

__all__ = [
    "ClockState",
    "PreconditionViolation",
    "SessionClock",
    "SessionEvent",
    "TrackingContext",
    "TrackingSession",
    "format_elapsed",
]
