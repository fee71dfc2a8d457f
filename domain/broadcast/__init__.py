"""Broadcast domain: events, frames and the bounded history buffer."""
from .event import Event, Frame, MonotonicClock, validate_publish
from .history import HistoryBuffer

__all__ = [
    "Event",
    "Frame",
    "MonotonicClock",
    "validate_publish",
    "HistoryBuffer",
]
