"""Runner event model, publisher and recording codec."""

from __future__ import annotations

from bddportal.events.codec import (
    EventDecodeError,
    JsonLinesRecorder,
    event_from_dict,
    event_to_dict,
    read_events,
)
from bddportal.events.publisher import EventPublisher

__all__ = [
    "EventDecodeError",
    "EventPublisher",
    "JsonLinesRecorder",
    "event_from_dict",
    "event_to_dict",
    "read_events",
]
