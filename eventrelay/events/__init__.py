"""
Event records, the event factory and its id/time sources.
"""

from eventrelay.events.clock import (
    Clock,
    FixedClock,
    IdGenerator,
    SequenceIdGenerator,
    SystemClock,
    UuidGenerator,
)
from eventrelay.events.factory import EventFactory
from eventrelay.events.types import (
    Event,
    Failure,
    Publication,
    QuarantineReason,
    get_last_publication,
)

__all__ = [
    "Clock",
    "Event",
    "EventFactory",
    "Failure",
    "FixedClock",
    "IdGenerator",
    "Publication",
    "QuarantineReason",
    "SequenceIdGenerator",
    "SystemClock",
    "UuidGenerator",
    "get_last_publication",
]
