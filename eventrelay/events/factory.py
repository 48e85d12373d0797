"""
Event factory - builds new outbox events from injected id and time sources.

Usage:
    >>> factory = EventFactory(
    ...     id_generator=UuidGenerator(),
    ...     clock=SystemClock(),
    ...     quarantined_topics=["ConventionRejected"],
    ... )
    >>> event = factory.create_new_event("ConventionSubmitted", {"id": "c-1"})
    >>> event.was_quarantined
    False
"""

from collections.abc import Iterable
from typing import Any

from eventrelay.core.logger import get_logger
from eventrelay.events.clock import Clock, IdGenerator, SystemClock, UuidGenerator
from eventrelay.events.types import Event, Publication, QuarantineReason

logger = get_logger(__name__)


class EventFactory:
    """
    Creates events for use cases.

    Events on a topic listed in ``quarantined_topics`` are quarantined from
    the start, so the crawler never delivers them automatically. This is
    independent of the bus quarantining events that fail too often.
    """

    def __init__(
        self,
        id_generator: IdGenerator | None = None,
        clock: Clock | None = None,
        quarantined_topics: Iterable[str] = (),
    ):
        self.id_generator = id_generator or UuidGenerator()
        self.clock = clock or SystemClock()
        self.quarantined_topics = frozenset(quarantined_topics)

    def is_topic_quarantined(self, topic: str) -> bool:
        return topic in self.quarantined_topics

    def create_new_event(
        self,
        topic: str,
        payload: Any,
        publications: Iterable[Publication] | None = None,
    ) -> Event:
        """
        Build a new event.

        Args:
            topic: Business occurrence tag
            payload: Opaque serialisable value
            publications: Existing publications (used when importing history)
        """
        event = Event(
            id=self.id_generator(),
            topic=topic,
            payload=payload,
            occurred_at=self.clock(),
            was_quarantined=self.is_topic_quarantined(topic),
            publications=list(publications or []),
        )
        if event.was_quarantined:
            logger.info(
                f"Event {event.id} on topic '{topic}' created quarantined "
                f"({QuarantineReason.TOPIC_QUARANTINED.value})",
                extra={"event_id": event.id, "topic": topic},
            )
        return event

    __call__ = create_new_event
