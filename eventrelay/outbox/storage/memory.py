"""
In-Memory Outbox Storage - For testing and development.
"""

import copy
from typing import Any

from eventrelay.events.types import Event, sort_publications
from eventrelay.outbox.projection import diff_publications
from eventrelay.outbox.storage.base import OutboxStorage, PayloadPredicate


class InMemoryOutboxStorage(OutboxStorage):
    """
    In-memory implementation of outbox storage for testing.

    Keeps deep copies, so changing an event after ``save`` does not change
    what is stored, and merges publications the same way the relational
    backends do.

    Usage:
        >>> storage = InMemoryOutboxStorage()
        >>> await storage.save(event)
        >>>
        >>> unpublished = await storage.get_all_unpublished_events()
    """

    def __init__(self):
        self._events: dict[str, Event] = {}

    async def save(self, event: Event, connection: Any | None = None) -> None:
        """Upsert event into in-memory storage."""
        stored = self._events.get(event.id)
        if stored is None:
            stored = copy.deepcopy(event)
            stored.publications = diff_publications([], stored.publications)
            self._events[event.id] = stored
            return

        if stored.was_quarantined != event.was_quarantined:
            stored.was_quarantined = event.was_quarantined

        new_publications = diff_publications(stored.publications, event.publications)
        if new_publications:
            stored.publications = sort_publications(
                stored.publications + copy.deepcopy(new_publications)
            )

    async def get_all_unpublished_events(self, limit: int | None = None) -> list[Event]:
        """Get never published, non-quarantined events."""
        return self._select(
            lambda e: not e.was_quarantined and not e.publications,
            limit,
        )

    async def get_all_failed_events(self, limit: int | None = None) -> list[Event]:
        """Get non-quarantined events whose last publication failed."""
        return self._select(lambda e: not e.was_quarantined and e.has_failed, limit)

    async def get_quarantined_events(self, limit: int | None = None) -> list[Event]:
        """Get quarantined events."""
        return self._select(lambda e: e.was_quarantined, limit)

    async def get_last_payload_for_topic_matching(
        self,
        topic: str,
        predicate: PayloadPredicate,
    ) -> Any | None:
        """Get the payload of the latest matching event on a topic."""
        candidates = sorted(
            (e for e in self._events.values() if e.topic == topic),
            key=lambda e: (e.occurred_at, e.id),
            reverse=True,
        )
        for event in candidates:
            if predicate(event.payload):
                return copy.deepcopy(event.payload)
        return None

    async def get_by_id(self, event_id: str) -> Event | None:
        """Get event by ID."""
        event = self._events.get(event_id)
        return copy.deepcopy(event) if event else None

    def _select(self, keep, limit: int | None) -> list[Event]:
        selected = sorted(
            (e for e in self._events.values() if keep(e)),
            key=lambda e: (e.occurred_at, e.id),
        )
        if limit is not None:
            selected = selected[:limit]
        return [copy.deepcopy(e) for e in selected]

    @property
    def events(self) -> list[Event]:
        """All stored events, oldest first (for testing)."""
        return self._select(lambda e: True, None)

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()
