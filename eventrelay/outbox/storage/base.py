"""
Outbox Storage - Base classes and interface.

Provides an abstract interface for storing outbox events and their
delivery history.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from eventrelay.events.types import Event
from eventrelay.exceptions import OutboxStorageError

PayloadPredicate = Callable[[Any], bool]

__all__ = ["OutboxStorage", "OutboxStorageError", "PayloadPredicate"]


class OutboxStorage(ABC):
    """
    Abstract storage interface for outbox events.

    Implementations must ensure that:
    - ``save`` is an idempotent upsert: identity fields are written once,
      ``was_quarantined`` is updated when it changed, and only publications
      (and their failures) not stored yet are inserted
    - publications are never rewritten or deleted
    - events come back with publications ordered oldest first

    Usage:
        >>> storage = SQLiteOutboxStorage("./outbox.db")
        >>> await storage.initialize()
        >>>
        >>> await storage.save(event)
        >>> pending = await storage.get_all_unpublished_events(limit=100)
        >>> retry = await storage.get_all_failed_events(limit=100)
    """

    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""

    async def close(self) -> None:
        """Release connections."""

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def save(self, event: Event, connection: Any | None = None) -> None:
        """
        Insert or update an event.

        Args:
            event: The event to persist
            connection: Optional database connection (for transactions)

        Raises:
            OutboxStorageError: If the write fails
        """
        ...

    @abstractmethod
    async def get_all_unpublished_events(self, limit: int | None = None) -> list[Event]:
        """
        Events never published and not quarantined.

        Args:
            limit: Maximum number of events (None for all)

        Returns:
            Events ordered by occurrence, oldest first
        """
        ...

    @abstractmethod
    async def get_all_failed_events(self, limit: int | None = None) -> list[Event]:
        """
        Non-quarantined events whose most recent publication has failures.

        Args:
            limit: Maximum number of events (None for all)

        Returns:
            Events ordered by occurrence, oldest first
        """
        ...

    @abstractmethod
    async def get_last_payload_for_topic_matching(
        self,
        topic: str,
        predicate: PayloadPredicate,
    ) -> Any | None:
        """
        Payload of the most recent event on ``topic`` accepted by ``predicate``.

        Lets callers build cool-down or rate limit rules ("was this
        notification already sent for this siret?") without the storage
        knowing anything about topics or payload shapes.

        Returns:
            The payload, or None when no event matches
        """
        ...

    @abstractmethod
    async def get_by_id(self, event_id: str) -> Event | None:
        """Get an event by its ID."""
        ...

    @abstractmethod
    async def get_quarantined_events(self, limit: int | None = None) -> list[Event]:
        """Events that no longer get delivered automatically, oldest first."""
        ...
