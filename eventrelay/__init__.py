"""
eventrelay - Transactional outbox and at-least-once event delivery

Use cases record business events in the outbox within their own
transaction. A crawler later delivers every event to the subscribers of
its topic, retrying only the subscribers that failed and quarantining
events that keep failing.

Quick Start:
    >>> from eventrelay import (
    ...     EventBus,
    ...     EventCrawler,
    ...     EventFactory,
    ...     InMemoryOutboxStorage,
    ...     SubscriptionRegistry,
    ... )
    >>>
    >>> storage = InMemoryOutboxStorage()
    >>> factory = EventFactory(quarantined_topics=["ConventionRejected"])
    >>> registry = SubscriptionRegistry()
    >>> registry.subscribe("ConventionSubmitted", "notify-agency", notify_agency)
    >>>
    >>> await storage.save(factory.create_new_event("ConventionSubmitted", {"id": "c-1"}))
    >>>
    >>> crawler = EventCrawler(storage, EventBus(storage, registry))
    >>> await crawler.process_batch()
"""

from eventrelay.bus import (
    AlertSink,
    EventBus,
    InMemoryAlertSink,
    LoggingAlertSink,
    QuarantineAlert,
    SubscriptionRegistry,
)
from eventrelay.core.config import RelayConfig
from eventrelay.events import (
    Event,
    EventFactory,
    Failure,
    FixedClock,
    Publication,
    QuarantineReason,
    SequenceIdGenerator,
    SystemClock,
    UuidGenerator,
    get_last_publication,
)
from eventrelay.exceptions import (
    EventError,
    ImmutableFieldError,
    OutboxStorageError,
    RelayError,
    SerializationError,
)
from eventrelay.outbox import (
    EventCrawler,
    InMemoryOutboxStorage,
    OutboxStorage,
    PostgreSQLOutboxStorage,
    SQLiteOutboxStorage,
    create_outbox_storage,
    diff_publications,
    fold_event_rows,
)

__version__ = "0.1.0"

__all__ = [
    # Events
    "Event",
    "EventFactory",
    "Failure",
    "Publication",
    "QuarantineReason",
    "get_last_publication",
    "FixedClock",
    "SequenceIdGenerator",
    "SystemClock",
    "UuidGenerator",

    # Storage
    "OutboxStorage",
    "InMemoryOutboxStorage",
    "SQLiteOutboxStorage",
    "PostgreSQLOutboxStorage",
    "create_outbox_storage",
    "diff_publications",
    "fold_event_rows",

    # Delivery
    "EventBus",
    "SubscriptionRegistry",
    "EventCrawler",
    "AlertSink",
    "LoggingAlertSink",
    "InMemoryAlertSink",
    "QuarantineAlert",

    # Config
    "RelayConfig",

    # Exceptions
    "RelayError",
    "EventError",
    "ImmutableFieldError",
    "OutboxStorageError",
    "SerializationError",
]
