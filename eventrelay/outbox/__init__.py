"""
Transactional outbox: storage backends, relational projection and crawler.

Components:
    - OutboxStorage: Storage interface
    - InMemoryOutboxStorage: For testing
    - SQLiteOutboxStorage: Embedded projection (aiosqlite)
    - PostgreSQLOutboxStorage: Production projection (asyncpg)
    - diff_publications / fold_event_rows: pure projection helpers
    - EventCrawler: periodic delivery driver
"""

from eventrelay.outbox.crawler import EventCrawler
from eventrelay.outbox.projection import (
    StoredEventRow,
    diff_publications,
    event_to_rows,
    fold_event_rows,
)
from eventrelay.outbox.storage import (
    InMemoryOutboxStorage,
    OutboxStorage,
    OutboxStorageError,
    PostgreSQLOutboxStorage,
    SQLiteOutboxStorage,
    create_outbox_storage,
)

__all__ = [
    "EventCrawler",
    "InMemoryOutboxStorage",
    "OutboxStorage",
    "OutboxStorageError",
    "PostgreSQLOutboxStorage",
    "SQLiteOutboxStorage",
    "StoredEventRow",
    "create_outbox_storage",
    "diff_publications",
    "event_to_rows",
    "fold_event_rows",
]
