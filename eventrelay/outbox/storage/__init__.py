"""
Outbox Storage Implementations

Provides storage backends for the transactional outbox.

Available backends:
    - InMemoryOutboxStorage: For testing
    - SQLiteOutboxStorage: Embedded, single process (aiosqlite)
    - PostgreSQLOutboxStorage: Production (asyncpg)
"""

from eventrelay.outbox.storage.base import OutboxStorage, OutboxStorageError
from eventrelay.outbox.storage.factory import create_outbox_storage
from eventrelay.outbox.storage.memory import InMemoryOutboxStorage
from eventrelay.outbox.storage.postgresql import PostgreSQLOutboxStorage
from eventrelay.outbox.storage.sqlite import SQLiteOutboxStorage

__all__ = [
    "InMemoryOutboxStorage",
    "OutboxStorage",
    "OutboxStorageError",
    "PostgreSQLOutboxStorage",
    "SQLiteOutboxStorage",
    "create_outbox_storage",
]
