"""
SQLite Outbox Storage Backend.

Provides lightweight embedded outbox storage using SQLite.
Ideal for local development, testing, and single-process applications.

Usage:
    >>> from eventrelay.outbox.storage.sqlite import SQLiteOutboxStorage
    >>>
    >>> # File-based storage
    >>> storage = SQLiteOutboxStorage("./data/outbox.db")
    >>>
    >>> # In-memory storage (for testing)
    >>> storage = SQLiteOutboxStorage(":memory:")
"""

import asyncio
from datetime import datetime
from typing import Any

import aiosqlite

from eventrelay.core.logger import get_logger
from eventrelay.core.serialization import deserialize, serialize
from eventrelay.events.types import Event, as_utc
from eventrelay.outbox.projection import StoredEventRow, diff_publications, fold_event_rows
from eventrelay.outbox.storage.base import (
    OutboxStorage,
    OutboxStorageError,
    PayloadPredicate,
)

logger = get_logger(__name__)

OUTBOX_SCHEMA = """
    CREATE TABLE IF NOT EXISTS outbox (
        id              TEXT PRIMARY KEY,
        occurred_at     TEXT NOT NULL,
        was_quarantined INTEGER NOT NULL DEFAULT 0,
        topic           TEXT NOT NULL,
        payload         TEXT
    );

    CREATE TABLE IF NOT EXISTS outbox_publications (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id     TEXT NOT NULL REFERENCES outbox(id),
        published_at TEXT NOT NULL,
        UNIQUE (event_id, published_at)
    );

    CREATE TABLE IF NOT EXISTS outbox_failures (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        publication_id  INTEGER NOT NULL REFERENCES outbox_publications(id),
        subscription_id TEXT NOT NULL,
        error_message   TEXT,
        UNIQUE (publication_id, subscription_id)
    );

    CREATE INDEX IF NOT EXISTS idx_outbox_topic_occurred_at ON outbox(topic, occurred_at);
    CREATE INDEX IF NOT EXISTS idx_outbox_occurred_at ON outbox(occurred_at);
    CREATE INDEX IF NOT EXISTS idx_outbox_failures_publication ON outbox_failures(publication_id);
"""

# {selected} is a SELECT returning the ids of the events to rebuild
_EVENT_ROWS_QUERY = """
    WITH selected AS ({selected})
    SELECT o.id, o.occurred_at, o.was_quarantined, o.topic, o.payload,
           p.published_at, f.subscription_id, f.error_message
    FROM selected s
    JOIN outbox o ON o.id = s.id
    LEFT JOIN outbox_publications p ON p.event_id = o.id
    LEFT JOIN outbox_failures f ON f.publication_id = p.id
    ORDER BY o.occurred_at, o.id, p.published_at
"""

_UNPUBLISHED_IDS = """
    SELECT o.id FROM outbox o
    WHERE o.was_quarantined = 0
      AND NOT EXISTS (SELECT 1 FROM outbox_publications p WHERE p.event_id = o.id)
    ORDER BY o.occurred_at, o.id
    LIMIT ?
"""

_FAILED_IDS = """
    SELECT o.id FROM outbox o
    JOIN outbox_publications p ON p.event_id = o.id
    WHERE o.was_quarantined = 0
      AND p.published_at = (
          SELECT MAX(last.published_at) FROM outbox_publications last
          WHERE last.event_id = o.id
      )
      AND EXISTS (SELECT 1 FROM outbox_failures f WHERE f.publication_id = p.id)
    ORDER BY o.occurred_at, o.id
    LIMIT ?
"""

_QUARANTINED_IDS = """
    SELECT o.id FROM outbox o
    WHERE o.was_quarantined = 1
    ORDER BY o.occurred_at, o.id
    LIMIT ?
"""

_ID_MATCH = "SELECT o.id FROM outbox o WHERE o.id = ?"


def encode_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string, so text order is time order."""
    return as_utc(value).isoformat(timespec="microseconds")


def decode_timestamp(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))


class SQLiteOutboxStorage(OutboxStorage):
    """
    SQLite-based outbox storage.

    Uses a single connection guarded by an asyncio lock, so concurrent
    ``save`` calls never share a transaction and reads never see a save
    that has not committed yet.

    Attributes:
        db_path: Path to SQLite database file (or ":memory:" for in-memory)

    Example:
        >>> async with SQLiteOutboxStorage("./outbox.db") as storage:
        ...     await storage.save(event)
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize SQLite outbox storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize storage (create connection and schema)."""
        await self._get_connection()

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                self._conn = await aiosqlite.connect(self.db_path)
            except aiosqlite.Error as e:
                msg = f"Cannot open SQLite outbox at {self.db_path}"
                raise OutboxStorageError(msg, {"error": str(e)}) from e
            self._conn.row_factory = aiosqlite.Row

        if not self._initialized:
            await self._init_schema()
            self._initialized = True

        return self._conn

    async def _init_schema(self) -> None:
        """Initialize database schema."""
        conn = self._conn
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.executescript(OUTBOX_SCHEMA)
        await conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._initialized = False

    async def save(self, event: Event, connection: Any | None = None) -> None:
        """
        Upsert an event.

        ``connection`` is accepted for interface compatibility; SQLite
        writes always go through the storage's own connection.
        """
        conn = await self._get_connection()

        async with self._lock:
            try:
                await self._upsert(conn, event)
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                msg = f"Failed to save event {event.id}"
                raise OutboxStorageError(msg, {"error": str(e)}) from e
            except BaseException:
                # cancelled or failed mid-way: nothing of this save may reach the next commit
                await conn.rollback()
                raise

    async def _upsert(self, conn: aiosqlite.Connection, event: Event) -> None:
        cursor = await conn.execute(
            "SELECT was_quarantined FROM outbox WHERE id = ?",
            (event.id,),
        )
        row = await cursor.fetchone()

        if row is None:
            await conn.execute(
                """
                INSERT INTO outbox (id, occurred_at, was_quarantined, topic, payload)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    encode_timestamp(event.occurred_at),
                    int(event.was_quarantined),
                    event.topic,
                    serialize(event.payload),
                ),
            )
            stored_dates: list[datetime] = []
        else:
            if bool(row["was_quarantined"]) != event.was_quarantined:
                await conn.execute(
                    "UPDATE outbox SET was_quarantined = ? WHERE id = ?",
                    (int(event.was_quarantined), event.id),
                )
            cursor = await conn.execute(
                "SELECT published_at FROM outbox_publications WHERE event_id = ?",
                (event.id,),
            )
            stored_dates = [decode_timestamp(r["published_at"]) for r in await cursor.fetchall()]

        for publication in diff_publications(stored_dates, event.publications):
            cursor = await conn.execute(
                "INSERT INTO outbox_publications (event_id, published_at) VALUES (?, ?)",
                (event.id, encode_timestamp(publication.published_at)),
            )
            publication_id = cursor.lastrowid
            if publication.failures:
                await conn.executemany(
                    """
                    INSERT INTO outbox_failures (publication_id, subscription_id, error_message)
                    VALUES (?, ?, ?)
                    """,
                    [
                        (publication_id, failure.subscription_id, failure.error_message)
                        for failure in publication.failures
                    ],
                )

    async def get_all_unpublished_events(self, limit: int | None = None) -> list[Event]:
        """Get never published, non-quarantined events."""
        return await self._fetch_events(_UNPUBLISHED_IDS, (_sql_limit(limit),))

    async def get_all_failed_events(self, limit: int | None = None) -> list[Event]:
        """Get non-quarantined events whose last publication failed."""
        return await self._fetch_events(_FAILED_IDS, (_sql_limit(limit),))

    async def get_quarantined_events(self, limit: int | None = None) -> list[Event]:
        """Get quarantined events."""
        return await self._fetch_events(_QUARANTINED_IDS, (_sql_limit(limit),))

    async def get_by_id(self, event_id: str) -> Event | None:
        """Get event by ID."""
        events = await self._fetch_events(_ID_MATCH, (event_id,))
        return events[0] if events else None

    async def get_last_payload_for_topic_matching(
        self,
        topic: str,
        predicate: PayloadPredicate,
    ) -> Any | None:
        """Scan the topic newest first and return the first accepted payload."""
        conn = await self._get_connection()
        async with self._lock:
            try:
                async with conn.execute(
                    "SELECT payload FROM outbox WHERE topic = ? ORDER BY occurred_at DESC, id DESC",
                    (topic,),
                ) as cursor:
                    async for row in cursor:
                        payload = deserialize(row["payload"])
                        if predicate(payload):
                            return payload
            except aiosqlite.Error as e:
                msg = f"Failed to read payloads for topic {topic}"
                raise OutboxStorageError(msg, {"error": str(e)}) from e
        return None

    async def _fetch_events(self, selected: str, params: tuple) -> list[Event]:
        conn = await self._get_connection()
        async with self._lock:
            try:
                cursor = await conn.execute(_EVENT_ROWS_QUERY.format(selected=selected), params)
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                msg = "Failed to read outbox events"
                raise OutboxStorageError(msg, {"error": str(e)}) from e
        return fold_event_rows(self._decode_row(row) for row in rows)

    @staticmethod
    def _decode_row(row: aiosqlite.Row) -> StoredEventRow:
        """Convert database row to StoredEventRow."""
        return StoredEventRow(
            id=row["id"],
            occurred_at=decode_timestamp(row["occurred_at"]),
            was_quarantined=bool(row["was_quarantined"]),
            topic=row["topic"],
            payload=deserialize(row["payload"]),
            published_at=decode_timestamp(row["published_at"]) if row["published_at"] else None,
            subscription_id=row["subscription_id"],
            error_message=row["error_message"],
        )


def _sql_limit(limit: int | None) -> int:
    """SQLite reads a negative LIMIT as no limit."""
    return -1 if limit is None else limit
