"""
Tests for the PostgreSQL outbox storage with a mocked asyncpg pool.

These tests check the statements the storage issues and how it folds the
returned records, without requiring a database.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from eventrelay.events import Event, Failure, Publication
from eventrelay.exceptions import OutboxStorageError
from eventrelay.outbox.storage.postgresql import OUTBOX_SCHEMA, PostgreSQLOutboxStorage

T0 = datetime(2024, 1, 1, tzinfo=UTC)
T1 = T0 + timedelta(minutes=1)


class AsyncContextManagerMock:
    """Helper class to create async context manager mocks."""

    def __init__(self, return_value=None):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


class AsyncIteratorMock:
    """Stands in for an asyncpg cursor used with ``async for``."""

    def __init__(self, items):
        self._items = list(items)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._items:
            raise StopAsyncIteration
        return self._items.pop(0)


def make_event(**overrides) -> Event:
    data = {
        "id": "evt-1",
        "topic": "ConventionSubmitted",
        "payload": {"convention_id": "c-42"},
        "occurred_at": T0,
    }
    data.update(overrides)
    return Event(**data)


def make_record(**columns) -> dict:
    record = {
        "id": "evt-1",
        "occurred_at": T0,
        "was_quarantined": False,
        "topic": "ConventionSubmitted",
        "payload": '{"convention_id": "c-42"}',
        "published_at": None,
        "subscription_id": None,
        "error_message": None,
    }
    record.update(columns)
    return record


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.executemany = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(side_effect=[101, 102, 103])
    # transaction() returns an async context manager (NOT a coroutine)
    conn.transaction.return_value = AsyncContextManagerMock(None)
    return conn


@pytest.fixture
def storage(conn):
    pool = MagicMock()
    pool.acquire.return_value = AsyncContextManagerMock(conn)
    pool.close = AsyncMock()

    storage = PostgreSQLOutboxStorage("postgresql://localhost/test")
    storage._pool = pool
    return storage


class TestPostgreSQLOutboxStorageLifecycle:
    """Pool creation and the uninitialized state."""

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        storage = PostgreSQLOutboxStorage("postgresql://localhost/test")

        with pytest.raises(OutboxStorageError, match="not initialized"):
            await storage.get_all_unpublished_events()

    @pytest.mark.asyncio
    async def test_context_manager_creates_schema_and_closes(self, conn):
        pool = MagicMock()
        pool.acquire.return_value = AsyncContextManagerMock(conn)
        pool.close = AsyncMock()

        with patch("asyncpg.create_pool", AsyncMock(return_value=pool)) as create_pool:
            async with PostgreSQLOutboxStorage(
                "postgresql://localhost/test", pool_min_size=1, pool_max_size=2
            ) as storage:
                assert storage._pool is pool

        create_pool.assert_awaited_once_with("postgresql://localhost/test", min_size=1, max_size=2)
        conn.execute.assert_awaited_once_with(OUTBOX_SCHEMA)
        pool.close.assert_awaited_once()
        assert storage._pool is None


class TestPostgreSQLOutboxStorageSave:
    """Tests for the upsert."""

    @pytest.mark.asyncio
    async def test_new_event_with_publications(self, storage, conn):
        event = make_event(
            publications=[
                Publication(T1),
                Publication(T0, [Failure("mailer", "timeout")]),
            ]
        )

        await storage.save(event)

        insert_args = conn.execute.await_args.args
        assert "INSERT INTO outbox" in insert_args[0]
        assert insert_args[1:4] == ("evt-1", T0, False)
        assert insert_args[5] == '{"convention_id": "c-42"}'

        # oldest publication first
        published = [call.args[2] for call in conn.fetchval.await_args_list]
        assert published == [T0, T1]

        conn.executemany.assert_awaited_once()
        assert conn.executemany.await_args.args[1] == [(101, "mailer", "timeout")]

    @pytest.mark.asyncio
    async def test_existing_event_only_new_publications(self, storage, conn):
        conn.fetchrow.return_value = {"was_quarantined": False}
        conn.fetch.return_value = [{"published_at": T0}]
        event = make_event(
            was_quarantined=True,
            publications=[Publication(T0, [Failure("mailer", "x")]), Publication(T1)],
        )

        await storage.save(event)

        update_args = conn.execute.await_args.args
        assert "UPDATE outbox SET was_quarantined" in update_args[0]
        assert update_args[1:] == ("evt-1", True)
        assert conn.fetchval.await_count == 1
        assert conn.fetchval.await_args.args[2] == T1
        conn.executemany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publication_already_inserted_concurrently(self, storage, conn):
        conn.fetchval = AsyncMock(return_value=None)
        event = make_event(publications=[Publication(T0, [Failure("mailer", "x")])])

        await storage.save(event)

        conn.executemany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uses_caller_connection(self, conn):
        storage = PostgreSQLOutboxStorage("postgresql://localhost/test")

        await storage.save(make_event(), connection=conn)

        conn.transaction.assert_called_once()
        assert "INSERT INTO outbox" in conn.execute.await_args.args[0]

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, storage, conn):
        conn.fetchrow.side_effect = asyncpg.PostgresError("connection lost")

        with pytest.raises(OutboxStorageError, match="Failed to save event evt-1"):
            await storage.save(make_event())


class TestPostgreSQLOutboxStorageReads:
    """Tests for the crawling queries and lookups."""

    @pytest.mark.asyncio
    async def test_records_folded_into_events(self, storage, conn):
        conn.fetch.return_value = [
            make_record(published_at=T0, subscription_id="mailer", error_message="timeout"),
            make_record(published_at=T0, subscription_id="crm", error_message="500"),
            make_record(id="evt-2", occurred_at=T1, payload='{"n": 2}'),
        ]

        events = await storage.get_all_failed_events(limit=10)

        assert [e.id for e in events] == ["evt-1", "evt-2"]
        assert events[0].publications == [
            Publication(T0, [Failure("mailer", "timeout"), Failure("crm", "500")])
        ]
        assert events[1].payload == {"n": 2}
        assert conn.fetch.await_args.args[1] == 10

    @pytest.mark.asyncio
    async def test_no_limit_passes_null(self, storage, conn):
        await storage.get_all_unpublished_events()

        query, limit = conn.fetch.await_args.args
        assert "NOT EXISTS" in query
        assert limit is None

    @pytest.mark.asyncio
    async def test_quarantined_query(self, storage, conn):
        await storage.get_quarantined_events(limit=5)

        assert "was_quarantined = TRUE" in conn.fetch.await_args.args[0]

    @pytest.mark.asyncio
    async def test_get_by_id(self, storage, conn):
        conn.fetch.return_value = [make_record(payload={"already": "decoded"})]

        event = await storage.get_by_id("evt-1")

        assert event.payload == {"already": "decoded"}
        assert conn.fetch.await_args.args[1] == "evt-1"

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, storage):
        assert await storage.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_read_error_wrapped(self, storage, conn):
        conn.fetch.side_effect = asyncpg.PostgresError("boom")

        with pytest.raises(OutboxStorageError, match="Failed to read outbox events"):
            await storage.get_all_failed_events()

    @pytest.mark.asyncio
    async def test_last_payload_stops_at_first_match(self, storage, conn):
        conn.cursor.return_value = AsyncIteratorMock(
            [{"payload": '{"siret": "1", "n": 3}'}, {"payload": '{"siret": "1", "n": 1}'}]
        )

        payload = await storage.get_last_payload_for_topic_matching(
            "ConventionSubmitted", lambda p: p["siret"] == "1"
        )

        assert payload == {"siret": "1", "n": 3}
        assert conn.cursor.call_args.args[1] == "ConventionSubmitted"

    @pytest.mark.asyncio
    async def test_last_payload_no_match(self, storage, conn):
        conn.cursor.return_value = AsyncIteratorMock([{"payload": '{"siret": "2"}'}])

        payload = await storage.get_last_payload_for_topic_matching(
            "ConventionSubmitted", lambda p: p["siret"] == "1"
        )

        assert payload is None

    @pytest.mark.asyncio
    async def test_last_payload_error_wrapped(self, storage, conn):
        conn.cursor.side_effect = asyncpg.PostgresError("boom")

        with pytest.raises(OutboxStorageError, match="Failed to read payloads for topic ConventionSubmitted"):
            await storage.get_last_payload_for_topic_matching("ConventionSubmitted", lambda p: True)
