"""
Tests for the event bus: delivery, retries, quarantine and alerting.
"""

import logging
from datetime import UTC, datetime, timedelta

import pytest

from eventrelay.bus import EventBus, InMemoryAlertSink, SubscriptionRegistry
from eventrelay.events import Failure, Publication, QuarantineReason
from eventrelay.exceptions import OutboxStorageError

T0 = datetime(2024, 1, 1, tzinfo=UTC)


class Recorder:
    """Subscriber callback that records calls and can be told to fail."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[str] = []
        self.error = error

    async def __call__(self, event):
        self.calls.append(event.id)
        if self.error is not None:
            raise self.error


class TestPublishFirstAttempt:
    """Delivery of a never published event."""

    @pytest.mark.asyncio
    async def test_all_subscribers_succeed(self, bus, factory, storage, clock):
        first, second = Recorder(), Recorder()
        bus.subscribe("ConventionSubmitted", "notify-agency", first)
        bus.subscribe("ConventionSubmitted", "notify-beneficiary", second)
        event = factory.create_new_event("ConventionSubmitted", {"id": "c-1"})
        await storage.save(event)
        clock.set_next_date(T0 + timedelta(minutes=1))

        await bus.publish(event)

        assert first.calls == second.calls == [event.id]
        stored = await storage.get_by_id(event.id)
        assert stored.publications == [Publication(T0 + timedelta(minutes=1))]
        assert stored.was_quarantined is False
        assert await storage.get_all_unpublished_events() == []
        assert await storage.get_all_failed_events() == []

    @pytest.mark.asyncio
    async def test_one_subscriber_fails(self, bus, factory, storage):
        ok = Recorder()
        ko = Recorder(RuntimeError("SMTP timeout"))
        bus.subscribe("ConventionSubmitted", "notify-agency", ok)
        bus.subscribe("ConventionSubmitted", "notify-beneficiary", ko)
        event = factory.create_new_event("ConventionSubmitted", {"id": "c-1"})

        result = await bus.publish(event)

        assert result is event
        [publication] = event.publications
        assert publication.failures == frozenset({Failure("notify-beneficiary", "SMTP timeout")})
        failed = await storage.get_all_failed_events()
        assert [e.id for e in failed] == [event.id]

    @pytest.mark.asyncio
    async def test_no_subscribers_still_records_publication(self, bus, factory, storage):
        event = factory.create_new_event("NobodyListens", {})

        await bus.publish(event)

        stored = await storage.get_by_id(event.id)
        assert len(stored.publications) == 1
        assert stored.publications[0].succeeded

    @pytest.mark.asyncio
    async def test_sync_callback(self, bus, factory):
        calls = []
        bus.subscribe("ConventionSubmitted", "sync", lambda event: calls.append(event.id))
        event = factory.create_new_event("ConventionSubmitted", {})

        await bus.publish(event)

        assert calls == [event.id]
        assert event.last_publication.succeeded

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_class_name(self, bus, factory):
        bus.subscribe("ConventionSubmitted", "broken", Recorder(KeyError()))
        event = factory.create_new_event("ConventionSubmitted", {})

        await bus.publish(event)

        [failure] = event.last_publication.failures
        assert failure.error_message == "KeyError"


class TestRetries:
    """Later attempts only call the subscribers that failed last time."""

    @pytest.mark.asyncio
    async def test_only_failed_subscribers_called_again(self, bus, factory, storage):
        ok = Recorder()
        flaky = Recorder(RuntimeError("down"))
        bus.subscribe("ConventionSubmitted", "ok", ok)
        bus.subscribe("ConventionSubmitted", "flaky", flaky)
        event = factory.create_new_event("ConventionSubmitted", {})

        await bus.publish(event)
        flaky.error = None
        retry = (await storage.get_all_failed_events())[0]
        await bus.publish(retry)

        assert ok.calls == [event.id]
        assert flaky.calls == [event.id, event.id]
        stored = await storage.get_by_id(event.id)
        assert len(stored.publications) == 2
        assert stored.publications[-1].succeeded
        assert await storage.get_all_failed_events() == []

    @pytest.mark.asyncio
    async def test_targets_taken_from_latest_publication_by_date(self, bus, factory):
        a, b = Recorder(), Recorder()
        bus.subscribe("ConventionSubmitted", "a", a)
        bus.subscribe("ConventionSubmitted", "b", b)
        event = factory.create_new_event(
            "ConventionSubmitted",
            {},
            publications=[
                Publication(T0 + timedelta(minutes=2), [Failure("b", "x")]),
                Publication(T0 + timedelta(minutes=1), [Failure("a", "x"), Failure("b", "x")]),
            ],
        )

        await bus.publish(event)

        assert a.calls == []
        assert b.calls == [event.id]

    @pytest.mark.asyncio
    async def test_unregistered_target_recorded_as_failure(self, bus, factory, caplog):
        event = factory.create_new_event(
            "ConventionSubmitted",
            {},
            publications=[Publication(T0, [Failure("removed-subscriber", "x")])],
        )

        with caplog.at_level(logging.WARNING, logger="eventrelay"):
            await bus.publish(event)

        [failure] = event.last_publication.failures
        assert failure.subscription_id == "removed-subscriber"
        assert "No subscription registered" in failure.error_message
        assert "removed-subscriber" in caplog.text

    @pytest.mark.asyncio
    async def test_publication_dates_stay_unique(self, bus, factory, clock, storage):
        bus.subscribe("ConventionSubmitted", "ko", Recorder(RuntimeError("x")))
        event = factory.create_new_event("ConventionSubmitted", {})

        # the fixed clock returns the same date on every call
        await bus.publish(event)
        await bus.publish(event)

        first, second = event.publications
        assert second.published_at == first.published_at + timedelta(microseconds=1)
        assert len((await storage.get_by_id(event.id)).publications) == 2

    @pytest.mark.asyncio
    async def test_naive_clock_taken_as_utc(self, storage, registry, factory):
        ticks = iter(range(1, 10))
        bus = EventBus(storage, registry, clock=lambda: datetime(2024, 1, 1, 0, 0, next(ticks)))
        failing = Recorder(RuntimeError("x"))
        bus.subscribe("ConventionSubmitted", "ko", failing)
        event = factory.create_new_event("ConventionSubmitted", {})

        await bus.publish(event)
        await bus.publish(event)

        assert [p.published_at for p in event.publications] == [
            datetime(2024, 1, 1, 0, 0, 1, tzinfo=UTC),
            datetime(2024, 1, 1, 0, 0, 2, tzinfo=UTC),
        ]
        assert len(failing.calls) == 2
        assert len((await storage.get_by_id(event.id)).publications) == 2


class TestQuarantine:
    """Events failing after the allowed number of attempts are quarantined."""

    @pytest.fixture
    def failing_bus(self, bus):
        bus.subscribe("ConventionSubmitted", "ko", Recorder(RuntimeError("still down")))
        return bus

    @pytest.mark.asyncio
    async def test_not_quarantined_on_third_failure(self, failing_bus, factory, alert_sink):
        event = factory.create_new_event("ConventionSubmitted", {})

        for _ in range(3):
            await failing_bus.publish(event)

        assert event.was_quarantined is False
        assert alert_sink.alerts == []

    @pytest.mark.asyncio
    async def test_quarantined_on_fourth_failure(self, failing_bus, factory, storage, alert_sink):
        event = factory.create_new_event("ConventionSubmitted", {})

        for _ in range(4):
            await failing_bus.publish(event)

        assert event.was_quarantined is True
        stored = await storage.get_by_id(event.id)
        assert stored.was_quarantined is True
        assert len(stored.publications) == 4
        assert await storage.get_all_failed_events() == []

        [alert] = alert_sink.alerts
        assert alert.event_id == event.id
        assert alert.reason is QuarantineReason.TOO_MANY_FAILURES
        assert alert.attempts == 4
        assert alert.last_publication == event.last_publication

    @pytest.mark.asyncio
    async def test_success_on_fourth_attempt_not_quarantined(self, bus, factory):
        subscriber = Recorder(RuntimeError("down"))
        bus.subscribe("ConventionSubmitted", "flaky", subscriber)
        event = factory.create_new_event("ConventionSubmitted", {})

        for _ in range(3):
            await bus.publish(event)
        subscriber.error = None
        await bus.publish(event)

        assert event.was_quarantined is False
        assert event.last_publication.succeeded

    @pytest.mark.asyncio
    async def test_custom_threshold(self, storage, registry, clock, factory, alert_sink):
        bus = EventBus(storage, registry, clock=clock, alert_sink=alert_sink, quarantine_threshold=0)
        bus.subscribe("ConventionSubmitted", "ko", Recorder(RuntimeError("x")))
        event = factory.create_new_event("ConventionSubmitted", {})

        await bus.publish(event)

        assert event.was_quarantined is True
        assert len(alert_sink.alerts) == 1

    @pytest.mark.asyncio
    async def test_alert_sink_failure_does_not_block_save(self, failing_bus, factory, storage, caplog):
        class BrokenSink:
            async def notify(self, alert):
                raise ConnectionError("chat webhook down")

        failing_bus.alert_sink = BrokenSink()
        event = factory.create_new_event("ConventionSubmitted", {})

        with caplog.at_level(logging.ERROR, logger="eventrelay"):
            for _ in range(4):
                await failing_bus.publish(event)

        assert (await storage.get_by_id(event.id)).was_quarantined is True
        assert "Alert sink failed" in caplog.text

    @pytest.mark.asyncio
    async def test_alert_to_dict_has_no_payload(self, failing_bus, factory, alert_sink):
        event = factory.create_new_event("ConventionSubmitted", {"secret": "x"})
        for _ in range(4):
            await failing_bus.publish(event)

        data = alert_sink.alerts[0].to_dict()

        assert data["reason"] == "too_many_failures"
        assert "payload" not in data
        assert data["last_publication"]["failures"][0]["subscription_id"] == "ko"


class TestStorageErrors:
    """Storage errors are not swallowed by the bus."""

    @pytest.mark.asyncio
    async def test_save_error_propagates(self, registry, clock, factory):
        class FailingStorage:
            async def save(self, event, connection=None):
                raise OutboxStorageError("database unavailable")

        bus = EventBus(FailingStorage(), registry, clock=clock, alert_sink=InMemoryAlertSink())
        event = factory.create_new_event("ConventionSubmitted", {})

        with pytest.raises(OutboxStorageError):
            await bus.publish(event)


class TestSubscriptionRegistry:
    """Tests for SubscriptionRegistry."""

    def test_registration_order(self):
        registry = SubscriptionRegistry()
        registry.subscribe("T", "b", Recorder())
        registry.subscribe("T", "a", Recorder())

        assert registry.subscription_ids("T") == ["b", "a"]
        assert registry.subscription_ids("Unknown") == []
        assert ("T", "a") in registry
        assert len(registry) == 2

    def test_resubscribe_replaces_and_warns(self, caplog):
        registry = SubscriptionRegistry()
        old, new = Recorder(), Recorder()
        registry.subscribe("T", "a", old)

        with caplog.at_level(logging.WARNING, logger="eventrelay"):
            registry.subscribe("T", "a", new)

        assert registry.get_callback("T", "a") is new
        assert registry.subscription_ids("T") == ["a"]
        assert "already registered" in caplog.text

    def test_not_callable(self):
        with pytest.raises(TypeError):
            SubscriptionRegistry().subscribe("T", "a", "not-a-function")

    def test_unsubscribe(self):
        registry = SubscriptionRegistry()
        registry.subscribe("T", "a", Recorder())

        assert registry.unsubscribe("T", "a") is True
        assert registry.unsubscribe("T", "a") is False
        assert registry.topics() == []
