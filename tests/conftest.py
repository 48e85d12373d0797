"""
Pytest configuration and shared fixtures for eventrelay tests

Every fixture uses the deterministic id and time sources, so tests can
assert exact ids and timestamps.
"""

from datetime import UTC, datetime

import pytest

from eventrelay.bus import EventBus, InMemoryAlertSink, SubscriptionRegistry
from eventrelay.core.logger import reset_logger
from eventrelay.events import EventFactory, FixedClock, SequenceIdGenerator
from eventrelay.outbox.storage import InMemoryOutboxStorage

START = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def standard_logging():
    """Make sure no test leaks a custom logger into the next one."""
    yield
    reset_logger()


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def id_generator():
    return SequenceIdGenerator()


@pytest.fixture
def factory(clock, id_generator):
    return EventFactory(id_generator=id_generator, clock=clock)


@pytest.fixture
def storage():
    return InMemoryOutboxStorage()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def alert_sink():
    return InMemoryAlertSink()


@pytest.fixture
def bus(storage, registry, clock, alert_sink):
    return EventBus(storage, registry, clock=clock, alert_sink=alert_sink)
