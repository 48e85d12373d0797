"""
Id and time sources injected into the event factory and the event bus.

Production code uses ``UuidGenerator`` and ``SystemClock``. Tests use the
deterministic doubles so that ids and timestamps can be asserted exactly.
"""

import uuid
from collections import deque
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

from eventrelay.events.types import as_utc


@runtime_checkable
class IdGenerator(Protocol):
    def __call__(self) -> str: ...


@runtime_checkable
class Clock(Protocol):
    def __call__(self) -> datetime: ...


class UuidGenerator:
    """Random uuid4 strings."""

    def __call__(self) -> str:
        return str(uuid.uuid4())


class SequenceIdGenerator:
    """
    Deterministic id source for tests.

    Ids queued with ``set_next_id``/``set_next_ids`` are handed out first,
    then ``<prefix>-<n>`` is used.
    """

    def __init__(self, prefix: str = "event"):
        self.prefix = prefix
        self._queued: deque[str] = deque()
        self._counter = 0

    def set_next_id(self, next_id: str) -> None:
        self._queued.append(next_id)

    def set_next_ids(self, next_ids: Iterable[str]) -> None:
        self._queued.extend(next_ids)

    def __call__(self) -> str:
        if self._queued:
            return self._queued.popleft()
        self._counter += 1
        return f"{self.prefix}-{self._counter}"


class SystemClock:
    """Current UTC time."""

    def __call__(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """
    Controllable clock for tests.

    Returns the queued dates in order, then keeps returning the current one.
    ``advance`` moves the current date forward.
    """

    def __init__(self, start: datetime | None = None):
        self._now = as_utc(start) if start else datetime(2024, 1, 1, tzinfo=UTC)
        self._queued: deque[datetime] = deque()

    def set_next_date(self, date: datetime) -> None:
        self._queued.append(as_utc(date))

    def set_next_dates(self, dates: Iterable[datetime]) -> None:
        for date in dates:
            self.set_next_date(date)

    def advance(self, delta: timedelta = timedelta(seconds=1)) -> datetime:
        self._now = self._now + delta
        return self._now

    def __call__(self) -> datetime:
        if self._queued:
            self._now = self._queued.popleft()
        return self._now
