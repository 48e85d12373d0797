"""
Event records for the transactional outbox.

An event is raised inside a use case, stored unpublished in the outbox and
then delivered to every subscriber of its topic. Each delivery pass appends
a ``Publication`` that lists the subscribers which failed during that pass.

Quick Start:
    >>> from eventrelay.events import Event, Failure, Publication
    >>>
    >>> event = Event(
    ...     id="evt-1",
    ...     topic="ConventionSubmitted",
    ...     payload={"convention_id": "c-42"},
    ...     occurred_at=datetime(2024, 1, 1, tzinfo=UTC),
    ... )
    >>> event.publications.append(
    ...     Publication(datetime(2024, 1, 1, 0, 5, tzinfo=UTC), [Failure("mailer", "timeout")])
    ... )
    >>> event.last_publication.failed_subscription_ids
    frozenset({'mailer'})
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from eventrelay.exceptions import ImmutableFieldError


def as_utc(value: datetime) -> datetime:
    """Normalise a timestamp to timezone-aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO timestamp or return a datetime, always as aware UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)


class QuarantineReason(Enum):
    """Why an event stopped being delivered automatically."""

    TOPIC_QUARANTINED = "topic_quarantined"
    """Topic is configured to never be auto-delivered"""

    TOO_MANY_FAILURES = "too_many_failures"
    """Event kept failing after the allowed number of attempts"""


@dataclass(frozen=True)
class Failure:
    """One subscriber that raised during a publication."""

    subscription_id: str
    error_message: str

    def to_dict(self) -> dict[str, str]:
        return {"subscription_id": self.subscription_id, "error_message": self.error_message}


@dataclass(frozen=True)
class Publication:
    """
    One delivery attempt of an event.

    ``published_at`` identifies the attempt within its event. ``failures``
    holds at most one entry per subscription id and compares as a set.
    """

    published_at: datetime
    failures: frozenset[Failure] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "published_at", as_utc(self.published_at))
        failures = self.failures
        if not isinstance(failures, frozenset):
            failures = frozenset(failures)
        ids = [failure.subscription_id for failure in failures]
        if len(ids) != len(set(ids)):
            msg = f"Publication at {self.published_at.isoformat()} has duplicate subscription failures"
            raise ValueError(msg)
        object.__setattr__(self, "failures", failures)

    @property
    def failed_subscription_ids(self) -> frozenset[str]:
        return frozenset(failure.subscription_id for failure in self.failures)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "published_at": self.published_at.isoformat(),
            "failures": [
                failure.to_dict()
                for failure in sorted(self.failures, key=lambda f: f.subscription_id)
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Publication":
        return cls(
            published_at=parse_datetime(data["published_at"]),
            failures=frozenset(
                Failure(f["subscription_id"], f["error_message"])
                for f in data.get("failures", [])
            ),
        )


_IMMUTABLE_FIELDS = frozenset({"id", "topic", "payload", "occurred_at"})


@dataclass
class Event:
    """
    A business event recorded in the outbox.

    ``id``, ``topic``, ``payload`` and ``occurred_at`` are fixed once the
    event exists. Only the event bus changes an event afterwards, by
    appending publications and by raising ``was_quarantined``.

    Attributes:
        id: Unique identifier, generated once by the event factory
        topic: Name of the business occurrence (e.g. "ConventionSubmitted")
        payload: Opaque JSON-serialisable value, never inspected here
        occurred_at: When the event was created
        was_quarantined: True once automatic delivery has stopped
        publications: Delivery attempts, oldest first
    """

    id: str
    topic: str
    payload: Any
    occurred_at: datetime
    was_quarantined: bool = False
    publications: list[Publication] = field(default_factory=list)

    def __post_init__(self):
        # occurred_at was assigned by the generated __init__ already
        object.__setattr__(self, "occurred_at", as_utc(self.occurred_at))
        self.publications = list(self.publications)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _IMMUTABLE_FIELDS and name in self.__dict__:
            raise ImmutableFieldError(name, self.__dict__.get("id"))
        super().__setattr__(name, value)

    @property
    def last_publication(self) -> Publication | None:
        return get_last_publication(self)

    @property
    def is_unpublished(self) -> bool:
        return not self.publications

    @property
    def has_failed(self) -> bool:
        """True when the most recent attempt still left failing subscribers."""
        last = self.last_publication
        return last is not None and not last.succeeded

    def to_dict(self, include_payload: bool = True) -> dict[str, Any]:
        """Convert event to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "topic": self.topic,
            "occurred_at": self.occurred_at.isoformat(),
            "was_quarantined": self.was_quarantined,
            "publications": [publication.to_dict() for publication in self.publications],
        }
        if include_payload:
            data["payload"] = self.payload
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create event from dictionary."""
        return cls(
            id=data["id"],
            topic=data["topic"],
            payload=data.get("payload"),
            occurred_at=parse_datetime(data["occurred_at"]),
            was_quarantined=data.get("was_quarantined", False),
            publications=[Publication.from_dict(p) for p in data.get("publications", [])],
        )


def get_last_publication(event: Event) -> Publication | None:
    """
    Latest publication of an event by ``published_at``.

    Does not rely on the order of ``event.publications``.
    """
    if not event.publications:
        return None
    return max(event.publications, key=lambda publication: publication.published_at)


def sort_publications(publications: Iterable[Publication]) -> list[Publication]:
    return sorted(publications, key=lambda publication: publication.published_at)
