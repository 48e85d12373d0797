"""
Relational projection helpers shared by the SQL outbox backends.

An event is stored across three tables::

    outbox               (id, occurred_at, was_quarantined, topic, payload)
    outbox_publications  (id, event_id, published_at)
    outbox_failures      (id, publication_id, subscription_id, error_message)

Reads left-join the three tables, so an event comes back as one row per
failure, one row per publication without failures, or a single row with
NULL publication columns when it was never published. ``fold_event_rows``
turns those rows back into events; ``diff_publications`` decides which
publications a save still has to insert. Both are pure and do not know
which database produced or will receive the rows.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from eventrelay.events.types import Event, Failure, Publication, as_utc, sort_publications


@dataclass(frozen=True)
class StoredEventRow:
    """One decoded row of the outbox left join."""

    id: str
    occurred_at: datetime
    was_quarantined: bool
    topic: str
    payload: Any
    published_at: datetime | None = None
    subscription_id: str | None = None
    error_message: str | None = None


def diff_publications(
    stored: Iterable[Publication | datetime],
    incoming: Iterable[Publication],
) -> list[Publication]:
    """
    Publications of ``incoming`` that are not stored yet.

    Publications are identified by ``published_at`` only: a stored
    publication is never rewritten, even if the incoming copy lists
    different failures. ``stored`` may hold publications or bare
    timestamps (what a backend reads back from its attempt table).

    Returns:
        New publications, oldest first, without duplicates
    """
    known = {
        as_utc(item.published_at if isinstance(item, Publication) else item)
        for item in stored
    }
    new: dict[datetime, Publication] = {}
    for publication in incoming:
        if publication.published_at in known or publication.published_at in new:
            continue
        new[publication.published_at] = publication
    return sort_publications(new.values())


def event_to_rows(event: Event) -> list[StoredEventRow]:
    """Flatten an event the way the left join returns it."""
    base = {
        "id": event.id,
        "occurred_at": event.occurred_at,
        "was_quarantined": event.was_quarantined,
        "topic": event.topic,
        "payload": event.payload,
    }
    if not event.publications:
        return [StoredEventRow(**base)]

    rows = []
    for publication in sort_publications(event.publications):
        if not publication.failures:
            rows.append(StoredEventRow(**base, published_at=publication.published_at))
            continue
        for failure in sorted(publication.failures, key=lambda f: f.subscription_id):
            rows.append(
                StoredEventRow(
                    **base,
                    published_at=publication.published_at,
                    subscription_id=failure.subscription_id,
                    error_message=failure.error_message,
                )
            )
    return rows


class _EventAccumulator:
    def __init__(self, row: StoredEventRow):
        self.row = row
        # published_at -> subscription_id -> error_message
        self.publications: dict[datetime, dict[str, str]] = {}

    def add(self, row: StoredEventRow) -> None:
        if row.published_at is None:
            return
        failures = self.publications.setdefault(as_utc(row.published_at), {})
        if row.subscription_id is None:
            return
        # the first row seen for a subscriber wins; the join can repeat it
        failures.setdefault(row.subscription_id, row.error_message or "")

    def build(self) -> Event:
        return Event(
            id=self.row.id,
            topic=self.row.topic,
            payload=self.row.payload,
            occurred_at=self.row.occurred_at,
            was_quarantined=bool(self.row.was_quarantined),
            publications=sort_publications(
                Publication(
                    published_at=published_at,
                    failures=frozenset(
                        Failure(subscription_id, error_message)
                        for subscription_id, error_message in failures.items()
                    ),
                )
                for published_at, failures in self.publications.items()
            ),
        )


def fold_event_rows(rows: Iterable[StoredEventRow]) -> list[Event]:
    """
    Group join rows by event id and rebuild each event.

    - a row without ``published_at`` contributes no publication
    - rows sharing ``published_at`` are merged into one publication
    - a row without ``subscription_id`` contributes no failure
    - repeated (publication, subscriber) rows are collapsed

    Events are returned in the order their first row appears, so the
    query's ORDER BY decides the result order. Publications are always
    sorted oldest first.
    """
    accumulators: dict[str, _EventAccumulator] = {}
    for row in rows:
        accumulator = accumulators.get(row.id)
        if accumulator is None:
            accumulator = accumulators[row.id] = _EventAccumulator(row)
        accumulator.add(row)
    return [accumulator.build() for accumulator in accumulators.values()]
