"""
Event Bus - delivers outbox events to their subscribers.

Each call to ``publish`` is one publication attempt:

    1. pick the targets: every subscriber of the topic on the first
       attempt, only the subscribers that failed the latest attempt on
       retries
    2. run the target callbacks concurrently, turning any exception into a
       ``Failure`` for that subscriber
    3. append a ``Publication`` with the collected failures
    4. quarantine the event when it still fails after the allowed number
       of attempts, and alert
    5. save the event, exactly once

Subscribers that already succeeded for an event are never called again
for it. Delivery is at-least-once per subscriber: a crash between a
callback and the save re-runs that callback on the next attempt.

Usage:
    >>> registry = SubscriptionRegistry()
    >>> bus = EventBus(storage, registry)
    >>> bus.subscribe("ConventionSubmitted", "notify-agency", notify_agency)
    >>> await bus.publish(event)
"""

import asyncio
import inspect
import time
from datetime import timedelta

from eventrelay.bus.alerting import AlertSink, LoggingAlertSink, QuarantineAlert
from eventrelay.bus.registry import SubscriptionCallback, SubscriptionRegistry
from eventrelay.core.config import DEFAULT_QUARANTINE_THRESHOLD
from eventrelay.core.logger import get_logger
from eventrelay.events.clock import Clock, SystemClock
from eventrelay.events.types import (
    Event,
    Failure,
    Publication,
    QuarantineReason,
    as_utc,
    get_last_publication,
)
from eventrelay.monitoring import metrics
from eventrelay.outbox.storage.base import OutboxStorage

logger = get_logger(__name__)

_ONE_MICROSECOND = timedelta(microseconds=1)


class EventBus:
    """
    Publishes events to registered subscriptions and records the outcome.

    The bus does not prevent two concurrent ``publish`` calls for the same
    event; callers (the crawler) make sure an event is published by one
    task at a time.
    """

    def __init__(
        self,
        storage: OutboxStorage,
        registry: SubscriptionRegistry | None = None,
        clock: Clock | None = None,
        alert_sink: AlertSink | None = None,
        quarantine_threshold: int = DEFAULT_QUARANTINE_THRESHOLD,
    ):
        """
        Initialize the event bus.

        Args:
            storage: Outbox storage the bus saves events to
            registry: Subscriptions to deliver to (a new empty one if omitted)
            clock: Source of publication timestamps
            alert_sink: Notified when an event gets quarantined
            quarantine_threshold: Number of earlier publications after which
                a failing attempt quarantines the event
        """
        self.storage = storage
        self.registry = registry if registry is not None else SubscriptionRegistry()
        self.clock = clock or SystemClock()
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.quarantine_threshold = quarantine_threshold

    def subscribe(
        self,
        topic: str,
        subscription_id: str,
        callback: SubscriptionCallback,
    ) -> None:
        """Register (or replace) the callback of a subscription."""
        self.registry.subscribe(topic, subscription_id, callback)

    async def publish(self, event: Event) -> Event:
        """
        Run one publication attempt and save the event.

        Subscriber errors are recorded on the event and never raised.
        Storage errors are raised.

        Returns:
            The same event, with the new publication appended
        """
        start_time = time.monotonic()
        last_publication = get_last_publication(event)
        prior_attempts = len(event.publications)
        targets = self._get_targets(event, last_publication)

        logger.debug(
            f"Publishing event {event.id} on '{event.topic}' to {len(targets)} "
            f"subscription(s) (attempt {prior_attempts + 1})",
            extra={"event_id": event.id, "topic": event.topic, "attempt": prior_attempts + 1},
        )

        results = await asyncio.gather(
            *(self._deliver(event, subscription_id) for subscription_id in targets)
        )
        failures = [failure for failure in results if failure is not None]

        publication = Publication(
            published_at=self._next_publication_date(last_publication),
            failures=failures,
        )
        event.publications.append(publication)

        if failures and prior_attempts >= self.quarantine_threshold and not event.was_quarantined:
            event.was_quarantined = True
            await self._alert(event, publication, QuarantineReason.TOO_MANY_FAILURES)

        await self.storage.save(event)

        self._record_metrics(event, failures, time.monotonic() - start_time)
        return event

    def _get_targets(self, event: Event, last_publication: Publication | None) -> list[str]:
        if last_publication is None:
            return self.registry.subscription_ids(event.topic)
        return sorted(last_publication.failed_subscription_ids)

    async def _deliver(self, event: Event, subscription_id: str) -> Failure | None:
        callback = self.registry.get_callback(event.topic, subscription_id)
        if callback is None:
            message = f"No subscription registered with id '{subscription_id}' on '{event.topic}'"
            logger.warning(
                message,
                extra={"event_id": event.id, "topic": event.topic, "subscription_id": subscription_id},
            )
            return Failure(subscription_id, message)

        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            error_message = str(e) or type(e).__name__
            logger.warning(
                f"Subscription '{subscription_id}' failed on event {event.id}: {error_message}",
                extra={
                    "event_id": event.id,
                    "topic": event.topic,
                    "subscription_id": subscription_id,
                    "error_type": type(e).__name__,
                },
            )
            return Failure(subscription_id, error_message)

        return None

    def _next_publication_date(self, last_publication: Publication | None):
        # publications are identified by date, a repeated date would be dropped on save
        published_at = as_utc(self.clock())
        if last_publication and published_at <= last_publication.published_at:
            published_at = last_publication.published_at + _ONE_MICROSECOND
        return published_at

    async def _alert(
        self,
        event: Event,
        publication: Publication,
        reason: QuarantineReason,
    ) -> None:
        metrics.QUARANTINED_EVENTS.labels(topic=event.topic, reason=reason.value).inc()
        alert = QuarantineAlert(
            event_id=event.id,
            topic=event.topic,
            occurred_at=event.occurred_at,
            last_publication=publication,
            reason=reason,
            attempts=len(event.publications),
        )
        try:
            await self.alert_sink.notify(alert)
        except Exception as e:
            # the quarantine itself must still be saved
            logger.exception(
                f"Alert sink failed for quarantined event {event.id}: {e}",
                extra={"event_id": event.id, "topic": event.topic},
            )

    @staticmethod
    def _record_metrics(event: Event, failures: list[Failure], duration: float) -> None:
        outcome = "failure" if failures else "success"
        metrics.PUBLICATIONS.labels(topic=event.topic, outcome=outcome).inc()
        metrics.PUBLISH_DURATION.labels(topic=event.topic).observe(duration)
        for failure in failures:
            metrics.SUBSCRIBER_FAILURES.labels(
                topic=event.topic, subscription_id=failure.subscription_id
            ).inc()
