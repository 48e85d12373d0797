"""
Event Crawler - periodic driver of event delivery.

Every period, reads the events never published and the events whose last
publication failed, then publishes each of them once through the event
bus. Quarantined events are never read, so they are never retried.

Usage:
    >>> from eventrelay.outbox.crawler import EventCrawler
    >>>
    >>> crawler = EventCrawler(storage, bus, RelayConfig(period_seconds=5))
    >>> await crawler.start()  # Runs until stopped
    >>> # or
    >>> await crawler.process_batch()  # Run one cycle
"""

import asyncio
import signal
import uuid
from typing import TYPE_CHECKING

from eventrelay.core.config import RelayConfig
from eventrelay.core.logger import get_logger
from eventrelay.events.types import Event
from eventrelay.monitoring import metrics
from eventrelay.outbox.storage.base import OutboxStorage

if TYPE_CHECKING:  # pragma: no cover
    from eventrelay.bus.event_bus import EventBus

logger = get_logger(__name__)


class EventCrawler:
    """
    Background driver that finds events needing (re)delivery.

    Features:
        - One cycle per period: unpublished events plus failed events
        - Concurrent publishes across events, bounded by a semaphore
        - One publish at a time per event id
        - A failing event never aborts the rest of the cycle
        - Graceful shutdown on SIGTERM/SIGINT

    Lifecycle:
        1. Read unpublished and failed (non-quarantined) events
        2. Drop duplicates and events already being published
        3. Publish the rest concurrently
        4. Log and count events whose publish raised
        5. Sleep one period and repeat
    """

    def __init__(
        self,
        storage: OutboxStorage,
        event_bus: "EventBus",
        config: RelayConfig | None = None,
        crawler_id: str | None = None,
    ):
        """
        Initialize the crawler.

        Args:
            storage: Outbox storage to read events from
            event_bus: Bus used to publish each event
            config: Period, batch size and concurrency settings
            crawler_id: Name used in logs and metrics (auto-generated if not provided)
        """
        self.storage = storage
        self.event_bus = event_bus
        self.config = config or RelayConfig()
        self.crawler_id = crawler_id or f"crawler-{uuid.uuid4().hex[:8]}"

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_publishes)
        self._in_flight: set[str] = set()

        # Stats
        self._cycles = 0
        self._events_published = 0
        self._events_errored = 0
        self._events_skipped = 0

    async def start(self) -> None:
        """
        Start the crawler loop.

        Runs continuously until stop() is called or shutdown signal received.
        """
        self._running = True
        self._shutdown_event.clear()

        logger.info(
            f"Event crawler {self.crawler_id} starting (period {self.config.period_seconds}s)",
            extra={"crawler_id": self.crawler_id},
        )
        self._setup_signal_handlers()

        try:
            await self._run_processing_loop()
        finally:
            self._running = False
            logger.info(f"Event crawler {self.crawler_id} stopped", extra={"crawler_id": self.crawler_id})

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                pass  # Windows, or not running in the main thread

    async def _run_processing_loop(self) -> None:
        """Main processing loop."""
        while self._running:
            try:
                await self.process_batch()
            except asyncio.CancelledError:  # pragma: no cover
                logger.info(f"Crawler {self.crawler_id} cancelled")
                raise
            except Exception as e:
                metrics.CRAWLER_ERRORS.labels(crawler_id=self.crawler_id, stage="fetch").inc()
                logger.exception(
                    f"Crawler {self.crawler_id} could not read events: {e}",
                    extra={"crawler_id": self.crawler_id},
                )
            if self._running:
                await self._wait_for_next_poll()

    async def _wait_for_next_poll(self) -> None:
        """Wait for shutdown or poll interval."""
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(), timeout=self.config.period_seconds
            )
        except TimeoutError:
            pass

    async def stop(self) -> None:
        """Stop the crawler gracefully; the current cycle completes."""
        logger.info(f"Stopping crawler {self.crawler_id}")
        self._running = False
        self._shutdown_event.set()

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        logger.info(f"Shutdown signal received for crawler {self.crawler_id}")
        # Store reference to prevent garbage collection
        self._shutdown_task = asyncio.create_task(self.stop())

    async def fetch_events_to_publish(self) -> list[Event]:
        """Unpublished events first, then failed ones, without duplicates."""
        unpublished = await self.storage.get_all_unpublished_events(limit=self.config.batch_size)
        failed = await self.storage.get_all_failed_events(limit=self.config.batch_size)

        events: dict[str, Event] = {}
        for event in [*unpublished, *failed]:
            events.setdefault(event.id, event)
        return list(events.values())

    async def process_batch(self) -> int:
        """
        Run a single crawling cycle.

        Returns:
            Number of events published without error

        Raises:
            Exception: Whatever the storage raised while reading events
        """
        events = await self.fetch_events_to_publish()

        self._cycles += 1
        metrics.CRAWLER_BATCHES.labels(crawler_id=self.crawler_id).inc()
        metrics.CRAWLER_BATCH_SIZE.labels(crawler_id=self.crawler_id).set(len(events))

        if not events:
            return 0

        logger.debug(
            f"Crawler {self.crawler_id} found {len(events)} event(s) to publish",
            extra={"crawler_id": self.crawler_id},
        )

        results = await asyncio.gather(*(self._publish_one(event) for event in events))
        return sum(1 for published in results if published)

    async def _publish_one(self, event: Event) -> bool:
        """
        Publish one event, never raising.

        Returns:
            True if the publish (and its save) went through
        """
        if event.id in self._in_flight:
            # a stale copy would retarget subscribers the running publish is handling
            self._events_skipped += 1
            logger.debug(
                f"Event {event.id} is already being published, skipping",
                extra={"event_id": event.id, "crawler_id": self.crawler_id},
            )
            return False

        self._in_flight.add(event.id)
        try:
            async with self._semaphore:
                await self.event_bus.publish(event)
        except Exception as e:
            self._events_errored += 1
            metrics.CRAWLER_ERRORS.labels(crawler_id=self.crawler_id, stage="publish").inc()
            logger.error(
                f"Failed to publish event {event.id} on '{event.topic}': {e}",
                extra={"event_id": event.id, "topic": event.topic, "crawler_id": self.crawler_id},
            )
            return False
        finally:
            self._in_flight.discard(event.id)

        self._events_published += 1
        return True

    def get_stats(self) -> dict:
        """
        Get crawler statistics.

        Returns:
            Dictionary of stats
        """
        return {
            "crawler_id": self.crawler_id,
            "running": self._running,
            "cycles": self._cycles,
            "events_published": self._events_published,
            "events_errored": self._events_errored,
            "events_skipped": self._events_skipped,
            "in_flight": len(self._in_flight),
        }
