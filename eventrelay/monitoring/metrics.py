"""
Prometheus metrics for event delivery.

Counters are module level, like every prometheus_client collector, so
they are registered once per process whatever the number of buses or
crawlers.

Quick Start:
    >>> from eventrelay.monitoring.metrics import start_metrics_server
    >>> start_metrics_server(port=8000)
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from eventrelay.core.logger import get_logger

logger = get_logger(__name__)

# Counters
PUBLICATIONS = Counter(
    "eventrelay_publications_total",
    "Publication attempts recorded, by outcome",
    ["topic", "outcome"],
)

SUBSCRIBER_FAILURES = Counter(
    "eventrelay_subscriber_failures_total",
    "Subscriber callbacks that raised during a publication",
    ["topic", "subscription_id"],
)

QUARANTINED_EVENTS = Counter(
    "eventrelay_quarantined_events_total",
    "Events put in quarantine by the event bus",
    ["topic", "reason"],
)

CRAWLER_BATCHES = Counter(
    "eventrelay_crawler_batches_total",
    "Crawler cycles completed",
    ["crawler_id"],
)

CRAWLER_ERRORS = Counter(
    "eventrelay_crawler_errors_total",
    "Errors caught by the crawler (storage reads and publishes)",
    ["crawler_id", "stage"],
)

# Gauges
CRAWLER_BATCH_SIZE = Gauge(
    "eventrelay_crawler_batch_size",
    "Events found by the last crawler cycle",
    ["crawler_id"],
)

# Histograms
PUBLISH_DURATION = Histogram(
    "eventrelay_publish_duration_seconds",
    "Time to run one publication of an event, subscribers and save included",
    ["topic"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:  # pragma: no cover
    """Expose the metrics over HTTP for Prometheus to scrape."""
    start_http_server(port, addr)
    logger.info(f"Prometheus metrics available on http://{addr}:{port}/metrics")
