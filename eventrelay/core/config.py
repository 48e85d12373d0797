"""
Runtime configuration for eventrelay.

Values come from environment variables, optionally loaded from a ``.env``
file first:

    QUARANTINED_TOPICS              comma separated topics never auto-delivered
    EVENT_CRAWLER_PERIOD_MS         milliseconds between crawler cycles
    RELAY_BATCH_SIZE                max events fetched per query and cycle
    RELAY_MAX_CONCURRENT_PUBLISHES  max publish() calls in flight per cycle
    RELAY_QUARANTINE_THRESHOLD      prior attempts before a failure quarantines
    DATABASE_URL                    outbox storage URL (memory://, sqlite:///..., postgresql://...)
    LOG_LEVEL / LOG_FORMAT          logging level and "text" or "json"
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_QUARANTINE_THRESHOLD = 3


def parse_list(value: str | None) -> tuple[str, ...]:
    """Split a comma separated variable, dropping blanks."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _get_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except (TypeError, ValueError):
        msg = f"Environment variable {key} must be an integer, got {os.environ.get(key)!r}"
        raise ValueError(msg) from None


@dataclass
class RelayConfig:
    """
    Configuration for the event bus and crawler.

    Attributes:
        quarantined_topics: Topics whose events are quarantined at creation
        period_seconds: Seconds between crawler cycles
        batch_size: Max events fetched by each crawling query
        max_concurrent_publishes: Upper bound on concurrent publish() calls
        quarantine_threshold: Prior publications after which a failing attempt quarantines
        storage_url: Outbox storage URL
        log_level: Logging level name
        log_format: "text" or "json"
    """

    quarantined_topics: tuple[str, ...] = field(default_factory=tuple)
    period_seconds: float = 10.0
    batch_size: int | None = 100
    max_concurrent_publishes: int = 10
    quarantine_threshold: int = DEFAULT_QUARANTINE_THRESHOLD
    storage_url: str = "memory://"
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self):
        if self.period_seconds < 0:
            msg = "period_seconds must be >= 0"
            raise ValueError(msg)
        if self.max_concurrent_publishes < 1:
            msg = "max_concurrent_publishes must be >= 1"
            raise ValueError(msg)
        if self.quarantine_threshold < 0:
            msg = "quarantine_threshold must be >= 0"
            raise ValueError(msg)
        if self.log_format not in ("text", "json"):
            msg = f"log_format must be 'text' or 'json', got {self.log_format!r}"
            raise ValueError(msg)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "RelayConfig":
        """
        Create config from environment variables.

        Args:
            env_file: .env file to load first (defaults to ./.env when present).
                      Variables already set in the environment win.
        """
        load_dotenv(env_file or Path.cwd() / ".env", override=False)

        batch_size = _get_int("RELAY_BATCH_SIZE", 100)

        return cls(
            quarantined_topics=parse_list(os.environ.get("QUARANTINED_TOPICS")),
            period_seconds=_get_int("EVENT_CRAWLER_PERIOD_MS", 10_000) / 1000,
            batch_size=batch_size if batch_size > 0 else None,
            max_concurrent_publishes=_get_int("RELAY_MAX_CONCURRENT_PUBLISHES", 10),
            quarantine_threshold=_get_int(
                "RELAY_QUARANTINE_THRESHOLD", DEFAULT_QUARANTINE_THRESHOLD
            ),
            storage_url=os.environ.get("DATABASE_URL", "memory://"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_format=os.environ.get("LOG_FORMAT", "text").lower(),
        )
