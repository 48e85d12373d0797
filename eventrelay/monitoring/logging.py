"""
Structured logging for event delivery

Formats records as JSON lines and lifts the event context that the bus and
the crawler pass through ``extra=`` (event id, topic, subscription id,
crawler id) into top level fields.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any


class EventJsonFormatter(logging.Formatter):
    """
    JSON formatter for eventrelay logs with structured fields
    """

    # Fields to extract from log record if present
    _EXTRA_FIELDS = (
        "event_id",
        "topic",
        "subscription_id",
        "crawler_id",
        "attempt",
        "duration_ms",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""
        log_entry = self._build_base_entry(record)
        self._add_record_extras(log_entry, record)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)

    def _build_base_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        """Build base log entry with standard fields."""
        return {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

    def _add_record_extras(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        """Add extra fields from log record."""
        for field in self._EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)
