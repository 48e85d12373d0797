"""
Alerting sinks - told when the event bus quarantines an event.

Alerts carry event metadata only: no payload and no full history, since
they usually end up in chat channels or incident tools.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from eventrelay.core.logger import get_logger
from eventrelay.events.types import Publication, QuarantineReason

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuarantineAlert:
    """What an operator needs to find and re-run a quarantined event."""

    event_id: str
    topic: str
    occurred_at: datetime
    last_publication: Publication | None
    reason: QuarantineReason
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "topic": self.topic,
            "occurred_at": self.occurred_at.isoformat(),
            "last_publication": self.last_publication.to_dict() if self.last_publication else None,
            "reason": self.reason.value,
            "attempts": self.attempts,
        }


@runtime_checkable
class AlertSink(Protocol):
    async def notify(self, alert: QuarantineAlert) -> None: ...


class LoggingAlertSink:
    """Default sink: one ERROR log line per quarantined event."""

    async def notify(self, alert: QuarantineAlert) -> None:
        failed = ""
        if alert.last_publication:
            failed = ", ".join(sorted(alert.last_publication.failed_subscription_ids))
        logger.error(
            f"Event {alert.event_id} on topic '{alert.topic}' quarantined "
            f"({alert.reason.value}) after {alert.attempts} attempts. "
            f"Failing subscriptions: {failed or 'none'}",
            extra={"event_id": alert.event_id, "topic": alert.topic},
        )


class InMemoryAlertSink:
    """Collects alerts (for testing)."""

    def __init__(self):
        self.alerts: list[QuarantineAlert] = []

    async def notify(self, alert: QuarantineAlert) -> None:
        self.alerts.append(alert)

    def clear(self) -> None:
        self.alerts.clear()
