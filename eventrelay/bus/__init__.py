"""
Event bus: subscription registry, delivery and quarantine alerts.
"""

from eventrelay.bus.alerting import (
    AlertSink,
    InMemoryAlertSink,
    LoggingAlertSink,
    QuarantineAlert,
)
from eventrelay.bus.event_bus import EventBus
from eventrelay.bus.registry import SubscriptionCallback, SubscriptionRegistry

__all__ = [
    "AlertSink",
    "EventBus",
    "InMemoryAlertSink",
    "LoggingAlertSink",
    "QuarantineAlert",
    "SubscriptionCallback",
    "SubscriptionRegistry",
]
