"""
Subscription registry - which callback handles which topic.

The registry is a plain object built at process start and handed to the
event bus. Nothing in it is persisted: subscription ids are stored with
failures, so they must stay stable across deployments for retries to
reach the right callback.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from eventrelay.core.logger import get_logger
from eventrelay.events.types import Event

logger = get_logger(__name__)

# May be a coroutine function or a plain callable
SubscriptionCallback = Callable[[Event], Awaitable[Any] | Any]


class SubscriptionRegistry:
    """
    Mapping topic -> subscription id -> callback.

    At most one callback exists per (topic, subscription id). Subscribing
    again under the same pair replaces the previous callback and logs a
    warning. Uniqueness of subscription ids across unrelated handlers of a
    topic is up to the caller.

    Usage:
        >>> registry = SubscriptionRegistry()
        >>> registry.subscribe("ConventionSubmitted", "notify-agency", notify_agency)
        >>> registry.subscription_ids("ConventionSubmitted")
        ['notify-agency']
    """

    def __init__(self):
        self._subscriptions: dict[str, dict[str, SubscriptionCallback]] = {}

    def subscribe(
        self,
        topic: str,
        subscription_id: str,
        callback: SubscriptionCallback,
    ) -> None:
        if not callable(callback):
            msg = f"Callback for subscription '{subscription_id}' on '{topic}' is not callable"
            raise TypeError(msg)

        by_id = self._subscriptions.setdefault(topic, {})
        if subscription_id in by_id:
            logger.warning(
                f"Subscription '{subscription_id}' on topic '{topic}' already registered, "
                f"replacing its callback",
                extra={"topic": topic, "subscription_id": subscription_id},
            )
        by_id[subscription_id] = callback

    def unsubscribe(self, topic: str, subscription_id: str) -> bool:
        """Remove a subscription. Returns False when it did not exist."""
        by_id = self._subscriptions.get(topic, {})
        if subscription_id not in by_id:
            return False
        del by_id[subscription_id]
        if not by_id:
            del self._subscriptions[topic]
        return True

    def get_callback(self, topic: str, subscription_id: str) -> SubscriptionCallback | None:
        return self._subscriptions.get(topic, {}).get(subscription_id)

    def subscription_ids(self, topic: str) -> list[str]:
        """Subscription ids of a topic, in registration order."""
        return list(self._subscriptions.get(topic, {}))

    def topics(self) -> list[str]:
        return list(self._subscriptions)

    def __len__(self) -> int:
        return sum(len(by_id) for by_id in self._subscriptions.values())

    def __contains__(self, key: tuple[str, str]) -> bool:
        topic, subscription_id = key
        return subscription_id in self._subscriptions.get(topic, {})
