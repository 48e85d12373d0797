"""
All eventrelay exceptions
"""

from typing import Any


class RelayError(Exception):
    """Base eventrelay error"""


class EventError(RelayError):
    """Invalid event construction or mutation"""


class ImmutableFieldError(EventError):
    """Attempt to reassign an event field that is fixed at creation"""

    def __init__(self, field_name: str, event_id: str | None = None):
        self.field_name = field_name
        self.event_id = event_id
        super().__init__(f"Field '{field_name}' of event {event_id} cannot be modified")


class OutboxStorageError(RelayError):
    """
    Base exception for outbox storage errors.

    Raised by storage backends when a read or write cannot be completed.
    The event bus never catches it; the crawler logs it and moves on.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class SerializationError(OutboxStorageError):
    """
    Failed to serialize or deserialize an event payload.
    """

    def __init__(
        self,
        message: str = "Serialization failed",
        operation: str | None = None,  # "serialize" or "deserialize"
        data_type: str | None = None,
    ):
        super().__init__(
            message,
            details={"operation": operation, "data_type": data_type},
        )
        self.operation = operation
        self.data_type = data_type

