"""
JSON serialization utilities for outbox payloads.

Payloads are opaque to eventrelay; they only have to survive a round trip
through the relational projection. Datetime, UUID, Decimal, bytes and sets
are tagged so they come back with their original type.
"""

import base64
import json
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from eventrelay.exceptions import SerializationError


class StorageEncoder(json.JSONEncoder):
    """
    JSON encoder for payload data.

    Handles:
    - datetime -> ISO format string
    - UUID -> string
    - Decimal -> string (preserves precision)
    - bytes -> base64 string
    - set / frozenset -> list
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return {"__type__": "datetime", "value": obj.isoformat()}
        if isinstance(obj, UUID):
            return {"__type__": "uuid", "value": str(obj)}
        if isinstance(obj, Decimal):
            return {"__type__": "decimal", "value": str(obj)}
        if isinstance(obj, bytes):
            return {"__type__": "bytes", "value": base64.b64encode(obj).decode("ascii")}
        if isinstance(obj, set):
            return {"__type__": "set", "value": list(obj)}
        if isinstance(obj, frozenset):
            return {"__type__": "frozenset", "value": list(obj)}

        return super().default(obj)


_DECODERS = {
    "datetime": datetime.fromisoformat,
    "uuid": UUID,
    "decimal": Decimal,
    "bytes": base64.b64decode,
    "set": set,
    "frozenset": frozenset,
}


def storage_decoder(obj: dict[str, Any]) -> Any:
    """
    JSON decoder hook for payload data.

    Reverses StorageEncoder transformations.
    """
    if "__type__" not in obj or "value" not in obj:
        return obj

    decoder = _DECODERS.get(obj["__type__"])
    if decoder is None:
        return obj
    return decoder(obj["value"])


def serialize(data: Any) -> str:
    """
    Serialize data to JSON string.

    Raises:
        SerializationError: If serialization fails
    """
    try:
        return json.dumps(data, cls=StorageEncoder, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to serialize data: {e}",
            operation="serialize",
            data_type=type(data).__name__,
        ) from e


def deserialize(data: str | bytes) -> Any:
    """
    Deserialize JSON string to Python object.

    Raises:
        SerializationError: If deserialization fails
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        return json.loads(data, object_hook=storage_decoder)
    except (json.JSONDecodeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to deserialize data: {e}",
            operation="deserialize",
        ) from e
