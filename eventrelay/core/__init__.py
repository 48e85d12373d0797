"""
Core utilities: configuration, logging and payload serialization.
"""

from eventrelay.core.config import RelayConfig
from eventrelay.core.logger import configure_default_logging, get_logger, set_logger
from eventrelay.core.serialization import deserialize, serialize

__all__ = [
    "RelayConfig",
    "configure_default_logging",
    "deserialize",
    "get_logger",
    "serialize",
    "set_logger",
]
