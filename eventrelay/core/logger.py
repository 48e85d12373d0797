"""
Centralized logger configuration for eventrelay.

Provides a unified logging interface that can be customized by the user.
By default, uses Python's standard logging with the 'eventrelay' namespace.

Usage:
    # Use default logger
    from eventrelay.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Set custom logger (e.g., structlog, loguru)
    from eventrelay.core.logger import set_logger
    import structlog
    set_logger(structlog.get_logger())
"""

import logging
from typing import Any

# Global logger instance - defaults to standard logging
_custom_logger: Any = None

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all eventrelay components.

    Args:
        logger: A logger instance (e.g., structlog logger, loguru logger)
                Must support debug/info/warning/error/exception methods.
    """
    global _custom_logger
    _custom_logger = logger


def reset_logger() -> None:
    """Go back to standard library loggers."""
    global _custom_logger
    _custom_logger = None


def get_logger(name: str = "eventrelay") -> Any:
    """
    Get a logger instance.

    If a custom logger was set via set_logger(), returns that.
    Otherwise, returns a standard Python logger with the given name.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        A logger instance
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)

    # Ensure we have at least a NullHandler to avoid "No handler found" warnings
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def configure_default_logging(  # pragma: no cover
    level: int | str = logging.INFO,
    json_format: bool = False,
    format_string: str = DEFAULT_FORMAT,
) -> None:
    """
    Configure console logging for eventrelay.

    Call this from entry points (the CLI does) rather than at import time.

    Args:
        level: Logging level (default: INFO)
        json_format: Emit one JSON object per line with event context
        format_string: Log message format for plain text output
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if json_format:
        from eventrelay.monitoring.logging import EventJsonFormatter

        handler.setFormatter(EventJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(format_string))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    logging.getLogger("eventrelay").setLevel(level)
