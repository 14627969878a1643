"""
Centralized logger configuration for orderflow.

By default, uses Python's standard logging with the 'orderflow' namespace.

Usage:
    from orderflow.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Route every orderflow component to a custom logger
    from orderflow.core.logger import set_logger
    set_logger(my_logger)
"""

import logging
from typing import Any

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all orderflow components.

    Args:
        logger: A logger instance supporting debug/info/warning/error/exception.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "orderflow") -> Any:
    """
    Get a logger instance.

    If a custom logger was set via set_logger(), returns that.
    Otherwise, returns a standard Python logger with the given name.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)

    # Avoid "No handler found" warnings for library use
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
