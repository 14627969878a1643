"""
Core building blocks shared by every orderflow component: configuration,
environment loading, the exception hierarchy and logger access.
"""

from orderflow.core.exceptions import (
    EventBusConnectionError,
    EventBusError,
    EventBusPublishError,
    EventBusTimeoutError,
    InvalidOrderTransitionError,
    InvalidOutboxTransitionError,
    MissingDependencyError,
    OrderflowError,
    OrderNotCancelableError,
    OrderNotFoundError,
    OrderValidationError,
    PoisonEventError,
    StoreConflictError,
    StoreUnavailableError,
    TransientError,
)
from orderflow.core.logger import get_logger, set_logger

__all__ = [
    "EventBusConnectionError",
    "EventBusError",
    "EventBusPublishError",
    "EventBusTimeoutError",
    "InvalidOrderTransitionError",
    "InvalidOutboxTransitionError",
    "MissingDependencyError",
    "OrderNotCancelableError",
    "OrderNotFoundError",
    "OrderValidationError",
    "OrderflowError",
    "PoisonEventError",
    "StoreConflictError",
    "StoreUnavailableError",
    "TransientError",
    "get_logger",
    "set_logger",
]
