# ============================================
# FILE: orderflow/core/exceptions.py
# ============================================

"""
All orderflow exceptions

The hierarchy mirrors the error taxonomy of the pipeline:

    OrderflowError
    ├── TransientError            retried with backoff, never surfaced to callers
    │   ├── StoreUnavailableError
    │   ├── StoreConflictError
    │   └── EventBusError
    │       ├── EventBusConnectionError
    │       ├── EventBusPublishError
    │       └── EventBusTimeoutError
    ├── PoisonEventError          routed to the dead-letter topic immediately
    ├── OrderValidationError
    ├── OrderNotFoundError
    ├── OrderNotCancelableError
    ├── InvalidOrderTransitionError
    ├── InvalidOutboxTransitionError
    └── MissingDependencyError

Business rejections (insufficient stock) and duplicate deliveries are normal
outcomes and never raise.
"""


class OrderflowError(Exception):
    """Base orderflow error"""


class TransientError(OrderflowError):
    """Infrastructure failure that is safe to retry"""


class StoreUnavailableError(TransientError):
    """The service's durable store could not be reached"""


class StoreConflictError(TransientError):
    """
    A conditional update lost a race (another unit changed the row first).

    Raising it rolls the whole unit back; the delivery is retried and the
    unit re-evaluated against fresh state.
    """


class EventBusError(TransientError):
    """Base event bus error"""


class EventBusConnectionError(EventBusError):
    """Error connecting to the event bus"""


class EventBusPublishError(EventBusError):
    """The bus did not acknowledge a publish"""


class EventBusTimeoutError(EventBusError):
    """Acknowledgment wait exceeded the publish timeout"""


class PoisonEventError(OrderflowError):
    """
    An inbound message that can never be processed.

    Raised on undecodable JSON, schema validation failures and unknown
    (eventType, version) pairs.
    """

    def __init__(self, reason: str, topic: str | None = None, raw: bytes | None = None):
        self.reason = reason
        self.topic = topic
        self.raw = raw
        super().__init__(f"Poison event on {topic or '<unknown>'}: {reason}")


class OrderValidationError(OrderflowError):
    """Order input rejected before anything was written"""


class OrderNotFoundError(OrderflowError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderNotCancelableError(OrderflowError):
    """Cancel requested for an order that already left PENDING"""

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} cannot be canceled in status {status}")


class InvalidOrderTransitionError(OrderflowError):
    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition for order {order_id}: {from_status} → {to_status}")


class InvalidOutboxTransitionError(OrderflowError):
    def __init__(self, record_id: str, from_status: str, to_status: str):
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for outbox record {record_id}: {from_status} → {to_status}"
        )


class MissingDependencyError(OrderflowError):
    """
    Raised when a backend's driver package is not installed.

    Gives the install command so the missing package is quick to resolve.
    """

    INSTALL_COMMANDS = {
        "aiokafka": "pip install aiokafka",
        "asyncpg": "pip install asyncpg",
        "aiosqlite": "pip install aiosqlite",
    }

    def __init__(self, package: str, feature: str | None = None):
        self.package = package
        self.feature = feature

        install_cmd = self.INSTALL_COMMANDS.get(package, f"pip install {package}")

        if feature:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Required for: {feature:<45} ║\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )
        else:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )

        super().__init__(message)
