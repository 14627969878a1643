"""
Notification sink for the final order outcome.

Stands in for the customer notification service: it consumes
`order.confirmed` and `order.failed` and logs them. Message content and
delivery channels live elsewhere.
"""

from orderflow.core.logger import get_logger
from orderflow.events.types import ORDER_CONFIRMED, ORDER_FAILED, Event

logger = get_logger(__name__)


class NotificationLogSink:
    """Logs one line per final order outcome."""

    def __init__(self):
        self.seen: list[tuple[str, str]] = []

    async def handle(self, event: Event) -> None:
        if event.topic == ORDER_CONFIRMED:
            logger.info(
                f"Order {event.order_id} confirmed (correlation {event.correlation_id})",
                extra={"order_id": event.order_id, "correlation_id": event.correlation_id},
            )
        elif event.topic == ORDER_FAILED:
            logger.info(
                f"Order {event.order_id} failed: {event.payload.get('reason', 'unknown')} "
                f"(correlation {event.correlation_id})",
                extra={"order_id": event.order_id, "correlation_id": event.correlation_id},
            )
        else:
            logger.debug(f"Notification sink ignoring {event.topic}")
            return
        self.seen.append((event.topic, event.order_id))
