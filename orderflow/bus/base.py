"""
Event Bus Protocol - Abstract interface for the partitioned event bus.

Delivery is at-least-once: the same event may reach a subscriber more than
once (after a handler crash, timeout or rebalance) and the bus never
deduplicates. Within a partition, events are delivered in publish order; there
is no ordering across partitions. The partition key is the aggregate id, so
all events about one order share a lane.

Consumption is pull based with manual acknowledgment:

    >>> sub = await bus.subscribe("order.created", group="inventory-service")
    >>> for delivery in await sub.poll():
    ...     await handle(delivery)
    ...     await sub.ack(delivery)
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from orderflow.core.exceptions import EventBusTimeoutError
from orderflow.events.codec import encode_event
from orderflow.events.types import Event


@dataclass(frozen=True)
class Delivery:
    """
    One message handed to a subscriber.

    Attributes:
        topic: Source topic
        partition: Partition the message lives on
        offset: Position in the partition
        key: Partition key (order id)
        value: Raw envelope bytes
        headers: Bus headers (event headers plus eventId/eventType)
        attempt: How many times this message has been handed out to the group
    """

    topic: str
    partition: int
    offset: int
    key: str | None
    value: bytes
    headers: dict[str, str] = field(default_factory=dict)
    attempt: int = 1


@runtime_checkable
class Subscription(Protocol):
    """A consumer-group member's pull handle on one topic."""

    async def poll(self, max_records: int = 50, timeout: float = 1.0) -> list[Delivery]:
        """
        Fetch the next deliveries for this member's partitions.

        Returns an empty list when nothing arrives within `timeout`.
        """
        ...

    async def ack(self, delivery: Delivery) -> None:
        """Commit a delivery; it will not be handed out to the group again."""
        ...

    async def rewind(self, delivery: Delivery) -> None:
        """
        Give a delivery back without committing it.

        The next poll hands out this delivery again, followed by everything
        after it on its partition.
        """
        ...

    async def close(self) -> None:
        """Leave the group; uncommitted deliveries go to another member."""
        ...


@runtime_checkable
class EventBus(Protocol):
    """
    Protocol for event bus implementations.
    """

    async def connect(self) -> None:
        """
        Connect to the bus.

        Raises:
            EventBusConnectionError: If connection fails
        """
        ...

    async def publish(self, topic: str, key: str, event: Event) -> None:
        """
        Publish an event, returning only after the bus acknowledged it durably.

        Raises:
            EventBusPublishError: If the bus rejected the publish
            EventBusTimeoutError: If the acknowledgment did not arrive in time
        """
        ...

    async def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Publish pre-encoded bytes with no acknowledgment timeout applied."""
        ...

    async def send(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        """
        Publish pre-encoded bytes and wait for the acknowledgment.

        Used to quarantine messages that may not decode.

        Raises:
            EventBusPublishError: If the bus rejected the publish
            EventBusTimeoutError: If the acknowledgment did not arrive in time
        """
        ...

    async def subscribe(self, topic: str, group: str, member_id: str | None = None) -> Subscription:
        """Join `group` on `topic` and return a pull subscription."""
        ...

    async def close(self) -> None:
        """Close the bus connection."""
        ...

    async def health_check(self) -> bool:
        """Return True if the bus connection is healthy."""
        ...


@dataclass
class BusConfig:
    """
    Base configuration for event buses.

    Subclass for bus-specific config.
    """

    publish_timeout_seconds: float = 10.0
    connection_timeout_seconds: float = 30.0


class BaseEventBus(ABC):
    """
    Abstract base class for event bus implementations.

    Provides event encoding on top of the raw publish primitive.
    """

    def __init__(self, config: BusConfig | None = None):
        self.config = config or BusConfig()
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        ...

    @abstractmethod
    async def subscribe(self, topic: str, group: str, member_id: str | None = None) -> Subscription:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def send(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Raw publish bounded by `publish_timeout_seconds`."""
        try:
            await asyncio.wait_for(
                self.publish_raw(topic, key, value, headers),
                timeout=self.config.publish_timeout_seconds,
            )
        except TimeoutError as e:
            msg = (
                f"No acknowledgment on {topic} (key {key}) "
                f"within {self.config.publish_timeout_seconds}s"
            )
            raise EventBusTimeoutError(msg) from e

    async def publish(self, topic: str, key: str, event: Event) -> None:
        """
        Encode and publish an event keyed by its aggregate id.

        Event headers travel both inside the envelope and as bus headers, with
        eventId and eventType added for consumers that route before decoding.
        """
        headers = {
            "eventId": event.event_id,
            "eventType": event.event_type,
            "content_type": "application/json",
            **event.headers,
        }
        try:
            await self.send(topic, key, encode_event(event), headers)
        except EventBusTimeoutError as e:
            msg = (
                f"No acknowledgment for event {event.event_id} on {topic} "
                f"within {self.config.publish_timeout_seconds}s"
            )
            raise EventBusTimeoutError(msg) from e
