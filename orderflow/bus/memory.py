"""
In-Memory Event Bus - For testing and single-process development.

Models the parts of a partitioned log that the pipeline relies on:

- topics split into a fixed number of partitions, chosen by a stable hash of
  the key, so one order's events always share a partition;
- consumer groups with committed offsets per partition, partitions divided
  between the group's members and re-divided when members join or leave;
- at most one uncommitted delivery per partition per group, which keeps
  processing strictly ordered within a partition;
- at-least-once delivery: a delivery that is not acknowledged within
  `redelivery_timeout` (or whose member leaves) is handed out again.

Usage:
    >>> bus = InMemoryEventBus(partitions=4)
    >>> await bus.connect()
    >>> await bus.publish("order.created", "order-1", event)
    >>> sub = await bus.subscribe("order.created", group="inventory-service")
    >>> [delivery] = await sub.poll()
    >>> await sub.ack(delivery)
"""

import asyncio
import time
import uuid
import zlib
from dataclasses import dataclass, field

from orderflow.bus.base import BaseEventBus, BusConfig, Delivery
from orderflow.core.exceptions import EventBusConnectionError, EventBusPublishError
from orderflow.events.codec import decode_event
from orderflow.events.types import Event


@dataclass
class _Message:
    key: str | None
    value: bytes
    headers: dict[str, str]


@dataclass
class _GroupState:
    members: list[str] = field(default_factory=list)
    committed: dict[int, int] = field(default_factory=dict)
    # partition -> (offset, handed_out_at)
    in_flight: dict[int, tuple[int, float]] = field(default_factory=dict)
    attempts: dict[tuple[int, int], int] = field(default_factory=dict)

    def owner(self, partition: int) -> str | None:
        if not self.members:
            return None
        return self.members[partition % len(self.members)]


@dataclass
class _Topic:
    partitions: list[list[_Message]]
    groups: dict[str, _GroupState] = field(default_factory=dict)
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemorySubscription:
    """Pull handle for one member of a consumer group."""

    def __init__(self, bus: "InMemoryEventBus", topic: str, group: str, member_id: str):
        self.bus = bus
        self.topic = topic
        self.group = group
        self.member_id = member_id
        self._closed = False

    @property
    def assigned_partitions(self) -> list[int]:
        return self.bus._assigned(self.topic, self.group, self.member_id)

    async def poll(self, max_records: int = 50, timeout: float = 1.0) -> list[Delivery]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        topic = self.bus._topic(self.topic)

        async with topic.condition:
            while not self._closed:
                deliveries = self.bus._take(self.topic, self.group, self.member_id, max_records)
                if deliveries:
                    return deliveries
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(topic.condition.wait(), remaining)
                except TimeoutError:
                    break
        return []

    async def ack(self, delivery: Delivery) -> None:
        self.bus._commit(self.topic, self.group, delivery)

    async def rewind(self, delivery: Delivery) -> None:
        self.bus._release(self.topic, self.group, delivery)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self.bus._leave(self.topic, self.group, self.member_id)


class InMemoryEventBus(BaseEventBus):
    """
    In-memory partitioned event bus.

    Published messages are kept for inspection in tests:

        >>> events = bus.events("inventory.reserved")
        >>> assert events[0].payload["orderId"] == order_id
    """

    def __init__(
        self,
        partitions: int = 4,
        redelivery_timeout: float = 30.0,
        config: BusConfig | None = None,
    ):
        super().__init__(config)
        self.partitions = partitions
        self.redelivery_timeout = redelivery_timeout
        self._topics: dict[str, _Topic] = {}
        self._fail_next = 0
        self._publish_delay = 0.0

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    def partition_for(self, key: str | None) -> int:
        """Stable partition for a key; keyless messages go to partition 0."""
        if key is None:
            return 0
        return zlib.crc32(key.encode("utf-8")) % self.partitions

    async def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not self._connected:
            msg = "Event bus not connected"
            raise EventBusConnectionError(msg)

        if self._publish_delay:
            await asyncio.sleep(self._publish_delay)

        if self._fail_next > 0:
            self._fail_next -= 1
            msg = f"Injected publish failure on {topic}"
            raise EventBusPublishError(msg)

        state = self._topic(topic)
        async with state.condition:
            state.partitions[self.partition_for(key)].append(
                _Message(key=key, value=value, headers=dict(headers or {}))
            )
            state.condition.notify_all()

    async def subscribe(
        self, topic: str, group: str, member_id: str | None = None
    ) -> InMemorySubscription:
        if not self._connected:
            msg = "Event bus not connected"
            raise EventBusConnectionError(msg)

        member_id = member_id or f"{group}-{uuid.uuid4().hex[:8]}"
        state = self._topic(topic)
        async with state.condition:
            group_state = state.groups.setdefault(group, _GroupState())
            if member_id not in group_state.members:
                group_state.members.append(member_id)
                self._rebalance(group_state)
        return InMemorySubscription(self, topic, group, member_id)

    # ---- test hooks ---------------------------------------------------------

    def fail_next_publishes(self, count: int) -> None:
        """Make the next `count` publishes raise EventBusPublishError."""
        self._fail_next = count

    def set_publish_delay(self, seconds: float) -> None:
        """Delay every publish acknowledgment by `seconds`."""
        self._publish_delay = seconds

    def published(self, topic: str) -> list[Delivery]:
        """All messages on a topic, partition by partition."""
        state = self._topics.get(topic)
        if state is None:
            return []
        return [
            Delivery(topic, partition, offset, m.key, m.value, m.headers)
            for partition, messages in enumerate(state.partitions)
            for offset, m in enumerate(messages)
        ]

    def events(self, topic: str) -> list[Event]:
        """Decoded events on a topic."""
        return [decode_event(topic, d.key, d.value) for d in self.published(topic)]

    def redeliver_uncommitted(self, topic: str, group: str) -> None:
        """Hand out every uncommitted delivery again, as after a crash."""
        state = self._topics.get(topic)
        if state and group in state.groups:
            state.groups[group].in_flight.clear()

    def clear(self) -> None:
        self._topics.clear()

    # ---- internals ----------------------------------------------------------

    def _topic(self, topic: str) -> _Topic:
        if topic not in self._topics:
            self._topics[topic] = _Topic(partitions=[[] for _ in range(self.partitions)])
        return self._topics[topic]

    def _assigned(self, topic: str, group: str, member_id: str) -> list[int]:
        group_state = self._topic(topic).groups.get(group)
        if group_state is None:
            return []
        return [p for p in range(self.partitions) if group_state.owner(p) == member_id]

    @staticmethod
    def _rebalance(group_state: _GroupState) -> None:
        # Uncommitted deliveries move to whichever member now owns the partition
        group_state.in_flight.clear()

    def _take(self, topic: str, group: str, member_id: str, max_records: int) -> list[Delivery]:
        state = self._topic(topic)
        group_state = state.groups.get(group)
        if group_state is None:
            return []

        now = time.monotonic()
        deliveries: list[Delivery] = []
        for partition in self._assigned(topic, group, member_id):
            if len(deliveries) >= max_records:
                break

            in_flight = group_state.in_flight.get(partition)
            if in_flight is not None and now - in_flight[1] < self.redelivery_timeout:
                continue

            offset = group_state.committed.get(partition, 0)
            messages = state.partitions[partition]
            if offset >= len(messages):
                continue

            message = messages[offset]
            attempt = group_state.attempts.get((partition, offset), 0) + 1
            group_state.attempts[(partition, offset)] = attempt
            group_state.in_flight[partition] = (offset, now)
            deliveries.append(
                Delivery(topic, partition, offset, message.key, message.value, message.headers, attempt)
            )
        return deliveries

    def _commit(self, topic: str, group: str, delivery: Delivery) -> None:
        group_state = self._topic(topic).groups.get(group)
        if group_state is None:
            return
        partition = delivery.partition
        if group_state.committed.get(partition, 0) != delivery.offset:
            return  # stale ack after a redelivery was already committed
        group_state.committed[partition] = delivery.offset + 1
        group_state.attempts.pop((partition, delivery.offset), None)
        in_flight = group_state.in_flight.get(partition)
        if in_flight is not None and in_flight[0] == delivery.offset:
            del group_state.in_flight[partition]

    def _release(self, topic: str, group: str, delivery: Delivery) -> None:
        group_state = self._topic(topic).groups.get(group)
        if group_state is None:
            return
        in_flight = group_state.in_flight.get(delivery.partition)
        if in_flight is not None and in_flight[0] == delivery.offset:
            del group_state.in_flight[delivery.partition]

    async def _leave(self, topic: str, group: str, member_id: str) -> None:
        state = self._topic(topic)
        async with state.condition:
            group_state = state.groups.get(group)
            if group_state and member_id in group_state.members:
                group_state.members.remove(member_id)
                self._rebalance(group_state)
                state.condition.notify_all()
