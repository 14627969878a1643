"""
Consumer Worker - one consumer-group member pulling one topic.

Loop: poll → decode → handle → ack.

- Poison events (undecodable, schema-invalid, unknown version) go to the
  dead-letter topic at once and are acknowledged.
- Any other failure is retried in place with exponential backoff; once
  `max_attempts` is used up the event is dead-lettered and acknowledged.
- Business rejections are normal handler results, not failures.

Several workers in the same group split the topic's partitions between them;
within a partition deliveries are handled strictly one after another.

Usage:
    >>> worker = ConsumerWorker(
    ...     bus, "order.created", "inventory-service", engine.handle, router
    ... )
    >>> await worker.start()    # until stop()
    >>> # or, in tests
    >>> await worker.run_once()
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from orderflow.bus.base import Delivery, EventBus, Subscription
from orderflow.core.config import ConsumerConfig
from orderflow.core.exceptions import PoisonEventError
from orderflow.core.logger import get_logger
from orderflow.deadletter import DeadLetterRouter
from orderflow.events.codec import decode_event
from orderflow.events.types import Event
from orderflow.monitoring.logging import correlation_scope

logger = get_logger(__name__)

EventHandler = Callable[[Event], Awaitable[Any]]


class ConsumerWorker:
    """
    Pull-based consumer for a single topic.

    Attributes:
        topic: Topic to consume
        group: Consumer group (one per service)
        member_id: Identity of this member inside the group
    """

    def __init__(
        self,
        bus: EventBus,
        topic: str,
        group: str,
        handler: EventHandler,
        dead_letters: DeadLetterRouter,
        config: ConsumerConfig | None = None,
        member_id: str | None = None,
    ):
        self.bus = bus
        self.topic = topic
        self.group = group
        self.handler = handler
        self.dead_letters = dead_letters
        self.config = config or ConsumerConfig()
        self.member_id = member_id or f"{group}-{uuid.uuid4().hex[:8]}"

        self._subscription: Subscription | None = None
        self._running = False
        self._stop_requested = False
        self._stopped = asyncio.Event()
        self._stopped.set()

        self._handled = 0
        self._dead_lettered = 0
        self._retries = 0

    async def subscribe(self) -> Subscription:
        if self._subscription is None:
            self._subscription = await self.bus.subscribe(self.topic, self.group, self.member_id)
        return self._subscription

    async def start(self) -> None:
        """Consume until stop() is called."""
        await self.subscribe()
        self._running = True
        self._stop_requested = False
        self._stopped.clear()
        logger.info(f"Consumer {self.member_id} on {self.topic} starting")

        try:
            while self._running:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    logger.info(f"Consumer {self.member_id} cancelled")
                    raise
                except Exception as e:
                    # The delivery stays unacknowledged and is handed out again
                    logger.error(
                        f"Consumer {self.member_id} error on {self.topic}: {e}", exc_info=True
                    )
                    await asyncio.sleep(self.config.backoff_base_seconds)
        finally:
            self._running = False
            await self._close_subscription()
            self._stopped.set()
            logger.info(f"Consumer {self.member_id} on {self.topic} stopped")

    async def stop(self) -> None:
        """Stop after the delivery in flight; returns once the loop has exited."""
        self._running = False
        self._stop_requested = True
        await self._stopped.wait()

    async def run_once(self) -> int:
        """
        Poll once and process what arrived.

        Returns:
            Number of deliveries acknowledged
        """
        subscription = await self.subscribe()
        deliveries = await subscription.poll(
            max_records=self.config.max_records, timeout=self.config.poll_timeout_seconds
        )
        acked = 0
        held: set[tuple[str, int]] = set()
        for index, delivery in enumerate(deliveries):
            lane = (delivery.topic, delivery.partition)
            if lane in held:
                continue
            try:
                done = await self._process(delivery)
            except BaseException:
                # Nothing after an unacknowledged delivery may be committed
                await self._rewind(subscription, deliveries[index:], held)
                raise
            if done:
                await subscription.ack(delivery)
                acked += 1
            else:
                await subscription.rewind(delivery)
                held.add(lane)
        return acked

    @staticmethod
    async def _rewind(
        subscription: Subscription, remaining: list[Delivery], held: set[tuple[str, int]]
    ) -> None:
        """Rewind every partition to its first delivery not yet processed."""
        for delivery in remaining:
            lane = (delivery.topic, delivery.partition)
            if lane not in held:
                held.add(lane)
                await subscription.rewind(delivery)

    async def _process(self, delivery: Delivery) -> bool:
        """Handle one delivery. Returns True when it may be acknowledged."""
        try:
            event = decode_event(delivery.topic, delivery.key, delivery.value)
        except PoisonEventError as e:
            await self._dead_letter(delivery, e.reason)
            return True

        with correlation_scope(
            correlation_id=event.correlation_id,
            order_id=event.order_id,
            event_id=event.event_id,
            topic=delivery.topic,
            consumer_id=self.group,
        ):
            attempt = 0
            while True:
                attempt += 1
                try:
                    await self.handler(event)
                    self._handled += 1
                    return True
                except PoisonEventError as e:
                    await self._dead_letter(delivery, e.reason)
                    return True
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
                    if attempt >= self.config.max_attempts:
                        await self._dead_letter(
                            delivery, f"retry budget exhausted after {attempt} attempts: {reason}"
                        )
                        return True
                    if self._stop_requested:
                        # Leave it unacknowledged; another member picks it up
                        return False
                    delay = self.config.backoff(attempt)
                    self._retries += 1
                    logger.warning(
                        f"Handling {event.event_type} {event.event_id} failed "
                        f"(attempt {attempt}/{self.config.max_attempts}), retry in {delay:.2f}s: {reason}",
                        extra={"retry_count": attempt, "error_type": type(e).__name__},
                    )
                    await asyncio.sleep(delay)

    async def _dead_letter(self, delivery: Delivery, reason: str) -> None:
        await self.dead_letters.route(
            delivery.topic,
            delivery.key,
            delivery.value,
            reason,
            headers=dict(delivery.headers),
            consumer_id=self.group,
        )
        self._dead_lettered += 1

    async def _close_subscription(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def close(self) -> None:
        """Leave the group without running the loop (after run_once in tests)."""
        await self._close_subscription()

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "member_id": self.member_id,
            "topic": self.topic,
            "group": self.group,
            "running": self._running,
            "handled": self._handled,
            "dead_lettered": self._dead_lettered,
            "retries": self._retries,
        }
