"""
Outbox Publisher - background task draining the outbox to the event bus.

Polls the outbox for due NEW records and publishes them in creation order.
Handles retries with exponential backoff, hands exhausted records to the
dead-letter router and shuts down gracefully.

Usage:
    >>> from orderflow.outbox import OutboxPublisher, OutboxStore
    >>>
    >>> publisher = OutboxPublisher(OutboxStore(database), bus, router)
    >>> await publisher.start()  # Runs until stopped
    >>> # or
    >>> await publisher.process_batch()  # Process one batch
"""

import asyncio
import signal
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING

from orderflow.bus.base import EventBus
from orderflow.core.exceptions import EventBusError
from orderflow.core.logger import get_logger
from orderflow.monitoring.logging import correlation_scope
from orderflow.monitoring.metrics import (
    OUTBOX_ERRORED_RECORDS,
    OUTBOX_FAILED_ATTEMPTS,
    OUTBOX_PENDING_RECORDS,
    OUTBOX_PUBLISH_DURATION,
    OUTBOX_PUBLISHED_EVENTS,
)
from orderflow.outbox.state_machine import OutboxStateMachine
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxConfig, OutboxRecord, OutboxStatus
from orderflow.storage.database import utcnow

if TYPE_CHECKING:
    from orderflow.deadletter import DeadLetterRouter

logger = get_logger(__name__)


class OutboxPublisher:
    """
    Background task that publishes outbox records.

    Features:
        - Sequential publishing in creation order
        - Per-aggregate ordering across retries
        - Exponential backoff on failures
        - Graceful shutdown on SIGTERM/SIGINT
        - Dead-letter routing once the retry budget is exhausted

    Lifecycle:
        1. Drain a batch of due NEW records
        2. Re-read each record; skip it if it is no longer NEW
        3. Publish and wait for the acknowledgment
        4. Mark acknowledged records SENT
        5. On failure, back off (record stays NEW) or move it to ERROR and
           dead-letter it; later records of the same aggregate wait. A
           dead-letter publish the bus refuses is retried on later batches
        6. Sleep and repeat
    """

    def __init__(
        self,
        store: OutboxStore,
        bus: EventBus,
        dead_letters: "DeadLetterRouter | None" = None,
        config: OutboxConfig | None = None,
        publisher_id: str | None = None,
        on_published: Callable[[OutboxRecord], Awaitable[None]] | None = None,
        handle_signals: bool = True,
    ):
        """
        Initialize the outbox publisher.

        Args:
            store: Outbox store of the owning service
            bus: Event bus to publish to
            dead_letters: Router that receives exhausted records
            config: Publisher configuration
            publisher_id: Unique ID for this publisher (auto-generated if not provided)
            on_published: Callback after a record was acknowledged
            handle_signals: Install SIGTERM/SIGINT handlers on start (off when
                a hosting runtime owns shutdown)
        """
        self.store = store
        self.bus = bus
        self.dead_letters = dead_letters
        self.config = config or OutboxConfig()
        self.publisher_id = publisher_id or f"publisher-{uuid.uuid4().hex[:8]}"

        self._state_machine = OutboxStateMachine(max_retries=self.config.max_retries)
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._on_published = on_published
        self._handle_signals = handle_signals

        self._records_published = 0
        self._failed_attempts = 0
        self._records_errored = 0

    async def start(self) -> None:
        """
        Start the publishing loop.

        Runs until stop() is called or a shutdown signal is received. A batch
        in flight always completes before the loop exits.
        """
        self._running = True
        self._shutdown_event.clear()

        logger.info(f"Outbox publisher {self.publisher_id} starting")
        if self._handle_signals:
            self._setup_signal_handlers()

        try:
            while self._running:
                if await self._process_iteration():
                    break
        finally:
            self._running = False
            logger.info(f"Outbox publisher {self.publisher_id} stopped")

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                pass  # Windows, or not on the main thread

    async def _process_iteration(self) -> bool:
        """Process one iteration of the loop. Returns True if the loop should break."""
        try:
            pending = await self.store.pending_count()
            OUTBOX_PENDING_RECORDS.labels(publisher_id=self.publisher_id).set(pending)

            processed = await self.process_batch()
            if processed == 0:
                await self._wait_for_next_poll()
            return False
        except TimeoutError:
            return False  # Poll interval elapsed
        except asyncio.CancelledError:
            logger.info(f"Publisher {self.publisher_id} cancelled")
            return True
        except Exception as e:
            logger.error(f"Publisher {self.publisher_id} error: {e}", exc_info=True)
            await asyncio.sleep(self.config.poll_interval_seconds)
            return False

    async def _wait_for_next_poll(self) -> None:
        await asyncio.wait_for(
            self._shutdown_event.wait(), timeout=self.config.poll_interval_seconds
        )

    async def stop(self) -> None:
        """Stop the publisher after the current batch."""
        logger.info(f"Stopping publisher {self.publisher_id}")
        self._running = False
        self._shutdown_event.set()

    def _handle_shutdown(self) -> None:
        logger.info(f"Shutdown signal received for publisher {self.publisher_id}")
        self._shutdown_task = asyncio.create_task(self.stop())

    async def process_batch(self) -> int:
        """
        Publish one batch of due records.

        Returns:
            Number of records acknowledged by the bus
        """
        await self._retry_dead_letters()

        records = await self.store.drain_batch(limit=self.config.batch_size)
        if not records:
            return 0

        logger.debug(f"Publisher {self.publisher_id} drained {len(records)} records")

        before = self._records_published
        blocked: set[tuple[str, str]] = set()
        for record in records:
            aggregate = (record.aggregate_type, record.aggregate_id)
            if aggregate in blocked:
                continue
            if not await self._publish_record(record):
                blocked.add(aggregate)
        return self._records_published - before

    async def _publish_record(self, record: OutboxRecord) -> bool:
        """Publish one record. Returns False if later records of its aggregate must wait."""
        # A record drained before a crash or by a second publisher may
        # already be terminal.
        current = await self.store.get(record.record_id)
        if current is None or current.status != OutboxStatus.NEW:
            return current is not None and current.status == OutboxStatus.SENT

        event = current.to_event()
        start_time = time.monotonic()
        with correlation_scope(
            correlation_id=event.correlation_id,
            order_id=event.order_id,
            event_id=event.event_id,
            record_id=current.record_id,
        ):
            try:
                await self.bus.publish(current.event_type, current.aggregate_id, event)
            except EventBusError as e:
                await self._handle_publish_failure(current, e)
                return False

            await self.store.mark_sent(current.record_id)
            self._records_published += 1
            OUTBOX_PUBLISHED_EVENTS.labels(
                publisher_id=self.publisher_id, event_type=current.event_type
            ).inc()
            OUTBOX_PUBLISH_DURATION.labels(
                publisher_id=self.publisher_id, event_type=current.event_type
            ).observe(time.monotonic() - start_time)
            logger.debug(f"Outbox record {current.record_id} published to {current.event_type}")

        if self._on_published:
            await self._on_published(current)
        return True

    async def _handle_publish_failure(self, record: OutboxRecord, error: Exception) -> None:
        error_message = f"{type(error).__name__}: {error}"
        self._failed_attempts += 1
        OUTBOX_FAILED_ATTEMPTS.labels(
            publisher_id=self.publisher_id, event_type=record.event_type
        ).inc()

        self._state_machine.record_failure(record, error_message, delay=0)
        if not self._state_machine.exhausted(record):
            delay = self.config.backoff(record.retry_count)
            logger.warning(
                f"Outbox record {record.record_id} failed to publish: {error_message} "
                f"(attempt {record.retry_count}/{self.config.max_retries}, retry in {delay:.2f}s)",
                extra={"retry_count": record.retry_count, "error_type": type(error).__name__},
            )
            await self.store.record_failure(
                record.record_id, error_message, utcnow() + timedelta(seconds=delay)
            )
            return

        await self._move_to_error(record, error_message)

    async def _move_to_error(self, record: OutboxRecord, error_message: str) -> None:
        if not await self.store.mark_error(record.record_id, error_message):
            return

        self._records_errored += 1
        OUTBOX_ERRORED_RECORDS.labels(
            publisher_id=self.publisher_id, event_type=record.event_type
        ).inc()
        logger.error(
            f"Outbox record {record.record_id} moved to ERROR "
            f"after {record.retry_count} attempts. Last error: {error_message}",
            extra={"retry_count": record.retry_count},
        )

        await self._dead_letter(record, error_message)

    async def _dead_letter(self, record: OutboxRecord, reason: str) -> bool:
        """Hand an ERROR record to the dead-letter router. False if the bus refused it."""
        if self.dead_letters is None:
            return False
        try:
            await self.dead_letters.route_outbox_record(
                record, reason, publisher_id=self.publisher_id
            )
        except EventBusError as e:
            logger.error(
                f"Outbox record {record.record_id} is in ERROR but could not be "
                f"dead-lettered: {e}; retrying on the next batch",
                extra={"retry_count": record.retry_count, "error_type": type(e).__name__},
            )
            return False
        await self.store.mark_dead_lettered(record.record_id)
        return True

    async def _retry_dead_letters(self) -> None:
        """Re-route ERROR records whose dead-letter publish failed earlier."""
        if self.dead_letters is None:
            return
        for record in await self.store.awaiting_dead_letter(limit=self.config.batch_size):
            if not await self._dead_letter(record, record.last_error or "retry budget exhausted"):
                break

    async def purge_sent(self) -> int:
        """Delete SENT records older than the configured retention."""
        cutoff = utcnow() - timedelta(days=self.config.sent_retention_days)
        return await self.store.purge_sent(cutoff)

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        """
        Get publisher statistics.

        Returns:
            Dictionary of stats
        """
        return {
            "publisher_id": self.publisher_id,
            "running": self._running,
            "records_published": self._records_published,
            "failed_attempts": self._failed_attempts,
            "records_errored": self._records_errored,
        }
