"""
Service runtimes - wiring for the two deployable services.

Each runtime owns one Database (its aggregate table, outbox and ledger), one
OutboxPublisher and one or more ConsumerWorkers per subscribed topic. Only the
event bus is shared between services.

    OrderServiceRuntime       orders, consumes inventory.reserved / inventory.rejected
    InventoryServiceRuntime   inventory_lines, consumes order.created

Usage:
    >>> bus = create_event_bus("memory")
    >>> await bus.connect()
    >>> orders = OrderServiceRuntime(ServiceConfig.from_env("order"), bus)
    >>> await orders.run()   # until SIGTERM/SIGINT or stop()
    >>> # both services in one process, one set of signal handlers
    >>> await run_services([orders, inventory])
"""

import asyncio
import signal
from collections.abc import Sequence
from datetime import timedelta

from orderflow.bus.base import EventBus
from orderflow.consumer import ConsumerWorker, EventHandler
from orderflow.core.config import ServiceConfig
from orderflow.core.logger import get_logger
from orderflow.deadletter import DeadLetterRouter
from orderflow.events.types import (
    INVENTORY_REJECTED,
    INVENTORY_RESERVED,
    ORDER_CONFIRMED,
    ORDER_CREATED,
    ORDER_FAILED,
)
from orderflow.inventory.engine import InventoryReservationEngine
from orderflow.ledger.store import ConsumerLedger
from orderflow.notifications import NotificationLogSink
from orderflow.orders.reconciler import OrderStatusReconciler
from orderflow.orders.service import OrderService
from orderflow.outbox.publisher import OutboxPublisher
from orderflow.outbox.store import OutboxStore
from orderflow.storage.database import Database
from orderflow.storage.factory import create_database
from orderflow.storage.schema import INVENTORY_SERVICE_TABLES, ORDER_SERVICE_TABLES

logger = get_logger(__name__)

NOTIFICATION_GROUP = "notification-service"


class ServiceRuntime:
    """
    Common lifecycle of a service process.

    Subclasses declare their tables and the topic handlers they consume.
    """

    tables: Sequence[str] = ()

    def __init__(self, config: ServiceConfig, bus: EventBus, database: Database | None = None):
        self.config = config
        self.bus = bus
        self.database = database or create_database(config.database_url)
        self.outbox = OutboxStore(self.database)
        self.ledger = ConsumerLedger(self.database)
        self.dead_letters = DeadLetterRouter(bus)
        self.publisher = OutboxPublisher(
            self.outbox,
            bus,
            self.dead_letters,
            config.outbox,
            publisher_id=f"{config.service_name}-publisher",
            handle_signals=False,
        )
        self.workers: list[ConsumerWorker] = []
        self._tasks: list[asyncio.Task] = []

    @property
    def consumer_id(self) -> str:
        return self.config.consumer_group

    def subscriptions(self) -> list[tuple[str, str, EventHandler]]:
        """(topic, group, handler) for every topic this service consumes."""
        return []

    async def initialize(self) -> None:
        """Create tables and the consumer workers."""
        await self.database.initialize(self.tables)
        if not self.workers:
            for topic, group, handler in self.subscriptions():
                for _ in range(max(1, self.config.workers_per_topic)):
                    self.workers.append(
                        ConsumerWorker(
                            self.bus,
                            topic,
                            group,
                            handler,
                            self.dead_letters,
                            self.config.consumer,
                        )
                    )
        logger.info(
            f"{self.config.service_name} service initialized "
            f"({len(self.workers)} consumer workers)"
        )

    async def run(self, handle_signals: bool = True) -> None:
        """
        Run the publisher and every consumer worker until stop() or a signal.

        Args:
            handle_signals: Stop on SIGTERM/SIGINT. Off when several runtimes
                share a process; run_services() then owns the handlers.
        """
        if handle_signals:
            await run_services([self])
            return

        await self.initialize()
        self._tasks = [asyncio.create_task(self.publisher.start())]
        self._tasks += [asyncio.create_task(worker.start()) for worker in self.workers]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.close()

    async def stop(self) -> None:
        """Stop every loop after its in-flight unit of work."""
        await self.publisher.stop()
        await asyncio.gather(*(worker.stop() for worker in self.workers))

    async def close(self) -> None:
        for worker in self.workers:
            await worker.close()
        await self.database.close()

    async def pump(self) -> int:
        """
        One publisher batch plus one poll per worker.

        Returns the number of records published and deliveries acknowledged,
        so callers can loop until a quiet round.
        """
        count = await self.publisher.process_batch()
        for worker in self.workers:
            count += await worker.run_once()
        return count

    async def purge_ledger(self) -> int:
        return await self.ledger.purge_older_than(
            self.consumer_id, timedelta(days=self.config.ledger_retention_days)
        )


class OrderServiceRuntime(ServiceRuntime):
    """Order side: order API, status reconciler and the notification sink."""

    tables = ORDER_SERVICE_TABLES

    def __init__(
        self,
        config: ServiceConfig,
        bus: EventBus,
        database: Database | None = None,
        notifications: bool = True,
    ):
        super().__init__(config, bus, database)
        self.orders = OrderService(self.database, self.outbox)
        self.reconciler = OrderStatusReconciler(
            self.database, self.outbox, self.ledger, consumer_id=self.consumer_id
        )
        self.notifications = NotificationLogSink() if notifications else None

    def subscriptions(self) -> list[tuple[str, str, EventHandler]]:
        subscriptions: list[tuple[str, str, EventHandler]] = [
            (INVENTORY_RESERVED, self.consumer_id, self.reconciler.handle),
            (INVENTORY_REJECTED, self.consumer_id, self.reconciler.handle),
        ]
        if self.notifications is not None:
            subscriptions += [
                (ORDER_CONFIRMED, NOTIFICATION_GROUP, self.notifications.handle),
                (ORDER_FAILED, NOTIFICATION_GROUP, self.notifications.handle),
            ]
        return subscriptions


class InventoryServiceRuntime(ServiceRuntime):
    """Inventory side: the reservation engine."""

    tables = INVENTORY_SERVICE_TABLES

    def __init__(self, config: ServiceConfig, bus: EventBus, database: Database | None = None):
        super().__init__(config, bus, database)
        self.engine = InventoryReservationEngine(
            self.database, self.outbox, self.ledger, consumer_id=self.consumer_id
        )

    def subscriptions(self) -> list[tuple[str, str, EventHandler]]:
        return [(ORDER_CREATED, self.consumer_id, self.engine.handle)]


async def run_services(runtimes: Sequence[ServiceRuntime]) -> None:
    """
    Run several runtimes in one process until SIGTERM/SIGINT or their stop().

    A loop holds one handler per signal, so the handlers are installed here
    once and stop every runtime.
    """
    loop = asyncio.get_running_loop()
    shutdown_tasks: list[asyncio.Task] = []

    async def _stop_all() -> None:
        await asyncio.gather(*(runtime.stop() for runtime in runtimes))

    def _handle_shutdown() -> None:
        names = ", ".join(runtime.config.service_name for runtime in runtimes)
        logger.info(f"Shutdown signal received, stopping {names}")
        shutdown_tasks.append(asyncio.create_task(_stop_all()))

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_shutdown)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover
            pass  # Windows, or not on the main thread

    try:
        await asyncio.gather(*(runtime.run(handle_signals=False) for runtime in runtimes))
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks)
