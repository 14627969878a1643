"""
Service runtime lifecycle: background loops, worker fan-out, housekeeping.
"""

import asyncio
import os
import signal
import sys
from dataclasses import replace

import pytest

from orderflow.core.config import ServiceConfig
from orderflow.events.types import INVENTORY_RESERVED, ORDER_CONFIRMED, ORDER_CREATED
from orderflow.orders.types import OrderStatus
from orderflow.services import InventoryServiceRuntime, OrderServiceRuntime, run_services


def config_for(name, fast_outbox_config, fast_consumer_config, **overrides):
    config = ServiceConfig(
        service_name=name,
        database_url="sqlite:///:memory:",
        outbox=fast_outbox_config,
        consumer=fast_consumer_config,
    )
    return replace(config, **overrides)


class TestWiring:
    @pytest.mark.asyncio
    async def test_subscriptions(self, order_service, inventory_service):
        order_topics = [(w.topic, w.group) for w in order_service.workers]
        inventory_topics = [(w.topic, w.group) for w in inventory_service.workers]

        assert (INVENTORY_RESERVED, "order-service") in order_topics
        assert (ORDER_CONFIRMED, "notification-service") in order_topics
        assert inventory_topics == [(ORDER_CREATED, "inventory-service")]

    @pytest.mark.asyncio
    async def test_workers_per_topic(self, bus, fast_outbox_config, fast_consumer_config):
        runtime = InventoryServiceRuntime(
            config_for("inventory", fast_outbox_config, fast_consumer_config, workers_per_topic=3),
            bus,
        )
        await runtime.initialize()
        try:
            assert len(runtime.workers) == 3
            assert len({w.member_id for w in runtime.workers}) == 3
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_without_notifications(self, bus, fast_outbox_config, fast_consumer_config):
        runtime = OrderServiceRuntime(
            config_for("order", fast_outbox_config, fast_consumer_config), bus, notifications=False
        )
        await runtime.initialize()
        try:
            assert {w.group for w in runtime.workers} == {"order-service"}
        finally:
            await runtime.close()


class TestBackgroundLoops:
    @pytest.mark.asyncio
    async def test_run_until_stopped(self, bus, fast_outbox_config, fast_consumer_config):
        """Both services running as background loops drive an order to CONFIRMED."""
        orders = OrderServiceRuntime(config_for("order", fast_outbox_config, fast_consumer_config), bus)
        inventory = InventoryServiceRuntime(
            config_for("inventory", fast_outbox_config, fast_consumer_config), bus
        )
        await orders.initialize()
        await inventory.initialize()
        await inventory.engine.stock("A", 5)

        tasks = [asyncio.create_task(orders.run()), asyncio.create_task(inventory.run())]
        order = await orders.orders.create_order(
            "ada@example.com", [{"sku": "A", "quantity": 2, "unit_price": "1"}]
        )

        status = OrderStatus.PENDING
        for _ in range(300):
            status = (await orders.orders.get_order(order.order_id)).status
            if status != OrderStatus.PENDING:
                break
            await asyncio.sleep(0.01)

        await orders.stop()
        await inventory.stop()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=2.0)

        assert status == OrderStatus.CONFIRMED
        assert not orders.publisher.is_running
        assert all(not w.is_running for w in orders.workers + inventory.workers)



class TestSignals:
    @pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers need a POSIX loop")
    @pytest.mark.asyncio
    async def test_sigterm_stops_every_runtime_in_the_process(
        self, bus, fast_outbox_config, fast_consumer_config
    ):
        orders = OrderServiceRuntime(config_for("order", fast_outbox_config, fast_consumer_config), bus)
        inventory = InventoryServiceRuntime(
            config_for("inventory", fast_outbox_config, fast_consumer_config), bus
        )
        runtimes = [orders, inventory]
        task = asyncio.create_task(run_services(runtimes))

        for _ in range(300):
            if all(r.publisher.is_running and r.workers for r in runtimes) and all(
                w.is_running for r in runtimes for w in r.workers
            ):
                break
            await asyncio.sleep(0.01)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=2.0)

        assert [r.publisher.is_running for r in runtimes] == [False, False]
        assert all(not w.is_running for r in runtimes for w in r.workers)


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_purge_ledger_keeps_recent_entries(
        self, order_service, inventory_service, settle
    ):
        await inventory_service.engine.stock("A", 5)
        await order_service.orders.create_order(
            "ada@example.com", [{"sku": "A", "quantity": 1, "unit_price": "1"}]
        )
        await settle(order_service, inventory_service)

        assert await inventory_service.purge_ledger() == 0
        assert await order_service.purge_ledger() == 0
