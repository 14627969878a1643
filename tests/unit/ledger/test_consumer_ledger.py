"""
Tests for the consumer ledger and IdempotentConsumer.
"""

import asyncio
from datetime import timedelta

import pytest

from orderflow.events.types import Event
from orderflow.ledger.consumer import IdempotentConsumer
from orderflow.ledger.types import HandlerResult, LedgerOutcome


def make_event(event_id="evt-1", order_id="order-1") -> Event:
    return Event(
        topic="order.created",
        key=order_id,
        event_type="OrderCreated",
        payload={"orderId": order_id},
        event_id=event_id,
    )


async def seed_stock(db, sku="A", available=5):
    await db.execute(
        "INSERT INTO inventory_lines (sku, available, reserved, updated_at) VALUES ($1, $2, 0, $3)",
        sku,
        available,
        "2024-01-01T00:00:00+00:00",
    )


async def available(db, sku="A") -> int:
    return await db.fetchval("SELECT available FROM inventory_lines WHERE sku = $1", sku)


class TestClaims:
    @pytest.mark.asyncio
    async def test_first_claim_wins(self, inventory_db, inventory_ledger):
        async with inventory_db.transaction() as tx:
            assert await inventory_ledger.try_claim(tx, "svc", "evt-1", "order-1") is True
            assert await inventory_ledger.try_claim(tx, "svc", "evt-1", "order-1") is False

        assert await inventory_ledger.is_processed("svc", "evt-1")

    @pytest.mark.asyncio
    async def test_claims_are_per_consumer(self, inventory_db, inventory_ledger):
        async with inventory_db.transaction() as tx:
            assert await inventory_ledger.try_claim(tx, "svc-a", "evt-1")
            assert await inventory_ledger.try_claim(tx, "svc-b", "evt-1")

    @pytest.mark.asyncio
    async def test_claim_rolls_back_with_transaction(self, inventory_db, inventory_ledger):
        with pytest.raises(RuntimeError):
            async with inventory_db.transaction() as tx:
                await inventory_ledger.try_claim(tx, "svc", "evt-1")
                raise RuntimeError("crash")

        assert not await inventory_ledger.is_processed("svc", "evt-1")

    @pytest.mark.asyncio
    async def test_record_outcome(self, inventory_db, inventory_ledger):
        async with inventory_db.transaction() as tx:
            await inventory_ledger.try_claim(tx, "svc", "evt-1", "order-1")
            await inventory_ledger.record_outcome(
                tx, "svc", "evt-1", LedgerOutcome.REJECTED, "discarded:CANCELED"
            )

        entry = await inventory_ledger.get("svc", "evt-1")
        assert entry.outcome == LedgerOutcome.REJECTED
        assert entry.effect == "discarded:CANCELED"
        assert entry.order_id == "order-1"
        assert entry.processed_at is not None

    @pytest.mark.asyncio
    async def test_entries_for_order(self, inventory_db, inventory_ledger):
        async with inventory_db.transaction() as tx:
            await inventory_ledger.try_claim(tx, "svc", "evt-1", "order-1")
            await inventory_ledger.try_claim(tx, "svc", "evt-2", "order-2")

        entries = await inventory_ledger.entries_for_order("order-1")

        assert [e.event_id for e in entries] == ["evt-1"]


class TestIdempotentConsumer:
    @pytest.mark.asyncio
    async def test_duplicate_applies_effect_once(self, inventory_db, inventory_ledger):
        await seed_stock(inventory_db)
        consumer = IdempotentConsumer(inventory_db, inventory_ledger, "inventory-service")
        calls = []

        async def reserve(tx, event):
            calls.append(event.event_id)
            await tx.execute("UPDATE inventory_lines SET available = available - 1 WHERE sku = 'A'")
            return HandlerResult.applied("reserved")

        first = await consumer.process(make_event(), reserve)
        second = await consumer.process(make_event(), reserve)

        assert first == HandlerResult.applied("reserved")
        assert second is None
        assert calls == ["evt-1"]
        assert await available(inventory_db) == 4

    @pytest.mark.asyncio
    async def test_concurrent_instances_apply_effect_once(self, inventory_db, inventory_ledger):
        """Two handler instances racing on one event: exactly one claim commits."""
        await seed_stock(inventory_db)
        instances = [
            IdempotentConsumer(inventory_db, inventory_ledger, "inventory-service")
            for _ in range(2)
        ]
        calls = []

        async def reserve(tx, event):
            calls.append(event.event_id)
            await asyncio.sleep(0)
            await tx.execute("UPDATE inventory_lines SET available = available - 1 WHERE sku = 'A'")
            return HandlerResult.applied("reserved")

        results = await asyncio.gather(
            *(instance.process(make_event(), reserve) for instance in instances)
        )

        assert results.count(None) == 1
        assert calls == ["evt-1"]
        assert await available(inventory_db) == 4

    @pytest.mark.asyncio
    async def test_handler_failure_rolls_back_claim_and_effect(
        self, inventory_db, inventory_ledger
    ):
        """A crash mid-handler leaves no trace; the redelivery is processed afresh."""
        await seed_stock(inventory_db)
        consumer = IdempotentConsumer(inventory_db, inventory_ledger, "inventory-service")

        async def crash(tx, event):
            await tx.execute("UPDATE inventory_lines SET available = available - 1 WHERE sku = 'A'")
            raise ConnectionError("store went away")

        with pytest.raises(ConnectionError):
            await consumer.process(make_event(), crash)

        assert await available(inventory_db) == 5
        assert not await inventory_ledger.is_processed("inventory-service", "evt-1")

        async def reserve(tx, event):
            await tx.execute("UPDATE inventory_lines SET available = available - 1 WHERE sku = 'A'")
            return HandlerResult.applied("reserved")

        assert await consumer.process(make_event(), reserve) is not None
        assert await available(inventory_db) == 4

    @pytest.mark.asyncio
    async def test_rejected_outcome_is_recorded(self, inventory_db, inventory_ledger):
        consumer = IdempotentConsumer(inventory_db, inventory_ledger, "order-service")

        async def discard(tx, event):
            return HandlerResult.rejected("discarded:unknown-order")

        result = await consumer.process(make_event(), discard)

        assert result.outcome == LedgerOutcome.REJECTED
        entry = await inventory_ledger.get("order-service", "evt-1")
        assert entry.effect == "discarded:unknown-order"


class TestRetention:
    @pytest.mark.asyncio
    async def test_purge_only_old_entries_of_one_consumer(self, inventory_db, inventory_ledger):
        async with inventory_db.transaction() as tx:
            await inventory_ledger.try_claim(tx, "svc-a", "evt-1")
            await inventory_ledger.try_claim(tx, "svc-b", "evt-2")

        assert await inventory_ledger.purge_older_than("svc-a", timedelta(days=1)) == 0
        assert await inventory_ledger.purge_older_than("svc-a", timedelta(seconds=-1)) == 1

        assert not await inventory_ledger.is_processed("svc-a", "evt-1")
        assert await inventory_ledger.is_processed("svc-b", "evt-2")
