"""
Tests for orderflow.outbox.store - the outbox table.
"""

from datetime import timedelta

import pytest

from orderflow.core.exceptions import InvalidOutboxTransitionError
from orderflow.events.types import ORDER_CONFIRMED, ORDER_CREATED
from orderflow.outbox.types import OutboxRecord, OutboxStatus
from orderflow.storage.database import utcnow


def make_record(aggregate_id="order-1", topic=ORDER_CREATED, **kwargs) -> OutboxRecord:
    return OutboxRecord(
        aggregate_type="order",
        aggregate_id=aggregate_id,
        event_type=topic,
        envelope_type="OrderCreated" if topic == ORDER_CREATED else "OrderConfirmed",
        payload={"orderId": aggregate_id},
        headers={"correlationId": f"corr-{aggregate_id}"},
        **kwargs,
    )


async def append(db, store, record):
    async with db.transaction() as tx:
        await store.append(tx, record)
    return record


class TestAppend:
    """append() runs inside the caller's transaction."""

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_sequence(self, order_db, order_outbox):
        first = await append(order_db, order_outbox, make_record("a"))
        second = await append(order_db, order_outbox, make_record("b"))

        assert first.sequence is not None
        assert second.sequence > first.sequence

    @pytest.mark.asyncio
    async def test_append_round_trips_every_field(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record("a"))

        loaded = await order_outbox.get(record.record_id)

        assert loaded.event_id == record.event_id
        assert loaded.envelope_type == "OrderCreated"
        assert loaded.payload == {"orderId": "a"}
        assert loaded.headers == {"correlationId": "corr-a"}
        assert loaded.status == OutboxStatus.NEW
        assert loaded.created_at == record.created_at

    @pytest.mark.asyncio
    async def test_append_rolls_back_with_the_transaction(self, order_db, order_outbox):
        with pytest.raises(RuntimeError):
            async with order_db.transaction() as tx:
                await order_outbox.append(tx, make_record("a"))
                raise RuntimeError("crash before commit")

        assert await order_outbox.pending_count() == 0


class TestDrainBatch:
    """drain_batch() returns due NEW records in creation order."""

    @pytest.mark.asyncio
    async def test_returns_records_in_creation_order(self, order_db, order_outbox):
        records = [await append(order_db, order_outbox, make_record(f"o-{i}")) for i in range(5)]

        batch = await order_outbox.drain_batch(limit=10)

        assert [r.record_id for r in batch] == [r.record_id for r in records]

    @pytest.mark.asyncio
    async def test_respects_limit(self, order_db, order_outbox):
        for i in range(5):
            await append(order_db, order_outbox, make_record(f"o-{i}"))

        assert len(await order_outbox.drain_batch(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_skips_sent_and_errored(self, order_db, order_outbox):
        sent = await append(order_db, order_outbox, make_record("a"))
        errored = await append(order_db, order_outbox, make_record("b"))
        pending = await append(order_db, order_outbox, make_record("c"))
        await order_outbox.mark_sent(sent.record_id)
        await order_outbox.mark_error(errored.record_id, "boom")

        batch = await order_outbox.drain_batch()

        assert [r.record_id for r in batch] == [pending.record_id]

    @pytest.mark.asyncio
    async def test_backing_off_record_holds_back_its_aggregate(self, order_db, order_outbox):
        """A later record of the same aggregate waits; other aggregates do not."""
        first = await append(order_db, order_outbox, make_record("a"))
        later_same = await append(order_db, order_outbox, make_record("a", topic=ORDER_CONFIRMED))
        other = await append(order_db, order_outbox, make_record("b"))

        await order_outbox.record_failure(
            first.record_id, "timeout", utcnow() + timedelta(hours=1)
        )

        batch = await order_outbox.drain_batch()

        ids = [r.record_id for r in batch]
        assert other.record_id in ids
        assert first.record_id not in ids
        assert later_same.record_id not in ids

    @pytest.mark.asyncio
    async def test_record_becomes_due_after_backoff(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record("a"))
        await order_outbox.record_failure(record.record_id, "timeout", utcnow() + timedelta(minutes=5))

        assert await order_outbox.drain_batch() == []
        later = await order_outbox.drain_batch(now=utcnow() + timedelta(minutes=6))
        assert [r.record_id for r in later] == [record.record_id]


class TestStatusUpdates:
    """mark_sent/mark_error are no-ops on terminal records."""

    @pytest.mark.asyncio
    async def test_mark_sent_once(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())

        assert await order_outbox.mark_sent(record.record_id) is True
        assert await order_outbox.mark_sent(record.record_id) is False

        loaded = await order_outbox.get(record.record_id)
        assert loaded.status == OutboxStatus.SENT
        assert loaded.sent_at is not None

    @pytest.mark.asyncio
    async def test_sent_record_cannot_move_to_error(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        await order_outbox.mark_sent(record.record_id)

        assert await order_outbox.mark_error(record.record_id, "late failure") is False
        assert (await order_outbox.get(record.record_id)).status == OutboxStatus.SENT

    @pytest.mark.asyncio
    async def test_record_failure_keeps_record_new(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        retry_at = utcnow() + timedelta(seconds=30)

        await order_outbox.record_failure(record.record_id, "bus down", retry_at)

        loaded = await order_outbox.get(record.record_id)
        assert loaded.status == OutboxStatus.NEW
        assert loaded.retry_count == 1
        assert loaded.last_error == "bus down"
        assert loaded.next_attempt_at == retry_at

    @pytest.mark.asyncio
    async def test_errored_lists_error_records(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        await order_outbox.mark_error(record.record_id, "gave up")

        [errored] = await order_outbox.errored()

        assert errored.record_id == record.record_id
        assert errored.last_error == "gave up"


class TestRequeue:
    """Operator replay of ERROR records."""

    @pytest.mark.asyncio
    async def test_requeue_error_record(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        await order_outbox.record_failure(record.record_id, "x", utcnow())
        await order_outbox.mark_error(record.record_id, "gave up")

        assert await order_outbox.requeue(record.record_id) is True

        loaded = await order_outbox.get(record.record_id)
        assert loaded.status == OutboxStatus.NEW
        assert loaded.retry_count == 0
        assert [r.record_id for r in await order_outbox.drain_batch()] == [record.record_id]

    @pytest.mark.asyncio
    async def test_dead_letter_stamp_and_requeue_clears_it(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        await order_outbox.mark_error(record.record_id, "gave up")
        assert [r.record_id for r in await order_outbox.awaiting_dead_letter()] == [record.record_id]

        assert await order_outbox.mark_dead_lettered(record.record_id) is True
        assert await order_outbox.mark_dead_lettered(record.record_id) is False
        assert await order_outbox.awaiting_dead_letter() == []

        await order_outbox.requeue(record.record_id)
        assert (await order_outbox.get(record.record_id)).dead_lettered_at is None

    @pytest.mark.asyncio
    async def test_new_record_is_not_dead_lettered(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())

        assert await order_outbox.mark_dead_lettered(record.record_id) is False
        assert await order_outbox.awaiting_dead_letter() == []

    @pytest.mark.asyncio
    async def test_sent_record_is_never_requeued(self, order_db, order_outbox):
        record = await append(order_db, order_outbox, make_record())
        await order_outbox.mark_sent(record.record_id)

        with pytest.raises(InvalidOutboxTransitionError):
            await order_outbox.requeue(record.record_id)

    @pytest.mark.asyncio
    async def test_requeue_unknown_record(self, order_outbox):
        assert await order_outbox.requeue("missing") is False


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_purge_sent_only_removes_sent(self, order_db, order_outbox):
        sent = await append(order_db, order_outbox, make_record("a"))
        pending = await append(order_db, order_outbox, make_record("b"))
        await order_outbox.mark_sent(sent.record_id)

        deleted = await order_outbox.purge_sent(utcnow() + timedelta(seconds=1))

        assert deleted == 1
        assert await order_outbox.get(sent.record_id) is None
        assert await order_outbox.get(pending.record_id) is not None

    @pytest.mark.asyncio
    async def test_by_aggregate(self, order_db, order_outbox):
        await append(order_db, order_outbox, make_record("a"))
        await append(order_db, order_outbox, make_record("b"))
        await append(order_db, order_outbox, make_record("a", topic=ORDER_CONFIRMED))

        records = await order_outbox.by_aggregate("a")

        assert [r.event_type for r in records] == [ORDER_CREATED, ORDER_CONFIRMED]
