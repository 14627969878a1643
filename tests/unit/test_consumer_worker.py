"""
Tests for ConsumerWorker: ack, retry, dead-lettering, shutdown.
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from aiokafka import TopicPartition

from orderflow.bus.kafka import KafkaSubscription
from orderflow.consumer import ConsumerWorker
from orderflow.core.exceptions import EventBusPublishError, PoisonEventError
from orderflow.deadletter import CONSUMER_HEADER, REASON_HEADER, SOURCE_TOPIC_HEADER
from orderflow.events.codec import build_event, encode_event
from orderflow.events.schemas import OrderConfirmedV1
from orderflow.events.types import ORDER_CONFIRMED, dlq_topic
from orderflow.storage.database import utcnow

GROUP = "notification-service"


def confirmed(order_id="order-1"):
    body = OrderConfirmedV1(event_id=str(uuid.uuid4()), order_id=order_id, confirmed_at=utcnow())
    return build_event(ORDER_CONFIRMED, order_id, body, {"correlationId": "corr-1"})


class Recorder:
    """Handler that fails a given number of times before succeeding."""

    def __init__(self, failures=0, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.seen = []

    async def __call__(self, event):
        self.seen.append(event.event_id)
        if self.failures:
            self.failures -= 1
            raise self.exc("transient")


@pytest.fixture
def make_worker(bus, dead_letters, fast_consumer_config):
    workers = []

    def _make(handler, member_id=None):
        worker = ConsumerWorker(
            bus, ORDER_CONFIRMED, GROUP, handler, dead_letters,
            config=fast_consumer_config, member_id=member_id,
        )
        workers.append(worker)
        return worker

    yield _make


class TestHandling:
    @pytest.mark.asyncio
    async def test_handled_delivery_is_acked(self, bus, make_worker):
        handler = Recorder()
        worker = make_worker(handler)
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        assert await worker.run_once() == 1
        assert await worker.run_once() == 0
        assert handler.seen == [event.event_id]
        assert worker.get_stats()["handled"] == 1

    @pytest.mark.asyncio
    async def test_same_key_handled_in_publish_order(self, bus, make_worker):
        handler = Recorder()
        worker = make_worker(handler)
        events = [confirmed("order-1") for _ in range(3)]
        for event in events:
            await bus.publish(ORDER_CONFIRMED, event.key, event)

        for _ in range(3):
            await worker.run_once()

        assert handler.seen == [e.event_id for e in events]


class TestPoison:
    @pytest.mark.asyncio
    async def test_undecodable_message_is_dead_lettered_and_acked(self, bus, make_worker):
        handler = Recorder()
        worker = make_worker(handler)
        await bus.publish_raw(ORDER_CONFIRMED, "order-1", b'{"eventType": "OrderConfirmed"}')

        assert await worker.run_once() == 1

        assert handler.seen == []
        [quarantined] = bus.published(dlq_topic(ORDER_CONFIRMED))
        assert quarantined.value == b'{"eventType": "OrderConfirmed"}'
        assert quarantined.headers[SOURCE_TOPIC_HEADER] == ORDER_CONFIRMED
        assert quarantined.headers[CONSUMER_HEADER] == GROUP
        assert quarantined.headers[REASON_HEADER] == "missing eventType or version"

    @pytest.mark.asyncio
    async def test_unknown_version_is_poison(self, bus, make_worker):
        worker = make_worker(Recorder())
        await bus.publish_raw(
            ORDER_CONFIRMED,
            "order-1",
            b'{"eventType": "OrderConfirmed", "version": 9, "eventId": "e", "orderId": "o"}',
        )

        await worker.run_once()

        [quarantined] = bus.published(dlq_topic(ORDER_CONFIRMED))
        assert "no schema for OrderConfirmed v9" in quarantined.headers[REASON_HEADER]

    @pytest.mark.asyncio
    async def test_handler_poison_is_not_retried(self, bus, make_worker):
        handler = Recorder(failures=5, exc=PoisonEventError)
        worker = make_worker(handler)
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        assert await worker.run_once() == 1

        assert len(handler.seen) == 1
        assert len(bus.published(dlq_topic(ORDER_CONFIRMED))) == 1

    @pytest.mark.asyncio
    async def test_poison_does_not_block_the_partition(self, bus, make_worker):
        handler = Recorder()
        worker = make_worker(handler)
        event = confirmed("order-1")
        await bus.publish_raw(ORDER_CONFIRMED, "order-1", b"garbage")
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        await worker.run_once()
        await worker.run_once()

        assert handler.seen == [event.event_id]


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_retried_in_place(self, bus, make_worker):
        handler = Recorder(failures=2)
        worker = make_worker(handler)
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        assert await worker.run_once() == 1

        assert handler.seen == [event.event_id] * 3
        assert bus.published(dlq_topic(ORDER_CONFIRMED)) == []
        assert worker.get_stats()["retries"] == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_dead_letter_and_ack(self, bus, make_worker):
        handler = Recorder(failures=100)
        worker = make_worker(handler)
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        assert await worker.run_once() == 1

        assert len(handler.seen) == 3
        [quarantined] = bus.published(dlq_topic(ORDER_CONFIRMED))
        assert quarantined.headers[REASON_HEADER].startswith("retry budget exhausted after 3 attempts")
        assert quarantined.headers["correlationId"] == "corr-1"
        assert worker.get_stats()["dead_lettered"] == 1


class TestShutdown:
    @pytest.mark.asyncio
    async def test_failure_during_stop_leaves_delivery_for_another_member(
        self, bus, make_worker
    ):
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)
        worker = None

        async def fail_while_stopping(_event):
            await worker.stop()
            raise ConnectionError("going down")

        worker = make_worker(fail_while_stopping, member_id="member-a")

        assert await worker.run_once() == 0
        await worker.close()

        handler = Recorder()
        replacement = make_worker(handler, member_id="member-b")
        assert await replacement.run_once() == 1
        assert handler.seen == [event.event_id]
        assert bus.published(dlq_topic(ORDER_CONFIRMED)) == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, bus, make_worker):
        handler = Recorder()
        worker = make_worker(handler)
        task = asyncio.create_task(worker.start())
        event = confirmed()
        await bus.publish(ORDER_CONFIRMED, event.key, event)

        for _ in range(200):
            if handler.seen:
                break
            await asyncio.sleep(0.01)

        assert worker.is_running
        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert handler.seen == [event.event_id]
        assert not worker.is_running


def kafka_record(offset, value):
    return MagicMock(offset=offset, key=b"order-1", value=value, headers=[])


@pytest.fixture
def kafka_worker(fast_consumer_config):
    """A worker on a KafkaSubscription whose consumer returns one fixed batch."""

    def _make(batches, handler, dead_letters=None):
        consumer = MagicMock()
        consumer.getmany = AsyncMock(return_value=batches)
        consumer.commit = AsyncMock()
        consumer.seek = MagicMock()
        subscription = KafkaSubscription(consumer, ORDER_CONFIRMED, GROUP, "member-a")
        bus = MagicMock()
        bus.subscribe = AsyncMock(return_value=subscription)
        if dead_letters is None:
            dead_letters = MagicMock()
            dead_letters.route = AsyncMock()
        worker = ConsumerWorker(
            bus, ORDER_CONFIRMED, GROUP, handler, dead_letters,
            config=fast_consumer_config, member_id="member-a",
        )
        return worker, consumer

    return _make


def committed(consumer):
    return [call.args[0] for call in consumer.commit.await_args_list]


class TestPartitionRewind:
    """An unacknowledged delivery is never committed past within a batch."""

    @pytest.mark.asyncio
    async def test_later_offsets_wait_behind_an_unacked_delivery(self, kafka_worker):
        first, second = confirmed(), confirmed()
        p0 = TopicPartition(ORDER_CONFIRMED, 0)
        worker = None
        seen = []

        async def handler(event):
            seen.append(event.event_id)
            if event.event_id == first.event_id:
                await worker.stop()
                raise ConnectionError("going down")

        worker, consumer = kafka_worker(
            {p0: [kafka_record(0, encode_event(first)), kafka_record(1, encode_event(second))]},
            handler,
        )

        assert await worker.run_once() == 0

        assert seen == [first.event_id]
        assert committed(consumer) == []
        consumer.seek.assert_called_once_with(p0, 0)

    @pytest.mark.asyncio
    async def test_other_partitions_keep_going(self, kafka_worker):
        first, second, other = confirmed(), confirmed(), confirmed("order-2")
        p0 = TopicPartition(ORDER_CONFIRMED, 0)
        p1 = TopicPartition(ORDER_CONFIRMED, 1)
        worker = None

        async def handler(event):
            if event.event_id == first.event_id:
                await worker.stop()
                raise ConnectionError("going down")

        worker, consumer = kafka_worker(
            {
                p0: [kafka_record(0, encode_event(first)), kafka_record(1, encode_event(second))],
                p1: [kafka_record(5, encode_event(other))],
            },
            handler,
        )

        assert await worker.run_once() == 1

        assert committed(consumer) == [{p1: 6}]
        consumer.seek.assert_called_once_with(p0, 0)

    @pytest.mark.asyncio
    async def test_failed_dead_letter_rewinds_the_rest_of_the_batch(self, kafka_worker):
        router = MagicMock()
        router.route = AsyncMock(side_effect=EventBusPublishError("bus down"))
        p0 = TopicPartition(ORDER_CONFIRMED, 0)
        p1 = TopicPartition(ORDER_CONFIRMED, 1)
        handler = Recorder()

        worker, consumer = kafka_worker(
            {
                p0: [kafka_record(0, b"garbage"), kafka_record(1, encode_event(confirmed()))],
                p1: [kafka_record(3, encode_event(confirmed("order-2")))],
            },
            handler,
            dead_letters=router,
        )

        with pytest.raises(EventBusPublishError):
            await worker.run_once()

        assert handler.seen == []
        assert committed(consumer) == []
        assert consumer.seek.call_args_list == [call(p0, 0), call(p1, 3)]
