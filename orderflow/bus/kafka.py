"""
Kafka Event Bus - Production event bus on Apache Kafka.

Uses aiokafka:
- an idempotent producer with acks="all", so a publish returns only after the
  in-sync replicas have the message;
- consumers with auto-commit disabled, committing an offset only when the
  pipeline acknowledges the delivery (after its claim-and-apply unit commits).

Usage:
    >>> bus = KafkaEventBus(KafkaBusConfig(bootstrap_servers="localhost:9092"))
    >>> await bus.connect()
    >>> await bus.publish("order.created", order_id, event)
"""

import os
import uuid
from dataclasses import dataclass

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.errors import KafkaError

from orderflow.bus.base import BaseEventBus, BusConfig, Delivery
from orderflow.core.exceptions import EventBusConnectionError, EventBusPublishError
from orderflow.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class KafkaBusConfig(BusConfig):
    """
    Kafka-specific bus configuration.

    Attributes:
        bootstrap_servers: Kafka bootstrap servers (comma-separated)
        client_id: Client identifier
        acks: Acknowledgment mode; "all" waits for full replication
        enable_idempotence: Enable idempotent producer
        linger_ms: Linger time before sending batch
        compression_type: Compression (gzip, snappy, lz4, zstd, None)
        request_timeout_ms: Request timeout
        session_timeout_ms: Consumer session timeout (drives rebalances)
        sasl_mechanism: SASL mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username
        sasl_password: SASL password
        security_protocol: Security protocol (PLAINTEXT, SASL_SSL, etc.)
    """

    bootstrap_servers: str = "localhost:9092"
    client_id: str = "orderflow"
    acks: str = "all"
    enable_idempotence: bool = True
    linger_ms: int = 5
    compression_type: str | None = "gzip"
    request_timeout_ms: int = 30000
    session_timeout_ms: int = 10000

    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"

    def security_kwargs(self) -> dict:
        if not self.sasl_mechanism:
            return {}
        return {
            "sasl_mechanism": self.sasl_mechanism,
            "sasl_plain_username": self.sasl_username,
            "sasl_plain_password": self.sasl_password,
            "security_protocol": self.security_protocol,
        }


class KafkaSubscription:
    """One consumer-group member on one topic, backed by an AIOKafkaConsumer."""

    def __init__(self, consumer: AIOKafkaConsumer, topic: str, group: str, member_id: str):
        self._consumer = consumer
        self.topic = topic
        self.group = group
        self.member_id = member_id

    async def poll(self, max_records: int = 50, timeout: float = 1.0) -> list[Delivery]:
        batches = await self._consumer.getmany(
            timeout_ms=int(timeout * 1000), max_records=max_records
        )
        deliveries: list[Delivery] = []
        for tp, records in batches.items():
            for record in records:
                deliveries.append(
                    Delivery(
                        topic=tp.topic,
                        partition=tp.partition,
                        offset=record.offset,
                        key=record.key.decode("utf-8") if record.key else None,
                        value=record.value,
                        headers={k: v.decode("utf-8") for k, v in (record.headers or ())},
                    )
                )
        return deliveries

    async def ack(self, delivery: Delivery) -> None:
        tp = TopicPartition(delivery.topic, delivery.partition)
        try:
            await self._consumer.commit({tp: delivery.offset + 1})
        except KafkaError as e:
            # The partition moved during a rebalance; the new owner redelivers
            logger.warning(f"Commit of {delivery.topic}[{delivery.partition}]@{delivery.offset} failed: {e}")

    async def rewind(self, delivery: Delivery) -> None:
        # getmany() already moved the fetch position past the whole batch
        tp = TopicPartition(delivery.topic, delivery.partition)
        try:
            self._consumer.seek(tp, delivery.offset)
        except KafkaError as e:
            # Partition no longer assigned; the new owner starts at the committed offset
            logger.warning(f"Seek of {delivery.topic}[{delivery.partition}] to {delivery.offset} failed: {e}")

    async def close(self) -> None:
        await self._consumer.stop()
        logger.info(f"Consumer {self.member_id} left group {self.group} on {self.topic}")


class KafkaEventBus(BaseEventBus):
    """
    Kafka event bus using aiokafka.

    Usage:
        >>> config = KafkaBusConfig(bootstrap_servers="localhost:9092")
        >>> bus = KafkaEventBus(config)
        >>> await bus.connect()
        >>> sub = await bus.subscribe("order.created", "inventory-service")
    """

    def __init__(self, config: KafkaBusConfig | None = None):
        super().__init__(config)
        self.config: KafkaBusConfig = config or KafkaBusConfig()
        self._producer: AIOKafkaProducer | None = None
        self._subscriptions: list[KafkaSubscription] = []

    @classmethod
    def from_env(cls) -> "KafkaEventBus":
        """Create Kafka bus from environment variables."""
        config = KafkaBusConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            client_id=os.getenv("KAFKA_CLIENT_ID", "orderflow"),
            publish_timeout_seconds=float(os.getenv("KAFKA_PUBLISH_TIMEOUT", "10.0")),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
        )
        return cls(config)

    async def connect(self) -> None:
        if self._connected:
            return

        producer_kwargs = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.config.client_id,
            "acks": self.config.acks,
            "enable_idempotence": self.config.enable_idempotence,
            "linger_ms": self.config.linger_ms,
            "request_timeout_ms": self.config.request_timeout_ms,
            **self.config.security_kwargs(),
        }
        if self.config.compression_type:
            producer_kwargs["compression_type"] = self.config.compression_type

        try:
            self._producer = AIOKafkaProducer(**producer_kwargs)
            await self._producer.start()
        except KafkaError as e:
            msg = f"Failed to connect to Kafka: {e}"
            raise EventBusConnectionError(msg) from e

        self._connected = True
        logger.info(f"Connected to Kafka at {self.config.bootstrap_servers}")

    async def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not self._connected or not self._producer:
            msg = "Kafka producer not connected"
            raise EventBusConnectionError(msg)

        try:
            await self._producer.send_and_wait(
                topic=topic,
                value=value,
                key=self._encode_key(key),
                headers=self._convert_headers(headers),
            )
        except KafkaError as e:
            msg = f"Failed to publish to Kafka: {e}"
            raise EventBusPublishError(msg) from e
        logger.debug(f"Published message to Kafka topic {topic}")

    async def subscribe(
        self, topic: str, group: str, member_id: str | None = None
    ) -> KafkaSubscription:
        member_id = member_id or f"{group}-{uuid.uuid4().hex[:8]}"
        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=member_id,
            group_id=group,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            session_timeout_ms=self.config.session_timeout_ms,
            **self.config.security_kwargs(),
        )
        try:
            await consumer.start()
        except KafkaError as e:
            msg = f"Failed to join group {group} on {topic}: {e}"
            raise EventBusConnectionError(msg) from e

        subscription = KafkaSubscription(consumer, topic, group, member_id)
        self._subscriptions.append(subscription)
        logger.info(f"Consumer {member_id} joined group {group} on {topic}")
        return subscription

    @staticmethod
    def _convert_headers(headers: dict[str, str] | None) -> list | None:
        """Convert headers dict to Kafka format."""
        if not headers:
            return None
        return [(k, v.encode("utf-8") if isinstance(v, str) else v) for k, v in headers.items()]

    @staticmethod
    def _encode_key(key: str | None) -> bytes | None:
        return key.encode("utf-8") if key else None

    async def close(self) -> None:
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        if self._producer:
            await self._producer.stop()
            self._producer = None
        self._connected = False
        logger.info("Kafka event bus closed")

    async def health_check(self) -> bool:
        if not self._connected or not self._producer:
            return False
        try:
            await self._producer.client.fetch_all_metadata()
            return True
        except KafkaError:
            return False
