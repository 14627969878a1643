"""
Event Bus Factory - Create event bus instances by name.

Usage:
    >>> from orderflow.bus import create_event_bus
    >>> bus = create_event_bus("kafka", bootstrap_servers="localhost:9092")
    >>> await bus.connect()
"""

import os
from typing import Any

from orderflow.bus.base import EventBus
from orderflow.bus.memory import InMemoryEventBus
from orderflow.core.exceptions import MissingDependencyError


def _create_memory_bus(kwargs: dict) -> EventBus:
    return InMemoryEventBus(**kwargs)


def _create_kafka_bus(kwargs: dict) -> EventBus:
    from orderflow.bus.kafka import KafkaBusConfig, KafkaEventBus

    config = KafkaBusConfig(**kwargs) if kwargs else None
    return KafkaEventBus(config)


# Bus registry: type -> (factory_function, dependency_name)
_BUS_REGISTRY = {
    "memory": (_create_memory_bus, None),
    "kafka": (_create_kafka_bus, "aiokafka"),
}


def get_available_buses() -> list[str]:
    return list(_BUS_REGISTRY)


def create_event_bus(bus_type: str, **kwargs: Any) -> EventBus:
    """
    Create an event bus instance.

    Args:
        bus_type: Type of bus ('memory', 'kafka')
        **kwargs: Bus-specific configuration

    Raises:
        MissingDependencyError: If the bus driver is not installed
        ValueError: If bus type is unknown
    """
    bus_type = bus_type.lower().strip()

    if bus_type not in _BUS_REGISTRY:
        msg = f"Unknown bus type: '{bus_type}'\nAvailable buses: {', '.join(get_available_buses())}"
        raise ValueError(msg)

    factory, dependency = _BUS_REGISTRY[bus_type]

    try:
        return factory(kwargs)
    except ImportError as e:
        if dependency:
            raise MissingDependencyError(dependency, f"{bus_type} event bus") from e
        raise


def create_event_bus_from_env() -> EventBus:
    """
    Create an event bus from environment variables.

    Environment Variables:
        BUS_TYPE: memory (default) or kafka
        KAFKA_BOOTSTRAP_SERVERS, KAFKA_CLIENT_ID, KAFKA_PUBLISH_TIMEOUT,
        KAFKA_SASL_MECHANISM, KAFKA_SASL_USERNAME, KAFKA_SASL_PASSWORD,
        KAFKA_SECURITY_PROTOCOL: Kafka settings
    """
    bus_type = os.getenv("BUS_TYPE", "memory").lower()

    if bus_type == "memory":
        return InMemoryEventBus()

    if bus_type == "kafka":
        from orderflow.bus.kafka import KafkaEventBus

        return KafkaEventBus.from_env()

    msg = f"Unknown BUS_TYPE: {bus_type}"
    raise ValueError(msg)
