"""
Event bus implementations.

Available backends:
    - InMemoryEventBus: Partitioned in-process bus for tests and development
    - KafkaEventBus: Apache Kafka (aiokafka)

Factory:
    >>> from orderflow.bus import create_event_bus
    >>> bus = create_event_bus("memory", partitions=8)
"""

from orderflow.bus.base import BaseEventBus, BusConfig, Delivery, EventBus, Subscription
from orderflow.bus.factory import create_event_bus, create_event_bus_from_env, get_available_buses
from orderflow.bus.memory import InMemoryEventBus, InMemorySubscription

__all__ = [
    "BaseEventBus",
    "BusConfig",
    "Delivery",
    "EventBus",
    "InMemoryEventBus",
    "InMemorySubscription",
    "Subscription",
    "create_event_bus",
    "create_event_bus_from_env",
    "get_available_buses",
]
