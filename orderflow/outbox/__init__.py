"""
Transactional Outbox

Every event a service emits is first written as an outbox record in the same
transaction as the state change it announces, then published by a background
OutboxPublisher. Publishing is at-least-once; consumers deduplicate on the
stable event id.

Quick Start:
    >>> from orderflow.outbox import OutboxPublisher, OutboxRecord, OutboxStore
    >>>
    >>> store = OutboxStore(database)
    >>> async with database.transaction() as tx:
    ...     await orders.insert(tx, order)
    ...     await store.append(tx, OutboxRecord.for_event(event, "order"))
    >>>
    >>> publisher = OutboxPublisher(store, bus, dead_letters)
    >>> await publisher.start()
"""

from orderflow.outbox.publisher import OutboxPublisher
from orderflow.outbox.state_machine import OutboxStateMachine
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxConfig, OutboxRecord, OutboxStatus

__all__ = [
    "OutboxConfig",
    "OutboxPublisher",
    "OutboxRecord",
    "OutboxStateMachine",
    "OutboxStatus",
    "OutboxStore",
]
