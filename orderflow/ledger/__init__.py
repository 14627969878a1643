"""
Idempotent consumer ledger.

Quick Start:
    >>> from orderflow.ledger import ConsumerLedger, HandlerResult, IdempotentConsumer
    >>>
    >>> consumer = IdempotentConsumer(database, ConsumerLedger(database), "order-service")
    >>> result = await consumer.process(event, handler)
"""

from orderflow.ledger.consumer import Handler, IdempotentConsumer
from orderflow.ledger.store import ConsumerLedger
from orderflow.ledger.types import HandlerResult, LedgerEntry, LedgerOutcome

__all__ = [
    "ConsumerLedger",
    "Handler",
    "HandlerResult",
    "IdempotentConsumer",
    "LedgerEntry",
    "LedgerOutcome",
]
