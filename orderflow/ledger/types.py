"""
Consumer ledger types.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class LedgerOutcome(Enum):
    """How a consumer disposed of an inbound event."""

    APPLIED = "APPLIED"
    """The event's effect was applied"""

    REJECTED = "REJECTED"
    """The event was accepted but deliberately had no effect (e.g. a stale decision)"""


@dataclass(frozen=True)
class HandlerResult:
    """
    What a handler did with one event.

    Attributes:
        outcome: APPLIED or REJECTED
        effect: Short description stored in the ledger
            ("reserved", "rejected:SKU-1,SKU-2", "discarded:CANCELED")
    """

    outcome: LedgerOutcome
    effect: str = ""

    @classmethod
    def applied(cls, effect: str = "") -> "HandlerResult":
        return cls(LedgerOutcome.APPLIED, effect)

    @classmethod
    def rejected(cls, effect: str = "") -> "HandlerResult":
        return cls(LedgerOutcome.REJECTED, effect)


@dataclass
class LedgerEntry:
    """One (consumer_id, event_id) claim."""

    consumer_id: str
    event_id: str
    order_id: str | None
    effect: str
    outcome: LedgerOutcome
    processed_at: datetime
