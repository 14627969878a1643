"""
Outbox State Machine - valid outbox record transitions.

State Diagram:

    ┌─────┐  publish acknowledged   ┌──────┐
    │ NEW │ ──────────────────────→ │ SENT │
    └──┬──┘                         └──────┘
       │ ▲
       │ │ requeue (operator replay)
       ▼ │
    ┌───────┐
    │ ERROR │
    └───────┘

A failed attempt with budget left keeps the record NEW (retry_count + 1,
next_attempt_at pushed out). SENT is terminal: a record is never published
again once the bus acknowledged it.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from orderflow.core.exceptions import InvalidOutboxTransitionError
from orderflow.outbox.types import OutboxRecord, OutboxStatus


class OutboxStateMachine:
    """
    State machine for outbox record lifecycle.

    Usage:
        >>> sm = OutboxStateMachine(max_retries=10)
        >>> try:
        ...     await bus.publish(...)
        ...     record = sm.mark_sent(record)
        ... except EventBusError as e:
        ...     record = sm.record_failure(record, str(e), delay=1.0)
        ...     if sm.exhausted(record):
        ...         record = sm.mark_error(record, str(e))
    """

    VALID_TRANSITIONS = {
        OutboxStatus.NEW: [OutboxStatus.SENT, OutboxStatus.ERROR],
        OutboxStatus.ERROR: [OutboxStatus.NEW],
        OutboxStatus.SENT: [],  # Terminal state
    }

    def __init__(
        self,
        max_retries: int = 10,
        on_transition: Callable[[OutboxRecord, OutboxStatus, OutboxStatus], Any] | None = None,
    ):
        self.max_retries = max_retries
        self._on_transition = on_transition

    @classmethod
    def sources(cls, target: OutboxStatus) -> list[OutboxStatus]:
        """Statuses from which `target` may be reached."""
        return [s for s, targets in cls.VALID_TRANSITIONS.items() if target in targets]

    def can_transition(self, record: OutboxRecord, target: OutboxStatus) -> bool:
        return target in self.VALID_TRANSITIONS.get(record.status, [])

    def _transition(self, record: OutboxRecord, target: OutboxStatus) -> OutboxRecord:
        old_status = record.status
        if not self.can_transition(record, target):
            raise InvalidOutboxTransitionError(record.record_id, old_status.value, target.value)

        record.status = target
        if self._on_transition:
            self._on_transition(record, old_status, target)
        return record

    def mark_sent(self, record: OutboxRecord) -> OutboxRecord:
        record = self._transition(record, OutboxStatus.SENT)
        record.sent_at = datetime.now(UTC)
        return record

    def mark_error(self, record: OutboxRecord, error_message: str) -> OutboxRecord:
        record = self._transition(record, OutboxStatus.ERROR)
        record.last_error = error_message
        return record

    def requeue(self, record: OutboxRecord) -> OutboxRecord:
        """ERROR → NEW with a fresh retry budget (operator replay)."""
        record = self._transition(record, OutboxStatus.NEW)
        record.retry_count = 0
        record.next_attempt_at = datetime.now(UTC)
        return record

    def record_failure(self, record: OutboxRecord, error_message: str, delay: float) -> OutboxRecord:
        """Count a failed attempt; the record stays NEW and backs off."""
        if record.status != OutboxStatus.NEW:
            raise InvalidOutboxTransitionError(
                record.record_id, record.status.value, OutboxStatus.NEW.value
            )
        record.retry_count += 1
        record.last_error = error_message
        record.next_attempt_at = datetime.now(UTC) + timedelta(seconds=delay)
        return record

    def exhausted(self, record: OutboxRecord) -> bool:
        """True once the record used up its retry budget."""
        return record.retry_count >= self.max_retries
