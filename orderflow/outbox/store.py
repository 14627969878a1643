"""
Outbox Store - durable outbox records in the service's own database.

Records are appended inside the caller's transaction so they commit (or roll
back) together with the aggregate change they announce. Everything else the
publisher and operators need runs in short transactions of its own.

Usage:
    >>> store = OutboxStore(database)
    >>> async with database.transaction() as tx:
    ...     await orders.insert(tx, order)
    ...     await store.append(tx, record)
    >>>
    >>> batch = await store.drain_batch(limit=100)
"""

import json
from datetime import datetime
from typing import Any

from orderflow.core.logger import get_logger
from orderflow.outbox.state_machine import OutboxStateMachine
from orderflow.outbox.types import OutboxRecord, OutboxStatus
from orderflow.storage.database import Database, Row, Transaction, parse_timestamp, utcnow

logger = get_logger(__name__)


def _in_clause(statuses: list[OutboxStatus]) -> str:
    return ", ".join(f"'{s.value}'" for s in statuses)


# Conditional updates only ever touch a record still in a status the
# transition is valid from, so a SENT record can never be rewritten.
_SENT_FROM = _in_clause(OutboxStateMachine.sources(OutboxStatus.SENT))
_ERROR_FROM = _in_clause(OutboxStateMachine.sources(OutboxStatus.ERROR))
_REQUEUE_FROM = _in_clause(OutboxStateMachine.sources(OutboxStatus.NEW))


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class OutboxStore:
    """
    Outbox table access for one service.

    Usage:
        >>> store = OutboxStore(database)
        >>> await store.mark_sent(record.record_id)
        True
        >>> await store.mark_sent(record.record_id)  # already terminal
        False
    """

    def __init__(self, database: Database):
        self.database = database
        self._state_machine = OutboxStateMachine()

    async def append(self, tx: Transaction, record: OutboxRecord) -> OutboxRecord:
        """Insert a NEW record as part of the caller's transaction."""
        record.sequence = await tx.fetchval(
            """
            INSERT INTO outbox (
                record_id, aggregate_type, aggregate_id, event_type, event_id,
                schema_version, payload, headers, status, created_at,
                next_attempt_at, retry_count
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING sequence
            """,
            record.record_id,
            record.aggregate_type,
            record.aggregate_id,
            record.event_type,
            record.event_id,
            record.schema_version,
            json.dumps({"eventType": record.envelope_type, "body": record.payload}),
            json.dumps(record.headers),
            record.status.value,
            record.created_at,
            record.next_attempt_at,
            record.retry_count,
        )
        logger.debug(
            f"Outbox record {record.record_id} appended for "
            f"{record.aggregate_type}/{record.aggregate_id} ({record.event_type})"
        )
        return record

    async def drain_batch(self, limit: int = 100, now: datetime | None = None) -> list[OutboxRecord]:
        """
        NEW records due at `now`, oldest first.

        A record is held back while an earlier NEW record of the same
        aggregate is still backing off, so one aggregate's events always
        leave in creation order.
        """
        now = now or utcnow()
        rows = await self.database.fetch(
            """
            SELECT o.* FROM outbox o
            WHERE o.status = 'NEW'
              AND o.next_attempt_at <= $1
              AND NOT EXISTS (
                  SELECT 1 FROM outbox earlier
                  WHERE earlier.aggregate_type = o.aggregate_type
                    AND earlier.aggregate_id = o.aggregate_id
                    AND earlier.status = 'NEW'
                    AND earlier.sequence < o.sequence
                    AND earlier.next_attempt_at > $1
              )
            ORDER BY o.sequence
            LIMIT $2
            """,
            now,
            limit,
        )
        return [self._row_to_record(row) for row in rows]

    async def mark_sent(self, record_id: str) -> bool:
        """NEW → SENT. False if the record was already terminal."""
        updated = await self.database.execute(
            f"""
            UPDATE outbox SET status = 'SENT', sent_at = $2, last_error = NULL
            WHERE record_id = $1 AND status IN ({_SENT_FROM})
            """,
            record_id,
            utcnow(),
        )
        return updated > 0

    async def mark_error(self, record_id: str, reason: str) -> bool:
        """NEW → ERROR once the retry budget is exhausted."""
        updated = await self.database.execute(
            f"""
            UPDATE outbox
            SET status = 'ERROR', last_error = $2, retry_count = retry_count + 1
            WHERE record_id = $1 AND status IN ({_ERROR_FROM})
            """,
            record_id,
            reason,
        )
        return updated > 0

    async def mark_dead_lettered(self, record_id: str) -> bool:
        """Stamp an ERROR record once its dead-letter copy was acknowledged."""
        updated = await self.database.execute(
            """
            UPDATE outbox SET dead_lettered_at = $2
            WHERE record_id = $1 AND status = 'ERROR' AND dead_lettered_at IS NULL
            """,
            record_id,
            utcnow(),
        )
        return updated > 0

    async def awaiting_dead_letter(self, limit: int = 100) -> list[OutboxRecord]:
        """ERROR records whose dead-letter publish has not succeeded yet."""
        rows = await self.database.fetch(
            """
            SELECT * FROM outbox
            WHERE status = 'ERROR' AND dead_lettered_at IS NULL
            ORDER BY sequence
            LIMIT $1
            """,
            limit,
        )
        return [self._row_to_record(row) for row in rows]

    async def record_failure(self, record_id: str, reason: str, next_attempt_at: datetime) -> bool:
        """Count a failed attempt; the record stays NEW until `next_attempt_at`."""
        updated = await self.database.execute(
            """
            UPDATE outbox
            SET retry_count = retry_count + 1, last_error = $2, next_attempt_at = $3
            WHERE record_id = $1 AND status = 'NEW'
            """,
            record_id,
            reason,
            next_attempt_at,
        )
        return updated > 0

    async def requeue(self, record_id: str) -> bool:
        """
        Operator replay: ERROR → NEW with a fresh retry budget.

        Raises:
            InvalidOutboxTransitionError: If the record is not in ERROR
        """
        record = await self.get(record_id)
        if record is None:
            return False
        record = self._state_machine.requeue(record)

        updated = await self.database.execute(
            f"""
            UPDATE outbox
            SET status = 'NEW', retry_count = 0, next_attempt_at = $2, dead_lettered_at = NULL
            WHERE record_id = $1 AND status IN ({_REQUEUE_FROM})
            """,
            record_id,
            record.next_attempt_at,
        )
        if updated:
            logger.info(f"Outbox record {record_id} requeued (last error: {record.last_error})")
        return updated > 0

    async def get(self, record_id: str) -> OutboxRecord | None:
        row = await self.database.fetchrow("SELECT * FROM outbox WHERE record_id = $1", record_id)
        return self._row_to_record(row) if row else None

    async def pending_count(self) -> int:
        return int(await self.database.fetchval("SELECT COUNT(*) FROM outbox WHERE status = 'NEW'"))

    async def errored(self, limit: int = 100) -> list[OutboxRecord]:
        rows = await self.database.fetch(
            "SELECT * FROM outbox WHERE status = 'ERROR' ORDER BY sequence LIMIT $1",
            limit,
        )
        return [self._row_to_record(row) for row in rows]

    async def by_aggregate(self, aggregate_id: str) -> list[OutboxRecord]:
        rows = await self.database.fetch(
            "SELECT * FROM outbox WHERE aggregate_id = $1 ORDER BY sequence",
            aggregate_id,
        )
        return [self._row_to_record(row) for row in rows]

    async def purge_sent(self, older_than: datetime) -> int:
        """Delete SENT records acknowledged before `older_than`."""
        deleted = await self.database.execute(
            "DELETE FROM outbox WHERE status = 'SENT' AND sent_at < $1",
            older_than,
        )
        if deleted:
            logger.info(f"Purged {deleted} sent outbox records")
        return deleted

    def _row_to_record(self, row: Row) -> OutboxRecord:
        data = dict(row)
        stored = _load_json(data["payload"])
        return OutboxRecord(
            aggregate_type=data["aggregate_type"],
            aggregate_id=data["aggregate_id"],
            event_type=data["event_type"],
            payload=stored["body"],
            event_id=data["event_id"],
            envelope_type=stored["eventType"],
            schema_version=data["schema_version"],
            headers=_load_json(data["headers"]) or {},
            record_id=data["record_id"],
            status=OutboxStatus(data["status"]),
            created_at=parse_timestamp(data["created_at"]),
            sent_at=parse_timestamp(data["sent_at"]),
            next_attempt_at=parse_timestamp(data["next_attempt_at"]),
            retry_count=data["retry_count"],
            last_error=data["last_error"],
            sequence=data["sequence"],
            dead_lettered_at=parse_timestamp(data["dead_lettered_at"]),
        )
