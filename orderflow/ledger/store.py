"""
Consumer Ledger - the record of which events a consumer already processed.

A claim is an insert keyed by (consumer_id, event_id). It runs in the same
transaction as the consumer's side effects, so the claim and the effect
commit together or not at all, and the primary key makes a second claim for
the same event a no-op.
"""

from datetime import datetime, timedelta

from orderflow.core.logger import get_logger
from orderflow.ledger.types import LedgerEntry, LedgerOutcome
from orderflow.storage.database import Database, Row, Transaction, parse_timestamp, utcnow

logger = get_logger(__name__)


class ConsumerLedger:
    """
    Ledger table access for one service.

    Usage:
        >>> ledger = ConsumerLedger(database)
        >>> async with database.transaction() as tx:
        ...     if await ledger.try_claim(tx, "inventory-service", event.event_id):
        ...         ...  # apply the effect with tx
    """

    def __init__(self, database: Database):
        self.database = database

    async def try_claim(
        self,
        tx: Transaction,
        consumer_id: str,
        event_id: str,
        order_id: str | None = None,
    ) -> bool:
        """
        Atomically claim an event for a consumer.

        Returns:
            True if this transaction holds the claim, False if the event was
            already processed (or is being processed by a transaction that
            will commit first)
        """
        inserted = await tx.execute(
            """
            INSERT INTO consumer_ledger (consumer_id, event_id, order_id, effect, outcome, processed_at)
            VALUES ($1, $2, $3, '', 'APPLIED', $4)
            ON CONFLICT (consumer_id, event_id) DO NOTHING
            """,
            consumer_id,
            event_id,
            order_id,
            utcnow(),
        )
        return inserted > 0

    async def record_outcome(
        self,
        tx: Transaction,
        consumer_id: str,
        event_id: str,
        outcome: LedgerOutcome,
        effect: str = "",
    ) -> None:
        await tx.execute(
            """
            UPDATE consumer_ledger SET outcome = $3, effect = $4
            WHERE consumer_id = $1 AND event_id = $2
            """,
            consumer_id,
            event_id,
            outcome.value,
            effect,
        )

    async def get(self, consumer_id: str, event_id: str) -> LedgerEntry | None:
        row = await self.database.fetchrow(
            "SELECT * FROM consumer_ledger WHERE consumer_id = $1 AND event_id = $2",
            consumer_id,
            event_id,
        )
        return self._row_to_entry(row) if row else None

    async def is_processed(self, consumer_id: str, event_id: str) -> bool:
        return await self.get(consumer_id, event_id) is not None

    async def entries_for_order(self, order_id: str) -> list[LedgerEntry]:
        rows = await self.database.fetch(
            "SELECT * FROM consumer_ledger WHERE order_id = $1 ORDER BY processed_at",
            order_id,
        )
        return [self._row_to_entry(row) for row in rows]

    async def purge_older_than(self, consumer_id: str, retention: timedelta) -> int:
        """
        Delete entries older than `retention`.

        The retention window must exceed the bus's maximum redelivery window,
        otherwise a late duplicate would be applied a second time.
        """
        cutoff: datetime = utcnow() - retention
        deleted = await self.database.execute(
            "DELETE FROM consumer_ledger WHERE consumer_id = $1 AND processed_at < $2",
            consumer_id,
            cutoff,
        )
        logger.info(f"Cleaned up {deleted} old ledger entries for {consumer_id}")
        return deleted

    @staticmethod
    def _row_to_entry(row: Row) -> LedgerEntry:
        return LedgerEntry(
            consumer_id=row["consumer_id"],
            event_id=row["event_id"],
            order_id=row["order_id"],
            effect=row["effect"],
            outcome=LedgerOutcome(row["outcome"]),
            processed_at=parse_timestamp(row["processed_at"]),
        )
