"""
Database - the atomic unit every component writes through.

Each service owns one Database. All of a service's stores (orders or
inventory lines, outbox, consumer ledger) live in it, so an aggregate change,
the outbox record announcing it and the ledger claim that guarded it can be
committed together:

    >>> async with database.transaction() as tx:
    ...     await orders.insert(tx, order)
    ...     await outbox.append(tx, record)
    ... # both rows committed, or neither if the block raised

SQL is written once with PostgreSQL-style `$n` placeholders; backends adapt it.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

Row = Mapping[str, Any]


class Transaction(ABC):
    """A connection bound to one open transaction."""

    @abstractmethod
    async def execute(self, sql: str, *args: Any) -> int:
        """Run a statement; returns the number of affected rows."""
        ...

    @abstractmethod
    async def fetch(self, sql: str, *args: Any) -> Sequence[Row]:
        ...

    @abstractmethod
    async def fetchrow(self, sql: str, *args: Any) -> Row | None:
        ...

    async def fetchval(self, sql: str, *args: Any) -> Any:
        row = await self.fetchrow(sql, *args)
        if row is None:
            return None
        return next(iter(dict(row).values()))


class Database(ABC):
    """
    Abstract transactional store for one service.

    Implementations guarantee that leaving `transaction()` by exception rolls
    back every statement issued through the yielded Transaction.
    """

    dialect: str = ""

    @abstractmethod
    async def initialize(self, tables: Sequence[str] | None = None) -> None:
        """Open connections and create the given tables (all if None)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager yielding a Transaction."""
        ...

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[Transaction]:
        async with self.transaction() as tx:
            yield tx

    async def fetch(self, sql: str, *args: Any) -> Sequence[Row]:
        """Run a read in its own short transaction."""
        async with self._read() as tx:
            return await tx.fetch(sql, *args)

    async def fetchrow(self, sql: str, *args: Any) -> Row | None:
        async with self._read() as tx:
            return await tx.fetchrow(sql, *args)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        async with self._read() as tx:
            return await tx.fetchval(sql, *args)

    async def execute(self, sql: str, *args: Any) -> int:
        """Run a single statement in its own transaction."""
        async with self.transaction() as tx:
            return await tx.execute(sql, *args)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Timestamps come back as datetimes (PostgreSQL) or ISO strings (SQLite)."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
