"""
SQLite Database - embedded store for development, tests and single-process
deployments.

Usage:
    >>> db = SQLiteDatabase("./data/orders.db")
    >>> await db.initialize()
    >>>
    >>> # In-memory (for testing)
    >>> db = SQLiteDatabase(":memory:")

One connection is shared by the service; transactions run one at a time
(BEGIN IMMEDIATE ... COMMIT) so a read-modify-write unit is atomic.
"""

import asyncio
import re
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

import aiosqlite

from orderflow.core.exceptions import StoreUnavailableError
from orderflow.core.logger import get_logger
from orderflow.storage.database import Database, Row, Transaction
from orderflow.storage.schema import schema_statements

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")


def _adapt_sql(sql: str) -> str:
    """Rewrite $n placeholders to SQLite's numbered ?n form."""
    return _PLACEHOLDER.sub(r"?\1", sql)


def _adapt_param(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, Decimal):
        return str(value)
    return value


class SQLiteTransaction(Transaction):
    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, *args: Any) -> int:
        cursor = await self._conn.execute(_adapt_sql(sql), [_adapt_param(a) for a in args])
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    async def fetch(self, sql: str, *args: Any) -> Sequence[Row]:
        async with self._conn.execute(_adapt_sql(sql), [_adapt_param(a) for a in args]) as cursor:
            return list(await cursor.fetchall())

    async def fetchrow(self, sql: str, *args: Any) -> Row | None:
        async with self._conn.execute(_adapt_sql(sql), [_adapt_param(a) for a in args]) as cursor:
            return await cursor.fetchone()


class SQLiteDatabase(Database):
    """
    SQLite-backed Database (aiosqlite).

    Attributes:
        db_path: Path to SQLite database file (or ":memory:")
    """

    dialect = "sqlite"

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self, tables: Sequence[str] | None = None) -> None:
        if self._conn is None:
            try:
                # Autocommit mode; transactions are opened explicitly below
                self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            except sqlite3.Error as e:
                msg = f"Cannot open SQLite database {self.db_path}: {e}"
                raise StoreUnavailableError(msg) from e
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys = ON")

        for statement in schema_statements(self.dialect, tables):
            await self._conn.execute(statement)
        logger.debug(f"SQLite schema ready at {self.db_path}")

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLiteTransaction]:
        if self._conn is None:
            msg = "Database not initialized. Call initialize() first."
            raise StoreUnavailableError(msg)

        async with self._lock:
            conn = self._conn
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                msg = f"Cannot begin transaction: {e}"
                raise StoreUnavailableError(msg) from e
            try:
                yield SQLiteTransaction(conn)
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")
