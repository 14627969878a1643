"""
Per-service transactional storage.

Available backends:
    - SQLiteDatabase: Embedded, for tests and single-process runs (aiosqlite)
    - PostgreSQLDatabase: Production (asyncpg)
"""

from orderflow.storage.database import Database, Transaction, parse_timestamp, utcnow
from orderflow.storage.factory import create_database
from orderflow.storage.schema import (
    INVENTORY_SERVICE_TABLES,
    ORDER_SERVICE_TABLES,
    schema_statements,
)
from orderflow.storage.sqlite import SQLiteDatabase

__all__ = [
    "INVENTORY_SERVICE_TABLES",
    "ORDER_SERVICE_TABLES",
    "Database",
    "SQLiteDatabase",
    "Transaction",
    "create_database",
    "parse_timestamp",
    "schema_statements",
    "utcnow",
]
