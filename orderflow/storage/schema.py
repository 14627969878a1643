"""
Table definitions for both dialects.

    orders            order aggregate (order service only)
    inventory_lines   stock ledger (inventory service only)
    outbox            pending/sent/errored events, drained by status + sequence
    consumer_ledger   one row per (consumer_id, event_id); the primary key is
                      what makes a claim at-most-once

Every service creates `outbox` and `consumer_ledger` in its own database plus
its aggregate table.
"""

from collections.abc import Sequence

_COMMON = {
    "orders": """
        CREATE TABLE IF NOT EXISTS orders (
            order_id              TEXT PRIMARY KEY,
            customer_email        TEXT NOT NULL,
            items                 TEXT NOT NULL,
            total_amount          {numeric} NOT NULL,
            status                TEXT NOT NULL DEFAULT 'PENDING',
            created_at            {timestamp} NOT NULL,
            updated_at            {timestamp} NOT NULL,
            idempotency_key_hash  TEXT UNIQUE,
            CONSTRAINT valid_order_status CHECK (
                status IN ('PENDING', 'CONFIRMED', 'FAILED', 'CANCELED')
            )
        )
    """,
    "inventory_lines": """
        CREATE TABLE IF NOT EXISTS inventory_lines (
            sku        TEXT PRIMARY KEY,
            available  INTEGER NOT NULL DEFAULT 0,
            reserved   INTEGER NOT NULL DEFAULT 0,
            updated_at {timestamp} NOT NULL,
            CONSTRAINT non_negative_stock CHECK (available >= 0 AND reserved >= 0)
        )
    """,
    "outbox": """
        CREATE TABLE IF NOT EXISTS outbox (
            sequence         {serial},
            record_id        TEXT NOT NULL UNIQUE,
            aggregate_type   TEXT NOT NULL,
            aggregate_id     TEXT NOT NULL,
            event_type       TEXT NOT NULL,
            event_id         TEXT NOT NULL,
            schema_version   INTEGER NOT NULL DEFAULT 1,
            payload          {json} NOT NULL,
            headers          {json} NOT NULL,
            status           TEXT NOT NULL DEFAULT 'NEW',
            created_at       {timestamp} NOT NULL,
            sent_at          {timestamp},
            next_attempt_at  {timestamp} NOT NULL,
            retry_count      INTEGER NOT NULL DEFAULT 0,
            last_error       TEXT,
            dead_lettered_at {timestamp},
            CONSTRAINT valid_outbox_status CHECK (status IN ('NEW', 'SENT', 'ERROR'))
        )
    """,
    "outbox_index": """
        CREATE INDEX IF NOT EXISTS idx_outbox_status_sequence
            ON outbox (status, sequence)
    """,
    "outbox_aggregate_index": """
        CREATE INDEX IF NOT EXISTS idx_outbox_aggregate
            ON outbox (aggregate_id, sequence)
    """,
    "consumer_ledger": """
        CREATE TABLE IF NOT EXISTS consumer_ledger (
            consumer_id   TEXT NOT NULL,
            event_id      TEXT NOT NULL,
            order_id      TEXT,
            effect        TEXT NOT NULL DEFAULT '',
            outcome       TEXT NOT NULL DEFAULT 'APPLIED',
            processed_at  {timestamp} NOT NULL,
            PRIMARY KEY (consumer_id, event_id),
            CONSTRAINT valid_ledger_outcome CHECK (outcome IN ('APPLIED', 'REJECTED'))
        )
    """,
    "consumer_ledger_index": """
        CREATE INDEX IF NOT EXISTS idx_consumer_ledger_retention
            ON consumer_ledger (consumer_id, processed_at)
    """,
}

_TYPES = {
    "sqlite": {
        "numeric": "TEXT",
        "timestamp": "TEXT",
        "json": "TEXT",
        "serial": "INTEGER PRIMARY KEY AUTOINCREMENT",
    },
    "postgresql": {
        "numeric": "NUMERIC(14, 2)",
        "timestamp": "TIMESTAMPTZ",
        "json": "JSONB",
        "serial": "BIGSERIAL PRIMARY KEY",
    },
}

# table -> statements it needs, in creation order
_TABLE_STATEMENTS = {
    "orders": ["orders"],
    "inventory_lines": ["inventory_lines"],
    "outbox": ["outbox", "outbox_index", "outbox_aggregate_index"],
    "consumer_ledger": ["consumer_ledger", "consumer_ledger_index"],
}

ORDER_SERVICE_TABLES = ("orders", "outbox", "consumer_ledger")
INVENTORY_SERVICE_TABLES = ("inventory_lines", "outbox", "consumer_ledger")


def schema_statements(dialect: str, tables: Sequence[str] | None = None) -> list[str]:
    """DDL for `tables` (every table if None) in the given dialect."""
    types = _TYPES[dialect]
    selected = tables or list(_TABLE_STATEMENTS)
    statements = []
    for table in selected:
        if table not in _TABLE_STATEMENTS:
            msg = f"Unknown table: {table}"
            raise ValueError(msg)
        for name in _TABLE_STATEMENTS[table]:
            statements.append(_COMMON[name].format(**types).strip())
    return statements
