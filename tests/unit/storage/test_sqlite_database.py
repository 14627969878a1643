"""
Tests for the storage layer: SQLite backend, schema and factory.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from orderflow.core.exceptions import StoreUnavailableError
from orderflow.storage import create_database
from orderflow.storage.database import parse_timestamp
from orderflow.storage.schema import schema_statements
from orderflow.storage.sqlite import SQLiteDatabase, _adapt_param, _adapt_sql


class TestPlaceholders:
    def test_dollar_placeholders_become_numbered(self):
        assert _adapt_sql("SELECT $1, $2, $1, $10") == "SELECT ?1, ?2, ?1, ?10"

    def test_params_are_adapted(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)

        assert _adapt_param(ts) == "2024-01-02T03:04:05.000000+00:00"
        assert _adapt_param(Decimal("1.10")) == "1.10"
        assert _adapt_param(7) == 7

    def test_parse_timestamp(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, 6, tzinfo=UTC)

        assert parse_timestamp(_adapt_param(ts)) == ts
        assert parse_timestamp(ts) is ts
        assert parse_timestamp(None) is None


class TestTransactions:
    @pytest.mark.asyncio
    async def test_commit(self, inventory_db):
        async with inventory_db.transaction() as tx:
            inserted = await tx.execute(
                "INSERT INTO inventory_lines (sku, available, reserved, updated_at) VALUES ($1, $2, 0, $3)",
                "A",
                3,
                datetime.now(UTC),
            )

        assert inserted == 1
        assert await inventory_db.fetchval("SELECT available FROM inventory_lines WHERE sku = $1", "A") == 3

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, inventory_db):
        with pytest.raises(RuntimeError):
            async with inventory_db.transaction() as tx:
                await tx.execute(
                    "INSERT INTO inventory_lines (sku, available, reserved, updated_at) VALUES ('A', 1, 0, 'x')"
                )
                raise RuntimeError("boom")

        assert await inventory_db.fetch("SELECT * FROM inventory_lines") == []

    @pytest.mark.asyncio
    async def test_check_constraint_keeps_stock_non_negative(self, inventory_db):
        await inventory_db.execute(
            "INSERT INTO inventory_lines (sku, available, reserved, updated_at) VALUES ('A', 1, 0, 'x')"
        )

        with pytest.raises(Exception, match="CHECK constraint"):
            await inventory_db.execute("UPDATE inventory_lines SET available = -1 WHERE sku = 'A'")

        assert await inventory_db.fetchval("SELECT available FROM inventory_lines") == 1

    @pytest.mark.asyncio
    async def test_fetchrow_missing(self, inventory_db):
        assert await inventory_db.fetchrow("SELECT * FROM inventory_lines WHERE sku = $1", "x") is None
        assert await inventory_db.fetchval("SELECT sku FROM inventory_lines WHERE sku = $1", "x") is None

    @pytest.mark.asyncio
    async def test_transaction_before_initialize(self):
        db = SQLiteDatabase(":memory:")

        with pytest.raises(StoreUnavailableError):
            async with db.transaction():
                pass

    @pytest.mark.asyncio
    async def test_file_database_persists(self, tmp_path):
        path = str(tmp_path / "orders.db")
        async with SQLiteDatabase(path) as db:
            await db.execute(
                "INSERT INTO inventory_lines (sku, available, reserved, updated_at) VALUES ('A', 2, 0, 'x')"
            )

        async with SQLiteDatabase(path) as db:
            assert await db.fetchval("SELECT available FROM inventory_lines") == 2


class TestSchema:
    def test_service_tables(self):
        statements = schema_statements("sqlite", ["orders", "outbox"])

        assert any("CREATE TABLE IF NOT EXISTS orders" in s for s in statements)
        assert any("idx_outbox_status_sequence" in s for s in statements)
        assert not any("inventory_lines" in s for s in statements)

    def test_postgres_types(self):
        [outbox] = [s for s in schema_statements("postgresql", ["outbox"]) if "CREATE TABLE" in s]

        assert "BIGSERIAL PRIMARY KEY" in outbox
        assert "JSONB" in outbox
        assert "TIMESTAMPTZ" in outbox

    def test_unknown_table(self):
        with pytest.raises(ValueError, match="Unknown table"):
            schema_statements("sqlite", ["carts"])


class TestFactory:
    @pytest.mark.parametrize(
        ("url", "path"),
        [
            ("sqlite:///:memory:", ":memory:"),
            ("sqlite://", ":memory:"),
            ("sqlite:///orders.db", "orders.db"),
            ("sqlite:////var/lib/orders.db", "/var/lib/orders.db"),
        ],
    )
    def test_sqlite_urls(self, url, path):
        db = create_database(url)

        assert isinstance(db, SQLiteDatabase)
        assert db.db_path == path

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_database("mysql://localhost/orders")
