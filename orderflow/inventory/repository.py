"""
Inventory line persistence.
"""

from collections.abc import Iterable

from orderflow.inventory.types import InventoryLine
from orderflow.storage.database import Database, Row, Transaction, parse_timestamp, utcnow


class InventoryRepository:
    """
    Reads and conditional writes on `inventory_lines`.

    Reservation is a conditional update (`available >= quantity`) so stock
    can never go negative even when two units race on the same sku.
    """

    def __init__(self, database: Database):
        self.database = database

    async def get(self, sku: str) -> InventoryLine | None:
        row = await self.database.fetchrow("SELECT * FROM inventory_lines WHERE sku = $1", sku)
        return self._row_to_line(row) if row else None

    async def get_many(self, tx: Transaction, skus: Iterable[str]) -> dict[str, InventoryLine]:
        """Lines for the given skus inside the caller's transaction; unknown skus are absent."""
        lines = {}
        for sku in skus:
            row = await tx.fetchrow("SELECT * FROM inventory_lines WHERE sku = $1", sku)
            if row:
                lines[sku] = self._row_to_line(row)
        return lines

    async def list_all(self) -> list[InventoryLine]:
        rows = await self.database.fetch("SELECT * FROM inventory_lines ORDER BY sku")
        return [self._row_to_line(row) for row in rows]

    async def set_stock(self, sku: str, available: int) -> InventoryLine:
        """Set the available quantity of a sku, creating the line if needed."""
        if available < 0:
            msg = f"Stock for {sku} cannot be negative"
            raise ValueError(msg)
        async with self.database.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO inventory_lines (sku, available, reserved, updated_at)
                VALUES ($1, $2, 0, $3)
                ON CONFLICT (sku) DO UPDATE
                SET available = excluded.available, updated_at = excluded.updated_at
                """,
                sku,
                available,
                utcnow(),
            )
            row = await tx.fetchrow("SELECT * FROM inventory_lines WHERE sku = $1", sku)
        return self._row_to_line(row)

    async def reserve(self, tx: Transaction, sku: str, quantity: int) -> bool:
        """Move `quantity` from available to reserved. False if stock was short."""
        updated = await tx.execute(
            """
            UPDATE inventory_lines
            SET available = available - $2, reserved = reserved + $2, updated_at = $3
            WHERE sku = $1 AND available >= $2
            """,
            sku,
            quantity,
            utcnow(),
        )
        return updated > 0

    @staticmethod
    def _row_to_line(row: Row) -> InventoryLine:
        return InventoryLine(
            sku=row["sku"],
            available=row["available"],
            reserved=row["reserved"],
            updated_at=parse_timestamp(row["updated_at"]),
        )
