"""
Inventory types.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class InventoryLine:
    """
    Stock of one sku.

    Attributes:
        sku: Stock keeping unit
        available: Units that can still be reserved
        reserved: Units held for confirmed reservations
    """

    sku: str
    available: int = 0
    reserved: int = 0
    updated_at: datetime | None = None

    def __post_init__(self):
        if self.available < 0 or self.reserved < 0:
            msg = f"Stock for {self.sku} cannot be negative"
            raise ValueError(msg)

    def can_reserve(self, quantity: int) -> bool:
        return self.available >= quantity
