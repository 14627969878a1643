"""
Inventory service: stock lines and the all-or-nothing reservation engine.
"""

from orderflow.inventory.engine import InventoryReservationEngine, requested_quantities
from orderflow.inventory.repository import InventoryRepository
from orderflow.inventory.types import InventoryLine

__all__ = [
    "InventoryLine",
    "InventoryRepository",
    "InventoryReservationEngine",
    "requested_quantities",
]
