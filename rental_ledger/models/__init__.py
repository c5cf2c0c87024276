"""ORM models.  Importing this package registers every table on Base.metadata."""

from rental_ledger.models.allocation import InventoryAllocation
from rental_ledger.models.item import InventoryItem
from rental_ledger.models.movement import InventoryMovement

__all__ = [
    "InventoryAllocation",
    "InventoryItem",
    "InventoryMovement",
]
