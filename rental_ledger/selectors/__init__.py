"""Read-only selectors."""

from rental_ledger.selectors.outstanding_resolver import OutstandingResolver
from rental_ledger.selectors.quantity_projector import QuantityProjector
from rental_ledger.selectors.reporting import InventoryReportSelector

__all__ = [
    "InventoryReportSelector",
    "OutstandingResolver",
    "QuantityProjector",
]
