"""Write-side services."""

from rental_ledger.services.allocation_manager import AllocationManager
from rental_ledger.services.ledger_store import LedgerStore
from rental_ledger.services.transaction import ledger_transaction, run_with_retry

__all__ = [
    "AllocationManager",
    "LedgerStore",
    "ledger_transaction",
    "run_with_retry",
]
