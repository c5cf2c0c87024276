"""
Typed Exception Hierarchy for the Rental Inventory Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection produced by the ledger is surfaced to staff verbatim
("only 3 units outstanding, cannot return 5").  Callers must be able to
tell the difference between "try again" and "this request is wrong"
without parsing that message:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (item id, quantities, reference)

Example - WRONG way to handle errors:
    try:
        manager.return_units(...)
    except Exception as e:
        if "outstanding" in str(e):
            ...

Example - RIGHT way:
    try:
        manager.return_units(...)
    except ExceedsOutstandingError as e:
        show_error(e.code, outstanding=e.outstanding, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError
    |   +-- PermissionDeniedError
    |
    +-- InsufficientStockError
    +-- ExceedsOutstandingError
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- AllocationNotFoundError
    |
    +-- ConcurrencyConflictError      (retryable)
    +-- ImmutabilityViolationError
    +-- LedgerDriftError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised
------------------------|-----------------------------------------------------
VALIDATION_ERROR        | Non-positive quantity, blank mandatory notes,
                        | inconsistent reference, inactive item, outlet mismatch
PERMISSION_DENIED       | Adjust/deactivate by a non-privileged role
INSUFFICIENT_STOCK      | Allocation (or warehouse write-off) exceeds available
EXCEEDS_OUTSTANDING     | Return/damage/loss exceeds the allocation's outstanding
ITEM_NOT_FOUND          | Unknown item id
ALLOCATION_NOT_FOUND    | Return/damage/loss for a pair never allocated
CONCURRENCY_CONFLICT    | Lock timeout, deadlock or serialization failure
IMMUTABILITY_VIOLATION  | UPDATE/DELETE of a movement, DELETE of an allocation
LEDGER_DRIFT            | Summary row disagrees with the movement replay

===============================================================================
RETRY POLICY
===============================================================================

Only ConcurrencyConflictError is safe to retry with the same inputs
(``retryable = True``).  Everything else is terminal for the request.
"""


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"
    retryable: bool = False


# Input validation


class ValidationError(LedgerError):
    """Request is malformed or violates a business rule on its inputs."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class PermissionDeniedError(ValidationError):
    """Actor's role is not allowed to perform a privileged operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, operation: str, role: str):
        self.operation = operation
        self.role = role
        super().__init__(
            f"Role '{role}' is not allowed to {operation}", field="role"
        )


# Quantity rules


class InsufficientStockError(LedgerError):
    """Requested quantity exceeds the item's available quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, available: int, requested: int):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"only {available} units available, cannot take {requested}"
        )


class ExceedsOutstandingError(LedgerError):
    """Return/damage/loss quantity exceeds what is still outstanding."""

    code: str = "EXCEEDS_OUTSTANDING"

    def __init__(
        self,
        item_id: str,
        reference_type: str,
        reference_id: str | None,
        outstanding: int,
        requested: int,
        action: str = "return",
    ):
        self.item_id = item_id
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.outstanding = outstanding
        self.requested = requested
        self.action = action
        super().__init__(
            f"only {outstanding} units outstanding, cannot {action} {requested} "
            f"(item {item_id}, {reference_type} {reference_id})"
        )


# Lookup failures


class NotFoundError(LedgerError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Inventory item with given ID was not found."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Inventory item not found: {item_id}")


class AllocationNotFoundError(NotFoundError):
    """No allocation exists for the (item, reference) pair."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, item_id: str, reference_type: str, reference_id: str | None):
        self.item_id = item_id
        self.reference_type = reference_type
        self.reference_id = reference_id
        super().__init__(
            f"No allocation of item {item_id} to {reference_type} {reference_id}"
        )


# Concurrency


class ConcurrencyConflictError(LedgerError):
    """
    Transaction aborted by a lock timeout, deadlock or serialization failure.

    The transaction was rolled back in full; retrying with the same inputs
    is safe.
    """

    code: str = "CONCURRENCY_CONFLICT"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Concurrent modification during {operation}; retry the request ({reason})"
        )


# Integrity


class ImmutabilityViolationError(LedgerError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class LedgerDriftError(LedgerError):
    """Cached quantity summary disagrees with the movement log."""

    code: str = "LEDGER_DRIFT"

    def __init__(self, item_id: str, summary: dict, replayed: dict):
        self.item_id = item_id
        self.summary = summary
        self.replayed = replayed
        super().__init__(
            f"Quantity summary for item {item_id} drifted from its movements: "
            f"summary={summary} replayed={replayed}"
        )
