"""
ORM-level immutability enforcement (layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement log is the record of what physically happened to the units.
Corrections are new offsetting movements, never edits.  Two layers enforce
this:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy sessions
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/*.sql (PostgreSQL triggers)
    - Catches raw SQL and bulk statements
    - Installed by db/triggers.py on PostgreSQL only

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|--------------------------------------------------
InventoryMovement    | Never updated, never deleted
InventoryAllocation  | Never deleted (counters change via movements)
InventoryItem        | Not deletable once any movement references it

===============================================================================
USAGE
===============================================================================

Registered by ``create_session_factory()``; registration is idempotent.

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, exists, select
from sqlalchemy.orm import Session

from rental_ledger.exceptions import ImmutabilityViolationError
from rental_ledger.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_movement_update(mapper, connection, target):
    raise _blocked(
        "InventoryMovement",
        target.id,
        "UPDATE",
        "Inventory movements are immutable; record an offsetting movement instead",
    )


def _check_movement_delete(mapper, connection, target):
    raise _blocked(
        "InventoryMovement",
        target.id,
        "DELETE",
        "Inventory movements cannot be deleted",
    )


def _check_allocation_delete(mapper, connection, target):
    raise _blocked(
        "InventoryAllocation",
        target.id,
        "DELETE",
        "Allocations are never deleted; they close when fully resolved",
    )


def _check_item_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete an item that has movement history.

    Runs in before_flush: mapper-level before_delete fires after the flush
    plan is fixed, and the movement lookup must not trigger autoflush.
    """
    from rental_ledger.models.item import InventoryItem
    from rental_ledger.models.movement import InventoryMovement

    for obj in list(session.deleted):
        if not isinstance(obj, InventoryItem):
            continue
        with session.no_autoflush:
            has_movements = session.execute(
                select(exists().where(InventoryMovement.item_id == obj.id))
            ).scalar()
        if has_movements:
            raise _blocked(
                "InventoryItem",
                obj.id,
                "DELETE",
                "Item has movement history; deactivate it instead",
            )


def _listeners():
    from rental_ledger.models.allocation import InventoryAllocation
    from rental_ledger.models.movement import InventoryMovement

    return [
        (Session, "before_flush", _check_item_deletion_before_flush),
        (InventoryMovement, "before_update", _check_movement_update),
        (InventoryMovement, "before_delete", _check_movement_delete),
        (InventoryAllocation, "before_delete", _check_allocation_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that deliberately tamper with history
    to prove drift detection works.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
