"""
LedgerStore -- append-only movement log with an atomically maintained summary.

Responsibility:
    Durably appends one InventoryMovement and, in the same flush, applies its
    effect to the item's quantity summary row and (for allocation, return,
    damage and loss against a subscription or event) to the allocation row.

Architecture position:
    Services -- imperative shell.  Flush-only; the AllocationManager owns
    the transaction and is the only production caller of ``append``.

Invariants enforced:
    - quantity is a positive integer; bools are rejected
    - damage, loss and adjustment carry non-blank notes
    - reference shape: manual <=> no reference id; allocations and returns
      need a subscription or event reference
    - the movement's outlet is the item's outlet; the item is active
    - no bucket of the item or the allocation ever goes negative
    - per-item ``sequence`` is strictly increasing (locked counter on the
      item row, never aggregate max + 1)

Failure modes:
    - ItemNotFoundError, ValidationError, InsufficientStockError,
      AllocationNotFoundError, ExceedsOutstandingError.  All are raised
      before anything is added to the session.

Usage:
    store = LedgerStore(session, clock)
    item = store.lock_item(item_id)
    movement_id = store.append(intent)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from rental_ledger.domain.intents import MovementIntent
from rental_ledger.domain.quantities import (
    ItemQuantities,
    QuantityUnderflowError,
    effect_of,
)
from rental_ledger.domain.types import (
    NOTES_REQUIRED_TYPES,
    RESOLVING_TYPES,
    MovementType,
    ReferenceType,
)
from rental_ledger.exceptions import (
    AllocationNotFoundError,
    ExceedsOutstandingError,
    InsufficientStockError,
    ItemNotFoundError,
    ValidationError,
)
from rental_ledger.logging_config import get_logger
from rental_ledger.models.allocation import InventoryAllocation
from rental_ledger.models.item import InventoryItem
from rental_ledger.models.movement import InventoryMovement
from rental_ledger.services.base import BaseService

logger = get_logger("services.ledger_store")

# Verb used in "cannot <verb> N" rejection messages.
RESOLUTION_VERBS = {
    MovementType.RETURN: "return",
    MovementType.DAMAGE: "mark damaged",
    MovementType.LOSS: "mark lost",
}

# Movement types that only make sense against the warehouse pool.
_MANUAL_ONLY = frozenset({MovementType.STOCK_IN, MovementType.ADJUSTMENT})
# Movement types that only make sense against a claim.
_CLAIM_ONLY = frozenset({MovementType.ALLOCATION, MovementType.RETURN})


def validate_quantity(quantity: object) -> int:
    """Positive integer or ValidationError."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            f"Quantity must be a whole number of units, got {quantity!r}",
            field="quantity",
        )
    if quantity <= 0:
        raise ValidationError(
            f"Quantity must be positive, got {quantity}", field="quantity"
        )
    return quantity


def validate_reference(
    reference_type: ReferenceType, reference_id: UUID | None
) -> None:
    if reference_type is ReferenceType.MANUAL and reference_id is not None:
        raise ValidationError(
            "Manual movements cannot carry a reference id", field="reference_id"
        )
    if reference_type.is_claim and reference_id is None:
        raise ValidationError(
            f"A {reference_type.value} movement requires a reference id",
            field="reference_id",
        )


class LedgerStore(BaseService[InventoryMovement]):
    """
    Appends movements and keeps the summary and allocation rows in step.

    Guarantees:
        - After a successful ``append`` the item's summary equals the fold of
          all its movements (QuantityProjector.verify holds).
        - Nothing is added to the session when ``append`` raises.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT check roles; privilege rules live in AllocationManager.
    """

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def lock_item(self, item_id: UUID) -> InventoryItem:
        """
        Load and lock the item's summary row for the rest of the transaction.

        Concurrent writers on the same item queue here, so every read used
        for validation afterwards is current.
        """
        item = self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def _find_allocation(
        self,
        item_id: UUID,
        reference_type: ReferenceType,
        reference_id: UUID,
    ) -> InventoryAllocation | None:
        return self.session.execute(
            select(InventoryAllocation)
            .where(
                InventoryAllocation.item_id == item_id,
                InventoryAllocation.reference_type == reference_type.value,
                InventoryAllocation.reference_id == reference_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def validate_shape(self, intent: MovementIntent) -> None:
        """Checks that need no stored state."""
        validate_quantity(intent.quantity)

        if intent.movement_type in NOTES_REQUIRED_TYPES and not intent.has_notes:
            raise ValidationError(
                f"Notes are required for {intent.movement_type.value} movements",
                field="notes",
            )

        validate_reference(intent.reference_type, intent.reference_id)

        if intent.movement_type in _MANUAL_ONLY and intent.reference_type.is_claim:
            raise ValidationError(
                f"{intent.movement_type.value} movements must use a manual reference",
                field="reference_type",
            )
        if intent.movement_type in _CLAIM_ONLY and not intent.reference_type.is_claim:
            raise ValidationError(
                f"{intent.movement_type.value} movements require a subscription "
                f"or event reference",
                field="reference_type",
            )

        is_adjustment = intent.movement_type is MovementType.ADJUSTMENT
        if is_adjustment and intent.adjustment_direction is None:
            raise ValidationError(
                "Adjustments require a direction", field="adjustment_direction"
            )
        if not is_adjustment and intent.adjustment_direction is not None:
            raise ValidationError(
                "Only adjustments carry a direction", field="adjustment_direction"
            )

    def append(self, intent: MovementIntent) -> UUID:
        """
        Append one movement and apply its effect.

        Preconditions:
            - The caller is inside an open transaction.

        Postconditions:
            - Exactly one InventoryMovement row is flushed.
            - The item summary (and allocation row, where relevant) reflect it.

        Returns:
            The new movement's id.
        """
        self.validate_shape(intent)

        item = self.lock_item(intent.item_id)
        if not item.is_active:
            raise ValidationError(
                f"Item {item.id} is deactivated", field="item_id"
            )
        if item.outlet_id != intent.outlet_id:
            raise ValidationError(
                f"Item {item.id} belongs to outlet {item.outlet_id}, "
                f"not {intent.outlet_id}",
                field="outlet_id",
            )

        allocation = None
        if intent.reference_type.is_claim:
            allocation = self._find_allocation(
                item.id, intent.reference_type, intent.reference_id
            )
            if intent.movement_type in RESOLVING_TYPES:
                self._check_resolvable(intent, allocation)

        new_quantities = self._apply_to_summary(item, intent)

        now = self.clock.now()
        if intent.reference_type.is_claim:
            allocation = self._apply_to_allocation(intent, allocation, now)

        item.movement_count = item.movement_count + 1
        movement = InventoryMovement(
            item_id=item.id,
            outlet_id=item.outlet_id,
            sequence=item.movement_count,
            movement_type=intent.movement_type.value,
            quantity=intent.quantity,
            adjustment_direction=(
                intent.adjustment_direction.value
                if intent.adjustment_direction is not None
                else None
            ),
            reference_type=intent.reference_type.value,
            reference_id=intent.reference_id,
            notes=intent.notes,
            reason_code=intent.reason_code,
            created_at=now,
            created_by_id=intent.actor.actor_id,
        )
        self.session.add(movement)
        item.store_quantities(new_quantities)
        item.touch(intent.actor.actor_id)
        self.session.flush()

        logger.info(
            "movement_appended",
            extra={
                "movement_id": str(movement.id),
                "item_id": str(item.id),
                "movement_type": intent.movement_type.value,
                "quantity": intent.quantity,
                "reference_type": intent.reference_type.value,
                "reference_id": str(intent.reference_id) if intent.reference_id else None,
                "sequence": movement.sequence,
                "available": new_quantities.available,
                "allocated": new_quantities.allocated,
            },
        )
        return movement.id

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _check_resolvable(
        self,
        intent: MovementIntent,
        allocation: InventoryAllocation | None,
    ) -> None:
        if allocation is None:
            raise AllocationNotFoundError(
                str(intent.item_id),
                intent.reference_type.value,
                str(intent.reference_id),
            )
        if intent.quantity > allocation.outstanding_quantity:
            raise ExceedsOutstandingError(
                item_id=str(intent.item_id),
                reference_type=intent.reference_type.value,
                reference_id=str(intent.reference_id),
                outstanding=allocation.outstanding_quantity,
                requested=intent.quantity,
                action=RESOLUTION_VERBS[intent.movement_type],
            )

    def _apply_to_summary(
        self, item: InventoryItem, intent: MovementIntent
    ) -> ItemQuantities:
        current = item.quantities
        delta = effect_of(
            intent.movement_type,
            intent.quantity,
            intent.reference_type,
            intent.adjustment_direction,
        )
        try:
            return current.apply(delta)
        except QuantityUnderflowError as exc:
            if exc.bucket in ("available", "total"):
                raise InsufficientStockError(
                    str(item.id), current.available, intent.quantity
                ) from exc
            raise ValidationError(
                f"Movement would leave item {item.id} with negative "
                f"{exc.bucket} quantity ({exc})"
            ) from exc

    def _apply_to_allocation(
        self,
        intent: MovementIntent,
        allocation: InventoryAllocation | None,
        now,
    ) -> InventoryAllocation:
        qty = intent.quantity
        actor_id = intent.actor.actor_id

        if intent.movement_type is MovementType.ALLOCATION:
            if allocation is None:
                allocation = InventoryAllocation(
                    item_id=intent.item_id,
                    outlet_id=intent.outlet_id,
                    reference_type=intent.reference_type.value,
                    reference_id=intent.reference_id,
                    allocated_quantity=qty,
                    returned_quantity=0,
                    damaged_quantity=0,
                    lost_quantity=0,
                    outstanding_quantity=qty,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor_id,
                )
                self.session.add(allocation)
                logger.info(
                    "allocation_opened",
                    extra={
                        "item_id": str(intent.item_id),
                        "reference_type": intent.reference_type.value,
                        "reference_id": str(intent.reference_id),
                        "quantity": qty,
                    },
                )
                return allocation

            allocation.allocated_quantity = allocation.allocated_quantity + qty
            if not allocation.is_active:
                logger.info(
                    "allocation_reopened",
                    extra={"allocation_id": str(allocation.id), "quantity": qty},
                )
            allocation.is_active = True
            allocation.closed_at = None
        elif intent.movement_type is MovementType.RETURN:
            allocation.returned_quantity = allocation.returned_quantity + qty
        elif intent.movement_type is MovementType.DAMAGE:
            allocation.damaged_quantity = allocation.damaged_quantity + qty
        elif intent.movement_type is MovementType.LOSS:
            allocation.lost_quantity = allocation.lost_quantity + qty

        allocation.recompute_outstanding()
        allocation.touch(actor_id)
        if allocation.outstanding_quantity == 0 and allocation.is_active:
            allocation.is_active = False
            allocation.closed_at = now
            logger.info(
                "allocation_closed",
                extra={
                    "allocation_id": str(allocation.id),
                    "returned": allocation.returned_quantity,
                    "damaged": allocation.damaged_quantity,
                    "lost": allocation.lost_quantity,
                },
            )
        return allocation

    def allocation_for(
        self,
        item_id: UUID,
        reference_type: ReferenceType,
        reference_id: UUID,
    ) -> InventoryAllocation | None:
        """The allocation row for a pair, if one has ever been opened."""
        return self._find_allocation(item_id, ReferenceType(reference_type), reference_id)
