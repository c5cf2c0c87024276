"""
OutstandingResolver -- units still held by a subscription or event.

Outstanding is derived from the movement log, not from the cached counters
on the allocation row:

    outstanding = sum(allocation) - sum(return + damage + loss)

for one exact (item, reference type, reference id) pair.  Run inside the
caller's transaction after the item row is locked, the value cannot change
before the caller's own movement is appended.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, func, select

from rental_ledger.domain.types import MovementType, ReferenceType
from rental_ledger.models.movement import InventoryMovement
from rental_ledger.selectors.base import BaseSelector

_CLAIM_TYPES = (
    MovementType.ALLOCATION.value,
    MovementType.RETURN.value,
    MovementType.DAMAGE.value,
    MovementType.LOSS.value,
)

# +q for allocation, -q for anything that resolves it.
_SIGNED_CLAIM = case(
    (
        InventoryMovement.movement_type == MovementType.ALLOCATION.value,
        InventoryMovement.quantity,
    ),
    else_=-InventoryMovement.quantity,
)


class OutstandingResolver(BaseSelector[InventoryMovement]):
    """
    Computes outstanding quantities from movements.

    Guarantees:
        - Never negative while the ledger's invariants hold.
        - Manual references hold no claim; their outstanding is always 0.
    """

    def outstanding(
        self,
        item_id: UUID,
        reference_type: ReferenceType | str,
        reference_id: UUID | None,
    ) -> int:
        reference_type = ReferenceType(reference_type)
        if not reference_type.is_claim or reference_id is None:
            return 0
        total = self.session.execute(
            select(func.coalesce(func.sum(_SIGNED_CLAIM), 0)).where(
                InventoryMovement.item_id == item_id,
                InventoryMovement.reference_type == reference_type.value,
                InventoryMovement.reference_id == reference_id,
                InventoryMovement.movement_type.in_(_CLAIM_TYPES),
            )
        ).scalar_one()
        return int(total)

    def was_allocated(
        self,
        item_id: UUID,
        reference_type: ReferenceType | str,
        reference_id: UUID | None,
    ) -> bool:
        """True if the pair ever received an allocation movement."""
        if reference_id is None:
            return False
        found = self.session.execute(
            select(InventoryMovement.id)
            .where(
                InventoryMovement.item_id == item_id,
                InventoryMovement.reference_type == ReferenceType(reference_type).value,
                InventoryMovement.reference_id == reference_id,
                InventoryMovement.movement_type == MovementType.ALLOCATION.value,
            )
            .limit(1)
        ).first()
        return found is not None

    def outstanding_for_reference(
        self,
        reference_type: ReferenceType | str,
        reference_id: UUID,
        outlet_id: UUID | None = None,
    ) -> dict[UUID, int]:
        """
        Outstanding per item for one reference; zero entries omitted.

        A reference may hold items at several outlets; ``outlet_id`` limits
        the result to one of them.
        """
        reference_type = ReferenceType(reference_type)
        if not reference_type.is_claim:
            return {}
        stmt = (
            select(InventoryMovement.item_id, func.sum(_SIGNED_CLAIM))
            .where(
                InventoryMovement.reference_type == reference_type.value,
                InventoryMovement.reference_id == reference_id,
                InventoryMovement.movement_type.in_(_CLAIM_TYPES),
            )
            .group_by(InventoryMovement.item_id)
        )
        if outlet_id is not None:
            stmt = stmt.where(InventoryMovement.outlet_id == outlet_id)
        rows = self.session.execute(stmt).all()
        return {item_id: int(qty) for item_id, qty in rows if qty}
