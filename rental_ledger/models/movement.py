"""
Module: rental_ledger.models.movement
Responsibility: ORM model for the append-only inventory movement log.
Architecture position: Models.  Written only by services.ledger_store.

Invariants enforced:
    - quantity > 0; direction is carried by movement_type (and, for
      adjustments, adjustment_direction).
    - reference_id is NULL iff reference_type is 'manual'.
    - damage/loss/adjustment rows carry non-blank notes.
    - Rows are never updated or deleted (db/immutability.py listeners and,
      on PostgreSQL, db/sql/01_inventory_movement.sql triggers).
    - (item_id, sequence) is unique; sequence is the replay order.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from rental_ledger.db.base import Base, UUIDString
from rental_ledger.domain.quantities import effect_of


class InventoryMovement(Base):
    """One immutable fact about units of an item."""

    __tablename__ = "inventory_movements"

    __table_args__ = (
        UniqueConstraint("item_id", "sequence", name="uq_inventory_movement_sequence"),
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        CheckConstraint(
            "movement_type IN ('stock_in', 'allocation', 'return', 'damage', 'loss', 'adjustment')",
            name="ck_movement_type",
        ),
        CheckConstraint(
            "(reference_type = 'manual' AND reference_id IS NULL) OR "
            "(reference_type IN ('subscription', 'event') AND reference_id IS NOT NULL)",
            name="ck_movement_reference",
        ),
        CheckConstraint(
            "movement_type NOT IN ('damage', 'loss', 'adjustment') OR "
            "(notes IS NOT NULL AND length(trim(notes)) > 0)",
            name="ck_movement_notes_required",
        ),
        CheckConstraint(
            "(movement_type = 'adjustment' AND adjustment_direction IN ('increase', 'decrease')) OR "
            "(movement_type <> 'adjustment' AND adjustment_direction IS NULL)",
            name="ck_movement_adjustment_direction",
        ),
        Index("idx_inventory_movement_item", "item_id"),
        Index("idx_inventory_movement_reference", "reference_type", "reference_id"),
        Index("idx_inventory_movement_outlet_created", "outlet_id", "created_at"),
        Index("idx_inventory_movement_type", "movement_type"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_items.id"), nullable=False
    )
    outlet_id: Mapped[UUID] = mapped_column()
    sequence: Mapped[int] = mapped_column()

    movement_type: Mapped[str] = mapped_column(String(20))
    quantity: Mapped[int] = mapped_column()
    adjustment_direction: Mapped[str | None] = mapped_column(String(10), nullable=True)

    reference_type: Mapped[str] = mapped_column(String(20))
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    @property
    def signed_quantity(self) -> int:
        """Change this movement causes to the item's total quantity."""
        return effect_of(
            self.movement_type,
            self.quantity,
            self.reference_type,
            self.adjustment_direction,
        ).total

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement {self.id} {self.movement_type} "
            f"qty={self.quantity} item={self.item_id} #{self.sequence}>"
        )
