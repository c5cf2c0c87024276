"""
Module: rental_ledger.models.allocation
Responsibility: ORM model for units of an item claimed by a subscription or
    event, with cached resolution counters.
Architecture position: Models.  Rows are created and updated by the Ledger
    Store as a side effect of movements; never deleted.

Invariants enforced:
    - outstanding = allocated - returned - damaged - lost, and >= 0
    - one row per (item_id, reference_type, reference_id)
    - reference_type is 'subscription' or 'event'
    - is_active is false exactly when outstanding reaches 0
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rental_ledger.db.base import TrackedBase, UUIDString


class InventoryAllocation(TrackedBase):
    """Units of one item held by one subscription or event."""

    __tablename__ = "inventory_allocations"

    __table_args__ = (
        UniqueConstraint(
            "item_id", "reference_type", "reference_id",
            name="uq_inventory_allocation_reference",
        ),
        CheckConstraint(
            "reference_type IN ('subscription', 'event')",
            name="ck_allocation_reference_type",
        ),
        CheckConstraint("allocated_quantity >= 0", name="ck_allocation_allocated_nonneg"),
        CheckConstraint("returned_quantity >= 0", name="ck_allocation_returned_nonneg"),
        CheckConstraint("damaged_quantity >= 0", name="ck_allocation_damaged_nonneg"),
        CheckConstraint("lost_quantity >= 0", name="ck_allocation_lost_nonneg"),
        CheckConstraint("outstanding_quantity >= 0", name="ck_allocation_outstanding_nonneg"),
        CheckConstraint(
            "outstanding_quantity = allocated_quantity - returned_quantity"
            " - damaged_quantity - lost_quantity",
            name="ck_allocation_outstanding_consistent",
        ),
        Index("idx_inventory_allocation_reference", "reference_type", "reference_id"),
        Index("idx_inventory_allocation_active", "is_active"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_items.id"), nullable=False
    )
    outlet_id: Mapped[UUID] = mapped_column()
    reference_type: Mapped[str] = mapped_column(String(20))
    reference_id: Mapped[UUID] = mapped_column()

    allocated_quantity: Mapped[int] = mapped_column(default=0)
    returned_quantity: Mapped[int] = mapped_column(default=0)
    damaged_quantity: Mapped[int] = mapped_column(default=0)
    lost_quantity: Mapped[int] = mapped_column(default=0)
    outstanding_quantity: Mapped[int] = mapped_column(default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def recompute_outstanding(self) -> int:
        self.outstanding_quantity = (
            self.allocated_quantity
            - self.returned_quantity
            - self.damaged_quantity
            - self.lost_quantity
        )
        return self.outstanding_quantity

    def __repr__(self) -> str:
        return (
            f"<InventoryAllocation {self.id} item={self.item_id} "
            f"{self.reference_type}:{self.reference_id} "
            f"outstanding={self.outstanding_quantity}>"
        )
