"""
Module: rental_ledger.models.item
Responsibility: ORM model for a rentable item and its cached quantity summary.
Architecture position: Models.  Inherits TrackedBase from db/base.py.

Invariants enforced (CHECK constraints, mirrored by domain.ItemQuantities):
    - every quantity bucket >= 0
    - total = available + allocated + damaged + lost

The quantity columns are a cache of the movement log.  Only the Ledger
Store writes them, and QuantityProjector.verify() replays the log to prove
they still agree.
"""

from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_ledger.db.base import TrackedBase
from rental_ledger.domain.quantities import ItemQuantities


class InventoryItem(TrackedBase):
    """A rentable item stocked at one outlet."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("outlet_id", "name", "category", name="uq_inventory_item_outlet_name"),
        CheckConstraint("total_quantity >= 0", name="ck_item_total_nonneg"),
        CheckConstraint("available_quantity >= 0", name="ck_item_available_nonneg"),
        CheckConstraint("allocated_quantity >= 0", name="ck_item_allocated_nonneg"),
        CheckConstraint("damaged_quantity >= 0", name="ck_item_damaged_nonneg"),
        CheckConstraint("lost_quantity >= 0", name="ck_item_lost_nonneg"),
        CheckConstraint(
            "total_quantity = available_quantity + allocated_quantity"
            " + damaged_quantity + lost_quantity",
            name="ck_item_quantity_balance",
        ),
        Index("idx_inventory_item_outlet", "outlet_id"),
        Index("idx_inventory_item_category", "category"),
    )

    outlet_id: Mapped[UUID] = mapped_column()
    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(100))
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    material: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reorder_level: Mapped[int | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    total_quantity: Mapped[int] = mapped_column(default=0)
    available_quantity: Mapped[int] = mapped_column(default=0)
    allocated_quantity: Mapped[int] = mapped_column(default=0)
    damaged_quantity: Mapped[int] = mapped_column(default=0)
    lost_quantity: Mapped[int] = mapped_column(default=0)

    # Per-item append counter; assigned under the item row lock.
    movement_count: Mapped[int] = mapped_column(default=0)

    @property
    def quantities(self) -> ItemQuantities:
        return ItemQuantities(
            total=self.total_quantity,
            available=self.available_quantity,
            allocated=self.allocated_quantity,
            damaged=self.damaged_quantity,
            lost=self.lost_quantity,
        )

    def store_quantities(self, quantities: ItemQuantities) -> None:
        self.total_quantity = quantities.total
        self.available_quantity = quantities.available
        self.allocated_quantity = quantities.allocated
        self.damaged_quantity = quantities.damaged
        self.lost_quantity = quantities.lost

    def __repr__(self) -> str:
        return (
            f"<InventoryItem {self.id} {self.name!r} "
            f"total={self.total_quantity} available={self.available_quantity}>"
        )
