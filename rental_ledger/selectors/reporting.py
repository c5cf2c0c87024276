"""
Module: rental_ledger.selectors.reporting
Responsibility: Read-only reporting views over items, allocations and
    movements for the stock dashboard and audit exports.
Architecture position: Selectors.  Returns frozen DTOs, never ORM rows.

Views:
    stock_summary       one row per item with its five quantity buckets
    stock_alerts        out-of-stock and low-stock items
    allocation_report   allocations with their resolution counters
    damage_loss_report  every damage/loss movement with its notes
    movement_history    filtered movement log, newest first
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_ledger.domain.types import MovementType, ReferenceType
from rental_ledger.models.allocation import InventoryAllocation
from rental_ledger.models.item import InventoryItem
from rental_ledger.models.movement import InventoryMovement
from rental_ledger.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockSummaryRow:
    item_id: UUID
    outlet_id: UUID
    name: str
    category: str
    unit: str
    material: str | None
    is_active: bool
    reorder_level: int | None
    total: int
    available: int
    allocated: int
    damaged: int
    lost: int

    @classmethod
    def from_model(cls, item: InventoryItem) -> StockSummaryRow:
        return cls(
            item_id=item.id,
            outlet_id=item.outlet_id,
            name=item.name,
            category=item.category,
            unit=item.unit,
            material=item.material,
            is_active=item.is_active,
            reorder_level=item.reorder_level,
            total=item.total_quantity,
            available=item.available_quantity,
            allocated=item.allocated_quantity,
            damaged=item.damaged_quantity,
            lost=item.lost_quantity,
        )


@dataclass(frozen=True)
class StockAlert:
    """An item that needs restocking."""

    item_id: UUID
    outlet_id: UUID
    name: str
    category: str
    available: int
    total: int
    reorder_level: int | None
    severity: str  # out_of_stock | low_stock


@dataclass(frozen=True)
class AllocationRow:
    allocation_id: UUID
    item_id: UUID
    item_name: str
    outlet_id: UUID
    reference_type: str
    reference_id: UUID
    allocated: int
    returned: int
    damaged: int
    lost: int
    outstanding: int
    is_active: bool
    created_at: datetime
    closed_at: datetime | None


@dataclass(frozen=True)
class MovementRecord:
    movement_id: UUID
    item_id: UUID
    outlet_id: UUID
    sequence: int
    movement_type: str
    quantity: int
    signed_quantity: int
    adjustment_direction: str | None
    reference_type: str
    reference_id: UUID | None
    notes: str | None
    reason_code: str | None
    created_by_id: UUID
    created_at: datetime

    @classmethod
    def from_model(cls, movement: InventoryMovement) -> MovementRecord:
        return cls(
            movement_id=movement.id,
            item_id=movement.item_id,
            outlet_id=movement.outlet_id,
            sequence=movement.sequence,
            movement_type=movement.movement_type,
            quantity=movement.quantity,
            signed_quantity=movement.signed_quantity,
            adjustment_direction=movement.adjustment_direction,
            reference_type=movement.reference_type,
            reference_id=movement.reference_id,
            notes=movement.notes,
            reason_code=movement.reason_code,
            created_by_id=movement.created_by_id,
            created_at=movement.created_at,
        )


@dataclass(frozen=True)
class DamageLossRow:
    movement_id: UUID
    item_id: UUID
    item_name: str
    outlet_id: UUID
    movement_type: str
    quantity: int
    reference_type: str
    reference_id: UUID | None
    notes: str
    reason_code: str | None
    created_by_id: UUID
    created_at: datetime


class InventoryReportSelector(BaseSelector[InventoryItem]):
    """Reporting queries.  ``low_stock_ratio`` comes from LedgerSettings."""

    def __init__(self, session: Session, low_stock_ratio: float = 0.2):
        super().__init__(session)
        self._low_stock_ratio = low_stock_ratio

    def stock_summary(
        self,
        outlet_id: UUID | None = None,
        include_inactive: bool = False,
    ) -> list[StockSummaryRow]:
        stmt = select(InventoryItem).order_by(InventoryItem.category, InventoryItem.name)
        if outlet_id is not None:
            stmt = stmt.where(InventoryItem.outlet_id == outlet_id)
        if not include_inactive:
            stmt = stmt.where(InventoryItem.is_active.is_(True))
        return [
            StockSummaryRow.from_model(item)
            for item in self.session.execute(stmt).scalars()
        ]

    def _alert_severity(self, item: InventoryItem) -> str | None:
        available = item.available_quantity
        if available == 0:
            return "out_of_stock"
        if item.reorder_level is not None:
            return "low_stock" if available <= item.reorder_level else None
        if available < self._low_stock_ratio * item.total_quantity:
            return "low_stock"
        return None

    def stock_alerts(self, outlet_id: UUID | None = None) -> list[StockAlert]:
        """Active items at or below their reorder level, or out of stock."""
        stmt = select(InventoryItem).where(InventoryItem.is_active.is_(True))
        if outlet_id is not None:
            stmt = stmt.where(InventoryItem.outlet_id == outlet_id)

        alerts = []
        for item in self.session.execute(stmt).scalars():
            severity = self._alert_severity(item)
            if severity is None:
                continue
            alerts.append(
                StockAlert(
                    item_id=item.id,
                    outlet_id=item.outlet_id,
                    name=item.name,
                    category=item.category,
                    available=item.available_quantity,
                    total=item.total_quantity,
                    reorder_level=item.reorder_level,
                    severity=severity,
                )
            )
        # Out of stock first.
        alerts.sort(key=lambda a: (a.severity != "out_of_stock", a.category, a.name))
        return alerts

    def allocation_report(
        self,
        reference_type: ReferenceType | str | None = None,
        reference_id: UUID | None = None,
        active_only: bool = True,
    ) -> list[AllocationRow]:
        stmt = (
            select(InventoryAllocation, InventoryItem.name)
            .join(InventoryItem, InventoryItem.id == InventoryAllocation.item_id)
            .order_by(InventoryAllocation.created_at, InventoryItem.name)
        )
        if reference_type is not None:
            stmt = stmt.where(
                InventoryAllocation.reference_type == ReferenceType(reference_type).value
            )
        if reference_id is not None:
            stmt = stmt.where(InventoryAllocation.reference_id == reference_id)
        if active_only:
            stmt = stmt.where(InventoryAllocation.is_active.is_(True))

        return [
            AllocationRow(
                allocation_id=allocation.id,
                item_id=allocation.item_id,
                item_name=item_name,
                outlet_id=allocation.outlet_id,
                reference_type=allocation.reference_type,
                reference_id=allocation.reference_id,
                allocated=allocation.allocated_quantity,
                returned=allocation.returned_quantity,
                damaged=allocation.damaged_quantity,
                lost=allocation.lost_quantity,
                outstanding=allocation.outstanding_quantity,
                is_active=allocation.is_active,
                created_at=allocation.created_at,
                closed_at=allocation.closed_at,
            )
            for allocation, item_name in self.session.execute(stmt).all()
        ]

    def damage_loss_report(
        self,
        outlet_id: UUID | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[DamageLossRow]:
        """Damage and loss movements, oldest first; ``until`` is exclusive."""
        stmt = (
            select(InventoryMovement, InventoryItem.name)
            .join(InventoryItem, InventoryItem.id == InventoryMovement.item_id)
            .where(
                InventoryMovement.movement_type.in_(
                    (MovementType.DAMAGE.value, MovementType.LOSS.value)
                )
            )
            .order_by(InventoryMovement.created_at, InventoryMovement.sequence)
        )
        if outlet_id is not None:
            stmt = stmt.where(InventoryMovement.outlet_id == outlet_id)
        if since is not None:
            stmt = stmt.where(InventoryMovement.created_at >= since)
        if until is not None:
            stmt = stmt.where(InventoryMovement.created_at < until)

        return [
            DamageLossRow(
                movement_id=movement.id,
                item_id=movement.item_id,
                item_name=item_name,
                outlet_id=movement.outlet_id,
                movement_type=movement.movement_type,
                quantity=movement.quantity,
                reference_type=movement.reference_type,
                reference_id=movement.reference_id,
                notes=movement.notes,
                reason_code=movement.reason_code,
                created_by_id=movement.created_by_id,
                created_at=movement.created_at,
            )
            for movement, item_name in self.session.execute(stmt).all()
        ]

    def movement_history(
        self,
        item_id: UUID | None = None,
        outlet_id: UUID | None = None,
        movement_type: MovementType | str | None = None,
        reference: tuple[ReferenceType | str, UUID | None] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        """Movements matching every given filter, newest first."""
        stmt = select(InventoryMovement).order_by(
            InventoryMovement.created_at.desc(),
            InventoryMovement.sequence.desc(),
            InventoryMovement.id,
        )
        if item_id is not None:
            stmt = stmt.where(InventoryMovement.item_id == item_id)
        if outlet_id is not None:
            stmt = stmt.where(InventoryMovement.outlet_id == outlet_id)
        if movement_type is not None:
            stmt = stmt.where(
                InventoryMovement.movement_type == MovementType(movement_type).value
            )
        if reference is not None:
            ref_type, ref_id = reference
            stmt = stmt.where(
                InventoryMovement.reference_type == ReferenceType(ref_type).value
            )
            if ref_id is None:
                stmt = stmt.where(InventoryMovement.reference_id.is_(None))
            else:
                stmt = stmt.where(InventoryMovement.reference_id == ref_id)
        if since is not None:
            stmt = stmt.where(InventoryMovement.created_at >= since)
        if until is not None:
            stmt = stmt.where(InventoryMovement.created_at < until)
        if limit is not None:
            stmt = stmt.limit(limit)

        return [
            MovementRecord.from_model(m) for m in self.session.execute(stmt).scalars()
        ]
