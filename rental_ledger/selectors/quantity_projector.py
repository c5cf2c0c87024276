"""
QuantityProjector -- current quantities of an item, two ways.

``project`` reads the summary row maintained by the LedgerStore (O(1)).
``replay`` folds the item's full movement log through the same pure effect
function.  ``verify`` asserts the two agree; any difference means the
summary was written outside the ledger.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from rental_ledger.domain.quantities import (
    ItemQuantities,
    QuantityUnderflowError,
    fold_movements,
)
from rental_ledger.exceptions import ItemNotFoundError, LedgerDriftError
from rental_ledger.logging_config import get_logger
from rental_ledger.models.item import InventoryItem
from rental_ledger.models.movement import InventoryMovement
from rental_ledger.selectors.base import BaseSelector

logger = get_logger("selectors.quantity_projector")


class QuantityProjector(BaseSelector[InventoryItem]):
    """
    Read-side view of item quantities.

    Guarantees:
        - Every returned ItemQuantities satisfies the balance invariant
          (it is validated on construction).
        - ``replay`` orders movements by their per-item sequence, which is
          the order they were appended in.
    """

    def _get_item(self, item_id: UUID) -> InventoryItem:
        return self._get_or_raise(InventoryItem, item_id, ItemNotFoundError)

    def project(self, item_id: UUID) -> ItemQuantities:
        """Current quantities from the summary row."""
        return self._get_item(item_id).quantities

    def replay(self, item_id: UUID) -> ItemQuantities:
        """Current quantities recomputed from the movement log."""
        self._get_item(item_id)
        movements = self.session.execute(
            select(InventoryMovement)
            .where(InventoryMovement.item_id == item_id)
            .order_by(InventoryMovement.sequence)
        ).scalars()
        return fold_movements(movements)

    def verify(self, item_id: UUID) -> ItemQuantities:
        """
        Raise LedgerDriftError unless summary and replay agree.

        Returns the (verified) quantities.
        """
        summary = self.project(item_id)
        try:
            replayed = self.replay(item_id).as_dict()
        except QuantityUnderflowError as exc:
            replayed = {"error": str(exc)}
        if replayed != summary.as_dict():
            logger.error(
                "ledger_drift_detected",
                extra={
                    "item_id": str(item_id),
                    "summary": summary.as_dict(),
                    "replayed": replayed,
                },
            )
            raise LedgerDriftError(str(item_id), summary.as_dict(), replayed)
        return summary

    def verify_all(self, outlet_id: UUID | None = None) -> list[UUID]:
        """Verify every item (optionally one outlet); return drifted item ids."""
        stmt = select(InventoryItem.id).order_by(InventoryItem.created_at, InventoryItem.id)
        if outlet_id is not None:
            stmt = stmt.where(InventoryItem.outlet_id == outlet_id)

        drifted: list[UUID] = []
        checked = 0
        for item_id in self.session.execute(stmt).scalars().all():
            checked += 1
            try:
                self.verify(item_id)
            except LedgerDriftError:
                drifted.append(item_id)

        logger.info(
            "ledger_verified",
            extra={
                "outlet_id": str(outlet_id) if outlet_id else None,
                "items_checked": checked,
                "items_drifted": len(drifted),
            },
        )
        return drifted
