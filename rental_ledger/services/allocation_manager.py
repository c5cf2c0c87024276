"""
AllocationManager -- the only entry point through which movements are made.

Responsibility:
    Turns staff intents (allocate, return, mark damaged or lost, adjust,
    stock in, item lifecycle) into ledger movements.  Each public method is
    one transaction: lock the item row, validate against current state,
    append exactly one movement (``allocate_many`` and ``return_all``
    append one per item), commit.

Architecture position:
    Services -- outermost write API.  Owns the transaction boundary (the
    LedgerStore below it is flush-only).  Receives its session factory,
    clock and settings by injection; there is no global engine.

Invariants enforced:
    - allocate: qty <= available, checked after the row lock
    - return/damage/loss: qty <= outstanding (OutstandingResolver, same
      transaction)
    - adjust/deactivate/reactivate: actor role in settings.privileged_roles
    - deactivate: no units allocated
    - total = available + allocated + damaged + lost on every commit

Failure modes:
    - ValidationError, PermissionDeniedError, InsufficientStockError,
      ExceedsOutstandingError, ItemNotFoundError, AllocationNotFoundError:
      the transaction is rolled back and nothing is visible.
    - ConcurrencyConflictError: raised only after
      ``settings.retry.max_attempts`` conflicted attempts.

Usage:
    engine = create_engine_from_url(settings.database_url)
    manager = AllocationManager(create_session_factory(engine), SystemClock(), settings)
    allocation_id = manager.allocate(
        item_id, outlet_id, 2, "subscription", subscription_id, actor,
    )
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import LedgerSettings
from rental_ledger.domain.clock import Clock, SystemClock
from rental_ledger.domain.intents import Actor, MovementIntent
from rental_ledger.domain.types import (
    AdjustmentDirection,
    MovementType,
    ReferenceType,
)
from rental_ledger.exceptions import (
    AllocationNotFoundError,
    ExceedsOutstandingError,
    InsufficientStockError,
    LedgerError,
    PermissionDeniedError,
    ValidationError,
)
from rental_ledger.logging_config import LogContext, get_logger
from rental_ledger.models.item import InventoryItem
from rental_ledger.selectors.outstanding_resolver import OutstandingResolver
from rental_ledger.services.ledger_store import (
    RESOLUTION_VERBS,
    LedgerStore,
    validate_quantity,
    validate_reference,
)
from rental_ledger.services.transaction import ledger_transaction, run_with_retry

logger = get_logger("services.allocation_manager")

T = TypeVar("T")


def _reference_type(value: ReferenceType | str) -> ReferenceType:
    try:
        return ReferenceType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown reference type: {value!r}", field="reference_type"
        ) from None


def _claim_reference(
    value: ReferenceType | str, reference_id: UUID | None
) -> ReferenceType:
    reference_type = _reference_type(value)
    if not reference_type.is_claim:
        raise ValidationError(
            "Allocations are held by a subscription or event, not a manual reference",
            field="reference_type",
        )
    validate_reference(reference_type, reference_id)
    return reference_type


def _require_notes(notes: str | None, movement_type: MovementType) -> str:
    if not notes or not notes.strip():
        raise ValidationError(
            f"Notes are required for {movement_type.value} movements", field="notes"
        )
    return notes


class AllocationManager:
    """
    Transactional write API over the ledger.

    Contract:
        Every public method runs in its own transaction and either commits
        one consistent change or raises with nothing changed.

    Non-goals:
        - Does NOT verify that subscriptions or events exist; reference
          owners are external.
        - Does NOT authenticate; ``Actor`` comes from the identity provider.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or LedgerSettings()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _logged(self, operation: str, actor: Actor, **fields):
        with LogContext.bind(operation=operation, actor_id=actor.actor_id, **fields):
            try:
                yield
            except LedgerError as exc:
                logger.warning(
                    f"{operation}_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def attempt() -> T:
            with ledger_transaction(self._session_factory, operation) as session:
                return fn(session)

        return run_with_retry(
            attempt,
            attempts=self._settings.retry.max_attempts,
            backoff_seconds=self._settings.retry.backoff_seconds,
        )

    def _require_privilege(self, actor: Actor, operation: str) -> None:
        if not actor.has_role(self._settings.privileged_roles):
            raise PermissionDeniedError(operation, actor.role)

    # ------------------------------------------------------------------
    # Allocation lifecycle
    # ------------------------------------------------------------------

    def allocate(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType | str,
        reference_id: UUID,
        actor: Actor,
        notes: str | None = None,
        reason_code: str | None = None,
    ) -> UUID:
        """
        Claim ``qty`` available units for a subscription or event.

        A second allocation for the same pair tops up the existing
        allocation (reopening it if it was fully resolved).

        Returns:
            The allocation id.
        """
        with self._logged("allocate", actor, item_id=item_id, outlet_id=outlet_id):
            validate_quantity(qty)
            ref_type = _claim_reference(reference_type, reference_id)

            def work(session: Session) -> UUID:
                store = LedgerStore(session, self._clock)
                item = store.lock_item(item_id)
                if item.available_quantity < qty:
                    raise InsufficientStockError(
                        str(item_id), item.available_quantity, qty
                    )
                store.append(
                    MovementIntent(
                        item_id=item_id,
                        outlet_id=outlet_id,
                        movement_type=MovementType.ALLOCATION,
                        quantity=qty,
                        reference_type=ref_type,
                        reference_id=reference_id,
                        actor=actor,
                        notes=notes,
                        reason_code=reason_code,
                    )
                )
                return store.allocation_for(item_id, ref_type, reference_id).id

            return self._run("allocate", work)

    def allocate_many(
        self,
        outlet_id: UUID,
        reference_type: ReferenceType | str,
        reference_id: UUID,
        items: dict[UUID, int],
        actor: Actor,
        notes: str | None = None,
    ) -> dict[UUID, UUID]:
        """
        Allocate several items to one subscription or event, all or nothing.

        Used when a subscription or event is activated.  Items are locked in
        id order; if any item is short, no allocation is recorded.

        Returns:
            Allocation id per item id.
        """
        with self._logged("allocate_many", actor, outlet_id=outlet_id):
            if not items:
                raise ValidationError("No items to allocate", field="items")
            for qty in items.values():
                validate_quantity(qty)
            ref_type = _claim_reference(reference_type, reference_id)

            def work(session: Session) -> dict[UUID, UUID]:
                store = LedgerStore(session, self._clock)
                allocations: dict[UUID, UUID] = {}
                for item_id in sorted(items, key=str):
                    qty = items[item_id]
                    item = store.lock_item(item_id)
                    if item.available_quantity < qty:
                        raise InsufficientStockError(
                            str(item_id), item.available_quantity, qty
                        )
                    store.append(
                        MovementIntent(
                            item_id=item_id,
                            outlet_id=outlet_id,
                            movement_type=MovementType.ALLOCATION,
                            quantity=qty,
                            reference_type=ref_type,
                            reference_id=reference_id,
                            actor=actor,
                            notes=notes,
                        )
                    )
                    allocations[item_id] = store.allocation_for(
                        item_id, ref_type, reference_id
                    ).id
                return allocations

            allocations = self._run("allocate_many", work)
            logger.info(
                "reference_allocated",
                extra={
                    "reference_type": ref_type.value,
                    "reference_id": str(reference_id),
                    "items": len(allocations),
                    "units": sum(items.values()),
                },
            )
            return allocations

    def _resolve(
        self,
        movement_type: MovementType,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType,
        reference_id: UUID,
        actor: Actor,
        notes: str | None,
        reason_code: str | None,
    ) -> Callable[[Session], UUID]:
        """Work function for return/damage/loss against an allocation."""

        def work(session: Session) -> UUID:
            store = LedgerStore(session, self._clock)
            store.lock_item(item_id)
            resolver = OutstandingResolver(session)
            if not resolver.was_allocated(item_id, reference_type, reference_id):
                raise AllocationNotFoundError(
                    str(item_id), reference_type.value, str(reference_id)
                )
            outstanding = resolver.outstanding(item_id, reference_type, reference_id)
            if qty > outstanding:
                raise ExceedsOutstandingError(
                    item_id=str(item_id),
                    reference_type=reference_type.value,
                    reference_id=str(reference_id),
                    outstanding=outstanding,
                    requested=qty,
                    action=RESOLUTION_VERBS[movement_type],
                )
            return store.append(
                MovementIntent(
                    item_id=item_id,
                    outlet_id=outlet_id,
                    movement_type=movement_type,
                    quantity=qty,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    actor=actor,
                    notes=notes,
                    reason_code=reason_code,
                )
            )

        return work

    def return_units(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType | str,
        reference_id: UUID,
        actor: Actor,
        notes: str | None = None,
        reason_code: str | None = None,
    ) -> None:
        """Bring ``qty`` allocated units back to the available pool."""
        with self._logged("return", actor, item_id=item_id, outlet_id=outlet_id):
            validate_quantity(qty)
            ref_type = _claim_reference(reference_type, reference_id)
            self._run(
                "return",
                self._resolve(
                    MovementType.RETURN, item_id, outlet_id, qty,
                    ref_type, reference_id, actor, notes, reason_code,
                ),
            )

    def _write_off(
        self,
        movement_type: MovementType,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType | str,
        reference_id: UUID | None,
        actor: Actor,
        notes: str | None,
        reason_code: str | None,
    ) -> UUID:
        operation = f"mark_{movement_type.value}"
        with self._logged(operation, actor, item_id=item_id, outlet_id=outlet_id):
            validate_quantity(qty)
            _require_notes(notes, movement_type)
            ref_type = _reference_type(reference_type)
            validate_reference(ref_type, reference_id)

            if ref_type.is_claim:
                work = self._resolve(
                    movement_type, item_id, outlet_id, qty,
                    ref_type, reference_id, actor, notes, reason_code,
                )
                return self._run(operation, work)

            def warehouse_work(session: Session) -> UUID:
                store = LedgerStore(session, self._clock)
                item = store.lock_item(item_id)
                if item.available_quantity < qty:
                    raise InsufficientStockError(
                        str(item_id), item.available_quantity, qty
                    )
                return store.append(
                    MovementIntent(
                        item_id=item_id,
                        outlet_id=outlet_id,
                        movement_type=movement_type,
                        quantity=qty,
                        reference_type=ReferenceType.MANUAL,
                        reference_id=None,
                        actor=actor,
                        notes=notes,
                        reason_code=reason_code,
                    )
                )

            return self._run(operation, warehouse_work)

    def mark_damage(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType | str,
        reference_id: UUID | None,
        actor: Actor,
        notes: str | None,
        reason_code: str | None = None,
    ) -> UUID:
        """
        Record ``qty`` units as damaged.

        Against a subscription/event the units leave the allocation; with a
        manual reference they leave the available pool.  Returns the
        movement id.
        """
        return self._write_off(
            MovementType.DAMAGE, item_id, outlet_id, qty,
            reference_type, reference_id, actor, notes, reason_code,
        )

    def mark_loss(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        reference_type: ReferenceType | str,
        reference_id: UUID | None,
        actor: Actor,
        notes: str | None,
        reason_code: str | None = None,
    ) -> UUID:
        """Record ``qty`` units as lost.  Same routing as ``mark_damage``."""
        return self._write_off(
            MovementType.LOSS, item_id, outlet_id, qty,
            reference_type, reference_id, actor, notes, reason_code,
        )

    def return_all(
        self,
        outlet_id: UUID,
        reference_type: ReferenceType | str,
        reference_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> dict[UUID, int]:
        """
        Return everything a subscription or event still holds at one outlet.

        Used when a subscription is cancelled or an event completes.  All
        returns commit together.  Items are locked in id order.  Items the
        reference holds at other outlets are left allocated.

        Returns:
            Quantity returned per item id (empty if nothing was outstanding).
        """
        with self._logged("return_all", actor, outlet_id=outlet_id):
            ref_type = _claim_reference(reference_type, reference_id)

            def work(session: Session) -> dict[UUID, int]:
                store = LedgerStore(session, self._clock)
                resolver = OutstandingResolver(session)
                pending = resolver.outstanding_for_reference(
                    ref_type, reference_id, outlet_id=outlet_id
                )
                returned: dict[UUID, int] = {}
                for item_id in sorted(pending, key=str):
                    store.lock_item(item_id)
                    # Re-read under the lock.
                    qty = resolver.outstanding(item_id, ref_type, reference_id)
                    if qty <= 0:
                        continue
                    store.append(
                        MovementIntent(
                            item_id=item_id,
                            outlet_id=outlet_id,
                            movement_type=MovementType.RETURN,
                            quantity=qty,
                            reference_type=ref_type,
                            reference_id=reference_id,
                            actor=actor,
                            notes=notes,
                            reason_code="return_all",
                        )
                    )
                    returned[item_id] = qty
                return returned

            returned = self._run("return_all", work)
            logger.info(
                "reference_fully_returned",
                extra={
                    "reference_type": ref_type.value,
                    "reference_id": str(reference_id),
                    "items": len(returned),
                    "units": sum(returned.values()),
                },
            )
            return returned

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def adjust(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        notes: str | None,
        actor: Actor,
        reason_code: str | None = None,
    ) -> UUID:
        """
        Privileged recount correction.

        ``qty`` is signed: positive adds units to total and available,
        negative removes them from both.  Allocations are untouched.

        Returns:
            The movement id.
        """
        with self._logged("adjust", actor, item_id=item_id, outlet_id=outlet_id):
            self._require_privilege(actor, "adjust stock")
            if isinstance(qty, bool) or not isinstance(qty, int):
                raise ValidationError(
                    f"Adjustment must be a whole number of units, got {qty!r}",
                    field="quantity",
                )
            if qty == 0:
                raise ValidationError("Adjustment must be non-zero", field="quantity")
            _require_notes(notes, MovementType.ADJUSTMENT)
            direction = (
                AdjustmentDirection.INCREASE if qty > 0 else AdjustmentDirection.DECREASE
            )
            magnitude = abs(qty)

            def work(session: Session) -> UUID:
                store = LedgerStore(session, self._clock)
                item = store.lock_item(item_id)
                if (
                    direction is AdjustmentDirection.DECREASE
                    and item.available_quantity < magnitude
                ):
                    raise InsufficientStockError(
                        str(item_id), item.available_quantity, magnitude
                    )
                return store.append(
                    MovementIntent(
                        item_id=item_id,
                        outlet_id=outlet_id,
                        movement_type=MovementType.ADJUSTMENT,
                        quantity=magnitude,
                        reference_type=ReferenceType.MANUAL,
                        reference_id=None,
                        actor=actor,
                        notes=notes,
                        reason_code=reason_code,
                        adjustment_direction=direction,
                    )
                )

            return self._run("adjust", work)

    def stock_in(
        self,
        item_id: UUID,
        outlet_id: UUID,
        qty: int,
        actor: Actor,
        notes: str | None = None,
        reason_code: str | None = "new_purchase",
    ) -> UUID:
        """Add newly purchased units.  Returns the movement id."""
        with self._logged("stock_in", actor, item_id=item_id, outlet_id=outlet_id):
            validate_quantity(qty)

            def work(session: Session) -> UUID:
                return LedgerStore(session, self._clock).append(
                    MovementIntent(
                        item_id=item_id,
                        outlet_id=outlet_id,
                        movement_type=MovementType.STOCK_IN,
                        quantity=qty,
                        reference_type=ReferenceType.MANUAL,
                        reference_id=None,
                        actor=actor,
                        notes=notes,
                        reason_code=reason_code,
                    )
                )

            return self._run("stock_in", work)

    # ------------------------------------------------------------------
    # Item lifecycle
    # ------------------------------------------------------------------

    def create_item(
        self,
        outlet_id: UUID,
        name: str,
        category: str,
        actor: Actor,
        unit: str = "pcs",
        initial_quantity: int = 0,
        material: str | None = None,
        reorder_level: int | None = None,
        notes: str | None = None,
    ) -> UUID:
        """
        Register an item, with its opening stock-in when initial_quantity > 0.

        Returns:
            The new item id.
        """
        with self._logged("create_item", actor, outlet_id=outlet_id):
            if not name or not name.strip():
                raise ValidationError("Item name is required", field="name")
            if not category or not category.strip():
                raise ValidationError("Item category is required", field="category")
            if isinstance(initial_quantity, bool) or not isinstance(initial_quantity, int):
                raise ValidationError(
                    f"Initial quantity must be a whole number, got {initial_quantity!r}",
                    field="initial_quantity",
                )
            if initial_quantity < 0:
                raise ValidationError(
                    "Initial quantity cannot be negative", field="initial_quantity"
                )
            if reorder_level is not None and (
                isinstance(reorder_level, bool)
                or not isinstance(reorder_level, int)
                or reorder_level < 0
            ):
                raise ValidationError(
                    f"Reorder level must be a non-negative whole number, got {reorder_level!r}",
                    field="reorder_level",
                )

            def work(session: Session) -> UUID:
                now = self._clock.now()
                item = InventoryItem(
                    outlet_id=outlet_id,
                    name=name.strip(),
                    category=category.strip(),
                    unit=unit,
                    material=material,
                    reorder_level=reorder_level,
                    is_active=True,
                    total_quantity=0,
                    available_quantity=0,
                    allocated_quantity=0,
                    damaged_quantity=0,
                    lost_quantity=0,
                    movement_count=0,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor.actor_id,
                )
                session.add(item)
                session.flush()

                if initial_quantity > 0:
                    LedgerStore(session, self._clock).append(
                        MovementIntent(
                            item_id=item.id,
                            outlet_id=outlet_id,
                            movement_type=MovementType.STOCK_IN,
                            quantity=initial_quantity,
                            reference_type=ReferenceType.MANUAL,
                            reference_id=None,
                            actor=actor,
                            notes=notes or "Opening balance",
                            reason_code="opening_balance",
                        )
                    )
                return item.id

            item_id = self._run("create_item", work)
            logger.info(
                "item_created",
                extra={
                    "item_id": str(item_id),
                    "item_name": name,
                    "category": category,
                    "initial_quantity": initial_quantity,
                },
            )
            return item_id

    def deactivate_item(self, item_id: UUID, actor: Actor) -> None:
        """Soft-deactivate an item.  Refused while any unit is allocated."""
        with self._logged("deactivate_item", actor, item_id=item_id):
            self._require_privilege(actor, "deactivate items")

            def work(session: Session) -> None:
                item = LedgerStore(session, self._clock).lock_item(item_id)
                if item.allocated_quantity > 0:
                    raise ValidationError(
                        f"Cannot deactivate item {item_id}: "
                        f"{item.allocated_quantity} units are still allocated",
                        field="item_id",
                    )
                item.is_active = False
                item.touch(actor.actor_id)

            self._run("deactivate_item", work)
            logger.info("item_deactivated", extra={"item_id": str(item_id)})

    def reactivate_item(self, item_id: UUID, actor: Actor) -> None:
        """Undo a deactivation."""
        with self._logged("reactivate_item", actor, item_id=item_id):
            self._require_privilege(actor, "reactivate items")

            def work(session: Session) -> None:
                item = LedgerStore(session, self._clock).lock_item(item_id)
                item.is_active = True
                item.touch(actor.actor_id)

            self._run("reactivate_item", work)
            logger.info("item_reactivated", extra={"item_id": str(item_id)})
