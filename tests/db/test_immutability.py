"""
Append-only enforcement for movements and allocations.

ORM listeners are exercised on every backend; the PostgreSQL trigger tests
run only when RENTAL_LEDGER_TEST_DATABASE_URL points at PostgreSQL.
"""

from uuid import uuid4

import pytest
from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError

from rental_ledger.db.engine import is_postgres, session_scope
from rental_ledger.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from rental_ledger.db.triggers import (
    ALL_TRIGGER_NAMES,
    get_installed_triggers,
    triggers_installed,
)
from rental_ledger.exceptions import ImmutabilityViolationError
from rental_ledger.models.allocation import InventoryAllocation
from rental_ledger.models.item import InventoryItem
from rental_ledger.models.movement import InventoryMovement
from rental_ledger.services.transaction import ledger_transaction


@pytest.fixture
def allocated_item(manager, make_item, outlet_id, staff, event_id):
    item = make_item(5)
    manager.allocate(item, outlet_id, 2, "event", event_id, staff)
    return item


def _first_movement(session, item_id) -> InventoryMovement:
    return session.execute(
        select(InventoryMovement)
        .where(InventoryMovement.item_id == item_id)
        .order_by(InventoryMovement.sequence)
        .limit(1)
    ).scalar_one()


class TestOrmListeners:

    def test_movement_update_blocked(self, allocated_item, session_factory, snapshot,
                                     captured_logs):
        before = snapshot(allocated_item)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(session_factory) as s:
                _first_movement(s, allocated_item).quantity = 50
        assert exc_info.value.entity_type == "InventoryMovement"
        assert snapshot(allocated_item) == before
        assert any(
            r["message"] == "immutability_violation_blocked" for r in captured_logs()
        )

    def test_movement_delete_blocked(self, allocated_item, session_factory, snapshot):
        before = snapshot(allocated_item)
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as s:
                s.delete(_first_movement(s, allocated_item))
        assert snapshot(allocated_item) == before

    def test_allocation_delete_blocked(self, allocated_item, session_factory):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as s:
                allocation = s.execute(
                    select(InventoryAllocation).where(
                        InventoryAllocation.item_id == allocated_item
                    )
                ).scalar_one()
                s.delete(allocation)

    def test_item_with_history_cannot_be_deleted(self, make_item, session_factory):
        item_id = make_item(1)
        with pytest.raises(ImmutabilityViolationError, match="deactivate"):
            with session_scope(session_factory) as s:
                s.delete(s.get(InventoryItem, item_id))

    def test_item_without_history_can_be_deleted(self, make_item, session_factory):
        item_id = make_item(0)
        with session_scope(session_factory) as s:
            s.delete(s.get(InventoryItem, item_id))
        with session_scope(session_factory) as s:
            assert s.get(InventoryItem, item_id) is None

    def test_allocation_counters_may_change(self, allocated_item, session_factory):
        # Allocations are mutable through the store; only deletion is refused.
        with session_scope(session_factory) as s:
            allocation = s.execute(
                select(InventoryAllocation).where(InventoryAllocation.item_id == allocated_item)
            ).scalar_one()
            allocation.updated_by_id = uuid4()

    def test_registration_is_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()
        unregister_immutability_listeners()
        unregister_immutability_listeners()
        register_immutability_listeners()


@pytest.mark.postgres
class TestDatabaseTriggers:

    @pytest.fixture(autouse=True)
    def _require_postgres(self, engine):
        if not is_postgres(engine):
            pytest.skip("immutability triggers are installed on PostgreSQL only")

    def test_all_triggers_installed(self, engine):
        assert triggers_installed(engine)
        assert sorted(get_installed_triggers(engine)) == sorted(ALL_TRIGGER_NAMES)

    def test_raw_update_blocked(self, allocated_item, session_factory):
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            with session_scope(session_factory) as s:
                s.execute(
                    update(InventoryMovement)
                    .where(InventoryMovement.item_id == allocated_item)
                    .values(quantity=99)
                )

    def test_raw_delete_blocked(self, allocated_item, session_factory):
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            with session_scope(session_factory) as s:
                s.execute(
                    delete(InventoryAllocation).where(
                        InventoryAllocation.item_id == allocated_item
                    )
                )

    def test_transaction_boundary_raises_typed_error(self, allocated_item, session_factory):
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with ledger_transaction(session_factory, "tamper") as s:
                s.execute(
                    update(InventoryMovement)
                    .where(InventoryMovement.item_id == allocated_item)
                    .values(notes="edited")
                )
        assert exc_info.value.entity_type == "inventory movement"
