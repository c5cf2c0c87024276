"""
AllocationManager behaviour: allocate, allocate_many, return, damage, loss,
return_all, adjust and stock_in.

The subscription walkthrough (allocate 4 of 10, then return / damage /
over-return) is covered first; the remaining classes pin the rejection
rules and the guarantee that a rejected request leaves no trace.
"""

from uuid import uuid4

import pytest

from rental_ledger.db.engine import session_scope
from rental_ledger.domain.intents import Actor
from rental_ledger.exceptions import (
    AllocationNotFoundError,
    ExceedsOutstandingError,
    InsufficientStockError,
    ItemNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from rental_ledger.selectors.reporting import InventoryReportSelector


class TestSubscriptionWalkthrough:

    @pytest.fixture
    def chairs(self, make_item):
        return make_item(10)

    @pytest.fixture
    def allocated(self, manager, chairs, outlet_id, staff, subscription_id):
        manager.allocate(chairs, outlet_id, 4, "subscription", subscription_id, staff)
        return chairs

    def test_allocate_moves_units_to_allocated(self, allocated, quantities, outstanding,
                                                subscription_id, assert_balanced):
        assert outstanding(allocated, "subscription", subscription_id) == 4
        assert quantities(allocated)["available"] == 6
        assert quantities(allocated)["allocated"] == 4
        assert_balanced(allocated)

    def test_full_return_closes_allocation(self, manager, allocated, outlet_id, staff,
                                           subscription_id, quantities, outstanding,
                                           session_factory, assert_balanced):
        manager.return_units(allocated, outlet_id, 4, "subscription", subscription_id, staff)

        assert outstanding(allocated, "subscription", subscription_id) == 0
        assert quantities(allocated)["available"] == 10
        with session_scope(session_factory) as s:
            rows = InventoryReportSelector(s).allocation_report(
                reference_id=subscription_id, active_only=False
            )
        assert len(rows) == 1
        assert rows[0].is_active is False
        assert_balanced(allocated)

    def test_damage_against_subscription(self, manager, allocated, outlet_id, staff,
                                         subscription_id, quantities, outstanding,
                                         assert_balanced):
        manager.mark_damage(
            allocated, outlet_id, 1, "subscription", subscription_id, staff, notes="cracked"
        )

        assert outstanding(allocated, "subscription", subscription_id) == 3
        q = quantities(allocated)
        assert q["damaged"] == 1
        assert q["available"] == 6
        assert q["total"] == 10
        assert_balanced(allocated)

    @pytest.mark.parametrize("notes", ["", "   ", None])
    def test_damage_without_notes_rejected(self, manager, allocated, outlet_id, staff,
                                           subscription_id, snapshot, notes):
        before = snapshot(allocated)
        with pytest.raises(ValidationError) as exc_info:
            manager.mark_damage(
                allocated, outlet_id, 1, "subscription", subscription_id, staff, notes=notes
            )
        assert exc_info.value.field == "notes"
        assert snapshot(allocated) == before

    def test_over_return_rejected(self, manager, allocated, outlet_id, staff,
                                  subscription_id, snapshot):
        manager.mark_damage(
            allocated, outlet_id, 1, "subscription", subscription_id, staff, notes="cracked"
        )
        before = snapshot(allocated)

        with pytest.raises(ExceedsOutstandingError) as exc_info:
            manager.return_units(allocated, outlet_id, 5, "subscription", subscription_id, staff)

        assert exc_info.value.outstanding == 3
        assert exc_info.value.requested == 5
        assert str(exc_info.value).startswith("only 3 units outstanding, cannot return 5")
        assert snapshot(allocated) == before


class TestAllocate:

    def test_returns_same_allocation_for_top_up(self, manager, make_item, outlet_id, staff,
                                                event_id, outstanding):
        item = make_item(10)
        first = manager.allocate(item, outlet_id, 2, "event", event_id, staff)
        second = manager.allocate(item, outlet_id, 3, "event", event_id, staff)
        assert first == second
        assert outstanding(item, "event", event_id) == 5

    def test_insufficient_stock(self, manager, make_item, outlet_id, staff, event_id, snapshot):
        item = make_item(3)
        before = snapshot(item)
        with pytest.raises(InsufficientStockError) as exc_info:
            manager.allocate(item, outlet_id, 4, "event", event_id, staff)
        assert exc_info.value.available == 3
        assert snapshot(item) == before

    def test_exactly_available_succeeds(self, manager, make_item, outlet_id, staff, event_id,
                                        quantities):
        item = make_item(3)
        manager.allocate(item, outlet_id, 3, "event", event_id, staff)
        assert quantities(item)["available"] == 0

    def test_manual_reference_rejected(self, manager, make_item, outlet_id, staff):
        item = make_item(3)
        with pytest.raises(ValidationError) as exc_info:
            manager.allocate(item, outlet_id, 1, "manual", None, staff)
        assert exc_info.value.field == "reference_type"

    def test_unknown_reference_type_rejected(self, manager, make_item, outlet_id, staff):
        item = make_item(3)
        with pytest.raises(ValidationError, match="Unknown reference type"):
            manager.allocate(item, outlet_id, 1, "booking", uuid4(), staff)

    def test_missing_reference_id_rejected(self, manager, make_item, outlet_id, staff):
        item = make_item(3)
        with pytest.raises(ValidationError) as exc_info:
            manager.allocate(item, outlet_id, 1, "subscription", None, staff)
        assert exc_info.value.field == "reference_id"

    @pytest.mark.parametrize("qty", [0, -2, 1.5, True])
    def test_invalid_quantity(self, manager, make_item, outlet_id, staff, event_id, qty):
        item = make_item(3)
        with pytest.raises(ValidationError):
            manager.allocate(item, outlet_id, qty, "event", event_id, staff)

    def test_unknown_item(self, manager, outlet_id, staff, event_id):
        with pytest.raises(ItemNotFoundError):
            manager.allocate(uuid4(), outlet_id, 1, "event", event_id, staff)

    def test_rejection_is_logged_with_code(self, manager, make_item, outlet_id, staff,
                                           event_id, captured_logs):
        item = make_item(1)
        with pytest.raises(InsufficientStockError):
            manager.allocate(item, outlet_id, 2, "event", event_id, staff)

        rejected = [r for r in captured_logs() if r["message"] == "allocate_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["error_code"] == "INSUFFICIENT_STOCK"
        assert rejected[0]["operation"] == "allocate"
        assert rejected[0]["actor_id"] == str(staff.actor_id)
        assert rejected[0]["item_id"] == str(item)


class TestAllocateMany:

    def test_allocates_every_item(self, manager, make_item, outlet_id, staff, event_id,
                                  outstanding, quantities, captured_logs, assert_balanced):
        chairs, tables = make_item(10), make_item(4)

        allocations = manager.allocate_many(
            outlet_id, "event", event_id, {chairs: 6, tables: 4}, staff
        )

        assert set(allocations) == {chairs, tables}
        assert allocations[chairs] != allocations[tables]
        assert outstanding(chairs, "event", event_id) == 6
        assert outstanding(tables, "event", event_id) == 4
        assert quantities(tables)["available"] == 0
        assert_balanced(chairs)
        assert_balanced(tables)

        summary = [r for r in captured_logs() if r["message"] == "reference_allocated"]
        assert summary[-1]["items"] == 2
        assert summary[-1]["units"] == 10

    def test_tops_up_existing_allocation(self, manager, make_item, outlet_id, staff,
                                         subscription_id, outstanding):
        item = make_item(10)
        first = manager.allocate(item, outlet_id, 2, "subscription", subscription_id, staff)
        allocations = manager.allocate_many(
            outlet_id, "subscription", subscription_id, {item: 3}, staff
        )
        assert allocations == {item: first}
        assert outstanding(item, "subscription", subscription_id) == 5

    def test_shortfall_on_last_item_leaves_earlier_items_untouched(
        self, manager, make_item, outlet_id, staff, event_id, snapshot, outstanding
    ):
        items = sorted([make_item(5), make_item(5), make_item(5)], key=str)
        before = {item: snapshot(item) for item in items}
        request = {items[0]: 2, items[1]: 3, items[2]: 6}

        with pytest.raises(InsufficientStockError) as exc_info:
            manager.allocate_many(outlet_id, "event", event_id, request, staff)

        assert exc_info.value.item_id == str(items[2])
        for item in items:
            assert snapshot(item) == before[item]
            assert outstanding(item, "event", event_id) == 0

    def test_empty_request_rejected(self, manager, outlet_id, staff, event_id):
        with pytest.raises(ValidationError) as exc_info:
            manager.allocate_many(outlet_id, "event", event_id, {}, staff)
        assert exc_info.value.field == "items"

    def test_invalid_quantity_rejected_before_locking(self, manager, make_item, outlet_id,
                                                      staff, event_id, snapshot):
        good, bad = make_item(5), make_item(5)
        before = snapshot(good)
        with pytest.raises(ValidationError):
            manager.allocate_many(outlet_id, "event", event_id, {good: 1, bad: 0}, staff)
        assert snapshot(good) == before

    def test_manual_reference_rejected(self, manager, make_item, outlet_id, staff):
        item = make_item(3)
        with pytest.raises(ValidationError) as exc_info:
            manager.allocate_many(outlet_id, "manual", None, {item: 1}, staff)
        assert exc_info.value.field == "reference_type"

    def test_unknown_item_rolls_back(self, manager, make_item, outlet_id, staff, event_id,
                                     snapshot):
        item = make_item(5)
        before = snapshot(item)
        with pytest.raises(ItemNotFoundError):
            manager.allocate_many(
                outlet_id, "event", event_id, {item: 1, uuid4(): 1}, staff
            )
        assert snapshot(item) == before


class TestResolution:

    @pytest.fixture
    def item(self, manager, make_item, outlet_id, staff, event_id):
        item = make_item(10)
        manager.allocate(item, outlet_id, 5, "event", event_id, staff)
        return item

    def test_return_never_allocated_pair(self, manager, item, outlet_id, staff, snapshot):
        before = snapshot(item)
        with pytest.raises(AllocationNotFoundError):
            manager.return_units(item, outlet_id, 1, "event", uuid4(), staff)
        assert snapshot(item) == before

    def test_return_with_wrong_reference_type(self, manager, item, outlet_id, staff, event_id):
        # Same id, different reference type: a different pair.
        with pytest.raises(AllocationNotFoundError):
            manager.return_units(item, outlet_id, 1, "subscription", event_id, staff)

    def test_return_after_full_resolution(self, manager, item, outlet_id, staff, event_id):
        manager.return_units(item, outlet_id, 5, "event", event_id, staff)
        with pytest.raises(ExceedsOutstandingError) as exc_info:
            manager.return_units(item, outlet_id, 1, "event", event_id, staff)
        assert exc_info.value.outstanding == 0

    def test_partial_returns_accumulate(self, manager, item, outlet_id, staff, event_id,
                                        outstanding, assert_balanced):
        manager.return_units(item, outlet_id, 2, "event", event_id, staff)
        manager.return_units(item, outlet_id, 1, "event", event_id, staff)
        assert outstanding(item, "event", event_id) == 2
        assert_balanced(item)

    def test_loss_against_event(self, manager, item, outlet_id, staff, event_id, quantities,
                                outstanding, assert_balanced):
        manager.mark_loss(item, outlet_id, 2, "event", event_id, staff, notes="not returned")
        q = quantities(item)
        assert q["lost"] == 2
        assert q["allocated"] == 3
        assert q["total"] == 10
        assert outstanding(item, "event", event_id) == 3
        assert_balanced(item)

    def test_loss_beyond_outstanding_message(self, manager, item, outlet_id, staff, event_id):
        with pytest.raises(ExceedsOutstandingError, match="cannot mark lost 6"):
            manager.mark_loss(item, outlet_id, 6, "event", event_id, staff, notes="gone")

    def test_mixed_resolution_closes_allocation(self, manager, item, outlet_id, staff,
                                                event_id, session_factory):
        manager.return_units(item, outlet_id, 2, "event", event_id, staff)
        manager.mark_damage(item, outlet_id, 2, "event", event_id, staff, notes="stained")
        manager.mark_loss(item, outlet_id, 1, "event", event_id, staff, notes="missing")

        with session_scope(session_factory) as s:
            (row,) = InventoryReportSelector(s).allocation_report(
                reference_id=event_id, active_only=False
            )
        assert (row.returned, row.damaged, row.lost, row.outstanding) == (2, 2, 1, 0)
        assert row.is_active is False
        assert row.closed_at is not None


class TestWarehouseWriteOff:

    def test_manual_damage_takes_from_available(self, manager, make_item, outlet_id, staff,
                                                quantities, assert_balanced):
        item = make_item(10)
        manager.mark_damage(item, outlet_id, 2, "manual", None, staff, notes="water damage")
        q = quantities(item)
        assert (q["total"], q["available"], q["damaged"]) == (10, 8, 2)
        assert_balanced(item)

    def test_manual_loss_beyond_available(self, manager, make_item, outlet_id, staff,
                                          event_id, snapshot):
        item = make_item(4)
        manager.allocate(item, outlet_id, 3, "event", event_id, staff)
        before = snapshot(item)
        with pytest.raises(InsufficientStockError):
            manager.mark_loss(item, outlet_id, 2, "manual", None, staff, notes="stolen")
        assert snapshot(item) == before

    def test_manual_with_reference_id_rejected(self, manager, make_item, outlet_id, staff):
        item = make_item(4)
        with pytest.raises(ValidationError) as exc_info:
            manager.mark_damage(item, outlet_id, 1, "manual", uuid4(), staff, notes="x")
        assert exc_info.value.field == "reference_id"


class TestReturnAll:

    def test_returns_every_outstanding_item(self, manager, make_item, outlet_id, staff,
                                            event_id, outstanding, quantities, captured_logs):
        chairs, tables, linens = make_item(10), make_item(6), make_item(20)
        manager.allocate(chairs, outlet_id, 4, "event", event_id, staff)
        manager.allocate(tables, outlet_id, 2, "event", event_id, staff)
        manager.allocate(linens, outlet_id, 5, "event", event_id, staff)
        manager.mark_damage(tables, outlet_id, 2, "event", event_id, staff, notes="broken leg")
        manager.return_units(linens, outlet_id, 1, "event", event_id, staff)

        returned = manager.return_all(outlet_id, "event", event_id, staff, notes="event closed")

        assert returned == {chairs: 4, linens: 4}
        for item in (chairs, tables, linens):
            assert outstanding(item, "event", event_id) == 0
            assert quantities(item)["allocated"] == 0
        assert quantities(tables)["damaged"] == 2

        summary = [r for r in captured_logs() if r["message"] == "reference_fully_returned"]
        assert summary[-1]["items"] == 2
        assert summary[-1]["units"] == 8

    def test_leaves_other_references_alone(self, manager, make_item, outlet_id, staff,
                                           event_id, subscription_id, outstanding):
        item = make_item(10)
        manager.allocate(item, outlet_id, 3, "event", event_id, staff)
        manager.allocate(item, outlet_id, 2, "subscription", subscription_id, staff)

        manager.return_all(outlet_id, "event", event_id, staff)

        assert outstanding(item, "event", event_id) == 0
        assert outstanding(item, "subscription", subscription_id) == 2

    def test_only_returns_items_at_the_given_outlet(self, manager, make_item, outlet_id,
                                                    staff, event_id, outstanding,
                                                    assert_balanced):
        other_outlet = uuid4()
        here = make_item(5)
        there = make_item(5, outlet=other_outlet)
        manager.allocate(here, outlet_id, 2, "event", event_id, staff)
        manager.allocate(there, other_outlet, 3, "event", event_id, staff)

        assert manager.return_all(outlet_id, "event", event_id, staff) == {here: 2}
        assert outstanding(here, "event", event_id) == 0
        assert outstanding(there, "event", event_id) == 3

        assert manager.return_all(other_outlet, "event", event_id, staff) == {there: 3}
        assert outstanding(there, "event", event_id) == 0
        assert_balanced(here)
        assert_balanced(there)

    def test_nothing_outstanding(self, manager, outlet_id, staff):
        assert manager.return_all(outlet_id, "subscription", uuid4(), staff) == {}

    def test_manual_reference_rejected(self, manager, outlet_id, staff):
        with pytest.raises(ValidationError):
            manager.return_all(outlet_id, "manual", None, staff)


class TestAdjust:

    def test_increase(self, manager, make_item, outlet_id, admin, quantities, assert_balanced):
        item = make_item(5)
        manager.adjust(item, outlet_id, 3, "found in storage", admin)
        q = quantities(item)
        assert (q["total"], q["available"]) == (8, 8)
        assert_balanced(item)

    def test_decrease(self, manager, make_item, outlet_id, admin, quantities):
        item = make_item(5)
        manager.adjust(item, outlet_id, -2, "recount", admin, reason_code="recount")
        q = quantities(item)
        assert (q["total"], q["available"]) == (3, 3)

    def test_decrease_cannot_touch_allocated_units(self, manager, make_item, outlet_id, admin,
                                                   staff, event_id, snapshot):
        item = make_item(5)
        manager.allocate(item, outlet_id, 4, "event", event_id, staff)
        before = snapshot(item)
        with pytest.raises(InsufficientStockError):
            manager.adjust(item, outlet_id, -2, "recount", admin)
        assert snapshot(item) == before

    def test_staff_cannot_adjust(self, manager, make_item, outlet_id, staff, snapshot):
        item = make_item(5)
        before = snapshot(item)
        with pytest.raises(PermissionDeniedError) as exc_info:
            manager.adjust(item, outlet_id, 1, "recount", staff)
        assert exc_info.value.code == "PERMISSION_DENIED"
        assert exc_info.value.role == "staff"
        assert snapshot(item) == before

    def test_manager_role_is_privileged(self, manager, make_item, outlet_id):
        item = make_item(5)
        manager.adjust(item, outlet_id, 1, "recount", Actor(actor_id=uuid4(), role="manager"))

    def test_permission_checked_before_input(self, manager, outlet_id, staff):
        with pytest.raises(PermissionDeniedError):
            manager.adjust(uuid4(), outlet_id, 0, None, staff)

    @pytest.mark.parametrize("qty", [0, 1.5, True])
    def test_invalid_amount(self, manager, make_item, outlet_id, admin, qty):
        item = make_item(5)
        with pytest.raises(ValidationError) as exc_info:
            manager.adjust(item, outlet_id, qty, "recount", admin)
        assert exc_info.value.field == "quantity"

    def test_notes_required(self, manager, make_item, outlet_id, admin):
        item = make_item(5)
        with pytest.raises(ValidationError) as exc_info:
            manager.adjust(item, outlet_id, 1, " ", admin)
        assert exc_info.value.field == "notes"


class TestStockIn:

    def test_adds_to_total_and_available(self, manager, make_item, outlet_id, staff,
                                         quantities, event_id):
        item = make_item(2)
        manager.allocate(item, outlet_id, 1, "event", event_id, staff)
        manager.stock_in(item, outlet_id, 5, staff)
        assert quantities(item) == {
            "total": 7, "available": 6, "allocated": 1, "damaged": 0, "lost": 0,
        }

    def test_wrong_outlet(self, manager, make_item, staff):
        item = make_item(2)
        with pytest.raises(ValidationError) as exc_info:
            manager.stock_in(item, uuid4(), 5, staff)
        assert exc_info.value.field == "outlet_id"
