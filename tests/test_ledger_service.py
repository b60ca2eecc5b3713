import random
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from stockledger.core.errors import (
    ImmutableEventError,
    InvalidItemError,
    InvalidReasonError,
    ItemNotFoundError,
    LedgerBusyError,
    LedgerConflictError,
    LedgerError,
    NegativeStockError,
    TransientLedgerError,
)
from stockledger.models.item import InventoryItem
from stockledger.models.stock_event import StockChangeReason, StockEvent
from stockledger.services import event_store, ledger_service
from stockledger.services.ledger_service import DIRECTION_RULES, LedgerService, validate_change


def _event_count(session_factory, item_id: str) -> int:
    with session_factory() as db:
        return db.execute(
            select(func.count(StockEvent.id)).where(StockEvent.item_id == item_id)
        ).scalar_one()


def _events(session_factory, item_id: str) -> list[StockEvent]:
    with session_factory() as db:
        return list(event_store.list_item_events(db, item_id))


def _quantity(session_factory, item_id: str) -> int:
    with session_factory() as db:
        return db.get(InventoryItem, item_id).quantity


def test_create_item_writes_opening_event(items, session_factory):
    stocked = items.create_item(name="Ankara Fabric", unit_price="12.50", quantity=40, actor="admin")
    empty = items.create_item(name="Lace Fabric", unit_price=8, actor="admin")

    assert stocked.quantity == 40
    assert stocked.minimum_quantity == 10

    (opening,) = _events(session_factory, stocked.id)
    assert opening.sequence == 1
    assert opening.reason is StockChangeReason.INITIAL_STOCK
    assert opening.quantity_delta == 40
    assert opening.resulting_quantity == 40
    assert opening.price_at_change == Decimal("12.50")

    (price_only,) = _events(session_factory, empty.id)
    assert price_only.reason is StockChangeReason.PRICE_CHANGE
    assert price_only.quantity_delta == 0
    assert price_only.price_at_change == Decimal("8.00")


def test_scenario_received_then_sold(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")

    received = ledger.record_change(item.id, 100, StockChangeReason.RECEIVED, Decimal("10.00"), actor="clerk")
    sold = ledger.record_change(item.id, -30, "sold", actor="clerk")

    assert received.sequence == 2
    assert received.resulting_quantity == 100
    assert sold.sequence == 3
    assert sold.resulting_quantity == 70
    # Price captured from the item when the caller omits it.
    assert sold.price_at_change == Decimal("10.00")
    assert _quantity(session_factory, item.id) == 70


def test_negative_stock_is_rejected_without_effect(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=50, actor="admin")

    with pytest.raises(NegativeStockError) as exc_info:
        ledger.record_change(item.id, -200, StockChangeReason.SOLD, actor="clerk")

    assert exc_info.value.quantity == 50
    assert exc_info.value.delta == -200
    assert _quantity(session_factory, item.id) == 50
    assert _event_count(session_factory, item.id) == 1


def test_price_change_moves_price_only(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=20, actor="admin")

    event = ledger.record_change(item.id, 0, StockChangeReason.PRICE_CHANGE, "15.00", actor="pricing")

    assert event.quantity_delta == 0
    assert event.resulting_quantity == 20
    refreshed = items.get_item(item.id)
    assert refreshed.quantity == 20
    assert refreshed.unit_price == Decimal("15.00")


def test_received_price_does_not_move_item_price(items, ledger):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")
    ledger.record_change(item.id, 10, StockChangeReason.RECEIVED, "12.00", actor="clerk")

    assert items.get_item(item.id).unit_price == Decimal("10.00")


@pytest.mark.parametrize(
    ("delta", "reason", "price"),
    [
        (-5, StockChangeReason.RECEIVED, None),
        (5, StockChangeReason.SOLD, None),
        (5, StockChangeReason.DAMAGED, None),
        (5, StockChangeReason.LOST, None),
        (-5, StockChangeReason.RETURNED_BY_CUSTOMER, None),
        (5, StockChangeReason.RETURNED_TO_SUPPLIER, None),
        (0, StockChangeReason.ADJUSTED, None),
        (0, StockChangeReason.SOLD, None),
        (3, StockChangeReason.PRICE_CHANGE, "9.00"),
        (0, StockChangeReason.PRICE_CHANGE, None),
        (0, StockChangeReason.PRICE_CHANGE, "0"),
        (5, StockChangeReason.INITIAL_STOCK, "1.00"),
        (5, StockChangeReason.RECEIVED, "-1.00"),
        (5, StockChangeReason.RECEIVED, "abc"),
        (5, StockChangeReason.RECEIVED, "-0.004"),
        (5, StockChangeReason.RECEIVED, "12.345"),
        (5, StockChangeReason.RECEIVED, "NaN"),
        (5, StockChangeReason.RECEIVED, "Infinity"),
    ],
)
def test_invalid_changes_are_rejected_before_any_write(items, ledger, session_factory, delta, reason, price):
    item = items.create_item(name="Widget", unit_price=10, quantity=10, actor="admin")

    with pytest.raises(InvalidReasonError):
        ledger.record_change(item.id, delta, reason, price, actor="clerk")

    assert _event_count(session_factory, item.id) == 1
    assert _quantity(session_factory, item.id) == 10


@pytest.mark.parametrize(("given", "stored"), [("12.3", Decimal("12.30")), (7, Decimal("7.00")), (9.5, Decimal("9.50"))])
def test_prices_are_padded_never_rounded(items, ledger, given, stored):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")

    received = ledger.record_change(item.id, 5, StockChangeReason.RECEIVED, given, actor="clerk")

    assert received.price_at_change == stored
    assert validate_change(0, StockChangeReason.PRICE_CHANGE, given) == stored


def test_over_precise_unit_price_is_rejected_at_creation(items):
    with pytest.raises(InvalidItemError, match="decimal places"):
        items.create_item(name="Widget", unit_price="10.005", actor="admin")


def test_unknown_reason_string_is_rejected(items, ledger):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")

    with pytest.raises(InvalidReasonError):
        ledger.record_change(item.id, 5, "stolen", actor="clerk")


def test_non_integer_delta_is_rejected():
    with pytest.raises(InvalidReasonError):
        validate_change(1.5, StockChangeReason.RECEIVED, None)
    with pytest.raises(InvalidReasonError):
        validate_change(True, StockChangeReason.RECEIVED, None)


def test_every_reason_has_a_direction_rule():
    assert set(DIRECTION_RULES) == set(StockChangeReason)


def test_adjusted_accepts_both_signs(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=10, actor="admin")

    ledger.record_change(item.id, 4, StockChangeReason.ADJUSTED, actor="auditor")
    ledger.record_change(item.id, -7, StockChangeReason.ADJUSTED, actor="auditor")

    assert _quantity(session_factory, item.id) == 7


def test_missing_and_disabled_items_are_rejected(items, ledger):
    with pytest.raises(ItemNotFoundError):
        ledger.record_change("missing", 1, StockChangeReason.RECEIVED, actor="clerk")

    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")
    items.disable_item(item.id, actor="admin")

    with pytest.raises(ItemNotFoundError):
        ledger.record_change(item.id, 1, StockChangeReason.RECEIVED, actor="clerk")


def test_supplier_is_copied_onto_events(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, supplier_id="sup-a", actor="admin")
    ledger.record_change(item.id, 5, StockChangeReason.RECEIVED, actor="clerk")

    with session_factory.begin() as db:
        db.get(InventoryItem, item.id).supplier_id = "sup-b"
    ledger.record_change(item.id, -1, StockChangeReason.SOLD, actor="clerk")

    assert [entry.supplier_id for entry in _events(session_factory, item.id)] == ["sup-a", "sup-a", "sup-b"]


def test_running_sum_matches_projection_after_random_changes(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=20, actor="admin")
    rng = random.Random(7)
    reasons = [
        StockChangeReason.RECEIVED,
        StockChangeReason.SOLD,
        StockChangeReason.ADJUSTED,
        StockChangeReason.DAMAGED,
        StockChangeReason.RETURNED_BY_CUSTOMER,
    ]

    rejected = 0
    for _ in range(60):
        reason = rng.choice(reasons)
        size = rng.randint(1, 15)
        delta = -size if reason in {StockChangeReason.SOLD, StockChangeReason.DAMAGED} else size
        if reason is StockChangeReason.ADJUSTED and rng.random() < 0.5:
            delta = -size
        try:
            ledger.record_change(item.id, delta, reason, actor="fuzz")
        except NegativeStockError:
            rejected += 1

    events = _events(session_factory, item.id)
    assert len(events) == 61 - rejected
    assert [entry.sequence for entry in events] == list(range(1, len(events) + 1))

    running = 0
    for entry in events:
        running += entry.quantity_delta
        assert entry.resulting_quantity == running
        assert entry.resulting_quantity >= 0
    assert _quantity(session_factory, item.id) == running

    audit = ledger.verify_item(item.id)
    assert audit.ok
    assert audit.ledger_quantity == audit.projected_quantity == running


def test_verify_item_reports_projection_drift(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")
    with session_factory.begin() as db:
        db.get(InventoryItem, item.id).quantity = 9

    audit = ledger.verify_item(item.id)

    assert not audit.ok
    assert audit.projected_quantity == 9
    assert audit.ledger_quantity == 5


def test_timestamps_never_go_backwards(items, ledger, clock, session_factory):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")
    first = ledger.record_change(item.id, 5, StockChangeReason.RECEIVED, actor="clerk")

    clock.jump_to(first.created_at - timedelta(hours=1))
    second = ledger.record_change(item.id, -1, StockChangeReason.SOLD, actor="clerk")

    assert second.created_at == first.created_at
    assert second.sequence == first.sequence + 1
    assert ledger.verify_item(item.id).ok


def test_stock_events_cannot_be_updated_or_deleted(items, session_factory):
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")

    db = session_factory()
    try:
        entry = db.execute(select(StockEvent).where(StockEvent.item_id == item.id)).scalar_one()
        entry.actor = "someone-else"
        with pytest.raises(ImmutableEventError):
            db.flush()
    finally:
        db.rollback()
        db.close()

    db = session_factory()
    try:
        entry = db.execute(select(StockEvent).where(StockEvent.item_id == item.id)).scalar_one()
        db.delete(entry)
        with pytest.raises(ImmutableEventError):
            db.flush()
    finally:
        db.rollback()
        db.close()

    assert _events(session_factory, item.id)[0].actor == "admin"


def test_busy_item_lock_times_out_without_effect(items, session_factory, clock):
    from stockledger.core.locks import KeyedLockRegistry

    locks = KeyedLockRegistry(timeout_seconds=0.05)
    ledger = LedgerService(session_factory, locks=locks, clock=clock)
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")

    with locks.hold(item.id):
        with pytest.raises(LedgerBusyError):
            ledger.record_change(item.id, 1, StockChangeReason.RECEIVED, actor="clerk")

    assert _event_count(session_factory, item.id) == 1
    assert _quantity(session_factory, item.id) == 5


def test_sequence_collision_surfaces_as_conflict(items, ledger, session_factory, monkeypatch):
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")
    # Pretend another writer has not been seen: the next sequence collides with 1.
    monkeypatch.setattr(event_store, "get_last_event", lambda db, item_id: None)

    with pytest.raises(LedgerConflictError) as exc_info:
        ledger.record_change(item.id, 1, StockChangeReason.RECEIVED, actor="clerk")

    assert isinstance(exc_info.value, LedgerError)
    assert _quantity(session_factory, item.id) == 5
    assert _event_count(session_factory, item.id) == 1


def test_locked_store_is_retryable_and_leaves_nothing_behind(items, ledger, session_factory, monkeypatch):
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")

    def locked(db, **kwargs):
        raise OperationalError("INSERT INTO stock_events", {}, Exception("database is locked"))

    monkeypatch.setattr(event_store, "append_event", locked)
    with pytest.raises(TransientLedgerError) as exc_info:
        ledger.record_change(item.id, 3, StockChangeReason.RECEIVED, actor="clerk")

    assert exc_info.value.context == {"item_id": item.id}
    assert _quantity(session_factory, item.id) == 5
    assert _event_count(session_factory, item.id) == 1

    monkeypatch.undo()
    retried = ledger.record_change(item.id, 3, StockChangeReason.RECEIVED, actor="clerk")
    assert retried.sequence == 2
    assert _quantity(session_factory, item.id) == 8


def test_check_constraint_violation_is_not_retryable(items, ledger, session_factory, monkeypatch):
    item = items.create_item(name="Widget", unit_price=10, quantity=5, actor="admin")
    # Let a zero-delta sale through to the database, which refuses it.
    monkeypatch.setattr(ledger_service, "validate_change", lambda delta, reason, price: None)

    with pytest.raises(IntegrityError) as exc_info:
        ledger.record_change(item.id, 0, StockChangeReason.SOLD, actor="clerk")

    assert not isinstance(exc_info.value, TransientLedgerError)
    assert _quantity(session_factory, item.id) == 5
    assert _event_count(session_factory, item.id) == 1
