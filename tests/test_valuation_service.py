from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from stockledger.core.errors import InvalidRangeError, InvalidReasonError, ItemNotFoundError
from stockledger.models.stock_event import StockChangeReason
from stockledger.services import valuation_service
from stockledger.services.valuation_service import (
    REASON_BUCKETS,
    WacState,
    apply_event,
    replay_item,
    summarize_period,
)

R = StockChangeReason


@dataclass(frozen=True)
class Entry:
    item_id: str
    quantity_delta: int
    reason: StockChangeReason
    price_at_change: Decimal | None
    created_at: datetime


def _at(day: int, hour: int = 9) -> datetime:
    return datetime(2026, 3, day, hour, tzinfo=timezone.utc)


HISTORY = [
    Entry("w", 0, R.PRICE_CHANGE, Decimal("10.00"), _at(2)),
    Entry("w", 100, R.RECEIVED, Decimal("10.00"), _at(2, 10)),
    Entry("w", -30, R.SOLD, Decimal("10.00"), _at(2, 11)),
    Entry("w", 50, R.RECEIVED, Decimal("12.00"), _at(10)),
    Entry("w", -20, R.SOLD, Decimal("10.00"), _at(10, 10)),
]


def test_every_reason_has_a_bucket():
    assert set(REASON_BUCKETS) == set(StockChangeReason)


def test_weighted_average_after_receipts_and_sale():
    basis = replay_item("w", HISTORY[:3])

    assert basis.quantity == 70
    assert basis.avg_cost == Decimal("10.000000")
    assert basis.cogs_quantity == 30
    assert basis.cogs_value == Decimal("300.00")
    assert basis.inventory_value == Decimal("700.00")
    assert basis.current_price == Decimal("10.00")


def test_weighted_average_blends_second_receipt():
    basis = replay_item("w", HISTORY[:4])

    assert basis.quantity == 120
    assert basis.avg_cost == Decimal("10.833333")
    assert basis.purchased_quantity == 150
    assert basis.purchased_value == Decimal("1600.00")


def test_price_change_leaves_average_cost_alone():
    before = replay_item("w", HISTORY[:3])
    after = replay_item(
        "w",
        HISTORY[:3] + [Entry("w", 0, R.PRICE_CHANGE, Decimal("15.00"), _at(3))],
    )

    assert after.quantity == before.quantity
    assert after.avg_cost == before.avg_cost
    assert after.current_price == Decimal("15.00")


def test_inbound_without_price_uses_running_average():
    state = WacState(quantity=10, avg_cost=Decimal("4.500000"))
    step = apply_event(state, Entry("w", 5, R.RETURNED_BY_CUSTOMER, None, _at(4)))

    assert step.state.quantity == 15
    assert step.state.avg_cost == Decimal("4.500000")
    assert step.inbound_value == Decimal("22.5")


def test_zero_delta_outside_price_change_cannot_be_valued():
    with pytest.raises(InvalidReasonError):
        apply_event(WacState(), Entry("w", 0, R.ADJUSTED, None, _at(4)))


def test_replay_is_pure():
    assert replay_item("w", HISTORY) == replay_item("w", HISTORY)
    assert summarize_period(HISTORY, start=date(2026, 3, 5), end=date(2026, 3, 10)) == summarize_period(
        HISTORY, start=date(2026, 3, 5), end=date(2026, 3, 10)
    )


def test_period_summary_splits_opening_flows_and_closing():
    summary = summarize_period(HISTORY, start=date(2026, 3, 5), end=date(2026, 3, 10))

    assert summary.method == "WAC"
    assert summary.item_count == 1
    assert summary.beginning_quantity == 70
    assert summary.beginning_value == Decimal("700")
    assert summary.purchased_quantity == 50
    assert summary.purchased_value == Decimal("600")
    assert summary.cogs_quantity == 20
    assert summary.cogs_value == Decimal("216.66666")
    assert summary.ending_quantity == 100
    assert summary.ending_value == Decimal("1083.3333")
    assert summary.turnover == Decimal("0.2430")


def test_period_summary_breaks_down_outbound_reasons():
    history = [
        Entry("w", 20, R.INITIAL_STOCK, Decimal("5.00"), _at(2)),
        Entry("w", -4, R.SOLD, None, _at(3)),
        Entry("w", -2, R.DAMAGED, None, _at(3, 10)),
        Entry("w", -1, R.LOST, None, _at(3, 11)),
        Entry("w", -3, R.RETURNED_TO_SUPPLIER, None, _at(3, 12)),
        Entry("w", 2, R.RETURNED_BY_CUSTOMER, None, _at(3, 13)),
    ]

    summary = summarize_period(history, start=date(2026, 3, 1), end=date(2026, 3, 31))

    assert summary.beginning_quantity == 0
    assert summary.purchased_quantity == 22
    assert summary.returns_in_quantity == 2
    assert summary.returns_in_value == Decimal("10")
    assert summary.cogs_quantity == 10
    assert summary.write_off_quantity == 3
    assert summary.write_off_value == Decimal("15")
    assert summary.returned_to_supplier_quantity == 3
    assert summary.ending_quantity == 12
    assert summary.ending_value == Decimal("60")


def test_turnover_is_none_without_holdings():
    summary = summarize_period([], start=date(2026, 3, 1), end=date(2026, 3, 31))

    assert summary.beginning_value == 0
    assert summary.ending_value == 0
    assert summary.turnover is None


def test_cost_basis_reads_the_ledger(items, ledger, session_factory):
    item = items.create_item(name="Widget", unit_price=10, actor="admin")
    ledger.record_change(item.id, 100, R.RECEIVED, "10.00", actor="clerk")
    ledger.record_change(item.id, -30, R.SOLD, actor="clerk")
    ledger.record_change(item.id, 50, R.RECEIVED, "12.00", actor="clerk")

    with session_factory() as db:
        basis = valuation_service.get_cost_basis(db, item.id)
        earlier = valuation_service.get_cost_basis(
            db, item.id, as_of=datetime(2026, 3, 2, 9, 2, tzinfo=timezone.utc)
        )

    assert basis.quantity == 120
    assert basis.avg_cost == Decimal("10.833333")
    assert basis.event_count == 4
    # as_of is inclusive: opening event, the receipt and the sale.
    assert earlier.quantity == 70
    assert earlier.cogs_value == Decimal("300")


def test_cost_basis_unknown_item(session_factory):
    with session_factory() as db:
        with pytest.raises(ItemNotFoundError):
            valuation_service.get_cost_basis(db, "missing")


def test_financial_summary_rejects_inverted_window(session_factory):
    with session_factory() as db:
        with pytest.raises(InvalidRangeError):
            valuation_service.get_financial_summary(db, start=date(2026, 3, 10), end=date(2026, 3, 1))
