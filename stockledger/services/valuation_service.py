"""
Weighted-average cost valuation, derived only from the stock event log.

Everything here is a fold over events ordered by ``(created_at, sequence)``;
nothing is stored, so any figure can be reproduced by replaying history.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy.orm import Session

from stockledger.core.clock import end_of_day_exclusive, ensure_utc, resolve_date_window, start_of_day
from stockledger.core.config import settings
from stockledger.core.errors import InvalidReasonError, ItemNotFoundError
from stockledger.core.money import ZERO_COST, to_cost
from stockledger.models.stock_event import StockChangeReason
from stockledger.services import event_store, item_store

TURNOVER_QUANT = Decimal("0.0001")
ZERO = Decimal("0")


class LedgerEntry(Protocol):
    item_id: str
    quantity_delta: int
    reason: StockChangeReason
    price_at_change: Decimal | None
    created_at: datetime


# Reporting bucket of each reason. Every member must appear here.
PURCHASE = "purchase"
RETURN_IN = "return_in"
SALE = "sale"
WRITE_OFF = "write_off"
SUPPLIER_RETURN = "supplier_return"
PRICE = "price"
SIGNED = "signed"

REASON_BUCKETS: dict[StockChangeReason, str] = {
    StockChangeReason.INITIAL_STOCK: PURCHASE,
    StockChangeReason.RECEIVED: PURCHASE,
    StockChangeReason.RETURNED_BY_CUSTOMER: RETURN_IN,
    StockChangeReason.SOLD: SALE,
    StockChangeReason.DAMAGED: WRITE_OFF,
    StockChangeReason.LOST: WRITE_OFF,
    StockChangeReason.RETURNED_TO_SUPPLIER: SUPPLIER_RETURN,
    StockChangeReason.PRICE_CHANGE: PRICE,
    StockChangeReason.ADJUSTED: SIGNED,
}


@dataclass(frozen=True)
class WacState:
    quantity: int = 0
    avg_cost: Decimal = ZERO_COST
    current_price: Decimal | None = None


@dataclass(frozen=True)
class WacStep:
    state: WacState
    inbound_value: Decimal = ZERO
    outbound_value: Decimal = ZERO


def apply_event(state: WacState, entry: LedgerEntry) -> WacStep:
    delta = entry.quantity_delta
    bucket = REASON_BUCKETS[entry.reason]

    if delta > 0:
        unit_cost = Decimal(entry.price_at_change) if entry.price_at_change is not None else state.avg_cost
        quantity = state.quantity + delta
        avg_cost = to_cost((state.avg_cost * state.quantity + unit_cost * delta) / quantity)
        current_price = state.current_price
        if entry.reason is StockChangeReason.INITIAL_STOCK:
            current_price = unit_cost
        return WacStep(
            state=WacState(quantity=quantity, avg_cost=avg_cost, current_price=current_price),
            inbound_value=unit_cost * delta,
        )

    if delta < 0:
        issued = -delta
        # Outbound flow never changes the blended cost of what remains.
        return WacStep(
            state=replace(state, quantity=max(state.quantity - issued, 0)),
            outbound_value=state.avg_cost * issued,
        )

    if bucket == PRICE:
        return WacStep(state=replace(state, current_price=entry.price_at_change))
    raise InvalidReasonError(
        f"Zero-quantity event with reason {entry.reason.value} cannot be valued",
        reason=entry.reason.value,
    )


@dataclass(frozen=True)
class CostBasis:
    item_id: str
    as_of: datetime | None
    quantity: int
    avg_cost: Decimal
    inventory_value: Decimal
    current_price: Decimal | None
    purchased_quantity: int
    purchased_value: Decimal
    cogs_quantity: int
    cogs_value: Decimal
    event_count: int


def replay_item(item_id: str, events: Iterable[LedgerEntry], *, as_of: datetime | None = None) -> CostBasis:
    state = WacState()
    purchased_quantity = cogs_quantity = event_count = 0
    purchased_value = cogs_value = ZERO
    for entry in events:
        step = apply_event(state, entry)
        state = step.state
        event_count += 1
        if entry.quantity_delta > 0:
            purchased_quantity += entry.quantity_delta
            purchased_value += step.inbound_value
        elif entry.quantity_delta < 0:
            cogs_quantity += -entry.quantity_delta
            cogs_value += step.outbound_value

    return CostBasis(
        item_id=item_id,
        as_of=as_of,
        quantity=state.quantity,
        avg_cost=state.avg_cost,
        inventory_value=state.avg_cost * state.quantity,
        current_price=state.current_price,
        purchased_quantity=purchased_quantity,
        purchased_value=purchased_value,
        cogs_quantity=cogs_quantity,
        cogs_value=cogs_value,
        event_count=event_count,
    )


@dataclass
class _PeriodTotals:
    purchased_quantity: int = 0
    purchased_value: Decimal = ZERO
    returns_in_quantity: int = 0
    returns_in_value: Decimal = ZERO
    cogs_quantity: int = 0
    cogs_value: Decimal = ZERO
    write_off_quantity: int = 0
    write_off_value: Decimal = ZERO
    returned_to_supplier_quantity: int = 0
    returned_to_supplier_value: Decimal = ZERO

    def add(self, entry: LedgerEntry, step: WacStep) -> None:
        delta = entry.quantity_delta
        bucket = REASON_BUCKETS[entry.reason]
        if delta > 0:
            self.purchased_quantity += delta
            self.purchased_value += step.inbound_value
            if bucket == RETURN_IN:
                self.returns_in_quantity += delta
                self.returns_in_value += step.inbound_value
        elif delta < 0:
            self.cogs_quantity += -delta
            self.cogs_value += step.outbound_value
            if bucket == WRITE_OFF:
                self.write_off_quantity += -delta
                self.write_off_value += step.outbound_value
            elif bucket == SUPPLIER_RETURN:
                self.returned_to_supplier_quantity += -delta
                self.returned_to_supplier_value += step.outbound_value


@dataclass(frozen=True)
class ValuationSummary:
    method: str
    start: date
    end: date
    item_count: int
    beginning_quantity: int
    beginning_value: Decimal
    purchased_quantity: int
    purchased_value: Decimal
    returns_in_quantity: int
    returns_in_value: Decimal
    cogs_quantity: int
    cogs_value: Decimal
    write_off_quantity: int
    write_off_value: Decimal
    returned_to_supplier_quantity: int
    returned_to_supplier_value: Decimal
    ending_quantity: int
    ending_value: Decimal
    turnover: Decimal | None


def _holdings(states: dict[str, WacState]) -> tuple[int, Decimal]:
    quantity = sum(state.quantity for state in states.values())
    value = sum((state.avg_cost * state.quantity for state in states.values()), ZERO)
    return quantity, value


def summarize_period(
    events: Iterable[LedgerEntry],
    *,
    start: date,
    end: date,
) -> ValuationSummary:
    """
    Beginning and ending positions plus in-period flows. ``events`` must be the
    full history of every item concerned up to ``end``, oldest first.
    """
    start_at = start_of_day(start)
    states: dict[str, WacState] = {}
    totals = _PeriodTotals()
    opening: tuple[int, Decimal] | None = None

    for entry in events:
        if opening is None and ensure_utc(entry.created_at) >= start_at:
            opening = _holdings(states)
        step = apply_event(states.get(entry.item_id, WacState()), entry)
        states[entry.item_id] = step.state
        if opening is not None:
            totals.add(entry, step)

    if opening is None:
        opening = _holdings(states)
    beginning_quantity, beginning_value = opening
    ending_quantity, ending_value = _holdings(states)

    average_value = (beginning_value + ending_value) / 2
    turnover = None
    if average_value > 0:
        turnover = (totals.cogs_value / average_value).quantize(TURNOVER_QUANT)

    return ValuationSummary(
        method="WAC",
        start=start,
        end=end,
        item_count=len(states),
        beginning_quantity=beginning_quantity,
        beginning_value=beginning_value,
        purchased_quantity=totals.purchased_quantity,
        purchased_value=totals.purchased_value,
        returns_in_quantity=totals.returns_in_quantity,
        returns_in_value=totals.returns_in_value,
        cogs_quantity=totals.cogs_quantity,
        cogs_value=totals.cogs_value,
        write_off_quantity=totals.write_off_quantity,
        write_off_value=totals.write_off_value,
        returned_to_supplier_quantity=totals.returned_to_supplier_quantity,
        returned_to_supplier_value=totals.returned_to_supplier_value,
        ending_quantity=ending_quantity,
        ending_value=ending_value,
        turnover=turnover,
    )


def get_cost_basis(db: Session, item_id: str, *, as_of: datetime | None = None) -> CostBasis:
    if item_store.get_item(db, item_id) is None:
        raise ItemNotFoundError(item_id)
    # as_of is inclusive.
    events = event_store.list_item_events(db, item_id)
    if as_of is not None:
        cutoff = ensure_utc(as_of)
        events = [entry for entry in events if ensure_utc(entry.created_at) <= cutoff]
    return replay_item(item_id, events, as_of=as_of)


def get_financial_summary(
    db: Session,
    *,
    start: date | None = None,
    end: date | None = None,
    item_id: str | None = None,
    supplier_id: str | None = None,
    today: date | None = None,
) -> ValuationSummary:
    start_date, end_date = resolve_date_window(
        start,
        end,
        default_days=settings.analytics_default_window_days,
        today=today,
    )

    item_ids: list[str] | None = None
    if item_id is not None:
        if item_store.get_item(db, item_id) is None:
            raise ItemNotFoundError(item_id)
        item_ids = [item_id]
    elif supplier_id is not None:
        # Items currently supplied, with their whole history.
        item_ids = item_store.list_item_ids(db, supplier_id=supplier_id)

    events = event_store.list_events(db, end=end_of_day_exclusive(end_date), item_ids=item_ids)
    return summarize_period(events, start=start_date, end=end_date)
