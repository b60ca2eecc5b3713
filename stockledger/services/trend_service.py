from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence

from sqlalchemy.orm import Session

from stockledger.core.clock import (
    end_of_day_exclusive,
    ensure_utc,
    iter_days,
    resolve_date_window,
    start_of_day,
)
from stockledger.core.config import settings
from stockledger.core.errors import InvalidRangeError, ItemNotFoundError
from stockledger.models.item import InventoryItem
from stockledger.models.stock_event import StockChangeReason, StockEvent
from stockledger.services import event_store, item_store

# Events that set the item's unit price pointer.
PRICE_OBSERVATIONS = frozenset({StockChangeReason.INITIAL_STOCK, StockChangeReason.PRICE_CHANGE})

PCT_QUANT = Decimal("0.01")
ZERO = Decimal("0")


class PriceDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


@dataclass(frozen=True)
class MonthlyMovement:
    month: str
    inbound: int
    outbound: int

    @property
    def net(self) -> int:
        return self.inbound - self.outbound


@dataclass(frozen=True)
class ItemValuation:
    item_id: str
    name: str
    day: date
    quantity: int
    unit_price: Decimal
    value: Decimal


@dataclass(frozen=True)
class InventoryValuation:
    day: date
    items: tuple[ItemValuation, ...]
    total_quantity: int
    total_value: Decimal


@dataclass(frozen=True)
class StockValuePoint:
    day: date
    total_value: Decimal


@dataclass(frozen=True)
class PriceTrendPoint:
    event_id: str
    at: datetime
    reason: StockChangeReason
    price: Decimal
    previous_price: Decimal | None
    change: Decimal | None
    change_pct: Decimal | None
    direction: PriceDirection


@dataclass(frozen=True)
class LowStockItem:
    item_id: str
    name: str
    supplier_id: str | None
    quantity: int
    minimum_quantity: int

    @property
    def shortfall(self) -> int:
        return self.minimum_quantity - self.quantity


@dataclass(frozen=True)
class SupplierTotal:
    supplier_id: str | None
    item_count: int
    total_quantity: int
    total_value: Decimal


@dataclass(frozen=True)
class ItemUpdateFrequency:
    item_id: str
    name: str
    event_count: int


def _window(
    start: date | None,
    end: date | None,
    today: date | None,
    max_days: int | None = None,
) -> tuple[date, date]:
    return resolve_date_window(
        start,
        end,
        default_days=settings.analytics_default_window_days,
        today=today,
        max_days=max_days,
    )


def _require_item(db: Session, item_id: str) -> InventoryItem:
    item = item_store.get_item(db, item_id)
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def monthly_movement(
    db: Session,
    *,
    start: date | None = None,
    end: date | None = None,
    item_id: str | None = None,
    supplier_id: str | None = None,
    today: date | None = None,
) -> list[MonthlyMovement]:
    """Inbound and outbound units per calendar month, newest month first."""
    start_date, end_date = _window(start, end, today)
    if item_id is not None:
        _require_item(db, item_id)

    events = event_store.list_events(
        db,
        start=start_of_day(start_date),
        end=end_of_day_exclusive(end_date),
        item_ids=[item_id] if item_id is not None else None,
        supplier_id=supplier_id,
    )
    inbound: dict[str, int] = defaultdict(int)
    outbound: dict[str, int] = defaultdict(int)
    for entry in events:
        month = ensure_utc(entry.created_at).strftime("%Y-%m")
        if entry.quantity_delta > 0:
            inbound[month] += entry.quantity_delta
        elif entry.quantity_delta < 0:
            outbound[month] += -entry.quantity_delta
        else:
            inbound.setdefault(month, 0)

    months = sorted(set(inbound) | set(outbound), reverse=True)
    return [MonthlyMovement(month=m, inbound=inbound.get(m, 0), outbound=outbound.get(m, 0)) for m in months]


@dataclass
class _Position:
    quantity: int = 0
    unit_price: Decimal | None = None

    def apply(self, entry: StockEvent) -> None:
        self.quantity = entry.resulting_quantity
        if entry.reason in PRICE_OBSERVATIONS and entry.price_at_change is not None:
            self.unit_price = entry.price_at_change


def _valuation(item: InventoryItem, day: date, position: _Position) -> ItemValuation:
    unit_price = position.unit_price if position.unit_price is not None else item.unit_price
    return ItemValuation(
        item_id=item.id,
        name=item.name,
        day=day,
        quantity=position.quantity,
        unit_price=unit_price,
        value=unit_price * position.quantity,
    )


def item_valuation_on(db: Session, item_id: str, day: date) -> ItemValuation:
    """Quantity at the end of ``day`` times the unit price in force that day."""
    item = _require_item(db, item_id)
    position = _Position()
    for entry in event_store.list_item_events(db, item_id, end=end_of_day_exclusive(day)):
        position.apply(entry)
    return _valuation(item, day, position)


def inventory_valuation_on(db: Session, day: date, *, supplier_id: str | None = None) -> InventoryValuation:
    items = item_store.items_by_id(db)
    positions: dict[str, _Position] = {}
    for entry in event_store.list_events(db, end=end_of_day_exclusive(day), supplier_id=supplier_id):
        positions.setdefault(entry.item_id, _Position()).apply(entry)

    rows = tuple(
        sorted(
            (_valuation(items[item_id], day, position) for item_id, position in positions.items()),
            key=lambda row: row.name,
        )
    )
    return InventoryValuation(
        day=day,
        items=rows,
        total_quantity=sum(row.quantity for row in rows),
        total_value=sum((row.value for row in rows), ZERO),
    )


def stock_value_over_time(
    db: Session,
    *,
    start: date | None = None,
    end: date | None = None,
    supplier_id: str | None = None,
    today: date | None = None,
) -> list[StockValuePoint]:
    """Whole-inventory value at the close of each day in the window."""
    start_date, end_date = _window(start, end, today, max_days=settings.analytics_max_window_days)
    items = item_store.items_by_id(db)
    events = event_store.list_events(db, end=end_of_day_exclusive(end_date), supplier_id=supplier_id)

    positions: dict[str, _Position] = {}
    points: list[StockValuePoint] = []
    cursor = 0
    for day in iter_days(start_date, end_date):
        cutoff = end_of_day_exclusive(day)
        while cursor < len(events) and ensure_utc(events[cursor].created_at) < cutoff:
            entry = events[cursor]
            positions.setdefault(entry.item_id, _Position()).apply(entry)
            cursor += 1
        total = sum(
            (_valuation(items[item_id], day, position).value for item_id, position in positions.items()),
            ZERO,
        )
        points.append(StockValuePoint(day=day, total_value=total))
    return points


def _direction(price: Decimal, previous: Decimal | None) -> PriceDirection:
    if previous is None or price == previous:
        return PriceDirection.FLAT
    return PriceDirection.UP if price > previous else PriceDirection.DOWN


def price_trend(
    db: Session,
    item_id: str,
    *,
    start: date | None = None,
    end: date | None = None,
    today: date | None = None,
) -> list[PriceTrendPoint]:
    """
    Price observations inside the window, each paired with the observation just
    before it. Observations before ``start`` only feed the lookback. Receipt
    cost prices are not observations: only events that move the price pointer
    (``PRICE_OBSERVATIONS``) are.
    """
    start_date, end_date = _window(start, end, today)
    _require_item(db, item_id)
    start_at = start_of_day(start_date)

    points: list[PriceTrendPoint] = []
    previous: Decimal | None = None
    for entry in event_store.list_item_events(db, item_id, end=end_of_day_exclusive(end_date)):
        if entry.reason not in PRICE_OBSERVATIONS or entry.price_at_change is None:
            continue
        price = entry.price_at_change
        at = ensure_utc(entry.created_at)
        if at >= start_at:
            change = price - previous if previous is not None else None
            change_pct = None
            if change is not None and previous:
                change_pct = (change / previous * 100).quantize(PCT_QUANT)
            points.append(
                PriceTrendPoint(
                    event_id=entry.id,
                    at=at,
                    reason=entry.reason,
                    price=price,
                    previous_price=previous,
                    change=change,
                    change_pct=change_pct,
                    direction=_direction(price, previous),
                )
            )
        previous = price
    return points


def low_stock_items(db: Session, *, supplier_id: str | None = None) -> list[LowStockItem]:
    """Active items under their reorder threshold, most urgent first."""
    return [
        LowStockItem(
            item_id=item.id,
            name=item.name,
            supplier_id=item.supplier_id,
            quantity=item.quantity,
            minimum_quantity=item.minimum_quantity,
        )
        for item in item_store.list_items_below_minimum(db, supplier_id=supplier_id)
    ]


def low_stock_count(db: Session, *, supplier_id: str | None = None) -> int:
    return len(item_store.list_items_below_minimum(db, supplier_id=supplier_id))


def supplier_totals(db: Session) -> list[SupplierTotal]:
    grouped: dict[str | None, list[InventoryItem]] = defaultdict(list)
    for item in item_store.list_active_items(db):
        grouped[item.supplier_id].append(item)

    totals = [
        SupplierTotal(
            supplier_id=supplier_id,
            item_count=len(items),
            total_quantity=sum(item.quantity for item in items),
            total_value=sum((item.unit_price * item.quantity for item in items), ZERO),
        )
        for supplier_id, items in grouped.items()
    ]
    totals.sort(key=lambda row: (row.supplier_id is None, row.supplier_id or ""))
    return totals


def item_update_frequency(db: Session, *, supplier_id: str | None = None) -> list[ItemUpdateFrequency]:
    return [
        ItemUpdateFrequency(item_id=item_id, name=name, event_count=count)
        for item_id, name, count in event_store.count_events_by_item(db, supplier_id=supplier_id)
    ]


def search_stock_events(
    db: Session,
    criteria: event_store.EventSearch,
    *,
    limit: int,
    offset: int = 0,
) -> tuple[Sequence[StockEvent], int]:
    if criteria.start is not None and criteria.end is not None and criteria.start > criteria.end:
        raise InvalidRangeError("start must be on or before end")
    if (
        criteria.min_change is not None
        and criteria.max_change is not None
        and criteria.min_change > criteria.max_change
    ):
        raise InvalidRangeError(
            "min_change must be <= max_change",
            min_change=criteria.min_change,
            max_change=criteria.max_change,
        )
    return event_store.search_events(db, criteria, limit=limit, offset=offset)
