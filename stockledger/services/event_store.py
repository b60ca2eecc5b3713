"""
Append-only access to the stock event log.

This module is the only writer of ``stock_events`` and it only ever inserts.
There is no update or delete function here.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from stockledger.core.id_utils import generate_event_id
from stockledger.models.item import InventoryItem
from stockledger.models.stock_event import StockChangeReason, StockEvent


@dataclass(frozen=True)
class EventSearch:
    start: datetime | None = None
    end: datetime | None = None
    item_id: str | None = None
    item_name: str | None = None
    supplier_id: str | None = None
    actor: str | None = None
    reason: StockChangeReason | None = None
    min_change: int | None = None
    max_change: int | None = None


def append_event(
    db: Session,
    *,
    item: InventoryItem,
    sequence: int,
    quantity_delta: int,
    resulting_quantity: int,
    reason: StockChangeReason,
    price_at_change: Decimal | None,
    actor: str,
    created_at: datetime,
) -> StockEvent:
    entry = StockEvent(
        id=generate_event_id(),
        item_id=item.id,
        sequence=sequence,
        supplier_id=item.supplier_id,
        quantity_delta=quantity_delta,
        resulting_quantity=resulting_quantity,
        reason=reason,
        price_at_change=price_at_change,
        actor=actor,
        created_at=created_at,
    )
    db.add(entry)
    return entry


def _chronological(stmt: Select) -> Select:
    return stmt.order_by(StockEvent.created_at, StockEvent.item_id, StockEvent.sequence)


def _in_window(stmt: Select, start: datetime | None, end: datetime | None) -> Select:
    # Half-open: start inclusive, end exclusive.
    if start is not None:
        stmt = stmt.where(StockEvent.created_at >= start)
    if end is not None:
        stmt = stmt.where(StockEvent.created_at < end)
    return stmt


def get_last_event(db: Session, item_id: str) -> StockEvent | None:
    q = (
        select(StockEvent)
        .where(StockEvent.item_id == item_id)
        .order_by(StockEvent.sequence.desc())
        .limit(1)
    )
    return db.execute(q).scalar_one_or_none()


def list_item_events(
    db: Session,
    item_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Sequence[StockEvent]:
    """Events of one item in ledger order, oldest first."""
    q = select(StockEvent).where(StockEvent.item_id == item_id)
    q = _in_window(q, start, end).order_by(StockEvent.created_at, StockEvent.sequence)
    return db.execute(q).scalars().all()


def page_item_events(
    db: Session,
    item_id: str,
    *,
    limit: int,
    offset: int = 0,
) -> tuple[Sequence[StockEvent], int]:
    total = int(
        db.execute(
            select(func.count(StockEvent.id)).where(StockEvent.item_id == item_id)
        ).scalar_one()
    )
    q = (
        select(StockEvent)
        .where(StockEvent.item_id == item_id)
        .order_by(StockEvent.created_at.desc(), StockEvent.sequence.desc())
        .offset(offset)
        .limit(limit)
    )
    return db.execute(q).scalars().all(), total


def list_events(
    db: Session,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    item_ids: Iterable[str] | None = None,
    supplier_id: str | None = None,
) -> Sequence[StockEvent]:
    """Events across items, oldest first; per-item order is preserved."""
    q = select(StockEvent)
    if item_ids is not None:
        q = q.where(StockEvent.item_id.in_(list(item_ids)))
    if supplier_id is not None:
        q = q.where(StockEvent.supplier_id == supplier_id)
    q = _chronological(_in_window(q, start, end))
    return db.execute(q).scalars().all()


def search_events(
    db: Session,
    criteria: EventSearch,
    *,
    limit: int,
    offset: int = 0,
) -> tuple[Sequence[StockEvent], int]:
    q = select(StockEvent)
    count_q = select(func.count(StockEvent.id))

    filters = []
    if criteria.item_id:
        filters.append(StockEvent.item_id == criteria.item_id)
    if criteria.item_name:
        matching_items = select(InventoryItem.id).where(
            func.lower(InventoryItem.name).contains(criteria.item_name.lower())
        )
        filters.append(StockEvent.item_id.in_(matching_items))
    if criteria.supplier_id:
        filters.append(StockEvent.supplier_id == criteria.supplier_id)
    if criteria.actor:
        filters.append(StockEvent.actor == criteria.actor)
    if criteria.reason is not None:
        filters.append(StockEvent.reason == criteria.reason)
    if criteria.min_change is not None:
        filters.append(StockEvent.quantity_delta >= criteria.min_change)
    if criteria.max_change is not None:
        filters.append(StockEvent.quantity_delta <= criteria.max_change)

    if filters:
        q = q.where(*filters)
        count_q = count_q.where(*filters)
    q = _in_window(q, criteria.start, criteria.end)
    count_q = _in_window(count_q, criteria.start, criteria.end)

    total = int(db.execute(count_q).scalar_one())
    q = (
        q.order_by(StockEvent.created_at.desc(), StockEvent.item_id, StockEvent.sequence.desc())
        .offset(offset)
        .limit(limit)
    )
    return db.execute(q).scalars().all(), total


def count_events_by_item(db: Session, *, supplier_id: str | None = None) -> list[tuple[str, str, int]]:
    q = (
        select(InventoryItem.id, InventoryItem.name, func.count(StockEvent.id))
        .join(StockEvent, StockEvent.item_id == InventoryItem.id)
        .group_by(InventoryItem.id, InventoryItem.name)
        .order_by(func.count(StockEvent.id).desc(), InventoryItem.name)
    )
    if supplier_id is not None:
        q = q.where(StockEvent.supplier_id == supplier_id)
    return [(item_id, name, int(count)) for item_id, name, count in db.execute(q).all()]
