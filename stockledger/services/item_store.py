from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.errors import ItemNotFoundError
from stockledger.models.item import InventoryItem


def get_item(db: Session, item_id: str) -> InventoryItem | None:
    return db.get(InventoryItem, item_id)


def get_item_by_name(db: Session, name: str) -> InventoryItem | None:
    q = select(InventoryItem).where(func.lower(InventoryItem.name) == name.strip().lower())
    return db.execute(q).scalar_one_or_none()


def lock_active_item(db: Session, item_id: str) -> InventoryItem:
    """
    Load an item for mutation. Takes a row lock where the dialect supports
    ``FOR UPDATE``; SQLite ignores it and relies on the in-process item lock.
    """
    item = db.execute(
        select(InventoryItem).where(InventoryItem.id == item_id).with_for_update()
    ).scalar_one_or_none()
    if item is None or not item.is_active:
        raise ItemNotFoundError(item_id)
    return item


def add_item(
    db: Session,
    *,
    item_id: str,
    name: str,
    unit_price: Decimal,
    supplier_id: str | None,
    minimum_quantity: int,
    created_by: str,
) -> InventoryItem:
    item = InventoryItem(
        id=item_id,
        name=name,
        quantity=0,
        unit_price=unit_price,
        supplier_id=supplier_id,
        minimum_quantity=minimum_quantity,
        is_active=True,
        created_by=created_by,
    )
    db.add(item)
    return item


def apply_stock_change(
    item: InventoryItem,
    *,
    resulting_quantity: int,
    unit_price: Decimal | None = None,
) -> None:
    item.quantity = resulting_quantity
    if unit_price is not None:
        item.unit_price = unit_price


def list_active_items(db: Session, *, supplier_id: str | None = None) -> Sequence[InventoryItem]:
    q = select(InventoryItem).where(InventoryItem.is_active.is_(True))
    if supplier_id is not None:
        q = q.where(InventoryItem.supplier_id == supplier_id)
    return db.execute(q.order_by(InventoryItem.name)).scalars().all()


def list_items_below_minimum(
    db: Session,
    *,
    supplier_id: str | None = None,
) -> Sequence[InventoryItem]:
    q = select(InventoryItem).where(
        InventoryItem.is_active.is_(True),
        InventoryItem.quantity < InventoryItem.minimum_quantity,
    )
    if supplier_id is not None:
        q = q.where(InventoryItem.supplier_id == supplier_id)
    q = q.order_by(InventoryItem.quantity.asc(), InventoryItem.name.asc())
    return db.execute(q).scalars().all()


def list_item_ids(db: Session, *, supplier_id: str | None = None) -> list[str]:
    q = select(InventoryItem.id)
    if supplier_id is not None:
        q = q.where(InventoryItem.supplier_id == supplier_id)
    return list(db.execute(q.order_by(InventoryItem.id)).scalars().all())


def items_by_id(db: Session) -> dict[str, InventoryItem]:
    return {item.id: item for item in db.execute(select(InventoryItem)).scalars().all()}
