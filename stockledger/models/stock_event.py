import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.core.errors import ImmutableEventError
from stockledger.db.base import Base


class StockChangeReason(str, enum.Enum):
    RECEIVED = "received"
    SOLD = "sold"
    ADJUSTED = "adjusted"
    DAMAGED = "damaged"
    LOST = "lost"
    RETURNED_BY_CUSTOMER = "returned_by_customer"
    RETURNED_TO_SUPPLIER = "returned_to_supplier"
    PRICE_CHANGE = "price_change"
    INITIAL_STOCK = "initial_stock"


class StockEvent(Base):
    """
    One row per stock change. Rows are inserted once and never updated or deleted;
    corrections are new compensating rows.

    ``supplier_id`` is the item's supplier at the time of the event. It is a
    historical fact and is not refreshed when the item changes supplier.
    """
    __tablename__ = "stock_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("inventory_items.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    supplier_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[StockChangeReason] = mapped_column(
        Enum(
            StockChangeReason,
            name="stock_change_reason",
            native_enum=False,
            length=40,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    price_at_change: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("item_id", "sequence", name="uq_stock_events_item_sequence"),
        CheckConstraint("resulting_quantity >= 0", name="ck_stock_events_resulting_quantity_non_negative"),
        CheckConstraint(
            "quantity_delta <> 0 OR reason = 'price_change'",
            name="ck_stock_events_zero_delta_price_change_only",
        ),
        Index("ix_stock_events_item_created_at", "item_id", "created_at"),
        Index("ix_stock_events_created_at", "created_at"),
        Index("ix_stock_events_supplier_created_at", "supplier_id", "created_at"),
    )


@event.listens_for(StockEvent, "before_update")
def _reject_event_update(mapper, connection, target: StockEvent) -> None:
    raise ImmutableEventError(f"Stock event {target.id} is immutable", event_id=target.id)


@event.listens_for(StockEvent, "before_delete")
def _reject_event_delete(mapper, connection, target: StockEvent) -> None:
    raise ImmutableEventError(f"Stock event {target.id} cannot be deleted", event_id=target.id)
