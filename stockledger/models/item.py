from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, Numeric, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class InventoryItem(Base):
    """
    Current-state projection of one product. Quantity and unit price only change
    together with a stock event written by the ledger.
    """
    __tablename__ = "inventory_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    supplier_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    minimum_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
        CheckConstraint("unit_price >= 0", name="ck_inventory_items_unit_price_non_negative"),
        CheckConstraint("minimum_quantity >= 0", name="ck_inventory_items_minimum_quantity_non_negative"),
        Index("ix_inventory_items_active_quantity", "is_active", "quantity"),
    )
