from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockledger.core.clock import ensure_utc
from stockledger.models.stock_event import StockChangeReason
from stockledger.schemas.common import PaginationMeta


class ItemCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(gt=0)
    quantity: int = Field(default=0, ge=0)
    supplier_id: str | None = Field(default=None, max_length=36)
    minimum_quantity: int | None = Field(default=None, ge=0)
    actor: str = Field(min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be blank")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ankara Fabric 6x6",
                "unit_price": 10.0,
                "quantity": 0,
                "supplier_id": "sup-001",
                "minimum_quantity": 10,
                "actor": "warehouse-admin",
            }
        }
    )


class ItemOut(BaseModel):
    id: str
    name: str
    quantity: int
    unit_price: Decimal
    supplier_id: str | None = None
    minimum_quantity: int
    is_active: bool
    created_by: str

    model_config = ConfigDict(from_attributes=True, frozen=True)


class MinimumQuantityIn(BaseModel):
    minimum_quantity: int = Field(ge=0)


class ItemDisableIn(BaseModel):
    actor: str = Field(min_length=1, max_length=100)


class RecordChangeIn(BaseModel):
    quantity_delta: int = Field(
        ..., description="Positive adds stock, negative removes stock. Zero only for price_change."
    )
    reason: StockChangeReason
    price_at_change: Decimal | None = Field(default=None)
    actor: str = Field(min_length=1, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "quantity_delta": 100,
                "reason": "received",
                "price_at_change": 10.0,
                "actor": "warehouse-admin",
            }
        }
    )


class StockEventOut(BaseModel):
    id: str
    item_id: str
    sequence: int
    supplier_id: str | None = None
    quantity_delta: int
    resulting_quantity: int
    reason: StockChangeReason
    price_at_change: Decimal | None = None
    actor: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class StockEventListOut(BaseModel):
    items: list[StockEventOut]
    pagination: PaginationMeta


class LowStockItemOut(BaseModel):
    item_id: str
    name: str
    supplier_id: str | None = None
    quantity: int
    minimum_quantity: int
    shortfall: int


class LowStockListOut(BaseModel):
    items: list[LowStockItemOut]
    pagination: PaginationMeta
