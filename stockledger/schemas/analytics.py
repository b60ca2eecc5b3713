from datetime import date, datetime

from pydantic import BaseModel


class MonthlyMovementItemOut(BaseModel):
    month: str
    inbound: int
    outbound: int
    net: int


class MonthlyMovementOut(BaseModel):
    start_date: date
    end_date: date
    item_id: str | None = None
    supplier_id: str | None = None
    items: list[MonthlyMovementItemOut]


class ItemValuationOut(BaseModel):
    item_id: str
    name: str
    day: date
    quantity: int
    unit_price: float
    value: float


class InventoryValuationOut(BaseModel):
    day: date
    supplier_id: str | None = None
    total_quantity: int
    total_value: float
    items: list[ItemValuationOut]


class StockValuePointOut(BaseModel):
    day: date
    total_value: float


class StockValueOverTimeOut(BaseModel):
    start_date: date
    end_date: date
    supplier_id: str | None = None
    items: list[StockValuePointOut]


class PriceTrendPointOut(BaseModel):
    event_id: str
    at: datetime
    reason: str
    price: float
    previous_price: float | None = None
    change: float | None = None
    change_pct: float | None = None
    direction: str


class PriceTrendOut(BaseModel):
    item_id: str
    start_date: date
    end_date: date
    items: list[PriceTrendPointOut]


class CostBasisOut(BaseModel):
    item_id: str
    as_of: datetime | None = None
    quantity: int
    avg_cost: float
    inventory_value: float
    current_price: float | None = None
    purchased_quantity: int
    purchased_value: float
    cogs_quantity: int
    cogs_value: float
    event_count: int


class FinancialSummaryOut(BaseModel):
    method: str
    start_date: date
    end_date: date
    item_id: str | None = None
    supplier_id: str | None = None
    item_count: int
    beginning_quantity: int
    beginning_value: float
    purchased_quantity: int
    purchased_value: float
    returns_in_quantity: int
    returns_in_value: float
    cogs_quantity: int
    cogs_value: float
    write_off_quantity: int
    write_off_value: float
    returned_to_supplier_quantity: int
    returned_to_supplier_value: float
    ending_quantity: int
    ending_value: float
    turnover: float | None = None


class SupplierTotalOut(BaseModel):
    supplier_id: str | None = None
    item_count: int
    total_quantity: int
    total_value: float


class SupplierTotalsOut(BaseModel):
    items: list[SupplierTotalOut]


class ItemUpdateFrequencyOut(BaseModel):
    item_id: str
    name: str
    event_count: int


class ItemUpdateFrequencyListOut(BaseModel):
    supplier_id: str | None = None
    items: list[ItemUpdateFrequencyOut]
