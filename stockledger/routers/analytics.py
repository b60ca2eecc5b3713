from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.clock import resolve_date_window, utcnow
from stockledger.core.config import settings
from stockledger.core.deps import get_db
from stockledger.core.money import to_money
from stockledger.schemas.analytics import (
    CostBasisOut,
    FinancialSummaryOut,
    InventoryValuationOut,
    ItemUpdateFrequencyListOut,
    ItemUpdateFrequencyOut,
    ItemValuationOut,
    MonthlyMovementItemOut,
    MonthlyMovementOut,
    PriceTrendOut,
    PriceTrendPointOut,
    StockValueOverTimeOut,
    StockValuePointOut,
    SupplierTotalOut,
    SupplierTotalsOut,
)
from stockledger.services import trend_service, valuation_service
from stockledger.services.trend_service import ItemValuation

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _money(value) -> float | None:
    return float(to_money(value)) if value is not None else None


def _window(start_date: date | None, end_date: date | None) -> tuple[date, date]:
    return resolve_date_window(
        start_date,
        end_date,
        default_days=settings.analytics_default_window_days,
        today=utcnow().date(),
    )


def _item_valuation_out(row: ItemValuation) -> ItemValuationOut:
    return ItemValuationOut(
        item_id=row.item_id,
        name=row.name,
        day=row.day,
        quantity=row.quantity,
        unit_price=_money(row.unit_price),
        value=_money(row.value),
    )


@router.get(
    "/monthly-movement",
    response_model=MonthlyMovementOut,
    summary="Units in and out per month, newest first",
    responses=error_responses(400, 404, 422, 500),
)
def monthly_movement(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    item_id: str | None = Query(default=None),
    supplier_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    start, end = _window(start_date, end_date)
    rows = trend_service.monthly_movement(db, start=start, end=end, item_id=item_id, supplier_id=supplier_id)
    return MonthlyMovementOut(
        start_date=start,
        end_date=end,
        item_id=item_id,
        supplier_id=supplier_id,
        items=[
            MonthlyMovementItemOut(month=row.month, inbound=row.inbound, outbound=row.outbound, net=row.net)
            for row in rows
        ],
    )


@router.get(
    "/items/{item_id}/valuation",
    response_model=ItemValuationOut,
    summary="Value of one item at the close of a day",
    responses=error_responses(404, 422, 500),
)
def item_valuation(
    item_id: str,
    day: date | None = Query(default=None, description="Defaults to today (UTC)"),
    db: Session = Depends(get_db),
):
    row = trend_service.item_valuation_on(db, item_id, day or utcnow().date())
    return _item_valuation_out(row)


@router.get(
    "/valuation",
    response_model=InventoryValuationOut,
    summary="Whole-inventory valuation snapshot at the close of a day",
    responses=error_responses(422, 500),
)
def inventory_valuation(
    day: date | None = Query(default=None, description="Defaults to today (UTC)"),
    supplier_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    snapshot = trend_service.inventory_valuation_on(db, day or utcnow().date(), supplier_id=supplier_id)
    return InventoryValuationOut(
        day=snapshot.day,
        supplier_id=supplier_id,
        total_quantity=snapshot.total_quantity,
        total_value=_money(snapshot.total_value),
        items=[_item_valuation_out(row) for row in snapshot.items],
    )


@router.get(
    "/stock-value",
    response_model=StockValueOverTimeOut,
    summary="Daily whole-inventory value over a window",
    responses=error_responses(400, 422, 500),
)
def stock_value_over_time(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    supplier_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    start, end = _window(start_date, end_date)
    points = trend_service.stock_value_over_time(db, start=start, end=end, supplier_id=supplier_id)
    return StockValueOverTimeOut(
        start_date=start,
        end_date=end,
        supplier_id=supplier_id,
        items=[StockValuePointOut(day=point.day, total_value=_money(point.total_value)) for point in points],
    )


@router.get(
    "/items/{item_id}/price-trend",
    response_model=PriceTrendOut,
    summary="Price observations paired with the previous price",
    responses=error_responses(400, 404, 422, 500),
)
def price_trend(
    item_id: str,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    start, end = _window(start_date, end_date)
    points = trend_service.price_trend(db, item_id, start=start, end=end)
    return PriceTrendOut(
        item_id=item_id,
        start_date=start,
        end_date=end,
        items=[
            PriceTrendPointOut(
                event_id=point.event_id,
                at=point.at,
                reason=point.reason.value,
                price=_money(point.price),
                previous_price=_money(point.previous_price),
                change=_money(point.change),
                change_pct=float(point.change_pct) if point.change_pct is not None else None,
                direction=point.direction.value,
            )
            for point in points
        ],
    )


@router.get(
    "/items/{item_id}/cost-basis",
    response_model=CostBasisOut,
    summary="Weighted-average cost basis of an item",
    responses=error_responses(404, 422, 500),
)
def cost_basis(
    item_id: str,
    as_of: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
):
    basis = valuation_service.get_cost_basis(db, item_id, as_of=as_of)
    return CostBasisOut(
        item_id=basis.item_id,
        as_of=basis.as_of,
        quantity=basis.quantity,
        # Rounded here only; the engine carries guard digits.
        avg_cost=_money(basis.avg_cost),
        inventory_value=_money(basis.inventory_value),
        current_price=_money(basis.current_price),
        purchased_quantity=basis.purchased_quantity,
        purchased_value=_money(basis.purchased_value),
        cogs_quantity=basis.cogs_quantity,
        cogs_value=_money(basis.cogs_value),
        event_count=basis.event_count,
    )


@router.get(
    "/financial-summary",
    response_model=FinancialSummaryOut,
    summary="WAC period summary: opening, purchases, COGS, closing, turnover",
    responses=error_responses(400, 404, 422, 500),
)
def financial_summary(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    item_id: str | None = Query(default=None),
    supplier_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    start, end = _window(start_date, end_date)
    summary = valuation_service.get_financial_summary(
        db,
        start=start,
        end=end,
        item_id=item_id,
        supplier_id=supplier_id,
    )
    return FinancialSummaryOut(
        method=summary.method,
        start_date=summary.start,
        end_date=summary.end,
        item_id=item_id,
        supplier_id=supplier_id,
        item_count=summary.item_count,
        beginning_quantity=summary.beginning_quantity,
        beginning_value=_money(summary.beginning_value),
        purchased_quantity=summary.purchased_quantity,
        purchased_value=_money(summary.purchased_value),
        returns_in_quantity=summary.returns_in_quantity,
        returns_in_value=_money(summary.returns_in_value),
        cogs_quantity=summary.cogs_quantity,
        cogs_value=_money(summary.cogs_value),
        write_off_quantity=summary.write_off_quantity,
        write_off_value=_money(summary.write_off_value),
        returned_to_supplier_quantity=summary.returned_to_supplier_quantity,
        returned_to_supplier_value=_money(summary.returned_to_supplier_value),
        ending_quantity=summary.ending_quantity,
        ending_value=_money(summary.ending_value),
        turnover=float(summary.turnover) if summary.turnover is not None else None,
    )


@router.get(
    "/suppliers",
    response_model=SupplierTotalsOut,
    summary="Current quantity and value per supplier",
    responses=error_responses(500),
)
def supplier_totals(db: Session = Depends(get_db)):
    return SupplierTotalsOut(
        items=[
            SupplierTotalOut(
                supplier_id=row.supplier_id,
                item_count=row.item_count,
                total_quantity=row.total_quantity,
                total_value=_money(row.total_value),
            )
            for row in trend_service.supplier_totals(db)
        ]
    )


@router.get(
    "/update-frequency",
    response_model=ItemUpdateFrequencyListOut,
    summary="Number of stock events per item, most active first",
    responses=error_responses(422, 500),
)
def update_frequency(
    supplier_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return ItemUpdateFrequencyListOut(
        supplier_id=supplier_id,
        items=[
            ItemUpdateFrequencyOut(item_id=row.item_id, name=row.name, event_count=row.event_count)
            for row in trend_service.item_update_frequency(db, supplier_id=supplier_id)
        ],
    )
