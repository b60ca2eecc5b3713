from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.clock import end_of_day_exclusive, start_of_day
from stockledger.core.config import settings
from stockledger.core.deps import get_db, get_item_service, get_ledger_service
from stockledger.core.errors import ItemNotFoundError
from stockledger.models.stock_event import StockChangeReason
from stockledger.schemas.common import build_pagination
from stockledger.schemas.inventory import (
    ItemCreateIn,
    ItemDisableIn,
    ItemOut,
    LowStockItemOut,
    LowStockListOut,
    MinimumQuantityIn,
    RecordChangeIn,
    StockEventListOut,
    StockEventOut,
)
from stockledger.services import event_store, item_store, trend_service
from stockledger.services.item_service import ItemService
from stockledger.services.ledger_service import LedgerService

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post(
    "/items",
    response_model=ItemOut,
    summary="Create an item with its opening stock event",
    responses=error_responses(409, 422, 500),
)
def create_item(
    payload: ItemCreateIn,
    items: ItemService = Depends(get_item_service),
):
    return items.create_item(
        name=payload.name,
        unit_price=payload.unit_price,
        quantity=payload.quantity,
        supplier_id=payload.supplier_id,
        minimum_quantity=payload.minimum_quantity,
        actor=payload.actor,
    )


@router.get(
    "/items/{item_id}",
    response_model=ItemOut,
    summary="Get current state of an item",
    responses=error_responses(404, 500),
)
def get_item(
    item_id: str,
    items: ItemService = Depends(get_item_service),
):
    return items.get_item(item_id)


@router.post(
    "/items/{item_id}/disable",
    response_model=ItemOut,
    summary="Disable an item; its history is kept",
    responses=error_responses(404, 422, 500, 503),
)
def disable_item(
    item_id: str,
    payload: ItemDisableIn,
    items: ItemService = Depends(get_item_service),
):
    return items.disable_item(item_id, actor=payload.actor)


@router.put(
    "/items/{item_id}/minimum-quantity",
    response_model=ItemOut,
    summary="Set the reorder threshold of an item",
    responses=error_responses(404, 422, 500, 503),
)
def set_minimum_quantity(
    item_id: str,
    payload: MinimumQuantityIn,
    items: ItemService = Depends(get_item_service),
):
    return items.set_minimum_quantity(item_id, payload.minimum_quantity)


@router.post(
    "/items/{item_id}/changes",
    response_model=StockEventOut,
    summary="Record a stock or price change",
    responses=error_responses(404, 409, 422, 500, 503),
)
def record_change(
    item_id: str,
    payload: RecordChangeIn,
    ledger: LedgerService = Depends(get_ledger_service),
):
    return ledger.record_change(
        item_id,
        payload.quantity_delta,
        payload.reason,
        payload.price_at_change,
        actor=payload.actor,
    )


@router.get(
    "/items/{item_id}/events",
    response_model=StockEventListOut,
    summary="List stock events of an item, newest first",
    responses=error_responses(404, 422, 500),
)
def list_item_events(
    item_id: str,
    limit: int = Query(default=50, ge=1, le=settings.max_page_size, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    if item_store.get_item(db, item_id) is None:
        raise ItemNotFoundError(item_id)
    rows, total = event_store.page_item_events(db, item_id, limit=limit, offset=offset)
    items = [StockEventOut.model_validate(row) for row in rows]
    return StockEventListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/events",
    response_model=StockEventListOut,
    summary="Search stock events",
    responses=error_responses(400, 422, 500),
)
def search_events(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    item_id: str | None = Query(default=None),
    item_name: str | None = Query(default=None, max_length=255),
    supplier_id: str | None = Query(default=None),
    actor: str | None = Query(default=None),
    reason: StockChangeReason | None = Query(default=None),
    min_change: int | None = Query(default=None),
    max_change: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=settings.max_page_size),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    criteria = event_store.EventSearch(
        start=start_of_day(start_date) if start_date else None,
        end=end_of_day_exclusive(end_date) if end_date else None,
        item_id=item_id,
        item_name=item_name.strip() if item_name else None,
        supplier_id=supplier_id,
        actor=actor,
        reason=reason,
        min_change=min_change,
        max_change=max_change,
    )
    rows, total = trend_service.search_stock_events(db, criteria, limit=limit, offset=offset)
    items = [StockEventOut.model_validate(row) for row in rows]
    return StockEventListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="List items below their reorder threshold",
    responses=error_responses(422, 500),
)
def list_low_stock(
    supplier_id: str | None = Query(default=None, description="Optional supplier filter"),
    limit: int = Query(default=100, ge=1, le=settings.max_page_size),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    rows = trend_service.low_stock_items(db, supplier_id=supplier_id)
    page = [
        LowStockItemOut(
            item_id=row.item_id,
            name=row.name,
            supplier_id=row.supplier_id,
            quantity=row.quantity,
            minimum_quantity=row.minimum_quantity,
            shortfall=row.shortfall,
        )
        for row in rows[offset : offset + limit]
    ]
    return LowStockListOut(
        items=page,
        pagination=build_pagination(total=len(rows), limit=limit, offset=offset, count=len(page)),
    )
