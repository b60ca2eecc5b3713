import json
import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from stockledger.core.clock import Clock, ensure_utc, utcnow
from stockledger.core.config import settings
from stockledger.core.errors import DuplicateItemError, InvalidItemError, ItemNotFoundError
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.locks import KeyedLockRegistry
from stockledger.core.money import parse_money
from stockledger.models.stock_event import StockChangeReason
from stockledger.schemas.inventory import ItemOut
from stockledger.services import event_store, item_store
from stockledger.services.ledger_service import item_locks

logger = logging.getLogger("stockledger.ledger")


class ItemService:
    """Creates and retires items. Quantity changes go through LedgerService."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        locks: KeyedLockRegistry | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._locks = locks or item_locks
        self._clock = clock

    def create_item(
        self,
        *,
        name: str,
        unit_price: Decimal | int | float | str,
        actor: str,
        quantity: int = 0,
        supplier_id: str | None = None,
        minimum_quantity: int | None = None,
    ) -> ItemOut:
        cleaned_name = name.strip()
        if not cleaned_name:
            raise InvalidItemError("Item name cannot be blank")
        try:
            price = parse_money(unit_price)
        except ValueError as exc:
            raise InvalidItemError(f"unit_price {exc}", unit_price=str(unit_price)) from None
        if price <= 0:
            raise InvalidItemError("unit_price must be positive", unit_price=str(price))
        if quantity < 0:
            raise InvalidItemError("Opening quantity cannot be negative", quantity=quantity)
        threshold = settings.minimum_quantity_default if minimum_quantity is None else minimum_quantity
        if threshold < 0:
            raise InvalidItemError("minimum_quantity cannot be negative", minimum_quantity=threshold)

        try:
            with self._session_factory.begin() as db:
                if item_store.get_item_by_name(db, cleaned_name) is not None:
                    raise DuplicateItemError(cleaned_name)

                item = item_store.add_item(
                    db,
                    item_id=generate_shortuuid(),
                    name=cleaned_name,
                    unit_price=price,
                    supplier_id=supplier_id,
                    minimum_quantity=threshold,
                    created_by=actor,
                )
                # A zero opening balance has no stock to record, only the opening price.
                opening_reason = (
                    StockChangeReason.INITIAL_STOCK if quantity > 0 else StockChangeReason.PRICE_CHANGE
                )
                event_store.append_event(
                    db,
                    item=item,
                    sequence=1,
                    quantity_delta=quantity,
                    resulting_quantity=quantity,
                    reason=opening_reason,
                    price_at_change=price,
                    actor=actor,
                    created_at=ensure_utc(self._clock()),
                )
                item_store.apply_stock_change(item, resulting_quantity=quantity)
                db.flush()
                created = ItemOut.model_validate(item)
        except IntegrityError as exc:
            raise DuplicateItemError(cleaned_name) from exc

        logger.info(
            json.dumps(
                {
                    "event": "item_created",
                    "item_id": created.id,
                    "name": created.name,
                    "quantity": created.quantity,
                    "unit_price": str(created.unit_price),
                    "actor": actor,
                }
            )
        )
        return created

    def get_item(self, item_id: str) -> ItemOut:
        with self._session_factory() as db:
            item = item_store.get_item(db, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            return ItemOut.model_validate(item)

    def disable_item(self, item_id: str, *, actor: str) -> ItemOut:
        with self._locks.hold(item_id):
            with self._session_factory.begin() as db:
                item = item_store.lock_active_item(db, item_id)
                item.is_active = False
                db.flush()
                disabled = ItemOut.model_validate(item)

        logger.info(json.dumps({"event": "item_disabled", "item_id": item_id, "actor": actor}))
        return disabled

    def set_minimum_quantity(self, item_id: str, minimum_quantity: int) -> ItemOut:
        if minimum_quantity < 0:
            raise InvalidItemError("minimum_quantity cannot be negative", minimum_quantity=minimum_quantity)
        with self._locks.hold(item_id):
            with self._session_factory.begin() as db:
                item = item_store.lock_active_item(db, item_id)
                item.minimum_quantity = minimum_quantity
                db.flush()
                return ItemOut.model_validate(item)
