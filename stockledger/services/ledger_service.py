import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from stockledger.core.clock import Clock, ensure_utc, utcnow
from stockledger.core.config import settings
from stockledger.core.errors import (
    InvalidReasonError,
    ItemNotFoundError,
    LedgerConflictError,
    LedgerError,
    NegativeStockError,
    TransientLedgerError,
)
from stockledger.core.locks import KeyedLockRegistry
from stockledger.core.money import parse_money
from stockledger.models.stock_event import StockChangeReason, StockEvent
from stockledger.schemas.inventory import StockEventOut
from stockledger.services import event_store, item_store

logger = logging.getLogger("stockledger.ledger")

item_locks = KeyedLockRegistry(timeout_seconds=settings.ledger_lock_timeout_seconds)

# Allowed sign of quantity_delta per reason. Every member must appear here.
INBOUND = "inbound"
OUTBOUND = "outbound"
EITHER = "either"
PRICE_ONLY = "price_only"
RESERVED = "reserved"

DIRECTION_RULES: dict[StockChangeReason, str] = {
    StockChangeReason.RECEIVED: INBOUND,
    StockChangeReason.RETURNED_BY_CUSTOMER: INBOUND,
    StockChangeReason.SOLD: OUTBOUND,
    StockChangeReason.DAMAGED: OUTBOUND,
    StockChangeReason.LOST: OUTBOUND,
    StockChangeReason.RETURNED_TO_SUPPLIER: OUTBOUND,
    StockChangeReason.ADJUSTED: EITHER,
    StockChangeReason.PRICE_CHANGE: PRICE_ONLY,
    StockChangeReason.INITIAL_STOCK: RESERVED,
}


@dataclass(frozen=True)
class LedgerAudit:
    item_id: str
    projected_quantity: int
    ledger_quantity: int
    event_count: int
    problems: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not self.problems


def coerce_reason(value: StockChangeReason | str) -> StockChangeReason:
    if isinstance(value, StockChangeReason):
        return value
    try:
        return StockChangeReason(str(value).strip().lower())
    except ValueError:
        raise InvalidReasonError(f"Unknown stock change reason {value!r}", reason=str(value)) from None


def _coerce_price(value: Decimal | int | float | str) -> Decimal:
    try:
        price = parse_money(value)
    except ValueError as exc:
        raise InvalidReasonError(f"price_at_change {exc}", price_at_change=str(value)) from None
    if price < 0:
        raise InvalidReasonError("price_at_change cannot be negative", price_at_change=str(value))
    return price


def validate_change(
    delta: int,
    reason: StockChangeReason,
    price_at_change: Decimal | int | float | str | None,
) -> Decimal | None:
    """
    Reject malformed reason/delta/price combinations before anything is read or written.
    Prices are never rounded: more than two decimal places is an error.
    Returns the price padded to money scale, or None when the caller gave none.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidReasonError(f"quantity_delta must be an integer, got {delta!r}")

    price = _coerce_price(price_at_change) if price_at_change is not None else None

    rule = DIRECTION_RULES[reason]
    if rule == RESERVED:
        raise InvalidReasonError(f"{reason.value} is only written when an item is created", reason=reason.value)
    if rule == PRICE_ONLY:
        if delta != 0:
            raise InvalidReasonError("price_change events cannot move quantity", delta=delta)
        if price is None:
            raise InvalidReasonError("price_change requires price_at_change")
        if price == 0:
            raise InvalidReasonError("price_change requires a positive price_at_change")
        return price

    if delta == 0:
        raise InvalidReasonError(
            f"quantity_delta of zero is only valid for price_change, not {reason.value}",
            reason=reason.value,
        )
    if rule == INBOUND and delta < 0:
        raise InvalidReasonError(f"{reason.value} must add stock", reason=reason.value, delta=delta)
    if rule == OUTBOUND and delta > 0:
        raise InvalidReasonError(f"{reason.value} must remove stock", reason=reason.value, delta=delta)
    return price


def _is_sequence_collision(exc: IntegrityError) -> bool:
    # Postgres names the constraint; SQLite names the columns.
    message = str(exc.orig)
    return "uq_stock_events_item_sequence" in message or (
        "stock_events.item_id" in message and "stock_events.sequence" in message
    )


def _log(level: int, payload: dict) -> None:
    logger.log(level, json.dumps(payload, default=str))


class LedgerService:
    """The only write path for stock quantities and prices."""

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

    def record_change(
        self,
        item_id: str,
        delta: int,
        reason: StockChangeReason | str,
        price_at_change: Decimal | int | float | str | None = None,
        *,
        actor: str,
    ) -> StockEventOut:
        try:
            reason = coerce_reason(reason)
            price = validate_change(delta, reason, price_at_change)
            with self._locks.hold(item_id):
                recorded = self._commit_change(item_id, delta, reason, price, actor)
        except TransientLedgerError as exc:
            _log(
                logging.WARNING,
                {"event": "stock_change_retryable", "item_id": item_id, "error": exc.message},
            )
            raise
        except LedgerError as exc:
            _log(
                logging.WARNING,
                {
                    "event": "stock_change_rejected",
                    "item_id": item_id,
                    "delta": delta,
                    "reason": getattr(reason, "value", reason),
                    "error_type": type(exc).__name__,
                    "error": exc.message,
                },
            )
            raise

        _log(
            logging.INFO,
            {
                "event": "stock_change_recorded",
                "event_id": recorded.id,
                "item_id": item_id,
                "sequence": recorded.sequence,
                "delta": recorded.quantity_delta,
                "resulting_quantity": recorded.resulting_quantity,
                "reason": recorded.reason.value,
                "actor": actor,
            },
        )
        return recorded

    def _commit_change(
        self,
        item_id: str,
        delta: int,
        reason: StockChangeReason,
        price: Decimal | None,
        actor: str,
    ) -> StockEventOut:
        try:
            with self._session_factory.begin() as db:
                item = item_store.lock_active_item(db, item_id)
                resulting_quantity = item.quantity + delta
                if resulting_quantity < 0:
                    raise NegativeStockError(item_id=item_id, quantity=item.quantity, delta=delta)

                last = event_store.get_last_event(db, item_id)
                entry = event_store.append_event(
                    db,
                    item=item,
                    sequence=(last.sequence + 1) if last else 1,
                    quantity_delta=delta,
                    resulting_quantity=resulting_quantity,
                    reason=reason,
                    price_at_change=price if price is not None else item.unit_price,
                    actor=actor,
                    created_at=self._next_timestamp(last),
                )
                item_store.apply_stock_change(
                    item,
                    resulting_quantity=resulting_quantity,
                    unit_price=price if reason is StockChangeReason.PRICE_CHANGE else None,
                )
                db.flush()
                return StockEventOut.model_validate(entry)
        except IntegrityError as exc:
            if not _is_sequence_collision(exc):
                raise
            raise LedgerConflictError(
                f"Concurrent write to item {item_id} detected; nothing was applied",
                item_id=item_id,
            ) from exc
        except OperationalError as exc:
            raise TransientLedgerError(
                f"Stock store unavailable while recording change for item {item_id}",
                item_id=item_id,
            ) from exc

    def _next_timestamp(self, last: StockEvent | None) -> datetime:
        now = ensure_utc(self._clock())
        if last is not None:
            previous = ensure_utc(last.created_at)
            if now < previous:
                # Never place an event before its predecessor.
                return previous
        return now

    def verify_item(self, item_id: str) -> LedgerAudit:
        with self._session_factory() as db:
            item = item_store.get_item(db, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            events = event_store.list_item_events(db, item_id)

            problems: list[str] = []
            running = 0
            previous_at: datetime | None = None
            for expected_sequence, entry in enumerate(events, start=1):
                if entry.sequence != expected_sequence:
                    problems.append(
                        f"event {entry.id}: sequence {entry.sequence}, expected {expected_sequence}"
                    )
                running += entry.quantity_delta
                if entry.resulting_quantity != running:
                    problems.append(
                        f"event {entry.id}: resulting_quantity {entry.resulting_quantity}, running sum {running}"
                    )
                if entry.resulting_quantity < 0:
                    problems.append(f"event {entry.id}: negative resulting_quantity")
                created_at = ensure_utc(entry.created_at)
                if previous_at is not None and created_at < previous_at:
                    problems.append(f"event {entry.id}: timestamp earlier than predecessor")
                previous_at = created_at

            if item.quantity != running:
                problems.append(f"projection quantity {item.quantity} != ledger sum {running}")

            return LedgerAudit(
                item_id=item_id,
                projected_quantity=item.quantity,
                ledger_quantity=running,
                event_count=len(events),
                problems=tuple(problems),
            )
