from typing import Any


class LedgerError(Exception):
    """Base class for every error the ledger raises on purpose."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ItemNotFoundError(LedgerError):
    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found", item_id=item_id)
        self.item_id = item_id


class NegativeStockError(LedgerError):
    def __init__(self, *, item_id: str, quantity: int, delta: int):
        super().__init__(
            f"Change of {delta} would drive item {item_id} below zero (on hand: {quantity})",
            item_id=item_id,
            quantity=quantity,
            delta=delta,
        )
        self.item_id = item_id
        self.quantity = quantity
        self.delta = delta


class InvalidReasonError(LedgerError):
    pass


class InvalidRangeError(LedgerError):
    pass


class InvalidItemError(LedgerError):
    pass


class DuplicateItemError(LedgerError):
    def __init__(self, name: str):
        super().__init__(f"Item named {name!r} already exists", name=name)
        self.name = name


class ImmutableEventError(LedgerError):
    pass


class TransientLedgerError(LedgerError):
    """Commit did not happen; nothing was applied and the call may be retried."""


class LedgerBusyError(TransientLedgerError):
    pass


class LedgerConflictError(TransientLedgerError):
    pass
