from stockledger.models.item import InventoryItem
from stockledger.models.stock_event import StockChangeReason, StockEvent
