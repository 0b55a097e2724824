from .inventory import Item, InventoryQuantity
from .transactions import Transaction, TransactionLine, TransactionOTP
from .boms import BOM, BOMComponent, ZoneBOMMapping
from .production import WorkStation, Car, ZoneEntry, CarMovement

__all__ = [
    'Item', 'InventoryQuantity',
    'Transaction', 'TransactionLine', 'TransactionOTP',
    'BOM', 'BOMComponent', 'ZoneBOMMapping',
    'WorkStation', 'Car', 'ZoneEntry', 'CarMovement',
]
