from .catalog import Store, Sku
from .inventory import StockRecord, StockTransaction
from .transfers import Transfer

__all__ = [
    'Store', 'Sku',
    'StockRecord', 'StockTransaction',
    'Transfer',
]
