from .inventory import Category, Product, StockMovement
from .cashbox import Cashbox, CashboxTransaction
from .customers import Customer, CustomerLedgerEntry
from .sales import Sale, SaleItem
from .finance import Expense, Revenue
from .documents import DocumentSequence

__all__ = [
    'Category', 'Product', 'StockMovement',
    'Cashbox', 'CashboxTransaction',
    'Customer', 'CustomerLedgerEntry',
    'Sale', 'SaleItem',
    'Expense', 'Revenue',
    'DocumentSequence',
]
