from .purchasing import Supplier, Expense, PurchaseOrder
from .returns import ReturnDocument

__all__ = [
    'Supplier', 'Expense', 'PurchaseOrder',
    'ReturnDocument',
]
