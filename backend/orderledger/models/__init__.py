from .parties import Supplier, Customer
from .inventory import Item, ItemBalance, LedgerEntry
from .orders import Order, OrderLine, Payment
from .enums import (
    OrderDirection,
    PurchaseStatus,
    SalesStatus,
    PaymentStatus,
    PaymentType,
    TermOfPayment,
    DeleteMode,
    Measure,
    ChangeType,
)

__all__ = [
    'Supplier', 'Customer',
    'Item', 'ItemBalance', 'LedgerEntry',
    'Order', 'OrderLine', 'Payment',
    'OrderDirection', 'PurchaseStatus', 'SalesStatus', 'PaymentStatus', 'PaymentType',
    'TermOfPayment', 'DeleteMode', 'Measure', 'ChangeType',
]
