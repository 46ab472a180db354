# Overview: Closed vocabularies for order status, payment status, delete mode and ledger change types.

from __future__ import annotations

from enum import Enum


class OrderDirection(str, Enum):
    PURCHASE = "purchase"
    SALES = "sales"


class PurchaseStatus(str, Enum):
    DRAFT = "draft"
    ORDERED = "ordered"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class SalesStatus(str, Enum):
    DRAFT = "draft"
    ORDERED = "ordered"
    PARTIALLY_SHIPPED = "partially_shipped"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """
    Derived from sum(active payments) vs order total.

    OVERPAID is only reachable when the overpayment policy is "allow".
    """

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"


class PaymentType(str, Enum):
    DP = "DP"
    FULL = "FULL"
    INSTALLMENT = "INSTALLMENT"


class TermOfPayment(str, Enum):
    FULL = "FULL"
    DP = "DP"
    TEMPO = "TEMPO"


class DeleteMode(str, Enum):
    """
    SOFT sets a tombstone and keeps every dependent row.
    HARD removes the record and cascades; only admins should reach it.
    """

    SOFT = "soft"
    HARD = "hard"

    @classmethod
    def parse(cls, value) -> "DeleteMode":
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.SOFT
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid delete mode {value!r}. Must be one of: soft, hard")


class Measure(str, Enum):
    STOCK = "stock"
    PRICE = "price"


class ChangeType(str, Enum):
    """
    Ledger change kinds.

    - CREATE_STOCK / CREATE_PRICE  (re)initialize: prior value treated as 0
    - STOCK_IN                     stock += amount
    - STOCK_OUT                    stock -= amount
    - UPDATE_PRICE                 price += amount (amount may be negative)
    """

    CREATE_STOCK = "CREATE_STOCK"
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    CREATE_PRICE = "CREATE_PRICE"
    UPDATE_PRICE = "UPDATE_PRICE"

    @property
    def measure(self) -> Measure:
        if self in (ChangeType.CREATE_PRICE, ChangeType.UPDATE_PRICE):
            return Measure.PRICE
        return Measure.STOCK

    @property
    def is_create(self) -> bool:
        return self in (ChangeType.CREATE_STOCK, ChangeType.CREATE_PRICE)

    def apply(self, prior: int, amount: int) -> int:
        """Running value after this change, given the prior running value."""
        if self.is_create:
            return amount
        if self is ChangeType.STOCK_OUT:
            return prior - amount
        return prior + amount
