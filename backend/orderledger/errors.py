# Overview: Domain error taxonomy shared by services and routes.

"""
Order ledger errors.

Every failure a core operation can report is one of these kinds. Each kind
carries the HTTP status and a stable machine-readable code so route handlers
can translate any of them the same way:

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code

Services raise them; they never catch and re-label each other's errors.
"""

from __future__ import annotations


class OrderLedgerError(Exception):
    """Base class for domain errors."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OrderLedgerError, ValueError):
    """400-level input problem (bad quantities, unknown references, malformed fields)."""

    status_code = 400
    code = "validation_error"


class NotFoundError(OrderLedgerError, LookupError):
    """Record is missing or tombstoned."""

    status_code = 404
    code = "not_found"


class IllegalStateError(OrderLedgerError):
    """Operation is not permitted in the record's current status."""

    status_code = 409
    code = "illegal_state"


class IllegalTransitionError(IllegalStateError):
    """Requested status transition is not in the transition table."""

    code = "illegal_transition"


class OverReceiptError(OrderLedgerError):
    """Fulfillment batch would push a line past its ordered quantity."""

    status_code = 422
    code = "over_receipt"


class OverpaymentError(OrderLedgerError):
    """Payment would push the paid amount past the order total."""

    status_code = 422
    code = "overpayment"


class InsufficientStockError(OrderLedgerError):
    """STOCK_OUT would drive a balance below zero."""

    status_code = 409
    code = "insufficient_stock"


class ConflictError(OrderLedgerError):
    """Lock could not be acquired in time, or a concurrent writer won."""

    status_code = 409
    code = "conflict"
