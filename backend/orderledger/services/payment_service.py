# Overview: Service-layer operations for payment reconciliation; encapsulates business logic and database work.

"""
Payment Reconciliation

WHY: Payment status is never typed in by a user. It is derived from the
payments actually recorded against an order, and the sum of those payments
must never silently exceed what the order is worth.

DESIGN:
- Every mutation locks the order row first, then recomputes
  order.paid_cents and order.payment_status from the active payments.
- Overpayment policy (OVERPAYMENT_POLICY):
    strict  reject with OverpaymentError (default)
    clamp   record only the outstanding amount
    allow   record as-is; the order becomes "overpaid"
- Soft-deleted payments stay in the table but stop counting.
- Fulfillment status is never touched here.

LIFECYCLE:
record_payment -> (delete_payment SOFT -> restore_payment)* | delete_payment HARD
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import IllegalStateError, NotFoundError, OverpaymentError, ValidationError
from ..models import DeleteMode, Order, Payment, PaymentType
from .concurrency import atomic
from .lifecycle import derive_payment_status, status_enum
from .order_access import get_order, lock_order
from orderledger.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)

POLICY_STRICT = "strict"
POLICY_CLAMP = "clamp"
POLICY_ALLOW = "allow"
OVERPAYMENT_POLICIES = {POLICY_STRICT, POLICY_CLAMP, POLICY_ALLOW}


def parse_payment_type(value) -> str:
    if value is None or value == "":
        return PaymentType.INSTALLMENT.value
    try:
        return PaymentType(str(value).strip().upper()).value
    except ValueError:
        raise ValidationError(
            f"Invalid payment_type. Must be one of: {', '.join(t.value for t in PaymentType)}"
        )


def _parse_paid_at(value) -> datetime:
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("paid_at must be an ISO-8601 datetime")
    return parsed or utcnow()


class PaymentService:
    """Records payments against orders and keeps payment status derived."""

    def __init__(self, session, *, overpayment_policy: str = POLICY_STRICT, lock_timeout: float = 5.0):
        policy = (overpayment_policy or POLICY_STRICT).strip().lower()
        if policy not in OVERPAYMENT_POLICIES:
            raise ValueError(
                f"Invalid overpayment policy {overpayment_policy!r}. "
                f"Must be one of: {', '.join(sorted(OVERPAYMENT_POLICIES))}"
            )
        self.session = session
        self.policy = policy
        self.lock_timeout = lock_timeout

    # =========================================================================
    # DERIVED STATE
    # =========================================================================

    @staticmethod
    def recompute(order: Order) -> None:
        """Refresh paid_cents and payment_status from the active payments."""
        order.paid_cents = sum(p.amount_cents for p in order.active_payments())
        order.payment_status = derive_payment_status(order.total_cents, order.paid_cents)

    def _check_payable(self, order: Order) -> None:
        if order.status == status_enum(order.direction).CANCELLED.value:
            raise IllegalStateError(f"Order {order.order_number} is cancelled and cannot take payments")

    def _bounded_amount(self, order: Order, amount_cents: int) -> int:
        outstanding = order.total_cents - sum(p.amount_cents for p in order.active_payments())
        if amount_cents <= outstanding or self.policy == POLICY_ALLOW:
            return amount_cents
        if self.policy == POLICY_CLAMP and outstanding > 0:
            return outstanding
        raise OverpaymentError(
            f"Payment amount ({amount_cents}) exceeds remaining amount ({max(outstanding, 0)})",
            amount_cents=amount_cents,
            outstanding_cents=max(outstanding, 0),
        )

    # =========================================================================
    # RECORD
    # =========================================================================

    def apply_payment(
        self,
        order: Order,
        amount_cents: int,
        method: str,
        *,
        payment_type=None,
        reference_number: str | None = None,
        paid_at=None,
        notes: str | None = None,
    ) -> Payment:
        """
        Add a payment to an already-locked order inside the caller's
        transaction. The caller commits.
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise ValidationError("amount_cents must be an integer")
        if amount_cents < 1:
            raise ValidationError("amount_cents must be >= 1")
        method = (method or "").strip()
        if not method:
            raise ValidationError("method is required")

        self._check_payable(order)
        amount = self._bounded_amount(order, amount_cents)

        payment = Payment(
            amount_cents=amount,
            method=method,
            payment_type=parse_payment_type(payment_type),
            reference_number=reference_number,
            paid_at=_parse_paid_at(paid_at),
            notes=notes,
        )
        order.payments.append(payment)
        self.recompute(order)
        self.session.flush()
        return payment

    def record_payment(
        self,
        order_id: int,
        amount_cents: int,
        method: str,
        *,
        payment_type=None,
        reference_number: str | None = None,
        paid_at=None,
        notes: str | None = None,
    ) -> Payment:
        """
        Record a payment against an order.

        Raises:
            NotFoundError: order missing or soft-deleted
            IllegalStateError: order cancelled
            OverpaymentError: amount exceeds outstanding (strict / clamp with nothing owed)
            ValidationError: malformed amount, method, type or date
        """
        with atomic(self.session):
            order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout)
            payment = self.apply_payment(
                order,
                amount_cents,
                method,
                payment_type=payment_type,
                reference_number=reference_number,
                paid_at=paid_at,
                notes=notes,
            )
        return payment

    # =========================================================================
    # DELETE / RESTORE
    # =========================================================================

    def get_payment(self, payment_id: int, *, include_deleted: bool = False) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if payment is None or (payment.is_deleted and not include_deleted):
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def delete_payment(self, payment_id: int, mode=DeleteMode.SOFT) -> dict:
        """
        SOFT: tombstone the payment. HARD: remove the row.
        Either way the order's payment status is recomputed.
        """
        try:
            mode = DeleteMode.parse(mode)
        except ValueError as e:
            raise ValidationError(str(e))

        with atomic(self.session):
            payment = self.get_payment(payment_id, include_deleted=mode is DeleteMode.HARD)
            order = lock_order(self.session, payment.order_id, lock_timeout=self.lock_timeout)
            snapshot = payment.to_dict()

            if mode is DeleteMode.HARD:
                order.payments.remove(payment)
            else:
                payment.is_deleted = True
                payment.deleted_at = utcnow()
            self.recompute(order)

        if mode is DeleteMode.HARD:
            logger.warning(
                "Hard-deleted payment %s (%s cents) from order %s",
                payment_id, snapshot["amount_cents"], snapshot["order_id"],
            )
        return snapshot

    def restore_payment(self, payment_id: int) -> Payment:
        """Re-activate a soft-deleted payment, subject to the same overpayment bound."""
        with atomic(self.session):
            payment = self.get_payment(payment_id, include_deleted=True)
            if not payment.is_deleted:
                raise NotFoundError(f"Payment {payment_id} is not deleted")
            order = lock_order(self.session, payment.order_id, lock_timeout=self.lock_timeout)
            self._check_payable(order)

            outstanding = order.total_cents - sum(p.amount_cents for p in order.active_payments())
            if payment.amount_cents > outstanding and self.policy != POLICY_ALLOW:
                raise OverpaymentError(
                    f"Payment amount ({payment.amount_cents}) exceeds remaining amount ({max(outstanding, 0)})",
                    amount_cents=payment.amount_cents,
                    outstanding_cents=max(outstanding, 0),
                )

            payment.is_deleted = False
            payment.deleted_at = None
            self.recompute(order)
        return payment

    # =========================================================================
    # READS
    # =========================================================================

    def list_payments(self, order_id: int, *, include_deleted: bool = False) -> list[Payment]:
        order = get_order(self.session, order_id, include_deleted=True)
        if include_deleted:
            return list(order.payments)
        return order.active_payments()

    def payment_summary(self, order_id: int) -> dict:
        order = get_order(self.session, order_id, include_deleted=True)
        active = order.active_payments()
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "total_cents": order.total_cents,
            "paid_cents": order.paid_cents,
            "outstanding_cents": max(order.total_cents - order.paid_cents, 0),
            "payment_status": order.payment_status,
            "payment_count": len(active),
            "payments": [p.to_dict() for p in active],
        }
