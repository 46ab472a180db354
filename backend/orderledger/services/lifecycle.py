# Overview: Order status state machines; transition tables and derived-status rules.

"""
Order Lifecycle

STATE MACHINE (per direction):

    purchase:  draft -> ordered -> partially_received -> received
    sales:     draft -> ordered -> partially_shipped  -> fulfilled
    both:      draft -> cancelled, ordered -> cancelled

RULES:
1. Users may only move draft -> ordered, draft -> cancelled and
   ordered -> cancelled (MANUAL_TRANSITIONS).
2. partially_* and the terminal status are entered only by the
   fulfillment processor (AUTOMATIC_TRANSITIONS).
3. Terminal and cancelled orders never change status again.
4. Fulfillment status never moves backwards.
"""

from __future__ import annotations

from ..errors import IllegalTransitionError, ValidationError
from ..models import OrderDirection, PaymentStatus, PurchaseStatus, SalesStatus


def status_enum(direction: str):
    if direction == OrderDirection.PURCHASE.value:
        return PurchaseStatus
    return SalesStatus


def _table(status_cls, partial, terminal):
    return {
        status_cls.DRAFT.value: {status_cls.ORDERED.value, status_cls.CANCELLED.value},
        status_cls.ORDERED.value: {status_cls.CANCELLED.value},
    }, {
        status_cls.ORDERED.value: {partial.value, terminal.value},
        partial.value: {partial.value, terminal.value},
    }


_PURCHASE_MANUAL, _PURCHASE_AUTO = _table(
    PurchaseStatus, PurchaseStatus.PARTIALLY_RECEIVED, PurchaseStatus.RECEIVED
)
_SALES_MANUAL, _SALES_AUTO = _table(
    SalesStatus, SalesStatus.PARTIALLY_SHIPPED, SalesStatus.FULFILLED
)

MANUAL_TRANSITIONS = {
    OrderDirection.PURCHASE.value: _PURCHASE_MANUAL,
    OrderDirection.SALES.value: _SALES_MANUAL,
}

AUTOMATIC_TRANSITIONS = {
    OrderDirection.PURCHASE.value: _PURCHASE_AUTO,
    OrderDirection.SALES.value: _SALES_AUTO,
}


def partial_status(direction: str) -> str:
    if direction == OrderDirection.PURCHASE.value:
        return PurchaseStatus.PARTIALLY_RECEIVED.value
    return SalesStatus.PARTIALLY_SHIPPED.value


def terminal_status(direction: str) -> str:
    if direction == OrderDirection.PURCHASE.value:
        return PurchaseStatus.RECEIVED.value
    return SalesStatus.FULFILLED.value


def fulfillable_statuses(direction: str) -> set[str]:
    """Statuses in which receiving / shipping is accepted."""
    return {status_enum(direction).ORDERED.value, partial_status(direction)}


def editable_statuses(direction: str) -> set[str]:
    cls = status_enum(direction)
    return {cls.DRAFT.value, cls.ORDERED.value}


def parse_status(direction: str, value) -> str:
    cls = status_enum(direction)
    try:
        return cls(str(value).strip().lower()).value
    except ValueError:
        raise ValidationError(
            f"Invalid status {value!r}. Must be one of: {', '.join(s.value for s in cls)}"
        )


def can_transition(direction: str, current: str, target: str, *, automatic: bool = False) -> bool:
    table = AUTOMATIC_TRANSITIONS if automatic else MANUAL_TRANSITIONS
    return target in table[direction].get(current, set())


def require_transition(direction: str, current: str, target: str, *, automatic: bool = False) -> None:
    if not can_transition(direction, current, target, automatic=automatic):
        raise IllegalTransitionError(
            f"Cannot transition {direction} order from {current} to {target}",
            current=current,
            target=target,
        )


def derive_fulfillment_status(order) -> str:
    """
    Status after a fulfillment batch: terminal when every line is complete,
    partial when any line has progress, otherwise unchanged.
    """
    if order.is_purchase:
        done = [line.received_quantity >= line.ordered_quantity for line in order.lines]
        started = any(line.received_quantity > 0 for line in order.lines)
    else:
        done = [line.shipped_quantity >= line.ordered_quantity for line in order.lines]
        started = any(line.shipped_quantity > 0 for line in order.lines)

    if done and all(done):
        return terminal_status(order.direction)
    if started:
        return partial_status(order.direction)
    return order.status


def derive_payment_status(total_cents: int, paid_cents: int) -> str:
    if paid_cents <= 0:
        return PaymentStatus.UNPAID.value
    if paid_cents < total_cents:
        return PaymentStatus.PARTIAL.value
    if paid_cents == total_cents:
        return PaymentStatus.PAID.value
    return PaymentStatus.OVERPAID.value


def parse_payment_status(value) -> str:
    try:
        return PaymentStatus(str(value).strip().lower()).value
    except ValueError:
        raise ValidationError(
            f"Invalid payment_status {value!r}. Must be one of: {', '.join(s.value for s in PaymentStatus)}"
        )
