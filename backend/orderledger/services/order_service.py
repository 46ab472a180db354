# Overview: Service-layer operations for the order aggregate; encapsulates business logic and database work.

"""
Order Aggregate

WHY: Purchase and sales orders share one shape (header + lines + payments)
and one set of rules. The aggregate owns creation, editing, manual status
changes, deletion and read projections. Fulfillment and payments live in
their own services and only come back here through derived fields.

LIFECYCLE:
1. create      -> draft / unpaid, order number assigned, totals derived.
                  Term DP with dp_amount_cents > 0 records the down payment.
2. update      -> draft or ordered only, and only before any line has
                  fulfillment progress. Lines are matched by item_id.
3. transition  -> draft->ordered, draft->cancelled, ordered->cancelled.
4. delete      -> SOFT tombstone (default) or HARD cascade (admin).
5. restore     -> clears the tombstone.

DERIVED FIELDS:
- line.amount_cents = ordered_quantity * unit_price_cents
- order.total_cents = sum(line.amount_cents)
- order.paid_cents / payment_status: PaymentService.recompute()
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta

from sqlalchemy import or_

from ..errors import IllegalStateError, NotFoundError, OverpaymentError, ValidationError
from ..models import (
    Customer,
    DeleteMode,
    Item,
    LedgerEntry,
    Measure,
    Order,
    OrderDirection,
    OrderLine,
    PaymentStatus,
    PaymentType,
    Supplier,
    TermOfPayment,
)
from .concurrency import atomic
from .ledger_service import StockLedger
from .lifecycle import (
    editable_statuses,
    parse_payment_status,
    parse_status,
    require_transition,
    status_enum,
)
from .notification_service import EVENT_ORDER_HARD_DELETED, dispatch
from .order_access import get_order, lock_order
from .payment_service import POLICY_ALLOW, PaymentService
from orderledger.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = {
    OrderDirection.PURCHASE.value: "PO",
    OrderDirection.SALES.value: "SO",
}

HEADER_FIELDS = {
    "supplier_id",
    "customer_id",
    "warehouse_code",
    "ordered_at",
    "estimated_arrival",
    "due_date",
    "term_of_payment",
    "dp_amount_cents",
    "dp_payment_method",
    "notes",
}


def parse_direction(value) -> str:
    try:
        return OrderDirection(str(value).strip().lower()).value
    except ValueError:
        raise ValidationError("direction must be one of: purchase, sales")


def _parse_date(value, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    return parsed.date() if parsed else None


def _parse_datetime(value, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _int_field(raw: dict, key: str, *, minimum: int, required: bool = True, default=None) -> int:
    value = raw.get(key, default)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


class OrderService:
    """Creates, edits, transitions, deletes and projects orders."""

    def __init__(
        self,
        session,
        *,
        ledger: StockLedger,
        payments: PaymentService,
        lock_timeout: float = 5.0,
        default_warehouse: str = "MAIN",
        page_size_default: int = 10,
        page_size_max: int = 100,
        notifier=None,
    ):
        self.session = session
        self.ledger = ledger
        self.payments = payments
        self.lock_timeout = lock_timeout
        self.default_warehouse = default_warehouse
        self.page_size_default = page_size_default
        self.page_size_max = page_size_max
        self.notifier = notifier

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    def _counterparty(self, direction: str, header: dict) -> tuple[str, int]:
        if direction == OrderDirection.PURCHASE.value:
            key, model, label = "supplier_id", Supplier, "Supplier"
        else:
            key, model, label = "customer_id", Customer, "Customer"
        party_id = _int_field(header, key, minimum=1)
        party = self.session.get(model, party_id)
        if party is None or party.is_deleted:
            raise ValidationError(f"{label} {party_id} not found")
        return key, party_id

    def _parse_lines(self, lines) -> list[dict]:
        if not isinstance(lines, list) or not lines:
            raise ValidationError("lines must be a non-empty list")
        parsed = []
        seen = set()
        for raw in lines:
            if not isinstance(raw, dict):
                raise ValidationError("Each line must be an object")
            item_id = _int_field(raw, "item_id", minimum=1)
            quantity = _int_field(raw, "quantity", minimum=1)
            unit_price = _int_field(raw, "unit_price_cents", minimum=0)
            if item_id in seen:
                raise ValidationError(f"Item {item_id} appears on more than one line")
            seen.add(item_id)
            item = self.session.get(Item, item_id)
            if item is None or item.is_deleted:
                raise ValidationError(f"Item {item_id} not found")
            parsed.append({"item_id": item_id, "quantity": quantity, "unit_price_cents": unit_price})
        return parsed

    def _apply_header(self, order: Order, header: dict) -> None:
        unknown = set(header) - HEADER_FIELDS
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

        if "warehouse_code" in header:
            code = (header.get("warehouse_code") or "").strip()
            order.warehouse_code = code or self.default_warehouse
        if "ordered_at" in header:
            order.ordered_at = _parse_datetime(header["ordered_at"], "ordered_at") or order.ordered_at or utcnow()
        if "estimated_arrival" in header:
            order.estimated_arrival = _parse_date(header["estimated_arrival"], "estimated_arrival")
        if "due_date" in header:
            order.due_date = _parse_date(header["due_date"], "due_date")
        if "term_of_payment" in header:
            try:
                order.term_of_payment = TermOfPayment(
                    str(header["term_of_payment"] or TermOfPayment.FULL.value).strip().upper()
                ).value
            except ValueError:
                raise ValidationError("term_of_payment must be one of: FULL, DP, TEMPO")
        if "dp_amount_cents" in header:
            order.dp_amount_cents = _int_field(header, "dp_amount_cents", minimum=0, required=False, default=0)
        if "notes" in header:
            order.notes = header.get("notes")

    @staticmethod
    def _set_line_amount(line: OrderLine) -> None:
        line.amount_cents = line.ordered_quantity * line.unit_price_cents

    @staticmethod
    def _recompute_total(order: Order) -> None:
        order.total_cents = sum(line.amount_cents for line in order.lines)

    # =========================================================================
    # CREATE / UPDATE
    # =========================================================================

    def create(self, direction, header: dict, lines) -> Order:
        """
        Create an order in draft with its lines.

        Raises:
            ValidationError: unknown counterparty or item, bad quantity/price,
                duplicate items, malformed header
        """
        direction = parse_direction(direction)
        header = dict(header or {})

        other_key = "customer_id" if direction == OrderDirection.PURCHASE.value else "supplier_id"
        if header.get(other_key) is not None:
            raise ValidationError(f"{other_key} is not valid on a {direction} order")

        with atomic(self.session):
            party_key, party_id = self._counterparty(direction, header)
            parsed_lines = self._parse_lines(lines)
            dp_method = header.pop("dp_payment_method", None)

            order = Order(
                direction=direction,
                status=status_enum(direction).DRAFT.value,
                payment_status=PaymentStatus.UNPAID.value,
                warehouse_code=self.default_warehouse,
                term_of_payment=TermOfPayment.FULL.value,
                dp_amount_cents=0,
                ordered_at=utcnow(),
                total_cents=0,
                paid_cents=0,
            )
            setattr(order, party_key, party_id)
            self._apply_header(order, {k: v for k, v in header.items() if k not in ("supplier_id", "customer_id")})

            for row in parsed_lines:
                line = OrderLine(
                    item_id=row["item_id"],
                    ordered_quantity=row["quantity"],
                    unit_price_cents=row["unit_price_cents"],
                )
                self._set_line_amount(line)
                order.lines.append(line)
            self._recompute_total(order)

            if order.term_of_payment != TermOfPayment.DP.value and order.dp_amount_cents:
                raise ValidationError("dp_amount_cents is only allowed with term_of_payment DP")
            if order.dp_amount_cents > order.total_cents:
                raise ValidationError(
                    f"dp_amount_cents ({order.dp_amount_cents}) exceeds order total ({order.total_cents})"
                )

            self.session.add(order)
            self.session.flush()
            order.order_number = (
                f"{ORDER_NUMBER_PREFIX[direction]}-{order.ordered_at:%Y%m%d}-{order.id:05d}"
            )

            if order.term_of_payment == TermOfPayment.DP.value and order.dp_amount_cents > 0:
                self.payments.apply_payment(
                    order,
                    order.dp_amount_cents,
                    dp_method or "Pending",
                    payment_type=PaymentType.DP.value,
                    notes="Down payment",
                )
        return order

    def update(self, order_id: int, header: dict | None = None, lines=None) -> Order:
        """
        Edit header fields and/or replace the line set.

        Lines are matched by item_id: matching lines are updated in place,
        new items are added, items not listed are removed.

        Raises:
            NotFoundError: order missing or soft-deleted
            IllegalStateError: status not draft/ordered, or fulfillment has started
            OverpaymentError: new total below the amount already paid
            ValidationError: malformed input
        """
        header = dict(header or {})

        with atomic(self.session):
            order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout)
            if order.status not in editable_statuses(order.direction):
                raise IllegalStateError(
                    f"Order {order.order_number} cannot be edited in status {order.status}",
                    status=order.status,
                )
            if any(line.has_progress for line in order.lines):
                raise IllegalStateError(
                    f"Order {order.order_number} has fulfillment progress and cannot be edited"
                )

            header.pop("dp_payment_method", None)
            party_key = "supplier_id" if order.is_purchase else "customer_id"
            other_key = "customer_id" if order.is_purchase else "supplier_id"
            if header.get(other_key) is not None:
                raise ValidationError(f"{other_key} is not valid on a {order.direction} order")
            header.pop(other_key, None)
            if party_key in header:
                _, party_id = self._counterparty(order.direction, header)
                setattr(order, party_key, party_id)
                header.pop(party_key)
            self._apply_header(order, header)

            if lines is not None:
                parsed_lines = self._parse_lines(lines)
                existing = {line.item_id: line for line in order.lines}
                wanted = set()
                for row in parsed_lines:
                    wanted.add(row["item_id"])
                    line = existing.get(row["item_id"])
                    if line is None:
                        line = OrderLine(item_id=row["item_id"])
                        order.lines.append(line)
                    line.ordered_quantity = row["quantity"]
                    line.unit_price_cents = row["unit_price_cents"]
                    self._set_line_amount(line)
                for item_id, line in existing.items():
                    if item_id not in wanted:
                        order.lines.remove(line)
                self._recompute_total(order)

            if order.term_of_payment != TermOfPayment.DP.value:
                order.dp_amount_cents = 0

            paid = sum(p.amount_cents for p in order.active_payments())
            if order.total_cents < paid and self.payments.policy != POLICY_ALLOW:
                raise OverpaymentError(
                    f"New total ({order.total_cents}) is below the amount already paid ({paid})",
                    total_cents=order.total_cents,
                    paid_cents=paid,
                )
            self.payments.recompute(order)
        return order

    # =========================================================================
    # STATUS
    # =========================================================================

    def transition_status(self, order_id: int, target) -> Order:
        """
        Manual status change (confirm or cancel).

        Raises:
            ValidationError: unknown status value
            IllegalTransitionError: not in the manual transition table
        """
        with atomic(self.session):
            order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout)
            target_status = parse_status(order.direction, target)
            require_transition(order.direction, order.status, target_status)
            order.status = target_status
        return order

    # =========================================================================
    # DELETE / RESTORE
    # =========================================================================

    def delete(self, order_id: int, mode=DeleteMode.SOFT) -> dict:
        """
        SOFT: tombstone the order; lines, payments and ledger entries stay.
        HARD: remove the order, its lines, its payments and every ledger
        entry it caused, then reindex the affected balances.
        """
        try:
            mode = DeleteMode.parse(mode)
        except ValueError as e:
            raise ValidationError(str(e))

        if mode is DeleteMode.SOFT:
            with atomic(self.session):
                order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout)
                order.is_deleted = True
                order.deleted_at = utcnow()
                snapshot = order.to_dict()
            return snapshot

        with atomic(self.session):
            order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout, include_deleted=True)
            snapshot = order.to_dict(include_lines=True)
            entries = self.session.query(LedgerEntry).filter(LedgerEntry.order_id == order.id).all()
            keys = sorted({(e.item_id, e.warehouse_code, e.measure) for e in entries})
            entry_ids = [e.id for e in entries]
            payment_ids = [p.id for p in order.payments]

            for entry in entries:
                self.session.delete(entry)
            # Entries reference order lines; they must go first
            self.session.flush()
            self.session.delete(order)
            self.session.flush()

            for item_id, warehouse_code, measure in keys:
                self.ledger.reindex(item_id, warehouse_code, Measure(measure))

        logger.warning(
            "Hard-deleted %s order %s (id=%s): %d lines, payments %s, ledger entries %s",
            snapshot["direction"], snapshot["order_number"], snapshot["id"],
            len(snapshot["lines"]), payment_ids, entry_ids,
        )
        dispatch(
            self.notifier,
            EVENT_ORDER_HARD_DELETED,
            "Order deleted",
            f"Order {snapshot['order_number']} was permanently deleted",
            {"order_id": snapshot["id"], "ledger_entries": entry_ids, "payments": payment_ids},
        )
        return snapshot

    def restore(self, order_id: int) -> Order:
        with atomic(self.session):
            order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout, include_deleted=True)
            if not order.is_deleted:
                raise NotFoundError(f"Order {order_id} is not deleted")
            order.is_deleted = False
            order.deleted_at = None
        return order

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, order_id: int, *, direction: str | None = None, include_deleted: bool = False) -> Order:
        return get_order(self.session, order_id, direction=direction, include_deleted=include_deleted)

    def snapshot(self, order_id: int, *, direction: str | None = None, include_deleted: bool = False) -> dict:
        """Header, lines, active payments and outstanding balance. Read-only."""
        order = self.get(order_id, direction=direction, include_deleted=include_deleted)
        return order.to_dict(include_lines=True, include_payments=True)

    def list(
        self,
        direction,
        *,
        page: int = 1,
        limit: int | None = None,
        search: str | None = None,
        status: str | None = None,
        payment_status: str | None = None,
        counterparty_id: int | None = None,
        date_from=None,
        date_to=None,
        include_deleted: bool = False,
    ) -> dict:
        direction = parse_direction(direction)
        page = max(page or 1, 1)
        limit = limit or self.page_size_default
        limit = max(1, min(limit, self.page_size_max))

        query = self.session.query(Order).filter(Order.direction == direction)
        if not include_deleted:
            query = query.filter(Order.is_deleted.is_(False))
        if status:
            query = query.filter(Order.status == parse_status(direction, status))
        if payment_status:
            query = query.filter(Order.payment_status == parse_payment_status(payment_status))
        if counterparty_id:
            if direction == OrderDirection.PURCHASE.value:
                query = query.filter(Order.supplier_id == counterparty_id)
            else:
                query = query.filter(Order.customer_id == counterparty_id)
        start = _parse_datetime(date_from, "date_from")
        if start is not None:
            query = query.filter(Order.ordered_at >= start)
        end = _parse_datetime(date_to, "date_to")
        if end is not None:
            query = query.filter(Order.ordered_at <= end)
        if search:
            pattern = f"%{search.strip()}%"
            if direction == OrderDirection.PURCHASE.value:
                party_match = Order.supplier.has(Supplier.name.ilike(pattern))
            else:
                party_match = Order.customer.has(Customer.name.ilike(pattern))
            query = query.filter(or_(
                Order.order_number.ilike(pattern),
                Order.notes.ilike(pattern),
                party_match,
            ))

        total = query.count()
        orders = (
            query.order_by(Order.ordered_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "data": [o.to_dict() for o in orders],
            "pagination": {
                "current_page": page,
                "per_page": limit,
                "total_pages": total_pages,
                "total_records": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    def list_due(self, within_days: int, *, today: date | None = None, direction=None) -> list[dict]:
        """
        Orders still owing money whose due date is on or before today + within_days.
        Overdue orders are included and flagged.
        """
        if within_days < 0:
            raise ValidationError("within_days must be >= 0")
        today = today or utcnow().date()
        horizon = today + timedelta(days=within_days)

        query = self.session.query(Order).filter(
            Order.is_deleted.is_(False),
            Order.status != "cancelled",
            Order.payment_status.in_([PaymentStatus.UNPAID.value, PaymentStatus.PARTIAL.value]),
            Order.due_date.isnot(None),
            Order.due_date <= horizon,
        )
        if direction:
            query = query.filter(Order.direction == parse_direction(direction))

        results = []
        for order in query.order_by(Order.due_date.asc(), Order.id.asc()):
            days = (order.due_date - today).days
            data = order.to_dict()
            data["days_until_due"] = days
            data["is_overdue"] = days < 0
            results.append(data)
        return results
