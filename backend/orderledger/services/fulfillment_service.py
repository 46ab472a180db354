# Overview: Service-layer operations for receiving (GRN) and shipping against order lines; encapsulates business logic and database work.

"""
Receiving / Shipment Processor

WHY: Goods arrive and leave in pieces. Each batch applies quantities to
order lines, moves stock through the ledger and advances the order status,
all in one transaction.

PROCESS (receive and ship share it):
1. Lock the order row.
2. Validate the whole batch before touching anything: known lines, no
   duplicates, non-negative integers, accepted + rejected == received.
3. Ceiling check per line. One offending line rejects the batch
   (OverReceiptError).
4. Apply deltas to lines.
5. Ledger: STOCK_IN for accepted quantities (purchase), STOCK_OUT for
   shipped quantities (sales). Balances are touched in item order.
6. Derive status: terminal when every line is complete, partial when any
   line has progress. Never backwards.
7. Commit, then announce fulfillment / low stock.

Rejected quantities count toward "received" but never enter stock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import IllegalStateError, NotFoundError, OverReceiptError, ValidationError
from ..models import ChangeType, Order, OrderDirection
from .concurrency import atomic
from .ledger_service import StockLedger
from .lifecycle import derive_fulfillment_status, fulfillable_statuses, require_transition, terminal_status
from .notification_service import EVENT_ORDER_FULFILLED, dispatch
from .order_access import lock_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptLine:
    line_id: int
    received_qty: int
    accepted_qty: int
    rejected_qty: int


@dataclass(frozen=True)
class ShipmentLine:
    line_id: int
    shipped_qty: int


def _qty(raw: dict, key: str, default=None) -> int:
    value = raw.get(key, default)
    if value is None:
        raise ValidationError(f"{key} is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    return value


def _line_id(raw) -> int:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    line_id = raw.get("line_id")
    if isinstance(line_id, bool) or not isinstance(line_id, int):
        raise ValidationError("line_id must be an integer")
    return line_id


def parse_receipt_lines(items) -> list[ReceiptLine]:
    """
    Normalize a receive payload.

    rejected_qty defaults to 0 and accepted_qty to received - rejected.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    parsed = []
    for raw in items:
        line_id = _line_id(raw)
        received = _qty(raw, "received_qty")
        rejected = _qty(raw, "rejected_qty", 0)
        accepted = _qty(raw, "accepted_qty", received - rejected)
        if accepted + rejected != received:
            raise ValidationError(
                f"Line {line_id}: accepted_qty ({accepted}) + rejected_qty ({rejected}) "
                f"must equal received_qty ({received})"
            )
        parsed.append(ReceiptLine(line_id, received, accepted, rejected))
    return parsed


def parse_shipment_lines(items) -> list[ShipmentLine]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    return [ShipmentLine(_line_id(raw), _qty(raw, "shipped_qty")) for raw in items]


class FulfillmentService:
    """Applies receipt and shipment batches to orders."""

    def __init__(self, session, ledger: StockLedger, *, lock_timeout: float = 5.0, notifier=None):
        self.session = session
        self.ledger = ledger
        self.lock_timeout = lock_timeout
        self.notifier = notifier

    def _lock_fulfillable(self, order_id: int, direction: str) -> Order:
        order = lock_order(self.session, order_id, lock_timeout=self.lock_timeout, direction=direction)
        if order.status not in fulfillable_statuses(direction):
            verb = "receive" if direction == OrderDirection.PURCHASE.value else "ship"
            raise IllegalStateError(
                f"Cannot {verb} against order {order.order_number} in status {order.status}",
                status=order.status,
            )
        return order

    @staticmethod
    def _resolve_lines(order: Order, batch) -> dict:
        lines_by_id = {line.id: line for line in order.lines}
        seen = set()
        for entry in batch:
            if entry.line_id in seen:
                raise ValidationError(f"Line {entry.line_id} appears more than once in the batch")
            seen.add(entry.line_id)
            if entry.line_id not in lines_by_id:
                raise NotFoundError(
                    f"Line {entry.line_id} not found on order {order.order_number}",
                    line_id=entry.line_id,
                )
        return lines_by_id

    def _advance_status(self, order: Order) -> bool:
        new_status = derive_fulfillment_status(order)
        if new_status != order.status:
            require_transition(order.direction, order.status, new_status, automatic=True)
            order.status = new_status
        return order.status == terminal_status(order.direction)

    def _after_commit(self, order_snapshot: dict, completed: bool, alerts: list[dict]) -> None:
        if completed:
            dispatch(
                self.notifier,
                EVENT_ORDER_FULFILLED,
                "Order fulfilled",
                f"Order {order_snapshot['order_number']} is {order_snapshot['status']}",
                {"order_id": order_snapshot["id"], "order_number": order_snapshot["order_number"]},
            )
        self.ledger.notify_low_stock(alerts)

    # =========================================================================
    # RECEIVE (purchase)
    # =========================================================================

    def receive(self, order_id: int, items) -> Order:
        """
        Apply a goods-received batch to a purchase order.

        items: [{line_id, received_qty, accepted_qty, rejected_qty}, ...]

        Raises:
            NotFoundError, ValidationError, IllegalStateError, OverReceiptError, ConflictError
        """
        batch = parse_receipt_lines(items)

        with atomic(self.session):
            order = self._lock_fulfillable(order_id, OrderDirection.PURCHASE.value)
            lines_by_id = self._resolve_lines(order, batch)

            for entry in batch:
                line = lines_by_id[entry.line_id]
                if line.received_quantity + entry.received_qty > line.ordered_quantity:
                    raise OverReceiptError(
                        f"Line {line.id}: receiving {entry.received_qty} would exceed ordered "
                        f"quantity {line.ordered_quantity} (already received {line.received_quantity})",
                        line_id=line.id,
                        ordered=line.ordered_quantity,
                        already=line.received_quantity,
                        requested=entry.received_qty,
                    )

            for entry in batch:
                line = lines_by_id[entry.line_id]
                line.received_quantity += entry.received_qty
                line.accepted_quantity += entry.accepted_qty
                line.rejected_quantity += entry.rejected_qty

            for entry in sorted(batch, key=lambda e: lines_by_id[e.line_id].item_id):
                if entry.accepted_qty <= 0:
                    continue
                line = lines_by_id[entry.line_id]
                self.ledger.append(
                    line.item_id,
                    ChangeType.STOCK_IN,
                    entry.accepted_qty,
                    warehouse_code=order.warehouse_code,
                    description=f"Received on {order.order_number}",
                    order_id=order.id,
                    order_line_id=line.id,
                )

            completed = self._advance_status(order)
            snapshot = order.to_dict()

        self._after_commit(snapshot, completed, [])
        return order

    # =========================================================================
    # SHIP (sales)
    # =========================================================================

    def ship(self, order_id: int, items) -> Order:
        """
        Apply a shipment batch to a sales order.

        items: [{line_id, shipped_qty}, ...]

        Raises:
            NotFoundError, ValidationError, IllegalStateError, OverReceiptError,
            InsufficientStockError, ConflictError
        """
        batch = parse_shipment_lines(items)

        with atomic(self.session):
            order = self._lock_fulfillable(order_id, OrderDirection.SALES.value)
            lines_by_id = self._resolve_lines(order, batch)

            for entry in batch:
                line = lines_by_id[entry.line_id]
                if line.shipped_quantity + entry.shipped_qty > line.ordered_quantity:
                    raise OverReceiptError(
                        f"Line {line.id}: shipping {entry.shipped_qty} would exceed ordered "
                        f"quantity {line.ordered_quantity} (already shipped {line.shipped_quantity})",
                        line_id=line.id,
                        ordered=line.ordered_quantity,
                        already=line.shipped_quantity,
                        requested=entry.shipped_qty,
                    )

            for entry in batch:
                lines_by_id[entry.line_id].shipped_quantity += entry.shipped_qty

            entries = []
            for entry in sorted(batch, key=lambda e: lines_by_id[e.line_id].item_id):
                if entry.shipped_qty <= 0:
                    continue
                line = lines_by_id[entry.line_id]
                entries.append(self.ledger.append(
                    line.item_id,
                    ChangeType.STOCK_OUT,
                    entry.shipped_qty,
                    warehouse_code=order.warehouse_code,
                    description=f"Shipped on {order.order_number}",
                    order_id=order.id,
                    order_line_id=line.id,
                ))

            completed = self._advance_status(order)
            alerts = self.ledger.low_stock_alerts(entries)
            snapshot = order.to_dict()

        self._after_commit(snapshot, completed, alerts)
        return order
