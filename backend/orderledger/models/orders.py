from __future__ import annotations

from ..extensions import db
from orderledger.time_utils import to_iso_date, to_utc_z, utcnow
from .enums import OrderDirection


class Order(db.Model):
    """
    Purchase or sales order header.

    DIRECTION:
    - purchase: supplier_id set, fulfilled by receiving (GRN)
    - sales:    customer_id set, fulfilled by shipping

    DERIVED FIELDS (never written by clients):
    - total_cents:     sum of line amounts
    - paid_cents:      sum of active (non-deleted) payments
    - payment_status:  unpaid / partial / paid / overpaid from the two above
    - status past "ordered": set only by the fulfillment processor

    SOFT DELETE: is_deleted + deleted_at; hidden from default reads.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_direction_status", "direction", "status"),
        db.Index("ix_orders_direction_payment_status", "direction", "payment_status"),
        db.Index("ix_orders_direction_deleted", "direction", "is_deleted"),
        db.Index("ix_orders_due_date", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # PO-YYYYMMDD-NNNNN / SO-YYYYMMDD-NNNNN, assigned after the first flush
    order_number = db.Column(db.String(64), nullable=True, unique=True)
    direction = db.Column(db.String(16), nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    warehouse_code = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="draft")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    estimated_arrival = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    term_of_payment = db.Column(db.String(16), nullable=False, default="FULL")
    dp_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier")
    customer = db.relationship("Customer")
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} {self.direction} status={self.status}>"

    @property
    def is_purchase(self) -> bool:
        return self.direction == OrderDirection.PURCHASE.value

    @property
    def counterparty_id(self) -> int | None:
        return self.supplier_id if self.is_purchase else self.customer_id

    @property
    def outstanding_cents(self) -> int:
        return self.total_cents - self.paid_cents

    def active_payments(self) -> list:
        return [p for p in self.payments if not p.is_deleted]

    def to_dict(self, include_lines: bool = False, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "direction": self.direction,
            "supplier_id": self.supplier_id,
            "customer_id": self.customer_id,
            "warehouse_code": self.warehouse_code,
            "status": self.status,
            "payment_status": self.payment_status,
            "ordered_at": to_utc_z(self.ordered_at),
            "estimated_arrival": to_iso_date(self.estimated_arrival),
            "due_date": to_iso_date(self.due_date),
            "term_of_payment": self.term_of_payment,
            "dp_amount_cents": self.dp_amount_cents,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "outstanding_cents": self.outstanding_cents,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.active_payments()]
        return data


class OrderLine(db.Model):
    """
    One item on an order.

    INVARIANTS:
    - purchase: accepted + rejected <= received <= ordered
    - sales:    shipped <= ordered
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "item_id", name="uq_order_lines_order_item"),
        db.CheckConstraint("ordered_quantity > 0", name="ck_order_lines_ordered_positive"),
        db.CheckConstraint("received_quantity <= ordered_quantity", name="ck_order_lines_received_ceiling"),
        db.CheckConstraint("shipped_quantity <= ordered_quantity", name="ck_order_lines_shipped_ceiling"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    ordered_quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Purchase fulfillment
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    accepted_quantity = db.Column(db.Integer, nullable=False, default=0)
    rejected_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Sales fulfillment
    shipped_quantity = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="lines")
    item = db.relationship("Item")

    def __repr__(self) -> str:
        return f"<OrderLine id={self.id} order_id={self.order_id} item_id={self.item_id} qty={self.ordered_quantity}>"

    @property
    def has_progress(self) -> bool:
        return self.received_quantity > 0 or self.shipped_quantity > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "ordered_quantity": self.ordered_quantity,
            "unit_price_cents": self.unit_price_cents,
            "amount_cents": self.amount_cents,
            "received_quantity": self.received_quantity,
            "accepted_quantity": self.accepted_quantity,
            "rejected_quantity": self.rejected_quantity,
            "shipped_quantity": self.shipped_quantity,
        }


class Payment(db.Model):
    """
    Money applied against an order.

    Soft-deleted payments stay in the table but no longer count toward
    order.paid_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_deleted", "order_id", "is_deleted"),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(64), nullable=False)
    payment_type = db.Column(db.String(16), nullable=False, default="INSTALLMENT")
    reference_number = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.Text, nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment id={self.id} order_id={self.order_id} amount_cents={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "payment_type": self.payment_type,
            "reference_number": self.reference_number,
            "paid_at": to_utc_z(self.paid_at),
            "notes": self.notes,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }
