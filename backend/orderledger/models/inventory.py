from __future__ import annotations

from ..extensions import db
from orderledger.time_utils import to_utc_z, utcnow


class Item(db.Model):
    """
    Item master data.

    Stock and price are NOT stored here. They live in the append-only
    ledger (LedgerEntry) and its per-warehouse cache (ItemBalance).

    low_stock is the threshold at or below which a STOCK_OUT raises a
    low-stock notification.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_deleted_name", "is_deleted", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=True)

    low_stock = db.Column(db.Integer, nullable=False, default=0)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Item id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "low_stock": self.low_stock,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ItemBalance(db.Model):
    """
    Current-state cache for one item in one warehouse.

    Always derivable by replaying LedgerEntry rows for the same
    (item_id, warehouse_code). Written only by the ledger service, in the
    same transaction as the entry that changes it.
    """
    __tablename__ = "item_balances"
    __table_args__ = (
        db.UniqueConstraint("item_id", "warehouse_code", name="uq_item_balances_item_warehouse"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_code = db.Column(db.String(64), nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    item = db.relationship("Item", backref=db.backref("balances", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<ItemBalance item_id={self.item_id} warehouse={self.warehouse_code!r} "
            f"stock={self.stock} price_cents={self.price_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "warehouse_code": self.warehouse_code,
            "stock": self.stock,
            "price_cents": self.price_cents,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Append-only item history.

    One row per stock or price change. old_value / new_value are the
    running values of the measure before and after the change; amount is
    what the caller asked for (always the magnitude for STOCK_IN/STOCK_OUT,
    signed for UPDATE_PRICE, the new absolute value for CREATE_*).

    IMMUTABLE: corrections are compensating entries. The admin hard-delete
    path is the only way rows disappear, and it reindexes the running
    values of every later entry.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_item_wh_occurred", "item_id", "warehouse_code", "occurred_at"),
        db.Index("ix_ledger_entries_item_wh_measure", "item_id", "warehouse_code", "measure"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_code = db.Column(db.String(64), nullable=False)

    measure = db.Column(db.String(16), nullable=False)
    change_type = db.Column(db.String(32), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    old_value = db.Column(db.Integer, nullable=False)
    new_value = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=True)

    # Causal references (what made this entry happen)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    order_line_id = db.Column(db.Integer, nullable=True)
    payment_id = db.Column(db.Integer, nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} item_id={self.item_id} {self.change_type} "
            f"{self.old_value}->{self.new_value}>"
        )

    @property
    def delta(self) -> int:
        return self.new_value - self.old_value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "warehouse_code": self.warehouse_code,
            "measure": self.measure,
            "change_type": self.change_type,
            "amount": self.amount,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "delta": self.delta,
            "description": self.description,
            "order_id": self.order_id,
            "order_line_id": self.order_line_id,
            "payment_id": self.payment_id,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
