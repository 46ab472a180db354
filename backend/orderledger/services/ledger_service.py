# Overview: Service-layer operations for the append-only stock and price ledger; encapsulates business logic and database work.

"""
Stock & Price Ledger

WHY: Stock and price are never edited in place. Every change is a
LedgerEntry carrying the running value before and after it, so the current
state of any item can be rebuilt (and audited) by replaying its history.

DESIGN:
- LedgerEntry rows are the source of truth.
- ItemBalance is a cache, one row per (item, warehouse), written in the same
  transaction as the entry that changes it. verify_balance() compares the
  cache against a replay.
- append() participates in the caller's transaction and never commits.
  register_item(), update_item(), delete_item(), restore_item(),
  post_change() and delete_entry() are standalone operations and commit
  through atomic().
- A soft-deleted item keeps its history and can still be received or
  shipped on existing orders; post_change() and new orders reject it.

CHANGE TYPES:
- CREATE_STOCK / CREATE_PRICE: (re)initialize. Prior value is treated as 0
  and the new value is the amount. Rejected once the measure has history
  unless allow_reinitialize=True.
- STOCK_IN: stock += amount
- STOCK_OUT: stock -= amount; below zero raises InsufficientStockError
  unless negative stock is allowed
- UPDATE_PRICE: price += amount (amount may be negative, price may not)

ADMIN REPAIR:
delete_entry() hard-deletes one entry and reindex() recomputes the running
values of every remaining entry for that item/warehouse/measure plus the
cache. If the replay would take stock below zero the whole delete is
rolled back. Apart from order and item hard deletes it is the only path
that removes ledger rows.
"""

from __future__ import annotations

import logging

from ..errors import (
    IllegalStateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..models import ChangeType, DeleteMode, Item, ItemBalance, LedgerEntry, Measure, OrderLine
from .concurrency import atomic, lock_for_update
from .notification_service import EVENT_LOW_STOCK, dispatch
from orderledger.time_utils import utcnow

logger = logging.getLogger(__name__)

ITEM_WRITABLE_FIELDS = {"code", "name", "description", "unit", "low_stock"}


def parse_change_type(value) -> ChangeType:
    if isinstance(value, ChangeType):
        return value
    try:
        return ChangeType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid change_type. Must be one of: {', '.join(c.value for c in ChangeType)}"
        )


def parse_measure(value) -> Measure:
    if isinstance(value, Measure):
        return value
    try:
        return Measure(str(value).strip().lower())
    except ValueError:
        raise ValidationError("Invalid measure. Must be one of: stock, price")


def _require_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


class StockLedger:
    """Append-only stock and price history with a per-warehouse balance cache."""

    def __init__(self, session, *, default_warehouse: str = "MAIN",
                 allow_negative_stock: bool = False, notifier=None):
        self.session = session
        self.default_warehouse = default_warehouse
        self.allow_negative_stock = allow_negative_stock
        self.notifier = notifier

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def _warehouse(self, warehouse_code: str | None) -> str:
        code = (warehouse_code or self.default_warehouse or "").strip()
        if not code:
            raise ValidationError("warehouse_code is required")
        return code

    def get_item(self, item_id: int, *, include_deleted: bool = True) -> Item:
        item = self.session.get(Item, item_id)
        if item is None or (item.is_deleted and not include_deleted):
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def _lock_balance(self, item_id: int, warehouse_code: str) -> ItemBalance:
        balance = lock_for_update(
            self.session.query(ItemBalance).filter_by(item_id=item_id, warehouse_code=warehouse_code)
        ).first()
        if balance is None:
            balance = ItemBalance(item_id=item_id, warehouse_code=warehouse_code, stock=0, price_cents=0)
            self.session.add(balance)
            self.session.flush()
        return balance

    def _entries_query(self, item_id: int, warehouse_code: str, measure: Measure):
        return (
            self.session.query(LedgerEntry)
            .filter(
                LedgerEntry.item_id == item_id,
                LedgerEntry.warehouse_code == warehouse_code,
                LedgerEntry.measure == measure.value,
            )
            .order_by(LedgerEntry.occurred_at.asc(), LedgerEntry.id.asc())
        )

    def _has_history(self, item_id: int, warehouse_code: str, measure: Measure) -> bool:
        return self._entries_query(item_id, warehouse_code, measure).first() is not None

    # =========================================================================
    # APPEND
    # =========================================================================

    def append(
        self,
        item_id: int,
        change_type,
        amount: int,
        *,
        warehouse_code: str | None = None,
        description: str | None = None,
        order_id: int | None = None,
        order_line_id: int | None = None,
        payment_id: int | None = None,
        reference: str | None = None,
        allow_reinitialize: bool = False,
    ) -> LedgerEntry:
        """
        Append one ledger entry and update the balance cache.

        Runs inside the caller's transaction; the caller commits.

        Raises:
            ValidationError: bad change type or amount
            NotFoundError: unknown item
            IllegalStateError: CREATE_* on a measure that already has history
            InsufficientStockError: STOCK_OUT below zero
        """
        change = parse_change_type(change_type)
        amount = _require_int(amount, "amount")
        warehouse = self._warehouse(warehouse_code)
        self.get_item(item_id)

        if change in (ChangeType.STOCK_IN, ChangeType.STOCK_OUT) and amount <= 0:
            raise ValidationError(f"{change.value} amount must be > 0")
        if change.is_create and amount < 0:
            raise ValidationError(f"{change.value} amount must be >= 0")
        if change is ChangeType.UPDATE_PRICE and amount == 0:
            raise ValidationError("UPDATE_PRICE amount must be non-zero")

        balance = self._lock_balance(item_id, warehouse)
        measure = change.measure

        if change.is_create and not allow_reinitialize and self._has_history(item_id, warehouse, measure):
            raise IllegalStateError(
                f"Item {item_id} already has {measure.value} history in {warehouse}; "
                f"{change.value} requires allow_reinitialize"
            )

        if measure is Measure.STOCK:
            prior = balance.stock
        else:
            prior = balance.price_cents

        new_value = change.apply(prior, amount)

        if change is ChangeType.STOCK_OUT and new_value < 0 and not self.allow_negative_stock:
            raise InsufficientStockError(
                f"Insufficient stock for item {item_id} in {warehouse}: "
                f"available {prior}, requested {amount}",
                item_id=item_id,
                available=prior,
                requested=amount,
            )
        if measure is Measure.PRICE and new_value < 0:
            raise ValidationError(f"Price for item {item_id} cannot go below 0 (would be {new_value})")

        entry = LedgerEntry(
            item_id=item_id,
            warehouse_code=warehouse,
            measure=measure.value,
            change_type=change.value,
            amount=amount,
            # CREATE_* re-bases the running value at 0
            old_value=0 if change.is_create else prior,
            new_value=new_value,
            description=description,
            order_id=order_id,
            order_line_id=order_line_id,
            payment_id=payment_id,
            reference=reference,
            occurred_at=utcnow(),
        )
        self.session.add(entry)

        if measure is Measure.STOCK:
            balance.stock = new_value
        else:
            balance.price_cents = new_value

        self.session.flush()
        return entry

    def low_stock_alerts(self, entries) -> list[dict]:
        """Items whose STOCK_OUT entries left stock at or below their threshold."""
        alerts = {}
        for entry in entries:
            if entry.change_type != ChangeType.STOCK_OUT.value:
                continue
            item = self.get_item(entry.item_id)
            if entry.new_value <= item.low_stock:
                alerts[(item.id, entry.warehouse_code)] = {
                    "item_id": item.id,
                    "item_code": item.code,
                    "item_name": item.name,
                    "warehouse_code": entry.warehouse_code,
                    "stock": entry.new_value,
                    "low_stock": item.low_stock,
                }
        return list(alerts.values())

    def notify_low_stock(self, alerts: list[dict]) -> None:
        for alert in alerts:
            dispatch(
                self.notifier,
                EVENT_LOW_STOCK,
                "Low stock",
                f"{alert['item_name']} ({alert['item_code']}) is down to {alert['stock']} "
                f"in {alert['warehouse_code']}",
                alert,
            )

    # =========================================================================
    # STANDALONE OPERATIONS (commit)
    # =========================================================================

    def register_item(
        self,
        *,
        code: str,
        name: str,
        description: str | None = None,
        unit: str | None = None,
        low_stock: int = 0,
        initial_stock: int = 0,
        initial_price_cents: int = 0,
        warehouse_code: str | None = None,
    ) -> Item:
        """
        Create an item and its initial CREATE_STOCK / CREATE_PRICE entries.
        """
        code = (code or "").strip()
        name = (name or "").strip()
        if not code:
            raise ValidationError("code is required")
        if not name:
            raise ValidationError("name is required")
        low_stock = _require_int(low_stock, "low_stock")
        if low_stock < 0:
            raise ValidationError("low_stock must be >= 0")

        with atomic(self.session):
            if self.session.query(Item).filter_by(code=code).first() is not None:
                raise ValidationError(f"Item code {code!r} already exists")

            item = Item(code=code, name=name, description=description, unit=unit, low_stock=low_stock)
            self.session.add(item)
            self.session.flush()

            self.append(item.id, ChangeType.CREATE_STOCK, initial_stock,
                        warehouse_code=warehouse_code, description="Initial stock")
            self.append(item.id, ChangeType.CREATE_PRICE, initial_price_cents,
                        warehouse_code=warehouse_code, description="Initial price")
        return item

    def update_item(self, item_id: int, payload: dict) -> Item:
        """Patch master data. Stock and price only change through the ledger."""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        unknown = set(payload) - ITEM_WRITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

        patch = {}
        for key in ("code", "name"):
            if key in payload:
                value = (payload[key] or "").strip()
                if not value:
                    raise ValidationError(f"{key} cannot be blank")
                patch[key] = value
        for key in ("description", "unit"):
            if key in payload:
                patch[key] = payload[key]
        if "low_stock" in payload:
            low_stock = _require_int(payload["low_stock"], "low_stock")
            if low_stock < 0:
                raise ValidationError("low_stock must be >= 0")
            patch["low_stock"] = low_stock

        with atomic(self.session):
            item = self.get_item(item_id, include_deleted=False)
            if "code" in patch and patch["code"] != item.code:
                if self.session.query(Item).filter_by(code=patch["code"]).first() is not None:
                    raise ValidationError(f"Item code {patch['code']!r} already exists")
            for key, value in patch.items():
                setattr(item, key, value)
        return item

    def delete_item(self, item_id: int, mode=DeleteMode.SOFT) -> dict:
        """
        SOFT: tombstone the item. History stays and existing orders can still
        be fulfilled, but new orders and manual changes reject it.
        HARD: remove the item with its balances and ledger entries. Refused
        while any order line references it.
        """
        try:
            mode = DeleteMode.parse(mode)
        except ValueError as e:
            raise ValidationError(str(e))

        if mode is DeleteMode.SOFT:
            with atomic(self.session):
                item = self.get_item(item_id, include_deleted=False)
                item.is_deleted = True
                item.deleted_at = utcnow()
                snapshot = item.to_dict()
            return snapshot

        with atomic(self.session):
            item = self.get_item(item_id)
            line_count = self.session.query(OrderLine).filter(OrderLine.item_id == item.id).count()
            if line_count:
                raise IllegalStateError(
                    f"Item {item_id} is referenced by {line_count} order line(s); soft delete it instead",
                    item_id=item_id,
                    order_lines=line_count,
                )
            snapshot = item.to_dict()
            balances = lock_for_update(self.session.query(ItemBalance).filter_by(item_id=item.id)).all()
            entries = self.session.query(LedgerEntry).filter(LedgerEntry.item_id == item.id).all()
            entry_count = len(entries)

            for row in entries + balances:
                self.session.delete(row)
            self.session.flush()
            self.session.expire(item, ["balances"])
            self.session.delete(item)

        logger.warning(
            "Hard-deleted item %s (id=%s) with %d ledger entries",
            snapshot["code"], snapshot["id"], entry_count,
        )
        return snapshot

    def restore_item(self, item_id: int) -> Item:
        with atomic(self.session):
            item = self.get_item(item_id)
            if not item.is_deleted:
                raise NotFoundError(f"Item {item_id} is not deleted")
            item.is_deleted = False
            item.deleted_at = None
        return item

    def post_change(
        self,
        item_id: int,
        change_type,
        amount: int,
        *,
        measure=None,
        warehouse_code: str | None = None,
        description: str | None = None,
        reference: str | None = None,
        allow_reinitialize: bool = False,
    ) -> LedgerEntry:
        """
        Manual adjustment outside of any order (stock count, price change).

        If measure is given the change type must belong to it.
        """
        change = parse_change_type(change_type)
        if measure is not None and change.measure is not parse_measure(measure):
            raise ValidationError(f"{change.value} is not a {parse_measure(measure).value} change")

        with atomic(self.session):
            self.get_item(item_id, include_deleted=False)
            entry = self.append(
                item_id,
                change,
                amount,
                warehouse_code=warehouse_code,
                description=description,
                reference=reference,
                allow_reinitialize=allow_reinitialize,
            )
            alerts = self.low_stock_alerts([entry])

        self.notify_low_stock(alerts)
        return entry

    def delete_entry(self, entry_id: int) -> dict:
        """
        ADMIN: hard-delete one ledger entry and reindex what follows it.

        Refused with InsufficientStockError (nothing is deleted) when the
        remaining history would take stock below zero.
        """
        with atomic(self.session):
            entry = self.session.get(LedgerEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Ledger entry {entry_id} not found")
            snapshot = entry.to_dict()
            key = (entry.item_id, entry.warehouse_code, Measure(entry.measure))

            self._lock_balance(entry.item_id, entry.warehouse_code)
            self.session.delete(entry)
            self.session.flush()
            final_value = self.reindex(*key)

        logger.warning(
            "Hard-deleted ledger entry %s (%s %s item=%s warehouse=%s); %s now %s",
            entry_id, snapshot["change_type"], snapshot["amount"],
            key[0], key[1], key[2].value, final_value,
        )
        return snapshot

    # =========================================================================
    # REPLAY / REINDEX
    # =========================================================================

    def reindex(self, item_id: int, warehouse_code: str, measure) -> int:
        """
        Recompute old/new running values of every entry for this key, in
        (occurred_at, id) order, and rewrite the cache. Caller commits.

        Raises:
            InsufficientStockError: the replayed stock drops below zero at
                any entry and negative stock is not allowed. Inside atomic()
                this rolls back the delete that triggered the reindex.
        """
        measure = parse_measure(measure)
        warehouse = self._warehouse(warehouse_code)
        balance = self._lock_balance(item_id, warehouse)

        running = 0
        for entry in self._entries_query(item_id, warehouse, measure):
            change = ChangeType(entry.change_type)
            old_value = 0 if change.is_create else running
            running = change.apply(running, entry.amount)
            if measure is Measure.STOCK and running < 0 and not self.allow_negative_stock:
                raise InsufficientStockError(
                    f"Reindexing item {item_id} in {warehouse} would leave stock at {running} "
                    f"after ledger entry {entry.id}",
                    item_id=item_id,
                    warehouse_code=warehouse,
                    entry_id=entry.id,
                    stock=running,
                )
            if entry.old_value != old_value or entry.new_value != running:
                entry.old_value = old_value
                entry.new_value = running

        if measure is Measure.STOCK:
            balance.stock = running
        else:
            balance.price_cents = running
        self.session.flush()

        logger.info("Reindexed %s for item=%s warehouse=%s -> %s", measure.value, item_id, warehouse, running)
        return running

    def current_balance(self, item_id: int, warehouse_code: str | None = None, measure=Measure.STOCK) -> int:
        """Cached value; 0 when the item has never been touched in this warehouse."""
        measure = parse_measure(measure)
        self.get_item(item_id)
        balance = (
            self.session.query(ItemBalance)
            .filter_by(item_id=item_id, warehouse_code=self._warehouse(warehouse_code))
            .first()
        )
        if balance is None:
            return 0
        return balance.stock if measure is Measure.STOCK else balance.price_cents

    def replay_balance(self, item_id: int, warehouse_code: str | None = None, measure=Measure.STOCK) -> int:
        """Value rebuilt from history alone, ignoring the cache."""
        measure = parse_measure(measure)
        self.get_item(item_id)
        running = 0
        for entry in self._entries_query(item_id, self._warehouse(warehouse_code), measure):
            running = ChangeType(entry.change_type).apply(running, entry.amount)
        return running

    def verify_balance(self, item_id: int, warehouse_code: str | None = None, measure=Measure.STOCK) -> bool:
        return (
            self.current_balance(item_id, warehouse_code, measure)
            == self.replay_balance(item_id, warehouse_code, measure)
        )

    def balance_report(self, item_id: int, warehouse_code: str | None = None) -> dict:
        warehouse = self._warehouse(warehouse_code)
        report = {"item_id": item_id, "warehouse_code": warehouse, "consistent": True}
        for measure in Measure:
            cached = self.current_balance(item_id, warehouse, measure)
            replayed = self.replay_balance(item_id, warehouse, measure)
            report[measure.value] = {"cached": cached, "replayed": replayed}
            if cached != replayed:
                report["consistent"] = False
        return report

    def verify_all(self) -> list[dict]:
        """Reports for every cached balance that disagrees with its history."""
        mismatches = []
        for balance in self.session.query(ItemBalance).order_by(ItemBalance.item_id, ItemBalance.warehouse_code):
            report = self.balance_report(balance.item_id, balance.warehouse_code)
            if not report["consistent"]:
                mismatches.append(report)
        return mismatches

    def history(
        self,
        item_id: int,
        *,
        warehouse_code: str | None = None,
        measure=None,
        change_type=None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[LedgerEntry], int]:
        """Entries newest first, paginated. warehouse_code=None means every warehouse."""
        self.get_item(item_id)
        query = self.session.query(LedgerEntry).filter(LedgerEntry.item_id == item_id)
        if warehouse_code:
            query = query.filter(LedgerEntry.warehouse_code == warehouse_code)
        if measure:
            query = query.filter(LedgerEntry.measure == parse_measure(measure).value)
        if change_type:
            query = query.filter(LedgerEntry.change_type == parse_change_type(change_type).value)

        total = query.count()
        entries = (
            query.order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return entries, total
