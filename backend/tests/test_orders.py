"""
Order aggregate tests.

Verifies:
- Creation rules, derived totals and order numbers
- Down payment on DP terms
- Editing windows and line replacement
- Manual transition table
- Soft / hard delete and restore
- List and due-soon projections
"""

from datetime import timedelta

import pytest

from orderledger.errors import (
    IllegalStateError,
    IllegalTransitionError,
    InsufficientStockError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from orderledger.models import LedgerEntry, Order, OrderLine, Payment, Supplier
from orderledger.time_utils import utcnow


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:
    def test_purchase_order_starts_in_draft(self, services, supplier, item, second_item):
        order = services.orders.create(
            "purchase",
            {"supplier_id": supplier.id, "notes": "first"},
            [
                {"item_id": item.id, "quantity": 10, "unit_price_cents": 150},
                {"item_id": second_item.id, "quantity": 2, "unit_price_cents": 1000},
            ],
        )

        assert order.status == "draft"
        assert order.payment_status == "unpaid"
        assert order.total_cents == 10 * 150 + 2 * 1000
        assert order.order_number.startswith("PO-")
        assert order.warehouse_code == "MAIN"
        assert [line.amount_cents for line in order.lines] == [1500, 2000]

    def test_sales_order_number_prefix(self, services, customer, item):
        order = services.orders.create(
            "sales", {"customer_id": customer.id}, [{"item_id": item.id, "quantity": 1, "unit_price_cents": 10}]
        )
        assert order.order_number.startswith("SO-")
        assert order.direction == "sales"

    @pytest.mark.parametrize(
        "lines",
        [
            [],
            None,
            [{"item_id": 1, "quantity": 0, "unit_price_cents": 10}],
            [{"item_id": 1, "quantity": 2, "unit_price_cents": -1}],
            [{"item_id": 1, "quantity": 1.5, "unit_price_cents": 10}],
        ],
    )
    def test_bad_lines_rejected(self, services, supplier, item, lines):
        with pytest.raises(ValidationError):
            services.orders.create("purchase", {"supplier_id": supplier.id}, lines)

    def test_duplicate_items_rejected(self, services, supplier, item):
        lines = [
            {"item_id": item.id, "quantity": 1, "unit_price_cents": 10},
            {"item_id": item.id, "quantity": 2, "unit_price_cents": 10},
        ]
        with pytest.raises(ValidationError):
            services.orders.create("purchase", {"supplier_id": supplier.id}, lines)

    def test_unknown_item_rejected(self, services, supplier):
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase", {"supplier_id": supplier.id}, [{"item_id": 777, "quantity": 1, "unit_price_cents": 1}]
            )

    def test_deleted_item_rejected(self, services, supplier, item):
        services.ledger.delete_item(item.id)
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase", {"supplier_id": supplier.id}, [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}]
            )

    def test_deleted_supplier_rejected(self, services, db_session, supplier, item):
        services.suppliers.soft_delete(supplier.id)
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase", {"supplier_id": supplier.id}, [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}]
            )

    def test_wrong_counterparty_rejected(self, services, customer, item):
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase", {"customer_id": customer.id}, [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}]
            )

    def test_failed_create_writes_nothing(self, services, db_session, supplier, item):
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase",
                {"supplier_id": supplier.id},
                [
                    {"item_id": item.id, "quantity": 1, "unit_price_cents": 1},
                    {"item_id": 404, "quantity": 1, "unit_price_cents": 1},
                ],
            )
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderLine).count() == 0


class TestDownPayment:
    def test_dp_term_records_initial_payment(self, services, db_session, supplier, item):
        order = services.orders.create(
            "purchase",
            {"supplier_id": supplier.id, "term_of_payment": "DP", "dp_amount_cents": 400},
            [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}],
        )

        payments = db_session.query(Payment).filter_by(order_id=order.id).all()
        assert len(payments) == 1
        assert payments[0].payment_type == "DP"
        assert payments[0].amount_cents == 400
        assert payments[0].method == "Pending"
        assert order.payment_status == "partial"
        assert order.paid_cents == 400

    def test_dp_amount_without_dp_term_rejected(self, services, supplier, item):
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase",
                {"supplier_id": supplier.id, "term_of_payment": "TEMPO", "dp_amount_cents": 400},
                [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}],
            )

    def test_dp_amount_above_total_rejected(self, services, supplier, item):
        with pytest.raises(ValidationError):
            services.orders.create(
                "purchase",
                {"supplier_id": supplier.id, "term_of_payment": "DP", "dp_amount_cents": 5000},
                [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}],
            )


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateOrder:
    def test_lines_matched_by_item(self, services, supplier, item, second_item, place_order):
        order = place_order(
            "purchase",
            [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}],
            confirm=False,
        )
        original_line_id = order.lines[0].id

        order = services.orders.update(
            order.id,
            {"notes": "revised"},
            [
                {"item_id": item.id, "quantity": 4, "unit_price_cents": 100},
                {"item_id": second_item.id, "quantity": 1, "unit_price_cents": 50},
            ],
        )

        lines = {line.item_id: line for line in order.lines}
        assert lines[item.id].id == original_line_id
        assert lines[item.id].ordered_quantity == 4
        assert order.total_cents == 450
        assert order.notes == "revised"

        order = services.orders.update(order.id, None, [{"item_id": second_item.id, "quantity": 3, "unit_price_cents": 50}])
        assert [line.item_id for line in order.lines] == [second_item.id]
        assert order.total_cents == 150

    def test_cannot_edit_after_fulfillment_started(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 1}])

        with pytest.raises(IllegalStateError):
            services.orders.update(order.id, {"notes": "too late"})

    def test_cannot_edit_cancelled(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.orders.transition_status(order.id, "cancelled")

        with pytest.raises(IllegalStateError):
            services.orders.update(order.id, {"notes": "nope"})

    def test_total_below_paid_rejected(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.payments.record_payment(order.id, 800, "Cash")

        with pytest.raises(OverpaymentError):
            services.orders.update(order.id, None, [{"item_id": item.id, "quantity": 5, "unit_price_cents": 100}])

        order = services.orders.get(order.id)
        assert order.total_cents == 1000

    def test_total_change_recomputes_payment_status(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.payments.record_payment(order.id, 500, "Cash")

        order = services.orders.update(order.id, None, [{"item_id": item.id, "quantity": 5, "unit_price_cents": 100}])

        assert order.payment_status == "paid"

    def test_unknown_header_field_rejected(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}], confirm=False)
        with pytest.raises(ValidationError):
            services.orders.update(order.id, {"status": "received"})


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================


class TestTransitions:
    def test_confirm_then_cancel(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}], confirm=False)

        assert services.orders.transition_status(order.id, "ordered").status == "ordered"
        assert services.orders.transition_status(order.id, "cancelled").status == "cancelled"

    @pytest.mark.parametrize("target", ["draft", "received", "partially_received"])
    def test_illegal_targets_from_ordered(self, services, item, place_order, target):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        with pytest.raises(IllegalTransitionError):
            services.orders.transition_status(order.id, target)

    def test_cancelled_is_final(self, services, item, place_order):
        order = place_order("sales", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}], confirm=False)
        services.orders.transition_status(order.id, "cancelled")
        with pytest.raises(IllegalTransitionError):
            services.orders.transition_status(order.id, "ordered")

    def test_partial_orders_cannot_be_cancelled(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 1}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 3}])
        with pytest.raises(IllegalTransitionError):
            services.orders.transition_status(order.id, "cancelled")

    def test_status_from_other_direction_is_invalid(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        with pytest.raises(ValidationError):
            services.orders.transition_status(order.id, "fulfilled")


# =============================================================================
# DELETE / RESTORE
# =============================================================================


class TestDeleteRestore:
    def test_soft_delete_hides_and_restore_returns(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        order_id = order.id

        services.orders.delete(order_id, "soft")
        with pytest.raises(NotFoundError):
            services.orders.get(order_id)
        assert services.orders.get(order_id, include_deleted=True).is_deleted is True
        assert services.orders.list("purchase")["pagination"]["total_records"] == 0

        restored = services.orders.restore(order_id)
        assert restored.is_deleted is False
        assert services.orders.get(order_id).id == order_id

    def test_restore_live_order_is_not_found(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        with pytest.raises(NotFoundError):
            services.orders.restore(order.id)

    def test_invalid_mode(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        with pytest.raises(ValidationError):
            services.orders.delete(order.id, "shred")

    def test_hard_delete_cascades_and_reindexes(self, services, db_session, second_item, place_order):
        order = place_order("purchase", [{"item_id": second_item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 10}])
        services.payments.record_payment(order.id, 300, "Cash")
        services.ledger.post_change(second_item.id, "STOCK_OUT", 4)
        order_id = order.id
        assert services.ledger.current_balance(second_item.id) == 56

        snapshot = services.orders.delete(order_id, "hard")

        assert snapshot["id"] == order_id
        assert db_session.get(Order, order_id) is None
        assert db_session.query(OrderLine).filter_by(order_id=order_id).count() == 0
        assert db_session.query(Payment).filter_by(order_id=order_id).count() == 0
        assert db_session.query(LedgerEntry).filter_by(order_id=order_id).count() == 0
        # Receipt removed from history; the later STOCK_OUT is re-based on the opening stock
        entries = (
            db_session.query(LedgerEntry)
            .filter_by(item_id=second_item.id, measure="stock")
            .order_by(LedgerEntry.id)
            .all()
        )
        assert [(e.change_type, e.old_value, e.new_value) for e in entries] == [
            ("CREATE_STOCK", 0, 50),
            ("STOCK_OUT", 50, 46),
        ]
        assert services.ledger.current_balance(second_item.id) == 46
        assert services.ledger.verify_balance(second_item.id)

    def test_hard_delete_refused_when_history_goes_negative(self, services, db_session, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 10}])
        services.ledger.post_change(item.id, "STOCK_OUT", 4)
        order_id = order.id

        with pytest.raises(InsufficientStockError) as exc:
            services.orders.delete(order_id, "hard")

        assert exc.value.details["stock"] == -4
        # Nothing was removed
        assert db_session.get(Order, order_id) is not None
        assert db_session.query(OrderLine).filter_by(order_id=order_id).count() == 1
        assert db_session.query(LedgerEntry).filter_by(order_id=order_id).count() == 1
        assert services.ledger.current_balance(item.id) == 6
        assert services.ledger.verify_balance(item.id)

    def test_hard_delete_of_receipt_already_shipped(self, services, db_session, item, place_order):
        purchase = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(purchase.id, [{"line_id": purchase.lines[0].id, "received_qty": 10}])
        sale = place_order("sales", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 150}])
        services.fulfillment.ship(sale.id, [{"line_id": sale.lines[0].id, "shipped_qty": 10}])
        purchase_id = purchase.id

        with pytest.raises(InsufficientStockError):
            services.orders.delete(purchase_id, "hard")

        assert services.orders.get(purchase_id).status == "received"
        assert services.ledger.current_balance(item.id) == 0
        assert services.ledger.replay_balance(item.id) == 0

    def test_hard_delete_without_later_movements(self, services, db_session, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 10}])
        assert services.ledger.current_balance(item.id) == 10

        services.orders.delete(order.id, "hard")

        assert services.ledger.current_balance(item.id) == 0
        assert services.ledger.verify_balance(item.id)

    def test_hard_delete_negative_stock_policy(self, services, make_services, db_session, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])
        services.fulfillment.receive(order.id, [{"line_id": order.lines[0].id, "received_qty": 10}])
        services.ledger.post_change(item.id, "STOCK_OUT", 4)
        order_id = order.id

        lenient = make_services(ALLOW_NEGATIVE_STOCK=True)
        lenient.orders.delete(order_id, "hard")

        assert db_session.get(Order, order_id) is None
        assert lenient.ledger.current_balance(item.id) == -4
        assert lenient.ledger.verify_balance(item.id)

    def test_hard_delete_of_soft_deleted_order(self, services, db_session, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        order_id = order.id
        services.orders.delete(order_id)
        services.orders.delete(order_id, "hard")
        assert db_session.get(Order, order_id) is None


# =============================================================================
# READS
# =============================================================================


class TestReads:
    def test_snapshot_is_idempotent(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 3, "unit_price_cents": 7}])
        first = services.orders.snapshot(order.id)
        second = services.orders.snapshot(order.id)

        assert first == second
        assert first["lines"][0]["ordered_quantity"] == 3
        assert first["outstanding_cents"] == 21

    def test_snapshot_respects_direction(self, services, item, place_order):
        order = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}])
        with pytest.raises(NotFoundError):
            services.orders.snapshot(order.id, direction="sales")

    def test_list_filters_and_pagination(self, services, db_session, item, place_order):
        for qty in range(1, 6):
            place_order("purchase", [{"item_id": item.id, "quantity": qty, "unit_price_cents": 100}], confirm=qty % 2 == 0)
        place_order("sales", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 1}], confirm=False)

        page = services.orders.list("purchase", page=1, limit=2)
        assert page["pagination"] == {
            "current_page": 1,
            "per_page": 2,
            "total_pages": 3,
            "total_records": 5,
            "has_next": True,
            "has_prev": False,
        }
        assert len(page["data"]) == 2

        drafts = services.orders.list("purchase", status="draft")
        assert drafts["pagination"]["total_records"] == 3

        capped = services.orders.list("purchase", limit=10_000)
        assert capped["pagination"]["per_page"] == 50

        searched = services.orders.list("purchase", search="Acme")
        assert searched["pagination"]["total_records"] == 5

        other_supplier = Supplier(code="SUP-B", name="Other")
        db_session.add(other_supplier)
        db_session.commit()
        assert services.orders.list("purchase", counterparty_id=other_supplier.id)["data"] == []

    def test_list_rejects_unknown_status(self, services):
        with pytest.raises(ValidationError):
            services.orders.list("purchase", status="shipped")

    def test_due_projection(self, services, item, place_order):
        today = utcnow().date()
        soon = place_order(
            "purchase",
            [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}],
            due_date=(today + timedelta(days=2)).isoformat(),
        )
        place_order(
            "purchase",
            [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}],
            due_date=(today + timedelta(days=30)).isoformat(),
        )
        overdue = place_order(
            "sales",
            [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}],
            due_date=(today - timedelta(days=1)).isoformat(),
        )
        paid = place_order(
            "purchase",
            [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}],
            due_date=today.isoformat(),
        )
        services.payments.record_payment(paid.id, 100, "Cash")

        due = services.orders.list_due(3, today=today)

        assert [o["id"] for o in due] == [overdue.id, soon.id]
        assert due[0]["is_overdue"] is True
        assert due[1]["days_until_due"] == 2
