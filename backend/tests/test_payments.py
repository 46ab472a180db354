"""
Payment reconciliation tests.

Verifies:
- Payment status derived from active payments
- Overpayment policies (strict / clamp / allow)
- Payments refused on cancelled or deleted orders
- Soft / hard delete and restore of payments
- Fulfillment status never moved by payments
"""

import pytest

from orderledger.errors import IllegalStateError, NotFoundError, OverpaymentError, ValidationError
from orderledger.models import Payment


@pytest.fixture
def order(place_order, item):
    """Confirmed purchase order worth 1000 cents."""
    return place_order("purchase", [{"item_id": item.id, "quantity": 10, "unit_price_cents": 100}])


class TestStatusDerivation:
    def test_full_payment_then_overpayment_rejected(self, services, order):
        services.payments.record_payment(order.id, 1000, "Bank Transfer", payment_type="FULL")
        assert services.orders.get(order.id).payment_status == "paid"

        with pytest.raises(OverpaymentError) as exc_info:
            services.payments.record_payment(order.id, 1, "Cash")

        assert exc_info.value.details == {"amount_cents": 1, "outstanding_cents": 0}
        assert "exceeds remaining amount (0)" in exc_info.value.message
        refreshed = services.orders.get(order.id)
        assert refreshed.payment_status == "paid"
        assert refreshed.paid_cents == 1000

    def test_installments(self, services, order):
        services.payments.record_payment(order.id, 300, "Cash")
        summary = services.payments.payment_summary(order.id)
        assert summary["payment_status"] == "partial"
        assert summary["outstanding_cents"] == 700
        assert summary["payment_count"] == 1
        assert summary["payments"][0]["payment_type"] == "INSTALLMENT"

        services.payments.record_payment(order.id, 700, "Cash")
        summary = services.payments.payment_summary(order.id)
        assert summary["payment_status"] == "paid"
        assert summary["outstanding_cents"] == 0

    def test_payment_does_not_touch_fulfillment_status(self, services, order):
        services.payments.record_payment(order.id, 1000, "Cash")
        assert services.orders.get(order.id).status == "ordered"

    def test_draft_orders_accept_payments(self, services, place_order, item):
        draft = place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}], confirm=False)
        services.payments.record_payment(draft.id, 50, "Cash")
        assert services.orders.get(draft.id).payment_status == "partial"

    @pytest.mark.parametrize(
        "amount, method, payment_type",
        [
            (0, "Cash", None),
            (-5, "Cash", None),
            (10.5, "Cash", None),
            (10, "", None),
            (10, "Cash", "BARTER"),
        ],
    )
    def test_invalid_payment_input(self, services, order, amount, method, payment_type):
        with pytest.raises(ValidationError):
            services.payments.record_payment(order.id, amount, method, payment_type=payment_type)

    def test_invalid_paid_at(self, services, order):
        with pytest.raises(ValidationError):
            services.payments.record_payment(order.id, 10, "Cash", paid_at="yesterday-ish")


class TestPolicies:
    def test_clamp_records_outstanding_only(self, make_services, order):
        clamp = make_services(OVERPAYMENT_POLICY="clamp")
        clamp.payments.record_payment(order.id, 600, "Cash")

        payment = clamp.payments.record_payment(order.id, 600, "Cash")

        assert payment.amount_cents == 400
        assert clamp.orders.get(order.id).payment_status == "paid"

    def test_clamp_with_nothing_owed_still_rejects(self, make_services, order):
        clamp = make_services(OVERPAYMENT_POLICY="clamp")
        clamp.payments.record_payment(order.id, 1000, "Cash")

        with pytest.raises(OverpaymentError):
            clamp.payments.record_payment(order.id, 1, "Cash")

    def test_allow_marks_overpaid(self, make_services, order):
        lenient = make_services(OVERPAYMENT_POLICY="allow")
        lenient.payments.record_payment(order.id, 1200, "Cash")

        refreshed = lenient.orders.get(order.id)
        assert refreshed.payment_status == "overpaid"
        assert refreshed.paid_cents == 1200

    def test_unknown_policy_rejected(self, make_services):
        with pytest.raises(ValueError):
            make_services(OVERPAYMENT_POLICY="generous")


class TestPayability:
    def test_cancelled_order(self, services, order):
        services.orders.transition_status(order.id, "cancelled")
        with pytest.raises(IllegalStateError):
            services.payments.record_payment(order.id, 10, "Cash")

    def test_soft_deleted_order(self, services, order):
        services.orders.delete(order.id)
        with pytest.raises(NotFoundError):
            services.payments.record_payment(order.id, 10, "Cash")

    def test_unknown_order(self, services):
        with pytest.raises(NotFoundError):
            services.payments.record_payment(999999, 10, "Cash")


class TestDeleteRestore:
    def test_soft_delete_and_restore(self, services, db_session, order):
        payment = services.payments.record_payment(order.id, 400, "Cash")
        payment_id = payment.id

        snapshot = services.payments.delete_payment(payment_id)

        assert snapshot["id"] == payment_id
        assert db_session.get(Payment, payment_id).is_deleted is True
        assert services.orders.get(order.id).payment_status == "unpaid"
        with pytest.raises(NotFoundError):
            services.payments.get_payment(payment_id)

        services.payments.restore_payment(payment_id)
        refreshed = services.orders.get(order.id)
        assert refreshed.payment_status == "partial"
        assert refreshed.paid_cents == 400

    def test_hard_delete_removes_row(self, services, db_session, order):
        payment = services.payments.record_payment(order.id, 1000, "Cash")
        payment_id = payment.id

        services.payments.delete_payment(payment_id, "hard")

        assert db_session.get(Payment, payment_id) is None
        assert services.orders.get(order.id).payment_status == "unpaid"

    def test_restore_cannot_overpay(self, services, order):
        first = services.payments.record_payment(order.id, 600, "Cash")
        first_id = first.id
        services.payments.delete_payment(first_id)
        services.payments.record_payment(order.id, 1000, "Cash")

        with pytest.raises(OverpaymentError):
            services.payments.restore_payment(first_id)

    def test_restore_active_payment_is_not_found(self, services, order):
        payment = services.payments.record_payment(order.id, 10, "Cash")
        with pytest.raises(NotFoundError):
            services.payments.restore_payment(payment.id)

    def test_invalid_delete_mode(self, services, order):
        payment = services.payments.record_payment(order.id, 10, "Cash")
        with pytest.raises(ValidationError):
            services.payments.delete_payment(payment.id, "vaporize")

    def test_list_payments_hides_deleted(self, services, order):
        kept = services.payments.record_payment(order.id, 10, "Cash")
        dropped = services.payments.record_payment(order.id, 20, "Cash")
        kept_id, dropped_id = kept.id, dropped.id
        services.payments.delete_payment(dropped_id)

        assert [p.id for p in services.payments.list_payments(order.id)] == [kept_id]
        assert [p.id for p in services.payments.list_payments(order.id, include_deleted=True)] == [kept_id, dropped_id]
