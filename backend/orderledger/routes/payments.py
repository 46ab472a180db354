# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment Routes

DESIGN:
- Payments are recorded against any order (purchase or sales).
- Payment status on the order is derived, never set from here.
- Deletion is soft by default; ?mode=hard removes the row.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import OrderLedgerError, ValidationError
from ..services.container import services_for_request


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
def record_payment_route():
    """
    Record a payment against an order.

    Request body:
    {
        "order_id": 12,
        "amount_cents": 25000,
        "method": "Transfer",
        "payment_type": "INSTALLMENT",     (DP | FULL | INSTALLMENT)
        "reference_number": "TRX-001",     (optional)
        "paid_at": "2026-10-01T09:00:00Z",  (optional, default now)
        "notes": "..."                      (optional)
    }

    Returns:
        201: Payment recorded, with the order's payment summary
        404: Order not found
        409: Order cancelled
        422: Amount exceeds outstanding balance
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        order_id = data.get("order_id")
        if isinstance(order_id, bool) or not isinstance(order_id, int):
            raise ValidationError("order_id must be an integer")

        services = services_for_request()
        payment = services.payments.record_payment(
            order_id,
            data.get("amount_cents"),
            data.get("method"),
            payment_type=data.get("payment_type"),
            reference_number=data.get("reference_number"),
            paid_at=data.get("paid_at"),
            notes=data.get("notes"),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": services.payments.payment_summary(order_id),
        }), 201
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES / CORRECTIONS
# =============================================================================

@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        include_deleted = (request.args.get("include_deleted") or "").lower() in {"1", "true", "yes"}
        services = services_for_request()
        payment = services.payments.get_payment(payment_id, include_deleted=include_deleted)
        return jsonify(payment.to_dict()), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
def delete_payment_route(payment_id: int):
    """?mode=soft (default) or ?mode=hard"""
    try:
        mode = request.args.get("mode", "soft")
        services = services_for_request()
        snapshot = services.payments.delete_payment(payment_id, mode)
        return jsonify({
            "deleted": snapshot,
            "mode": mode.lower(),
            "summary": services.payments.payment_summary(snapshot["order_id"]),
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/restore")
def restore_payment_route(payment_id: int):
    try:
        services = services_for_request()
        payment = services.payments.restore_payment(payment_id)
        return jsonify({
            "payment": payment.to_dict(),
            "summary": services.payments.payment_summary(payment.order_id),
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore payment")
        return jsonify({"error": "Internal server error"}), 500
