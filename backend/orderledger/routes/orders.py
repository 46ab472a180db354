# Overview: Flask API routes for purchase and sales orders; parses input and returns JSON responses.

"""
Order Routes

One blueprint per direction, built by the same factory:

    /api/purchase-orders   (supplier_id, POST /<id>/receive)
    /api/sales-orders      (customer_id, POST /<id>/ship)

plus /api/orders/due for reminder jobs.

Handlers only parse input and shape output. Every rule lives in the
services; domain errors come back as {"error", "code"} with the status the
error carries.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import OrderLedgerError, ValidationError
from ..models import OrderDirection
from ..services.container import services_for_request


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def make_orders_blueprint(direction: str) -> Blueprint:
    is_purchase = direction == OrderDirection.PURCHASE.value
    slug = "purchase-orders" if is_purchase else "sales-orders"
    party_key = "supplier_id" if is_purchase else "customer_id"
    label = "purchase order" if is_purchase else "sales order"

    bp = Blueprint(slug.replace("-", "_"), __name__, url_prefix=f"/api/{slug}")

    # =========================================================================
    # LIST / CREATE
    # =========================================================================

    @bp.get("")
    def list_orders_route():
        """
        List orders.

        Query parameters:
        - page (default 1), limit (default 10, capped at PAGE_SIZE_MAX)
        - search: order number, notes or counterparty name
        - status, payment_status
        - supplier_id / customer_id
        - date_from, date_to: ISO-8601 bounds on ordered_at
        - include_deleted: true to include soft-deleted orders
        """
        try:
            services = services_for_request()
            result = services.orders.list(
                direction,
                page=request.args.get("page", 1, type=int),
                limit=request.args.get("limit", type=int),
                search=request.args.get("search"),
                status=request.args.get("status"),
                payment_status=request.args.get("payment_status"),
                counterparty_id=request.args.get(party_key, type=int),
                date_from=request.args.get("date_from"),
                date_to=request.args.get("date_to"),
                include_deleted=_flag("include_deleted"),
            )
            return jsonify(result), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to list %ss", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.post("")
    def create_order_route():
        """
        Create an order in draft.

        Request body:
        {
            "supplier_id": 1,                (purchase) / "customer_id": 1 (sales)
            "warehouse_code": "MAIN",        (optional)
            "due_date": "2026-11-30",        (optional)
            "term_of_payment": "DP",         (FULL | DP | TEMPO)
            "dp_amount_cents": 50000,        (optional, DP only)
            "notes": "...",
            "lines": [{"item_id": 1, "quantity": 10, "unit_price_cents": 1500}]
        }
        """
        try:
            data = _json_body()
            lines = data.pop("lines", None)
            services = services_for_request()
            order = services.orders.create(direction, data, lines)
            return jsonify(services.orders.snapshot(order.id)), 201
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to create %s", label)
            return jsonify({"error": "Internal server error"}), 500

    # =========================================================================
    # SINGLE ORDER
    # =========================================================================

    @bp.get("/<int:order_id>")
    def get_order_route(order_id: int):
        try:
            services = services_for_request()
            snapshot = services.orders.snapshot(
                order_id, direction=direction, include_deleted=_flag("include_deleted")
            )
            return jsonify(snapshot), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to load %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.put("/<int:order_id>")
    def update_order_route(order_id: int):
        """Edit header fields; "lines" (optional) replaces the line set."""
        try:
            data = _json_body()
            lines = data.pop("lines", None)
            services = services_for_request()
            services.orders.get(order_id, direction=direction)
            order = services.orders.update(order_id, data, lines)
            return jsonify(services.orders.snapshot(order.id)), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to update %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.put("/<int:order_id>/status")
    def transition_order_route(order_id: int):
        """Body: {"status": "ordered" | "cancelled"}"""
        try:
            data = _json_body()
            if not data.get("status"):
                raise ValidationError("status is required")
            services = services_for_request()
            services.orders.get(order_id, direction=direction)
            order = services.orders.transition_status(order_id, data["status"])
            return jsonify(order.to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to change %s status", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.delete("/<int:order_id>")
    def delete_order_route(order_id: int):
        """?mode=soft (default) or ?mode=hard (cascades, admin only)."""
        try:
            mode = request.args.get("mode", "soft")
            services = services_for_request()
            services.orders.get(order_id, direction=direction, include_deleted=True)
            snapshot = services.orders.delete(order_id, mode)
            return jsonify({"deleted": snapshot, "mode": mode.lower()}), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to delete %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.post("/<int:order_id>/restore")
    def restore_order_route(order_id: int):
        try:
            services = services_for_request()
            services.orders.get(order_id, direction=direction, include_deleted=True)
            order = services.orders.restore(order_id)
            return jsonify(order.to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to restore %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.get("/<int:order_id>/payments")
    def order_payments_route(order_id: int):
        try:
            services = services_for_request()
            services.orders.get(order_id, direction=direction, include_deleted=True)
            summary = services.payments.payment_summary(order_id)
            if _flag("include_deleted"):
                summary["payments"] = [
                    p.to_dict() for p in services.payments.list_payments(order_id, include_deleted=True)
                ]
            return jsonify(summary), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to load %s payments", label)
            return jsonify({"error": "Internal server error"}), 500

    # =========================================================================
    # FULFILLMENT
    # =========================================================================

    if is_purchase:
        @bp.post("/<int:order_id>/receive")
        def receive_order_route(order_id: int):
            """
            Goods received note.

            Request body:
            {
                "items": [
                    {"line_id": 1, "received_qty": 10, "accepted_qty": 9, "rejected_qty": 1}
                ]
            }
            """
            try:
                data = _json_body()
                services = services_for_request()
                order = services.fulfillment.receive(order_id, data.get("items"))
                return jsonify(services.orders.snapshot(order.id)), 200
            except OrderLedgerError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception("Failed to receive purchase order")
                return jsonify({"error": "Internal server error"}), 500
    else:
        @bp.post("/<int:order_id>/ship")
        def ship_order_route(order_id: int):
            """Request body: {"items": [{"line_id": 1, "shipped_qty": 5}]}"""
            try:
                data = _json_body()
                services = services_for_request()
                order = services.fulfillment.ship(order_id, data.get("items"))
                return jsonify(services.orders.snapshot(order.id)), 200
            except OrderLedgerError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception("Failed to ship sales order")
                return jsonify({"error": "Internal server error"}), 500

    return bp


purchase_orders_bp = make_orders_blueprint(OrderDirection.PURCHASE.value)
sales_orders_bp = make_orders_blueprint(OrderDirection.SALES.value)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/due")
def due_orders_route():
    """
    Orders still owing money that are due within ?days= (default DUE_SOON_DAYS).

    Query parameters:
    - days: look-ahead window in days
    - direction: purchase | sales (optional)
    """
    try:
        days = request.args.get("days", current_app.config.get("DUE_SOON_DAYS", 3), type=int)
        services = services_for_request()
        orders = services.orders.list_due(days, direction=request.args.get("direction"))
        return jsonify({"data": orders, "count": len(orders), "within_days": days}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list due orders")
        return jsonify({"error": "Internal server error"}), 500
