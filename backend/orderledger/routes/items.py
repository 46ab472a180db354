# Overview: Flask API routes for items, balances and the stock/price ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import OrderLedgerError, ValidationError
from ..models import Item, Measure
from ..services.container import services_for_request


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


# =============================================================================
# ITEM MASTER
# =============================================================================

@items_bp.post("")
def register_item_route():
    """
    Register an item with its opening stock and price.

    Request body:
    {
        "code": "ITM-001",
        "name": "Paracetamol 500mg",
        "low_stock": 10,
        "initial_stock": 100,
        "initial_price_cents": 2500,
        "warehouse_code": "MAIN"
    }
    """
    try:
        data = _json_body()
        services = services_for_request()
        item = services.ledger.register_item(
            code=data.get("code"),
            name=data.get("name"),
            description=data.get("description"),
            unit=data.get("unit"),
            low_stock=data.get("low_stock", 0),
            initial_stock=data.get("initial_stock", 0),
            initial_price_cents=data.get("initial_price_cents", 0),
            warehouse_code=data.get("warehouse_code"),
        )
        payload = item.to_dict()
        payload["balance"] = services.ledger.balance_report(item.id, data.get("warehouse_code"))
        return jsonify(payload), 201
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("")
def list_items_route():
    try:
        services = services_for_request()
        query = services.ledger.session.query(Item).filter(Item.is_deleted.is_(False))
        search = request.args.get("search")
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter((Item.name.ilike(pattern)) | (Item.code.ilike(pattern)))
        items = query.order_by(Item.name.asc()).all()
        return jsonify({"data": [i.to_dict() for i in items], "count": len(items)}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list items")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    try:
        services = services_for_request()
        item = services.ledger.get_item(item_id, include_deleted=False)
        return jsonify(item.to_dict()), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.put("/<int:item_id>")
def update_item_route(item_id: int):
    """Body: any of code, name, description, unit, low_stock."""
    try:
        data = _json_body()
        services = services_for_request()
        item = services.ledger.update_item(item_id, data)
        return jsonify(item.to_dict()), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:item_id>")
def delete_item_route(item_id: int):
    """?mode=soft (default) or ?mode=hard (only for items no order references)."""
    try:
        mode = request.args.get("mode", "soft")
        services = services_for_request()
        snapshot = services.ledger.delete_item(item_id, mode)
        return jsonify({"deleted": snapshot, "mode": mode.lower()}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/<int:item_id>/restore")
def restore_item_route(item_id: int):
    try:
        services = services_for_request()
        item = services.ledger.restore_item(item_id)
        return jsonify(item.to_dict()), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BALANCES / HISTORY
# =============================================================================

@items_bp.get("/<int:item_id>/balance")
def item_balance_route(item_id: int):
    """Cached stock and price for ?warehouse= (default warehouse when omitted)."""
    try:
        warehouse = request.args.get("warehouse")
        services = services_for_request()
        return jsonify({
            "item_id": item_id,
            "warehouse_code": warehouse or current_app.config.get("DEFAULT_WAREHOUSE"),
            "stock": services.ledger.current_balance(item_id, warehouse, Measure.STOCK),
            "price_cents": services.ledger.current_balance(item_id, warehouse, Measure.PRICE),
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load item balance")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/ledger")
def item_ledger_route(item_id: int):
    """
    Item history, newest first.

    Query parameters: warehouse, measure (stock|price), change_type, page, limit
    """
    try:
        page = max(request.args.get("page", 1, type=int), 1)
        limit = request.args.get("limit", current_app.config.get("PAGE_SIZE_DEFAULT", 10), type=int)
        limit = max(1, min(limit, current_app.config.get("PAGE_SIZE_MAX", 100)))

        services = services_for_request()
        entries, total = services.ledger.history(
            item_id,
            warehouse_code=request.args.get("warehouse"),
            measure=request.args.get("measure"),
            change_type=request.args.get("change_type"),
            page=page,
            limit=limit,
        )
        total_pages = (total + limit - 1) // limit
        return jsonify({
            "data": [e.to_dict() for e in entries],
            "pagination": {
                "current_page": page,
                "per_page": limit,
                "total_pages": total_pages,
                "total_records": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load item ledger")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/verify")
def verify_item_route(item_id: int):
    """Compare cached balances with a replay of the ledger."""
    try:
        services = services_for_request()
        report = services.ledger.balance_report(item_id, request.args.get("warehouse"))
        return jsonify(report), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify item balance")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MANUAL ADJUSTMENTS
# =============================================================================

def _post_change(item_id: int, measure: Measure, amount_key: str):
    data = _json_body()
    change_type = data.get("change_type")
    if not change_type:
        raise ValidationError("change_type is required")
    services = services_for_request()
    entry = services.ledger.post_change(
        item_id,
        change_type,
        data.get(amount_key),
        measure=measure,
        warehouse_code=data.get("warehouse_code"),
        description=data.get("description"),
        reference=data.get("reference"),
        allow_reinitialize=bool(data.get("allow_reinitialize", False)),
    )
    return entry.to_dict()


@items_bp.post("/<int:item_id>/stock")
def adjust_stock_route(item_id: int):
    """Body: {"change_type": "STOCK_IN" | "STOCK_OUT" | "CREATE_STOCK", "quantity": 5}"""
    try:
        return jsonify(_post_change(item_id, Measure.STOCK, "quantity")), 201
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/<int:item_id>/price")
def change_price_route(item_id: int):
    """Body: {"change_type": "UPDATE_PRICE" | "CREATE_PRICE", "amount_cents": 250}"""
    try:
        return jsonify(_post_change(item_id, Measure.PRICE, "amount_cents")), 201
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to change price")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/ledger/<int:entry_id>")
def delete_ledger_entry_route(entry_id: int):
    """ADMIN: hard-delete a ledger entry and reindex the item's history."""
    try:
        services = services_for_request()
        snapshot = services.ledger.delete_entry(entry_id)
        return jsonify({
            "deleted": snapshot,
            "balance": services.ledger.balance_report(snapshot["item_id"], snapshot["warehouse_code"]),
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete ledger entry")
        return jsonify({"error": "Internal server error"}), 500
