# Overview: Flask API routes for suppliers and customers; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import OrderLedgerError, ValidationError
from ..services.container import services_for_request


def make_party_blueprint(slug: str, attr: str) -> Blueprint:
    """CRUD-lite for one counterparty table; attr names the registry on Services."""
    bp = Blueprint(slug, __name__, url_prefix=f"/api/{slug}")
    label = slug[:-1]

    def registry():
        return getattr(services_for_request(), attr)

    def body() -> dict:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        return data

    @bp.get("")
    def list_parties_route():
        try:
            result = registry().list(
                page=request.args.get("page", 1, type=int),
                limit=request.args.get("limit", current_app.config.get("PAGE_SIZE_DEFAULT", 10), type=int),
                search=request.args.get("search"),
                include_deleted=(request.args.get("include_deleted") or "").lower() in {"1", "true", "yes"},
                max_limit=current_app.config.get("PAGE_SIZE_MAX", 100),
            )
            return jsonify(result), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to list %ss", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.post("")
    def create_party_route():
        try:
            party = registry().create(body())
            return jsonify(party.to_dict()), 201
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to create %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.get("/<int:party_id>")
    def get_party_route(party_id: int):
        try:
            return jsonify(registry().get(party_id).to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to load %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.put("/<int:party_id>")
    def update_party_route(party_id: int):
        try:
            return jsonify(registry().update(party_id, body()).to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to update %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.delete("/<int:party_id>")
    def delete_party_route(party_id: int):
        try:
            return jsonify(registry().soft_delete(party_id).to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to delete %s", label)
            return jsonify({"error": "Internal server error"}), 500

    @bp.post("/<int:party_id>/restore")
    def restore_party_route(party_id: int):
        try:
            return jsonify(registry().restore(party_id).to_dict()), 200
        except OrderLedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception:
            current_app.logger.exception("Failed to restore %s", label)
            return jsonify({"error": "Internal server error"}), 500

    return bp


suppliers_bp = make_party_blueprint("suppliers", "suppliers")
customers_bp = make_party_blueprint("customers", "customers")
