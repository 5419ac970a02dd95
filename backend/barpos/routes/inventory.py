# Overview: Flask API routes for unit-count stock; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..models import Inventory
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_stock,
    ValidationError,
)
from ..decorators import require_auth, require_role

STOCK_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "min_quantity", "max_quantity"},
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    """
    List unit stock.

    Query params:
    - low: "1" to list only products at or below min_quantity
    """
    if request.args.get("low") == "1":
        items = inventory_service.list_low_stock()
    else:
        items = inventory_service.list_inventory()
    return jsonify({"items": items, "count": len(items)}), 200


@inventory_bp.get("/<int:product_id>")
@require_auth
def get_inventory_route(product_id: int):
    inv = inventory_service.get_inventory(product_id)
    if inv is None:
        return jsonify({"error": "Inventory not found"}), 404
    return jsonify({"inventory": inv.to_dict()}), 200


@inventory_bp.put("/<int:product_id>")
@require_auth
@require_role("ADMIN")
def set_stock_route(product_id: int):
    """Explicit stock adjustment (restock or count). Quantity cannot be negative."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Inventory, payload=payload, policy=STOCK_POLICY, partial=True)
        enforce_rules_stock(patch)
        if not patch:
            raise ValidationError("Nothing to update")
        inv = inventory_service.set_stock(product_id, patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"inventory": inv.to_dict()}), 200
