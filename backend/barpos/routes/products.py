# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations are open to any operator
- Write operations require the ADMIN role
"""
from flask import Blueprint, request, jsonify, current_app

from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "price", "cost", "category_id", "unit_id", "barcode",
        "is_active", "product_type", "volume_per_dispense_ml", "barrel_id",
    },
    required_on_create={"name", "price"},
    extra_fields={"initial_quantity", "min_quantity", "max_quantity"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with their stock summary.

    Query params:
    - active: "1" to hide inactive products
    """
    include_inactive = request.args.get("active") != "1"
    return jsonify(products_service.list_products(include_inactive=include_inactive)), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": products_service.product_to_dict(product)}), 200


@products_bp.post("")
@require_auth
@require_role("ADMIN")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": products_service.product_to_dict(created)}), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role("ADMIN")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    if not updated:
        return jsonify({"error": "Product not found"}), 404

    return jsonify({"product": products_service.product_to_dict(updated)}), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("ADMIN")
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated so past sales keep their reference."""
    if not products_service.deactivate_product(product_id=product_id):
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"ok": True}), 200
