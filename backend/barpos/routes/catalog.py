# Overview: Flask API routes for categories and units.

from flask import Blueprint, request, jsonify

from ..models import Category, Unit
from ..services import catalog_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

UNIT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "symbol", "description", "is_active"},
    required_on_create={"name", "symbol"},
)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.get("/categories")
@require_auth
def list_categories_route():
    items = catalog_service.list_categories()
    return jsonify({"items": items, "count": len(items)}), 200


@catalog_bp.post("/categories")
@require_auth
@require_role("ADMIN")
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = catalog_service.create_category(patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"category": category.to_dict()}), 201


@catalog_bp.put("/categories/<int:category_id>")
@require_auth
@require_role("ADMIN")
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = catalog_service.update_category(category_id, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    if category is None:
        return jsonify({"error": "Category not found"}), 404
    return jsonify({"category": category.to_dict()}), 200


@catalog_bp.get("/units")
@require_auth
def list_units_route():
    items = catalog_service.list_units()
    return jsonify({"items": items, "count": len(items)}), 200


@catalog_bp.post("/units")
@require_auth
@require_role("ADMIN")
def create_unit_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Unit, payload=payload, policy=UNIT_POLICY, partial=False)
        unit = catalog_service.create_unit(patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"unit": unit.to_dict()}), 201
