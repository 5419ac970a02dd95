# Overview: Flask API routes for barrels; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import barrel_service
from ..services.barrel_service import BarrelError
from ..validation import ValidationError, parse_int
from ..decorators import require_auth, require_role


barrels_bp = Blueprint("barrels", __name__, url_prefix="/api/barrels")


@barrels_bp.get("")
@require_auth
def list_barrels_route():
    """
    Query params:
    - status: ACTIVE | MAINTENANCE | CLOSED
    """
    try:
        items = barrel_service.list_barrels(status=request.args.get("status"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": items, "count": len(items)}), 200


@barrels_bp.get("/<int:barrel_id>")
@require_auth
def get_barrel_route(barrel_id: int):
    barrel = barrel_service.get_barrel(barrel_id)
    if barrel is None:
        return jsonify({"error": "Barrel not found"}), 404
    return jsonify({
        "barrel": barrel.to_dict(),
        "movements": barrel_service.list_movements(barrel_id),
    }), 200


@barrels_bp.post("")
@require_auth
@require_role("ADMIN")
def create_barrel_route():
    payload = request.get_json(silent=True) or {}

    try:
        volume_total_ml = parse_int(payload.get("volume_total_ml"), "volume_total_ml")
        min_residue_ml = payload.get("min_residue_ml")
        if min_residue_ml is not None:
            min_residue_ml = parse_int(min_residue_ml, "min_residue_ml")
        barrel = barrel_service.create_barrel(
            name=str(payload.get("name") or ""),
            volume_total_ml=volume_total_ml,
            min_residue_ml=min_residue_ml,
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"barrel": barrel.to_dict()}), 201


@barrels_bp.post("/<int:barrel_id>/adjust")
@require_auth
@require_role("ADMIN")
def adjust_route(barrel_id: int):
    """
    Body: {"volume_available_ml": int, "reason": str (optional)}
    """
    payload = request.get_json(silent=True) or {}

    try:
        volume = parse_int(payload.get("volume_available_ml"), "volume_available_ml")
        barrel = barrel_service.adjust_volume(
            barrel_id,
            volume,
            reason=str(payload.get("reason") or ""),
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except BarrelError as e:
        if e.details.get("status") is None:
            return jsonify({"error": str(e)}), 404
        return jsonify({"error": str(e), "details": e.details}), 400

    return jsonify({"barrel": barrel.to_dict()}), 200


def _transition_route(action, barrel_id: int):
    try:
        barrel = action(barrel_id, user_id=g.current_user.id)
    except BarrelError as e:
        if e.details.get("status") is None:
            return jsonify({"error": str(e)}), 404
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"barrel": barrel.to_dict()}), 200


@barrels_bp.post("/<int:barrel_id>/maintenance")
@require_auth
@require_role("ADMIN")
def maintenance_route(barrel_id: int):
    return _transition_route(barrel_service.set_maintenance, barrel_id)


@barrels_bp.post("/<int:barrel_id>/reactivate")
@require_auth
@require_role("ADMIN")
def reactivate_route(barrel_id: int):
    return _transition_route(barrel_service.reactivate, barrel_id)


@barrels_bp.post("/<int:barrel_id>/close")
@require_auth
@require_role("ADMIN")
def close_route(barrel_id: int):
    """Close the barrel for good, recording the residual volume."""
    return _transition_route(barrel_service.close_barrel, barrel_id)
