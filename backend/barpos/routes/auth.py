# Overview: Flask API routes for login, logout and user management.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, session_service
from ..services.auth_service import AuthError, PasswordValidationError
from ..validation import ConflictError
from ..decorators import require_auth, require_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
users_bp = Blueprint("users", __name__, url_prefix="/api/users")

USER_UPDATE_FIELDS = {"name", "email", "password", "role", "is_active"}


@auth_bp.post("/login")
def login_route():
    """
    Exchange email + password for a bearer token.

    Body: {"email", "password"}
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "email and password required"}), 400

    try:
        user = auth_service.authenticate(email, password)
    except AuthError as e:
        return jsonify({"error": str(e)}), 401

    session, token = session_service.create_session(user.id)
    return jsonify({
        "token": token,
        "expires_at": session.expires_at.isoformat() + "Z",
        "user": user.to_dict(),
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"ok": True}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@users_bp.get("")
@require_auth
@require_role("ADMIN")
def list_users_route():
    items = auth_service.list_users()
    return jsonify({"items": items, "count": len(items)}), 200


@users_bp.post("")
@require_auth
@require_role("ADMIN")
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role") or "USER",
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict()}), 201


@users_bp.put("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    unknown = sorted(set(data) - USER_UPDATE_FIELDS)
    if unknown:
        return jsonify({"error": f"Field not allowed: {', '.join(unknown)}"}), 400

    if user_id == g.current_user.id and (data.get("is_active") is False or data.get("role", "ADMIN") != "ADMIN"):
        return jsonify({"error": "Cannot demote or deactivate yourself"}), 400

    try:
        user = auth_service.update_user(user_id, data)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    if user is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user.to_dict()}), 200


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def delete_user_route(user_id: int):
    try:
        deleted = auth_service.delete_user(user_id, actor_id=g.current_user.id)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    if not deleted:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"ok": True}), 200
