# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/repairdesk/routes/auth.py
"""
Authentication and staff account API routes.

Login issues a bearer token; every other route here requires it. Account
administration (register, list, edit, deactivate) needs MANAGE_USERS.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..permissions import permissions_for
from ..services import auth_service, session_service
from ..services.auth_service import AccountDisabledError
from .responses import DOMAIN_ERRORS, domain_error, error_response

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _parse_bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Token must be sent as `Authorization: Bearer <token>` on protected routes.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")
    if not username or not password:
        return error_response("username and password required", 400)

    try:
        user = auth_service.authenticate(username, password)
        if user is None:
            current_app.logger.info("Failed login for %r from %s", username, request.remote_addr)
            return error_response("Invalid credentials", 401)

        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "user": user.to_dict(),
            "permissions": permissions_for(user.role),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200
    except AccountDisabledError as e:
        return error_response(str(e), 403)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return error_response("Internal server error", 500)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token, reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({"user": user.to_dict(), "permissions": permissions_for(user.role)}), 200


@auth_bp.patch("/change-password")
@require_auth
def change_password_route():
    """Changing the password signs the user out everywhere, this session included."""
    data = request.get_json(silent=True) or {}
    try:
        auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to change password")
        return error_response("Internal server error", 500)
    return jsonify({"message": "Password changed, please log in again"}), 200


@auth_bp.get("/technicians")
@require_auth
def technicians_route():
    try:
        technicians = auth_service.list_technicians()
    except Exception:
        current_app.logger.exception("Failed to list technicians")
        return error_response("Internal server error", 500)
    return jsonify({"technicians": [{"id": t.id, "name": t.name} for t in technicians]}), 200


@auth_bp.post("/register")
@require_auth
@require_permission("MANAGE_USERS")
def register_route():
    """Admin-only account creation; there is no self-registration."""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            name=data.get("name"),
            username=data.get("username"),
            password=data.get("password"),
            role=data.get("role"),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return error_response("Internal server error", 500)
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.get("/users")
@require_auth
@require_permission("MANAGE_USERS")
def list_users_route():
    try:
        users = auth_service.list_users(role=request.args.get("role"), is_active=_parse_bool_arg("is_active"))
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list users")
        return error_response("Internal server error", 500)
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200


@auth_bp.put("/users/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.update_user(user_id, data, acting_user=g.current_user)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update user %d", user_id)
        return error_response("Internal server error", 500)
    return jsonify({"user": user.to_dict()}), 200


@auth_bp.delete("/users/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def delete_user_route(user_id: int):
    """Deactivates the account and revokes its sessions; the row is kept for attribution."""
    try:
        user = auth_service.deactivate_user(user_id, acting_user=g.current_user)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate user %d", user_id)
        return error_response("Internal server error", 500)
    return jsonify({"user": user.to_dict(), "message": "User deactivated"}), 200
