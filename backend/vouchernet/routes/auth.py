# Overview: Login, logout and principal lookup for bearer-token sessions.

"""
There is no self-registration: accounts for franchisor staff, franchisees
and merchant operators are provisioned with `flask users create`.
Every login attempt, good or bad, lands in security_events.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..decorators import require_auth, bearer_token, client_meta


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _principal_payload(user) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
    }


@auth_bp.post("/login")
def login_route():
    """Exchange email/password for a bearer token."""
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not email or not password:
            return jsonify({"error": "email and password required"}), 400

        meta = client_meta()
        user = auth_service.authenticate(email, password)
        if user is None:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                action="LOGIN",
                reason=f"Invalid credentials for {email}",
                **meta,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=meta["user_agent"],
            ip_address=meta["ip_address"],
        )
        permission_service.log_security_event(
            user_id=user.id,
            event_type="LOGIN_SUCCESS",
            success=True,
            action="LOGIN",
            **meta,
        )

        payload = _principal_payload(user)
        payload["token"] = token
        payload["expires_at"] = session.expires_at.isoformat() + "Z"
        return jsonify(payload), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(bearer_token(), reason="User logout")
        permission_service.log_security_event(
            user_id=g.current_user.id,
            event_type="LOGOUT",
            success=True,
            action="LOGOUT",
            **client_meta(),
        )
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Logout failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_principal_payload(g.current_user)), 200
