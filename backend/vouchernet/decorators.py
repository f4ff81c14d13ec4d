# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def bearer_token() -> str | None:
    """Token from an 'Authorization: Bearer <token>' header, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def client_meta() -> dict:
    """Request origin fields attached to every security event."""
    return {
        "resource": request.path,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def require_auth(f):
    """
    Resolve the bearer token to a principal or answer 401.

    On success g.current_user and g.session_context are set for the view.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return wrapper


def require_permission(permission_code: str):
    """Gate a view on a role permission; stack below @require_auth."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user=user,
                    permission_code=permission_code,
                    **client_meta(),
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return wrapper
    return decorator


def deny_out_of_scope(entity_type: str, entity_id: int):
    """
    Log a scope denial and build the 404 response for it.

    Entities outside the principal's scope are reported as missing so ids of
    other franchisees cannot be probed.
    """
    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type="SCOPE_DENIED",
        success=False,
        action=request.method,
        reason=f"{entity_type} {entity_id} outside principal scope",
        **client_meta(),
    )
    return jsonify({"error": f"{entity_type.capitalize()} {entity_id} not found"}), 404
