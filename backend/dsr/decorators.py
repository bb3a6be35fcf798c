# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .permissions import has_grant


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and g.current_user is not None


def require_auth(f):
    """
    Resolve the caller and set g.current_user.

    Authentication itself belongs to the identity provider in front of this
    service; it forwards the authenticated user id in the X-User-Id header.

    Returns 401 if:
    - No X-User-Id header, or not an integer
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid user id"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require that the caller's role holds a permission, conditionally or not.

    Context-dependent rules (same-day, own, status, amount ceilings) are
    checked again inside the workflow where the record is known.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not has_grant(user.role, permission_code):
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s permission=%s path=%s",
                    user.id, user.role, permission_code, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
