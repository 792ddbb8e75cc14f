# Overview: Request and capability decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import Forbidden, Unauthorized
from .services import permission_service


def _is_authenticated() -> bool:
    return getattr(g, "current_user", None) is not None


def require_auth(f):
    """
    Require an upstream identity and establish the acting user.

    The gateway in front of the API authenticates the caller and forwards:
    - X-User-Id:   integer user id
    - X-User-Role: ADMIN | TECHNICIAN | QC_INSPECTOR | INVOICING

    Sets g.current_user to a permission_service.Actor.

    SECURITY: Returns 401 if either header is missing or malformed, or the
    role is not one of the closed set.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            actor = permission_service.resolve_actor(
                request.headers.get("X-User-Id"),
                request.headers.get("X-User-Role"),
            )
        except Unauthorized as e:
            return jsonify({"error": str(e)}), 401

        g.current_user = actor
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability_code: str):
    """
    Require a capability from the static role table.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_capability(
                    g.current_user,
                    capability_code,
                    resource=request.path,
                )
            except Forbidden as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_capability": capability_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
