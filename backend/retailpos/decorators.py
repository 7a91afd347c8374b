# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import DomainError
from .models import UserRole
from .services import session_service

ALL_ROLES = (UserRole.OWNER, UserRole.MANAGER, UserRole.EMPLOYEE)
OWNER_ONLY = (UserRole.OWNER,)
REPORTING_ROLES = (UserRole.OWNER, UserRole.MANAGER)


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user and g.session_context. Returns 401 when the
    Authorization header is missing, or the token is invalid, expired,
    revoked or belongs to a deactivated user, and 409 when the session
    cannot be touched because the database is locked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        try:
            context = session_service.validate_session(token)
        except DomainError as e:
            return jsonify(e.to_dict()), e.status_code

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles):
    """Require the authenticated user to hold one of the given roles."""
    allowed = {UserRole(role) for role in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if user.role not in allowed:
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s path=%s",
                    user.id, user.role.value, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(role.value for role in allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user else None
