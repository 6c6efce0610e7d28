# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.audit_service import log_security_event
from .extensions import db


def _is_authenticated() -> bool:
    return hasattr(g, 'current_account')


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_account: The authenticated Account
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - Account deactivated or permanently blocked since login
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_account = context.account
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the authenticated account to be an administrator.

    Denials are written to the security event log.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Ensure @require_auth was called first
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        account = g.current_account
        if not account.is_admin:
            log_security_event(
                account_id=account.id,
                event_type="PERMISSION_DENIED",
                success=False,
                resource=request.path,
                reason=f"{request.method} requires admin role",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
            db.session.commit()
            return jsonify({"error": "Permission denied", "message": "Administrator role required"}), 403

        return f(*args, **kwargs)

    return decorated_function
