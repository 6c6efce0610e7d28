# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
PIN Authentication API routes

SECURITY FEATURES:
- Login takes the account id explicitly (no "selected user" on the server)
- Lockout state machine: 3 bad PINs -> 5 minute lockout, 3 lockouts -> block
- Blocked administrators recover through a one-time out-of-band code
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import lockout_service
from ..services import recovery_service
from ..services.lockout_service import LoginOutcome
from ..services.entity_store import AccountNotFoundError, StoreUnavailableError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

_LOCKED_MESSAGES = {
    LoginOutcome.TEMPORARILY_LOCKED: "Account temporarily locked",
    LoginOutcome.NOW_LOCKED: "Too many failed attempts, account locked",
    LoginOutcome.PERMANENTLY_BLOCKED: "Account blocked, administrator recovery required",
    LoginOutcome.NOW_PERMANENTLY_BLOCKED: "Too many lockouts, account blocked until administrator recovery",
}


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


@auth_bp.get("/accounts")
def login_accounts_route():
    """
    Public account picker for the login screen.

    Only id, name, role and lockout state; never the PIN hash.
    """
    accounts = auth_service.list_accounts()
    return jsonify({
        "items": [
            {
                "id": a.id,
                "name": a.name,
                "role": a.role,
                "lockout_state": lockout_service.lockout_state(a).value,
            }
            for a in accounts
        ]
    })


@auth_bp.post("/login")
def login_route():
    """
    Verify a PIN for an account and create a session token.

    Responses:
    - 200: token + account
    - 401: wrong PIN, with attempts_remaining
    - 423: locked or blocked, with retry_after_seconds for temporary locks
    - 404: unknown or deactivated account
    """
    try:
        data = request.get_json(silent=True) or {}
        account_id = data.get("account_id")
        pin = data.get("pin")

        if not isinstance(account_id, str) or not isinstance(pin, str):
            return jsonify({"error": "account_id and pin required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        result = lockout_service.attempt_login(
            account_id,
            pin,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        if result.outcome is LoginOutcome.INVALID_PIN:
            return jsonify({
                "error": "Invalid PIN",
                **result.to_dict(),
            }), 401

        if result.outcome in _LOCKED_MESSAGES:
            body = {
                "error": _LOCKED_MESSAGES[result.outcome],
                "locked": True,
                "recovery_available": result.account.is_admin and result.outcome in (
                    LoginOutcome.PERMANENTLY_BLOCKED, LoginOutcome.NOW_PERMANENTLY_BLOCKED
                ),
                **result.to_dict(),
            }
            response = jsonify(body)
            response.status_code = 423
            if result.remaining_seconds:
                response.headers["Retry-After"] = str(result.remaining_seconds)
            return response

        session, token = session_service.create_session(
            account_id=result.account.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        return jsonify({
            "account": result.account.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "message": "Login successful",
        }), 200

    except AccountNotFoundError:
        return jsonify({"error": "Account not found"}), 404
    except StoreUnavailableError:
        raise
    except Exception:
        current_app.logger.exception("Failed to login account")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/lockout-status/<account_id>")
def lockout_status_route(account_id: str):
    """
    Lockout status for the login screen countdown.

    Public, read-only.
    """
    return jsonify(lockout_service.get_lockout_status(account_id))


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    token = _bearer_token()
    if not token:
        return jsonify({"error": "Authorization header required"}), 401

    if not session_service.revoke_session(token, reason="Logout"):
        return jsonify({"error": "Invalid or expired token"}), 401

    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"account": g.current_account.to_dict()})


@auth_bp.post("/recovery/request")
def recovery_request_route():
    """
    Send a one-time recovery code for a blocked account.

    Unauthenticated callers may only recover administrator accounts. An
    authenticated administrator may request a code for any account.
    """
    data = request.get_json(silent=True) or {}
    account_id = data.get("account_id")
    if not isinstance(account_id, str) or not account_id:
        return jsonify({"error": "account_id required"}), 400

    requested_by = None
    token = _bearer_token()
    if token:
        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401
        requested_by = context.account

    recovery_token = recovery_service.send_recovery_code(account_id, requested_by=requested_by)
    return jsonify({
        "recovery_token": recovery_token,
        "message": "Recovery code sent",
    }), 202


@auth_bp.post("/recovery/verify")
def recovery_verify_route():
    """Verify a recovery code and reset the account's lockout state."""
    data = request.get_json(silent=True) or {}
    recovery_token = data.get("recovery_token")
    code = data.get("code")
    if not isinstance(recovery_token, str) or not isinstance(code, str):
        return jsonify({"error": "recovery_token and code required"}), 400

    account = recovery_service.complete_recovery(recovery_token, code)
    return jsonify({
        "account": account.to_dict(),
        "message": "Account recovered",
    }), 200
