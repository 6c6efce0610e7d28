# Overview: Flask API routes for account administration; parses input and returns JSON responses.

"""
Account management routes (administrators only).

Accounts are never hard-deleted: DELETE deactivates, so sales keep their
seller attribution.
"""

from flask import Blueprint, request, jsonify, g

from ..services import auth_service, lockout_service, recovery_service
from ..services.audit_service import recent_events
from ..decorators import require_auth, require_admin


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.get("")
@require_auth
@require_admin
def list_accounts_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    accounts = auth_service.list_accounts(include_inactive=include_inactive)
    return jsonify({"items": [a.to_dict() for a in accounts]})


@accounts_bp.post("")
@require_auth
@require_admin
def create_account_route():
    """
    Create an account.

    Body: {name, pin, role?, commission_percentage?, id?}
    """
    data = dict(request.get_json(silent=True) or {})
    account_id = data.pop("id", None)
    account = auth_service.create_account(data, account_id=account_id)
    return jsonify(account.to_dict()), 201


@accounts_bp.get("/<account_id>")
@require_auth
@require_admin
def get_account_route(account_id: str):
    account = auth_service.get_account(account_id)
    data = account.to_dict()
    data["lockout"] = lockout_service.get_lockout_status(account_id)
    return jsonify(data)


@accounts_bp.patch("/<account_id>")
@require_auth
@require_admin
def update_account_route(account_id: str):
    """Update name, role, PIN or commission override (null clears it)."""
    account = auth_service.update_account(account_id, request.get_json(silent=True) or {})
    return jsonify(account.to_dict())


@accounts_bp.delete("/<account_id>")
@require_auth
@require_admin
def deactivate_account_route(account_id: str):
    account = auth_service.deactivate_account(account_id, acting_account_id=g.current_account.id)
    return jsonify(account.to_dict())


@accounts_bp.post("/<account_id>/recovery")
@require_auth
@require_admin
def request_recovery_route(account_id: str):
    """
    Start recovery of another account.

    The code still goes to the recovery address; the admin types it back via
    POST /api/auth/recovery/verify.
    """
    token = recovery_service.send_recovery_code(account_id, requested_by=g.current_account)
    return jsonify({"recovery_token": token, "message": "Recovery code sent"}), 202


@accounts_bp.get("/<account_id>/security-events")
@require_auth
@require_admin
def security_events_route(account_id: str):
    auth_service.get_account(account_id)
    limit = min(request.args.get("limit", 50, type=int), 500)
    return jsonify({"items": [e.to_dict() for e in recent_events(account_id, limit=limit)]})
