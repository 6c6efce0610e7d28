# Overview: Service-layer operations for accounts; encapsulates business logic and database work.

"""
Account and PIN Service

WHY: Every sale must be attributable to the seller who made it. Accounts are
created by an administrator and unlock the register with a short PIN.

SECURITY NOTES:
- PINs hashed with bcrypt (cost factor 12), never stored in plain text
- PIN comparison ignores surrounding whitespace, as typed on the keypad
- Accounts are deactivated, never deleted, so sales history keeps resolving
- Lockout state lives on the account but is owned by lockout_service.py
"""

import bcrypt

from flask import current_app

from ..extensions import db
from ..models import Account, ROLES
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    validate_payload,
    enforce_rules_percentage,
    validate_pin,
)
from . import entity_store
from .session_service import revoke_all_account_sessions


ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "role", "commission_percentage"},
    required_on_create={"name"},
)


def hash_pin(pin: str) -> str:
    """
    Hash a PIN using bcrypt (cost factor 12 unless BCRYPT_LOG_ROUNDS says otherwise).

    PIN format is validated before hashing.
    """
    pin = validate_pin(pin)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    hashed = bcrypt.hashpw(pin.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_pin(pin: str, pin_hash: str) -> bool:
    """
    Verify a submitted PIN against the stored bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    if not isinstance(pin, str) or not pin_hash:
        return False
    try:
        return bcrypt.checkpw(pin.strip().encode('utf-8'), pin_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in storage
        return False


def _clean_account_payload(payload: dict, partial: bool) -> dict:
    patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=partial)
    if "role" in patch and patch["role"] not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    enforce_rules_percentage(patch)
    return patch


def get_account(account_id: str) -> Account:
    return entity_store.get_by_id("users", account_id)


def list_accounts(include_inactive: bool = False) -> list[Account]:
    if include_inactive:
        return entity_store.get_all("users")
    return entity_store.get_all("users", is_active=True)


def create_account(payload: dict, account_id: str | None = None) -> Account:
    """
    Create an account from an admin-submitted payload.

    Payload: name (required), pin (required), role, commission_percentage.
    New accounts start OPEN with a zeroed lockout state.
    """
    payload = dict(payload or {})
    pin = payload.pop("pin", None)
    if pin is None:
        raise ValidationError("Missing required fields: pin")

    patch = _clean_account_payload(payload, partial=False)
    patch.setdefault("role", "seller")
    patch["pin_hash"] = hash_pin(pin)

    if account_id is not None and db.session.get(Account, account_id) is not None:
        raise ConflictError("Account id already exists")

    return entity_store.upsert("users", account_id, patch)


def update_account(account_id: str, payload: dict) -> Account:
    """
    Admin edit: name, role, commission override and PIN.

    Changing the commission override only affects future sales; frozen
    commission amounts on existing sales are never touched.
    """
    account = get_account(account_id)
    payload = dict(payload or {})
    pin = payload.pop("pin", None)

    patch = _clean_account_payload(payload, partial=True)
    if pin is not None:
        patch["pin_hash"] = hash_pin(pin)

    if patch.get("role") == "seller" and account.is_admin and _active_admin_count() <= 1:
        raise ConflictError("Cannot demote the last active administrator")

    account = entity_store.upsert("users", account_id, patch)
    if pin is not None:
        revoke_all_account_sessions(account_id, reason="PIN changed")
    return account


def set_commission_override(account_id: str, percentage) -> Account:
    """Set or clear (None) the account-level commission percentage."""
    return update_account(account_id, {"commission_percentage": percentage})


def deactivate_account(account_id: str, acting_account_id: str | None = None) -> Account:
    """
    Deactivate an account so it can no longer log in.

    Sales keep their seller_id and denormalized seller_name.
    """
    account = get_account(account_id)
    if acting_account_id is not None and account.id == acting_account_id:
        raise ConflictError("You cannot deactivate your own account")
    if account.is_admin and account.is_active and _active_admin_count() <= 1:
        raise ConflictError("Cannot deactivate the last active administrator")

    account = entity_store.upsert("users", account_id, {"is_active": False})
    revoke_all_account_sessions(account_id, reason="Account deactivated")
    return account


def _active_admin_count() -> int:
    return db.session.query(Account).filter(
        Account.role == "admin",
        Account.is_active.is_(True),
    ).count()

