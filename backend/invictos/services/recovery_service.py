"""
Administrator Recovery Service

WHY: A permanently blocked account can only be reopened by an administrator.
When the blocked account IS the administrator, a one-time code is delivered
out-of-band to the configured recovery address and must be typed back before
the lockout state is reset.

SECURITY FEATURES:
- Opaque token (32 bytes) identifies the request, stored as SHA-256
- Numeric code stored as a bcrypt hash, never in plain text
- Codes expire after RECOVERY_CODE_TTL_MINUTES
- Single use; MAX_CODE_ATTEMPTS wrong guesses burn the code
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Account, RecoveryCode
from invictos.time_utils import utcnow
from .audit_service import log_security_event
from .entity_store import AccountNotFoundError, store_errors
from .session_service import generate_token, hash_token
from . import lockout_service


logger = logging.getLogger(__name__)

CODE_DIGITS = 6
MAX_CODE_ATTEMPTS = 5


class RecoveryError(ValueError):
    """Recovery request or code rejected (expired, used, wrong, not allowed)."""


def _generate_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(CODE_DIGITS))


def _hash_code(code: str) -> str:
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    return bcrypt.hashpw(code.encode("utf-8"), salt).decode("utf-8")


def _deliver(destination: str, account: Account, code: str) -> None:
    """
    Deliver the recovery code.

    The store has no mail relay; delivery is the application log, which the
    owner reads on the back-office machine. Swap this out for a real sender.
    """
    logger.warning(
        "Recovery code for account %s (%s) sent to %s: %s",
        account.id, account.name, destination, code,
    )


def send_recovery_code(
    account_id: str,
    destination: str | None = None,
    *,
    requested_by: Account | None = None,
) -> str:
    """
    Issue a one-time recovery code for an account and return the opaque token.

    Without an authenticated administrator (requested_by), only admin
    accounts may self-recover. Any earlier unconsumed code for the account is
    invalidated.
    """
    with store_errors():
        account = db.session.get(Account, account_id)
    if account is None or not account.is_active:
        raise AccountNotFoundError(account_id)

    if requested_by is None or not requested_by.is_admin:
        if not account.is_admin:
            raise RecoveryError("Only administrators can self-recover; ask an administrator")

    destination = destination or current_app.config.get("RECOVERY_EMAIL")
    if not destination:
        raise RecoveryError("No recovery destination configured")

    now = utcnow()
    ttl = timedelta(minutes=int(current_app.config.get("RECOVERY_CODE_TTL_MINUTES", 15)))
    token = generate_token()
    code = _generate_code()

    with store_errors():
        db.session.query(RecoveryCode).filter(
            RecoveryCode.account_id == account.id,
            RecoveryCode.consumed_at.is_(None),
        ).update({"consumed_at": now}, synchronize_session=False)

        db.session.add(RecoveryCode(
            account_id=account.id,
            token_hash=hash_token(token),
            code_hash=_hash_code(code),
            destination=destination,
            attempts=0,
            created_at=now,
            expires_at=now + ttl,
            requested_by_account_id=requested_by.id if requested_by else None,
        ))
        log_security_event(
            account_id=account.id,
            event_type="RECOVERY_REQUESTED",
            success=True,
            reason=f"Code sent to {destination}",
        )
        db.session.commit()

    _deliver(destination, account, code)
    return token


def _active_code(token: str) -> RecoveryCode | None:
    if not token:
        return None
    record = db.session.query(RecoveryCode).filter_by(token_hash=hash_token(token)).first()
    if record is None or record.consumed_at is not None:
        return None
    if record.expires_at < utcnow() or record.attempts >= MAX_CODE_ATTEMPTS:
        return None
    return record


def verify_recovery_code(token: str, submitted_code: str) -> bool:
    """
    Check a submitted code without consuming it.

    Wrong guesses count against MAX_CODE_ATTEMPTS.
    """
    with store_errors():
        record = _active_code(token)
        if record is None:
            return False

        code = (submitted_code or "").strip()
        if code and bcrypt.checkpw(code.encode("utf-8"), record.code_hash.encode("utf-8")):
            return True

        record.attempts += 1
        log_security_event(
            account_id=record.account_id,
            event_type="RECOVERY_CODE_FAILED",
            success=False,
            reason=f"Attempt {record.attempts} of {MAX_CODE_ATTEMPTS}",
        )
        db.session.commit()
    return False


def complete_recovery(token: str, submitted_code: str) -> Account:
    """
    Verify the code, consume it, and reset the account's lockout state.

    Raises RecoveryError when the token is unknown, expired, used, or the
    code does not match.
    """
    if not verify_recovery_code(token, submitted_code):
        raise RecoveryError("Invalid or expired recovery code")

    with store_errors():
        record = _active_code(token)
        if record is None:
            raise RecoveryError("Invalid or expired recovery code")
        account_id = record.account_id
        requested_by = record.requested_by_account_id

        # Conditional update so a code can only be consumed once
        consumed = db.session.query(RecoveryCode).filter(
            RecoveryCode.id == record.id,
            RecoveryCode.consumed_at.is_(None),
        ).update({"consumed_at": utcnow()}, synchronize_session=False)
        db.session.commit()
    if consumed != 1:
        raise RecoveryError("Invalid or expired recovery code")

    return lockout_service.admin_recover(
        account_id,
        recovered_by=requested_by,
        reason="Recovery code verified",
    )
