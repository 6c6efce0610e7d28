"""
Account Lockout Service

WHY: A four-digit PIN is trivial to brute force on an unattended register.
Repeated failures lock the account for a while, and repeated lockouts block
it until an administrator recovers it.

STATE MACHINE (per account):
- OPEN: failed_attempts < 3 and no active lockout
- TEMP_LOCKED: lockout_until is in the future
- PERMANENTLY_BLOCKED: is_permanently_blocked is set

RULES:
- 3 consecutive bad PINs -> locked for 5 minutes, failed_attempts back to 0,
  consecutive_lockouts + 1
- 3 consecutive lockouts -> permanently blocked, lockout_until cleared
- A successful login or an admin recovery resets everything
- Waiting out a lockout re-opens the account but does NOT reset
  consecutive_lockouts; only success or recovery does

CONCURRENCY: every mutation loads the account with SELECT ... FOR UPDATE and
writes through the version_id column, retried on conflict, so two attempts
against the same account cannot lose an update.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from ..extensions import db
from ..models import Account
from invictos.time_utils import utcnow, to_utc_z
from .audit_service import log_security_event
from .auth_service import verify_pin
from .concurrency import lock_for_update, run_with_retry
from .entity_store import AccountNotFoundError, store_errors


logger = logging.getLogger(__name__)

# Configuration constants
MAX_FAILED_ATTEMPTS = 3  # Bad PINs before a temporary lockout
LOCKOUT_DURATION = timedelta(minutes=5)
MAX_CONSECUTIVE_LOCKOUTS = 3  # Temporary lockouts before a permanent block

LOGIN_RESOURCE = "/api/auth/login"


class LockoutState(str, Enum):
    OPEN = "OPEN"
    TEMP_LOCKED = "TEMP_LOCKED"
    PERMANENTLY_BLOCKED = "PERMANENTLY_BLOCKED"


class LoginOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_PIN = "INVALID_PIN"
    NOW_LOCKED = "NOW_LOCKED"
    NOW_PERMANENTLY_BLOCKED = "NOW_PERMANENTLY_BLOCKED"
    TEMPORARILY_LOCKED = "TEMPORARILY_LOCKED"
    PERMANENTLY_BLOCKED = "PERMANENTLY_BLOCKED"


@dataclass(frozen=True)
class LoginResult:
    """
    Outcome of attempt_login.

    Lockout outcomes are ordinary results, not exceptions: the register
    screen needs to show which state applies and, for a temporary lockout,
    a countdown.
    """
    outcome: LoginOutcome
    account: Account
    remaining_seconds: int | None = None
    attempts_remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is LoginOutcome.SUCCESS

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "account_id": self.account.id,
            "retry_after_seconds": self.remaining_seconds,
            "attempts_remaining": self.attempts_remaining,
        }


def lockout_state(account: Account, now: datetime | None = None) -> LockoutState:
    if account.is_permanently_blocked:
        return LockoutState.PERMANENTLY_BLOCKED
    now = now or utcnow()
    if account.lockout_until is not None and account.lockout_until > now:
        return LockoutState.TEMP_LOCKED
    return LockoutState.OPEN


def seconds_until_unlock(account: Account, now: datetime | None = None) -> int | None:
    """Whole seconds left on an active temporary lockout, rounded up."""
    now = now or utcnow()
    if account.is_permanently_blocked or account.lockout_until is None:
        return None
    remaining = (account.lockout_until - now).total_seconds()
    if remaining <= 0:
        return None
    return math.ceil(remaining)


def _load_for_update(account_id: str) -> Account:
    account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


def _reset(account: Account) -> None:
    account.failed_attempts = 0
    account.lockout_until = None
    account.consecutive_lockouts = 0
    account.is_permanently_blocked = False


def _apply_failed_attempt(account: Account, now: datetime) -> None:
    account.failed_attempts += 1
    if account.failed_attempts < MAX_FAILED_ATTEMPTS:
        return

    account.lockout_until = now + LOCKOUT_DURATION
    account.consecutive_lockouts += 1
    account.failed_attempts = 0

    if account.consecutive_lockouts >= MAX_CONSECUTIVE_LOCKOUTS:
        # Permanent block supersedes the temporary lockout
        account.is_permanently_blocked = True
        account.lockout_until = None


def _log_failure(account: Account, previous: LockoutState, now: datetime, ip_address, user_agent) -> None:
    log_security_event(
        account_id=account.id,
        event_type="LOGIN_FAILED",
        success=False,
        reason="Invalid PIN",
        resource=LOGIN_RESOURCE,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    state = lockout_state(account, now)
    if state is LockoutState.PERMANENTLY_BLOCKED and previous is not LockoutState.PERMANENTLY_BLOCKED:
        logger.warning("Account %s permanently blocked after %d lockouts", account.id, MAX_CONSECUTIVE_LOCKOUTS)
        log_security_event(
            account_id=account.id,
            event_type="ACCOUNT_BLOCKED",
            success=False,
            reason=f"{MAX_CONSECUTIVE_LOCKOUTS} consecutive lockouts",
            resource=LOGIN_RESOURCE,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    elif state is LockoutState.TEMP_LOCKED:
        logger.info("Account %s locked until %s", account.id, to_utc_z(account.lockout_until))
        log_security_event(
            account_id=account.id,
            event_type="ACCOUNT_LOCKED",
            success=False,
            reason=f"Lockout {account.consecutive_lockouts} of {MAX_CONSECUTIVE_LOCKOUTS}",
            resource=LOGIN_RESOURCE,
            ip_address=ip_address,
            user_agent=user_agent,
        )


def record_failed_attempt(
    account_id: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Account:
    """
    Count one bad PIN against the account and escalate if needed.

    Only an OPEN account takes strikes. A locked or blocked account is
    returned unchanged so the lockout window cannot be stretched.

    Returns the updated account so the caller can react without re-fetching.
    """
    def _op():
        now = utcnow()
        account = _load_for_update(account_id)
        previous = lockout_state(account, now)
        if previous is not LockoutState.OPEN:
            db.session.rollback()
            return account
        _apply_failed_attempt(account, now)
        _log_failure(account, previous, now, ip_address, user_agent)
        db.session.commit()
        return account

    with store_errors():
        return run_with_retry(_op)


def record_successful_login(
    account_id: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Account:
    """Full reset of the lockout state after a correct PIN."""
    def _op():
        account = _load_for_update(account_id)
        _reset(account)
        account.last_login_at = utcnow()
        log_security_event(
            account_id=account.id,
            event_type="LOGIN_SUCCESS",
            success=True,
            resource=LOGIN_RESOURCE,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.commit()
        return account

    with store_errors():
        return run_with_retry(_op)


def attempt_login(
    account_id: str,
    submitted_pin: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Check the lockout state, verify the PIN, and update the counters.

    Order of checks:
    1. Permanently blocked -> refused, no state change
    2. Temporarily locked -> refused with the remaining seconds, even if the
       PIN is correct, no state change
    3. PIN matches (whitespace trimmed) -> full reset
    4. Otherwise -> failed attempt, possibly escalating

    The whole sequence runs in one locked transaction per account.
    Deactivated accounts are treated as unknown.
    """
    def _op() -> LoginResult:
        now = utcnow()
        account = _load_for_update(account_id)
        if not account.is_active:
            raise AccountNotFoundError(account_id)

        state = lockout_state(account, now)
        if state is LockoutState.PERMANENTLY_BLOCKED:
            db.session.rollback()
            return LoginResult(LoginOutcome.PERMANENTLY_BLOCKED, account)
        if state is LockoutState.TEMP_LOCKED:
            remaining = seconds_until_unlock(account, now)
            db.session.rollback()
            return LoginResult(LoginOutcome.TEMPORARILY_LOCKED, account, remaining_seconds=remaining)

        if verify_pin(submitted_pin or "", account.pin_hash):
            _reset(account)
            account.last_login_at = now
            log_security_event(
                account_id=account.id,
                event_type="LOGIN_SUCCESS",
                success=True,
                resource=LOGIN_RESOURCE,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            db.session.commit()
            return LoginResult(LoginOutcome.SUCCESS, account)

        _apply_failed_attempt(account, now)
        _log_failure(account, state, now, ip_address, user_agent)
        db.session.commit()

        new_state = lockout_state(account, now)
        if new_state is LockoutState.PERMANENTLY_BLOCKED:
            return LoginResult(LoginOutcome.NOW_PERMANENTLY_BLOCKED, account)
        if new_state is LockoutState.TEMP_LOCKED:
            return LoginResult(
                LoginOutcome.NOW_LOCKED,
                account,
                remaining_seconds=seconds_until_unlock(account, now),
            )
        return LoginResult(
            LoginOutcome.INVALID_PIN,
            account,
            attempts_remaining=MAX_FAILED_ATTEMPTS - account.failed_attempts,
        )

    with store_errors():
        return run_with_retry(_op)


def admin_recover(
    account_id: str,
    *,
    recovered_by: str | None = None,
    reason: str = "Administrator recovery",
) -> Account:
    """
    Return the account to OPEN with zeroed counters, whatever its state.

    Callers must have completed secondary verification first
    (see recovery_service.complete_recovery).
    """
    def _op():
        account = _load_for_update(account_id)
        previous = lockout_state(account)
        _reset(account)
        log_security_event(
            account_id=account.id,
            event_type="ACCOUNT_RECOVERED",
            success=True,
            reason=f"{reason} (was {previous.value}, by {recovered_by or 'self'})",
        )
        db.session.commit()
        logger.info("Account %s recovered from %s", account.id, previous.value)
        return account

    with store_errors():
        return run_with_retry(_op)


def get_lockout_status(account_id: str) -> dict:
    """
    Read-only lockout snapshot for the login screen.

    Returns dict with:
    - state: OPEN / TEMP_LOCKED / PERMANENTLY_BLOCKED
    - failed_attempts, attempts_remaining (0 unless OPEN)
    - consecutive_lockouts
    - seconds_until_unlock: int | None
    """
    with store_errors():
        account = db.session.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)

    now = utcnow()
    state = lockout_state(account, now)
    # A locked account accepts no attempts at all
    remaining = MAX_FAILED_ATTEMPTS - account.failed_attempts if state is LockoutState.OPEN else 0
    return {
        "account_id": account.id,
        "state": state.value,
        "failed_attempts": account.failed_attempts,
        "attempts_remaining": remaining,
        "consecutive_lockouts": account.consecutive_lockouts,
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "max_consecutive_lockouts": MAX_CONSECUTIVE_LOCKOUTS,
        "seconds_until_unlock": seconds_until_unlock(account, now),
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() / 60),
    }
