"""
Account lockout state machine tests.

Verifies:
- 3 bad PINs -> 5 minute lockout with counters reset
- 3 consecutive lockouts -> permanent block, lockout_until cleared
- Time alone re-opens a lockout but never resets consecutive_lockouts
- Success and admin recovery fully reset the state
- Locked accounts refuse even the correct PIN
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from invictos.extensions import db
from invictos.models import Account, SecurityEvent
from invictos.services import concurrency, lockout_service
from invictos.services.entity_store import AccountNotFoundError
from invictos.services.lockout_service import (
    LockoutState,
    LoginOutcome,
    LOCKOUT_DURATION,
    MAX_FAILED_ATTEMPTS,
)


class Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    c = Clock(datetime(2025, 3, 10, 15, 0, 0))
    monkeypatch.setattr(lockout_service, "utcnow", c)
    return c


def _fail(account_id: str, times: int = 1):
    result = None
    for _ in range(times):
        result = lockout_service.attempt_login(account_id, "9999")
    return result


def _reload(account_id: str) -> Account:
    db.session.expire_all()
    return db.session.get(Account, account_id)


# =============================================================================
# TEMPORARY LOCKOUT
# =============================================================================


class TestTemporaryLockout:

    def test_record_failed_attempt_counts_up(self, admin, clock):
        account = lockout_service.record_failed_attempt("u1")
        assert account.failed_attempts == 1
        account = lockout_service.record_failed_attempt("u1")
        assert account.failed_attempts == 2
        assert lockout_service.lockout_state(account, clock.now) is LockoutState.OPEN

    def test_three_failures_lock_for_five_minutes(self, admin, clock):
        for _ in range(MAX_FAILED_ATTEMPTS):
            account = lockout_service.record_failed_attempt("u1")

        account = _reload("u1")
        assert lockout_service.lockout_state(account, clock.now) is LockoutState.TEMP_LOCKED
        assert account.lockout_until == clock.now + LOCKOUT_DURATION
        assert account.failed_attempts == 0
        assert account.consecutive_lockouts == 1
        assert account.is_permanently_blocked is False

    def test_record_failed_attempt_ignored_while_locked(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        until = _reload("u1").lockout_until
        clock.advance(seconds=30)

        for _ in range(MAX_FAILED_ATTEMPTS):
            lockout_service.record_failed_attempt("u1")

        account = _reload("u1")
        assert account.lockout_until == until
        assert account.failed_attempts == 0
        assert account.consecutive_lockouts == 1

    def test_record_failed_attempt_ignored_while_blocked(self, admin, clock):
        admin.is_permanently_blocked = True
        admin.consecutive_lockouts = 3
        db.session.commit()

        account = lockout_service.record_failed_attempt("u1")

        assert account.failed_attempts == 0
        assert account.consecutive_lockouts == 3
        assert db.session.query(SecurityEvent).filter_by(account_id="u1", event_type="LOGIN_FAILED").count() == 0

    def test_attempt_login_reports_remaining_attempts(self, admin, clock):
        first = _fail("u1")
        assert first.outcome is LoginOutcome.INVALID_PIN
        assert first.attempts_remaining == 2

        second = _fail("u1")
        assert second.outcome is LoginOutcome.INVALID_PIN
        assert second.attempts_remaining == 1

        third = _fail("u1")
        assert third.outcome is LoginOutcome.NOW_LOCKED
        assert third.remaining_seconds == 300

    def test_correct_pin_refused_while_locked(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(seconds=60)

        result = lockout_service.attempt_login("u1", "1234")

        assert result.outcome is LoginOutcome.TEMPORARILY_LOCKED
        assert result.remaining_seconds == 240
        account = _reload("u1")
        assert account.consecutive_lockouts == 1
        assert account.failed_attempts == 0
        assert account.last_login_at is None

    def test_locked_attempt_does_not_count_as_failure(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        until = _reload("u1").lockout_until

        result = _fail("u1")

        assert result.outcome is LoginOutcome.TEMPORARILY_LOCKED
        account = _reload("u1")
        assert account.lockout_until == until
        assert account.failed_attempts == 0

    def test_remaining_seconds_rounds_up(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(seconds=299, microseconds=500000)

        result = lockout_service.attempt_login("u1", "1234")

        assert result.outcome is LoginOutcome.TEMPORARILY_LOCKED
        assert result.remaining_seconds == 1

    def test_expiry_reopens_with_fresh_budget(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=5, seconds=1)

        result = _fail("u1")

        assert result.outcome is LoginOutcome.INVALID_PIN
        assert result.attempts_remaining == 2
        assert _reload("u1").consecutive_lockouts == 1


# =============================================================================
# PERMANENT BLOCK
# =============================================================================


class TestPermanentBlock:

    def _lock_cycle(self, clock):
        result = _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=6)
        return result

    def test_three_lockouts_block_permanently(self, admin, clock):
        assert self._lock_cycle(clock).outcome is LoginOutcome.NOW_LOCKED
        assert self._lock_cycle(clock).outcome is LoginOutcome.NOW_LOCKED
        result = _fail("u1", MAX_FAILED_ATTEMPTS)

        assert result.outcome is LoginOutcome.NOW_PERMANENTLY_BLOCKED
        account = _reload("u1")
        assert account.is_permanently_blocked is True
        assert account.lockout_until is None
        assert account.failed_attempts == 0
        assert account.consecutive_lockouts == 3

    def test_time_never_lifts_block(self, admin, clock):
        for _ in range(3):
            self._lock_cycle(clock)
        clock.advance(days=30)

        result = lockout_service.attempt_login("u1", "1234")

        assert result.outcome is LoginOutcome.PERMANENTLY_BLOCKED
        assert lockout_service.get_lockout_status("u1")["state"] == "PERMANENTLY_BLOCKED"

    def test_success_between_lockouts_resets_streak(self, admin, clock):
        self._lock_cycle(clock)
        self._lock_cycle(clock)
        assert lockout_service.attempt_login("u1", "1234").ok

        result = _fail("u1", MAX_FAILED_ATTEMPTS)

        assert result.outcome is LoginOutcome.NOW_LOCKED
        assert _reload("u1").consecutive_lockouts == 1

    def test_block_is_audited(self, admin, clock):
        for _ in range(3):
            self._lock_cycle(clock)

        types = [e.event_type for e in db.session.query(SecurityEvent).filter_by(account_id="u1").all()]
        assert types.count("ACCOUNT_LOCKED") == 2
        assert types.count("ACCOUNT_BLOCKED") == 1
        assert types.count("LOGIN_FAILED") == 9


# =============================================================================
# RESETS
# =============================================================================


class TestResets:

    def test_success_resets_everything(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=6)
        _fail("u1", 2)

        result = lockout_service.attempt_login("u1", "1234")

        assert result.outcome is LoginOutcome.SUCCESS
        account = _reload("u1")
        assert account.failed_attempts == 0
        assert account.lockout_until is None
        assert account.consecutive_lockouts == 0
        assert account.is_permanently_blocked is False
        assert account.last_login_at == clock.now

    def test_record_successful_login_resets(self, admin, clock):
        _fail("u1", 2)
        account = lockout_service.record_successful_login("u1")
        assert account.failed_attempts == 0
        assert account.consecutive_lockouts == 0

    def test_pin_whitespace_is_trimmed(self, admin, clock):
        assert lockout_service.attempt_login("u1", "  1234 ").outcome is LoginOutcome.SUCCESS

    @pytest.mark.parametrize("lockouts", [0, 1, 3])
    def test_admin_recover_from_any_state(self, admin, clock, lockouts):
        for _ in range(lockouts):
            _fail("u1", MAX_FAILED_ATTEMPTS)
            clock.advance(minutes=6)
        _fail("u1")

        account = lockout_service.admin_recover("u1", recovered_by="test")

        assert lockout_service.lockout_state(account, clock.now) is LockoutState.OPEN
        assert account.failed_attempts == 0
        assert account.lockout_until is None
        assert account.consecutive_lockouts == 0
        assert account.is_permanently_blocked is False

    def test_recovered_account_can_log_in(self, admin, clock):
        for _ in range(3):
            _fail("u1", MAX_FAILED_ATTEMPTS)
            clock.advance(minutes=6)

        lockout_service.admin_recover("u1")

        assert lockout_service.attempt_login("u1", "1234").ok


# =============================================================================
# LOOKUP FAILURES AND STATUS
# =============================================================================


class TestLookup:

    @pytest.mark.parametrize("call", [
        lambda: lockout_service.attempt_login("ghost", "1234"),
        lambda: lockout_service.record_failed_attempt("ghost"),
        lambda: lockout_service.record_successful_login("ghost"),
        lambda: lockout_service.admin_recover("ghost"),
        lambda: lockout_service.get_lockout_status("ghost"),
    ])
    def test_unknown_account_raises(self, db_session, clock, call):
        with pytest.raises(AccountNotFoundError):
            call()

    def test_deactivated_account_cannot_log_in(self, admin, seller, clock):
        seller.is_active = False
        db.session.commit()

        with pytest.raises(AccountNotFoundError):
            lockout_service.attempt_login("u2", "0000")

    def test_status_snapshot(self, admin, clock):
        _fail("u1", MAX_FAILED_ATTEMPTS)
        clock.advance(seconds=100)

        status = lockout_service.get_lockout_status("u1")

        assert status["state"] == "TEMP_LOCKED"
        assert status["seconds_until_unlock"] == 200
        assert status["consecutive_lockouts"] == 1
        assert status["attempts_remaining"] == 0

    def test_status_of_blocked_account(self, admin, clock):
        admin.is_permanently_blocked = True
        db.session.commit()

        status = lockout_service.get_lockout_status("u1")

        assert status["state"] == "PERMANENTLY_BLOCKED"
        assert status["attempts_remaining"] == 0
        assert status["seconds_until_unlock"] is None

    def test_status_of_open_account(self, admin, clock):
        _fail("u1")
        status = lockout_service.get_lockout_status("u1")
        assert status["state"] == "OPEN"
        assert status["failed_attempts"] == 1
        assert status["attempts_remaining"] == 2
        assert status["seconds_until_unlock"] is None


# =============================================================================
# CONCURRENT WRITERS
# =============================================================================


class TestConcurrentWriters:

    def test_stale_write_is_retried_on_fresh_counters(self, admin, clock, monkeypatch):
        calls = []
        real_verify = lockout_service.verify_pin

        def verify_while_another_register_fails(pin, pin_hash):
            # Between our load and our write, another session records a strike
            if not calls:
                with Session(db.engine) as other:
                    other.execute(
                        update(Account)
                        .where(Account.id == "u1")
                        .values(
                            failed_attempts=Account.failed_attempts + 1,
                            version_id=Account.version_id + 1,
                        )
                    )
                    other.commit()
            calls.append(pin)
            return real_verify(pin, pin_hash)

        monkeypatch.setattr(lockout_service, "verify_pin", verify_while_another_register_fails)

        result = _fail("u1")

        assert len(calls) == 2
        assert result.outcome is LoginOutcome.INVALID_PIN
        assert result.attempts_remaining == 1
        account = _reload("u1")
        assert account.failed_attempts == 2
        assert account.version_id == 3
        assert db.session.query(SecurityEvent).filter_by(account_id="u1", event_type="LOGIN_FAILED").count() == 1

    def test_retry_gives_up_after_last_attempt(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        calls = []

        def always_stale():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            concurrency.run_with_retry(always_stale, attempts=3)
        assert len(calls) == 3

    def test_retry_returns_first_success(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        outcomes = iter([StaleDataError("version mismatch"), "done"])

        def flaky():
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert concurrency.run_with_retry(flaky) == "done"
