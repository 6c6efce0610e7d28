"""
Administrator recovery code tests.

Verifies:
- Only admins self-recover; an admin may recover anyone
- Codes are single use and expire
- Wrong guesses are counted and eventually burn the code
- A verified code resets the lockout state
"""

from datetime import timedelta

import pytest

from invictos.extensions import db
from invictos.models import Account, RecoveryCode
from invictos.services import lockout_service, recovery_service
from invictos.services.entity_store import AccountNotFoundError
from invictos.services.recovery_service import RecoveryError, MAX_CODE_ATTEMPTS
from invictos.time_utils import utcnow


@pytest.fixture
def outbox(monkeypatch):
    """Capture delivered codes instead of logging them."""
    sent = []

    def _capture(destination, account, code):
        sent.append({"destination": destination, "account_id": account.id, "code": code})

    monkeypatch.setattr(recovery_service, "_deliver", _capture)
    return sent


def _block(account_id: str) -> None:
    account = db.session.get(Account, account_id)
    account.is_permanently_blocked = True
    account.consecutive_lockouts = 3
    db.session.commit()


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestRequest:

    def test_admin_self_recovery_sends_code(self, app, admin, outbox):
        token = recovery_service.send_recovery_code("u1")

        assert token
        assert len(outbox) == 1
        assert outbox[0]["destination"] == app.config["RECOVERY_EMAIL"]
        assert len(outbox[0]["code"]) == recovery_service.CODE_DIGITS
        record = db.session.query(RecoveryCode).one()
        assert record.code_hash != outbox[0]["code"]
        assert record.token_hash != token

    def test_seller_cannot_self_recover(self, seller, outbox):
        with pytest.raises(RecoveryError):
            recovery_service.send_recovery_code("u2")
        assert outbox == []

    def test_admin_can_recover_seller(self, admin, seller, outbox):
        recovery_service.send_recovery_code("u2", requested_by=admin)
        assert outbox[0]["account_id"] == "u2"

    def test_unknown_account(self, db_session, outbox):
        with pytest.raises(AccountNotFoundError):
            recovery_service.send_recovery_code("ghost")

    def test_new_request_invalidates_previous(self, admin, outbox):
        first = recovery_service.send_recovery_code("u1")
        recovery_service.send_recovery_code("u1")

        with pytest.raises(RecoveryError):
            recovery_service.complete_recovery(first, outbox[0]["code"])


class TestComplete:

    def test_resets_blocked_admin(self, admin, outbox):
        _block("u1")
        token = recovery_service.send_recovery_code("u1")

        account = recovery_service.complete_recovery(token, outbox[0]["code"])

        assert account.is_permanently_blocked is False
        assert account.consecutive_lockouts == 0
        assert lockout_service.attempt_login("u1", "1234").ok

    def test_single_use(self, admin, outbox):
        token = recovery_service.send_recovery_code("u1")
        recovery_service.complete_recovery(token, outbox[0]["code"])

        with pytest.raises(RecoveryError):
            recovery_service.complete_recovery(token, outbox[0]["code"])

    def test_wrong_code_counts(self, admin, outbox):
        _block("u1")
        token = recovery_service.send_recovery_code("u1")

        assert recovery_service.verify_recovery_code(token, _wrong(outbox[0]["code"])) is False

        assert db.session.query(RecoveryCode).one().attempts == 1
        assert db.session.get(Account, "u1").is_permanently_blocked is True

    def test_too_many_wrong_codes_burn_it(self, admin, outbox):
        token = recovery_service.send_recovery_code("u1")
        code = outbox[0]["code"]
        for _ in range(MAX_CODE_ATTEMPTS):
            recovery_service.verify_recovery_code(token, _wrong(code))

        with pytest.raises(RecoveryError):
            recovery_service.complete_recovery(token, code)

    def test_expired_code(self, app, admin, outbox, monkeypatch):
        token = recovery_service.send_recovery_code("u1")
        later = utcnow() + timedelta(minutes=app.config["RECOVERY_CODE_TTL_MINUTES"] + 1)
        monkeypatch.setattr(recovery_service, "utcnow", lambda: later)

        with pytest.raises(RecoveryError):
            recovery_service.complete_recovery(token, outbox[0]["code"])

    def test_unknown_token(self, admin, outbox):
        assert recovery_service.verify_recovery_code("not-a-token", "123456") is False
        with pytest.raises(RecoveryError):
            recovery_service.complete_recovery("", "123456")
