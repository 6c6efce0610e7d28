"""
PIN login, lockout and recovery over HTTP.
"""

import pytest

from invictos.extensions import db
from invictos.models import Account
from invictos.services import recovery_service


def _login(client, account_id, pin):
    return client.post("/api/auth/login", json={"account_id": account_id, "pin": pin})


class TestLogin:

    def test_success_returns_token(self, client, admin):
        resp = _login(client, "u1", "1234")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["account"]["id"] == "u1"
        assert "pin_hash" not in body["account"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.get_json()["account"]["role"] == "admin"

    def test_wrong_pin(self, client, admin):
        resp = _login(client, "u1", "9999")

        assert resp.status_code == 401
        body = resp.get_json()
        assert body["outcome"] == "INVALID_PIN"
        assert body["attempts_remaining"] == 2

    def test_third_failure_locks(self, client, admin):
        _login(client, "u1", "9999")
        _login(client, "u1", "9999")
        resp = _login(client, "u1", "9999")

        assert resp.status_code == 423
        body = resp.get_json()
        assert body["outcome"] == "NOW_LOCKED"
        assert body["locked"] is True
        assert 0 < body["retry_after_seconds"] <= 300
        assert resp.headers["Retry-After"] == str(body["retry_after_seconds"])

    def test_correct_pin_while_locked(self, client, admin):
        for _ in range(3):
            _login(client, "u1", "9999")

        resp = _login(client, "u1", "1234")

        assert resp.status_code == 423
        assert resp.get_json()["outcome"] == "TEMPORARILY_LOCKED"

    def test_blocked_admin_is_offered_recovery(self, client, admin):
        admin.is_permanently_blocked = True
        db.session.commit()

        resp = _login(client, "u1", "1234")

        assert resp.status_code == 423
        body = resp.get_json()
        assert body["outcome"] == "PERMANENTLY_BLOCKED"
        assert body["recovery_available"] is True
        assert "Retry-After" not in resp.headers

    def test_blocked_seller_is_not_offered_recovery(self, client, seller):
        seller.is_permanently_blocked = True
        db.session.commit()

        body = _login(client, "u2", "0000").get_json()
        assert body["recovery_available"] is False

    def test_unknown_account(self, client, db_session):
        assert _login(client, "ghost", "1234").status_code == 404

    @pytest.mark.parametrize("payload", [{}, {"account_id": "u1"}, {"account_id": "u1", "pin": 1234}])
    def test_missing_fields(self, client, admin, payload):
        assert client.post("/api/auth/login", json=payload).status_code == 400

    def test_logout_revokes(self, client, admin):
        token = _login(client, "u1", "1234").get_json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


class TestLoginScreen:

    def test_account_picker(self, client, admin, seller):
        items = client.get("/api/auth/accounts").get_json()["items"]
        assert {i["id"] for i in items} == {"u1", "u2"}
        assert all(set(i) == {"id", "name", "role", "lockout_state"} for i in items)

    def test_lockout_status(self, client, admin):
        _login(client, "u1", "9999")
        body = client.get("/api/auth/lockout-status/u1").get_json()
        assert body["state"] == "OPEN"
        assert body["attempts_remaining"] == 2

    def test_lockout_status_unknown(self, client, db_session):
        assert client.get("/api/auth/lockout-status/ghost").status_code == 404


class TestRecovery:

    @pytest.fixture
    def outbox(self, monkeypatch):
        sent = []
        monkeypatch.setattr(recovery_service, "_deliver", lambda destination, account, code: sent.append(code))
        return sent

    def test_blocked_admin_recovers_with_code(self, client, admin, outbox):
        admin.is_permanently_blocked = True
        db.session.commit()

        resp = client.post("/api/auth/recovery/request", json={"account_id": "u1"})
        assert resp.status_code == 202
        token = resp.get_json()["recovery_token"]

        resp = client.post("/api/auth/recovery/verify", json={"recovery_token": token, "code": outbox[0]})
        assert resp.status_code == 200
        assert resp.get_json()["account"]["security"]["is_permanently_blocked"] is False

        assert _login(client, "u1", "1234").status_code == 200

    def test_wrong_code(self, client, admin, outbox):
        token = client.post("/api/auth/recovery/request", json={"account_id": "u1"}).get_json()["recovery_token"]
        wrong = "000000" if outbox[0] != "000000" else "111111"

        resp = client.post("/api/auth/recovery/verify", json={"recovery_token": token, "code": wrong})
        assert resp.status_code == 400

    def test_seller_needs_an_admin(self, client, seller, outbox):
        resp = client.post("/api/auth/recovery/request", json={"account_id": "u2"})
        assert resp.status_code == 400
        assert outbox == []

    def test_admin_recovers_seller(self, client, admin_headers, seller, outbox):
        seller.is_permanently_blocked = True
        db.session.commit()

        resp = client.post("/api/accounts/u2/recovery", headers=admin_headers)
        assert resp.status_code == 202
        token = resp.get_json()["recovery_token"]

        client.post("/api/auth/recovery/verify", json={"recovery_token": token, "code": outbox[0]})

        db.session.expire_all()
        assert db.session.get(Account, "u2").is_permanently_blocked is False
