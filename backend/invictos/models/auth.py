from __future__ import annotations

import uuid

from ..extensions import db
from invictos.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
ROLES = (ROLE_ADMIN, ROLE_SELLER)


def new_id() -> str:
    return uuid.uuid4().hex


class Account(db.Model):
    """
    Seller or administrator account (the `users` collection).

    WHY: Every sale is attributed to the account that rang it up, and the
    account carries the seller's commission override.

    LOCKOUT STATE: failed_attempts, lockout_until, consecutive_lockouts and
    is_permanently_blocked are embedded here and only mutated through
    services/lockout_service.py. version_id guards concurrent writes.

    Accounts are deactivated, never hard-deleted, so historical sales keep
    resolving. Sales also carry a denormalized seller name.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_role_active", "role", "is_active"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_SELLER, index=True)

    # Bcrypt hashed PIN
    pin_hash = db.Column(db.String(255), nullable=False)

    # Per-account override; NULL means "use the global percentage"
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Embedded lockout state
    failed_attempts = db.Column(db.Integer, nullable=False, default=0)
    lockout_until = db.Column(db.DateTime(timezone=True), nullable=True)
    consecutive_lockouts = db.Column(db.Integer, nullable=False, default=0)
    is_permanently_blocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def security_dict(self) -> dict:
        return {
            "failed_attempts": self.failed_attempts,
            "lockout_until": to_utc_z(self.lockout_until) if self.lockout_until else None,
            "consecutive_lockouts": self.consecutive_lockouts,
            "is_permanently_blocked": self.is_permanently_blocked,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "commission_percentage": (
                float(self.commission_percentage) if self.commission_percentage is not None else None
            ),
            "is_active": self.is_active,
            "security": self.security_dict(),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
            "version_id": self.version_id,
        }


class SessionToken(db.Model):
    """
    Bearer session issued after a successful PIN login.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 12-hour absolute timeout
    - 2-hour idle timeout
    - Revoked on logout, deactivation, or recovery
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_account_active", "account_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    account = db.relationship("Account", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
