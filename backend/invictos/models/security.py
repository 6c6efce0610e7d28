from __future__ import annotations

from ..extensions import db
from invictos.time_utils import to_utc_z

class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track login failures, lockouts, permanent blocks and recoveries.
    Critical for telling an attack from a forgotten PIN.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_account_type", "account_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=True, index=True)  # Nullable for unknown accounts

    # Event classification
    event_type = db.Column(db.String(64), nullable=False, index=True)  # LOGIN_FAILED, ACCOUNT_LOCKED, ACCOUNT_RECOVERED, etc.
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/auth/login"

    # Event details
    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    # Client context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("Account", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class RecoveryCode(db.Model):
    """
    One-time recovery code sent out-of-band before an account is unlocked.

    Only hashes are stored: the opaque token handed to the client is SHA-256
    hashed, the short numeric code is bcrypt hashed.
    """
    __tablename__ = "recovery_codes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)
    code_hash = db.Column(db.String(255), nullable=False)
    destination = db.Column(db.String(255), nullable=False)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requested_by_account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=True)

    account = db.relationship("Account", foreign_keys=[account_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "destination": self.destination,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "consumed_at": to_utc_z(self.consumed_at) if self.consumed_at else None,
        }
