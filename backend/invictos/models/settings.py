from __future__ import annotations

from ..extensions import db
from invictos.time_utils import to_utc_z


GLOBAL_CONFIG_ID = "global"


class AppConfig(db.Model):
    """
    Process-wide settings (the `config` collection).

    Exactly one row exists, keyed GLOBAL_CONFIG_ID. commission_percentage is
    the default rate for accounts without an override.
    """
    __tablename__ = "app_config"

    id = db.Column(db.String(64), primary_key=True, default=GLOBAL_CONFIG_ID)
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    updated_by_account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "commission_percentage": float(self.commission_percentage),
            "updated_by_account_id": self.updated_by_account_id,
            "updated_at": to_utc_z(self.updated_at),
        }
