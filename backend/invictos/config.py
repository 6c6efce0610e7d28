# backend/invictos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///invictos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Local calendar used for today/week/month/year report ranges
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "America/Argentina/Buenos_Aires")

    # Where administrator recovery codes are delivered
    RECOVERY_EMAIL = os.environ.get("RECOVERY_EMAIL", "admin@invictos.local")
    RECOVERY_CODE_TTL_MINUTES = int(os.environ.get("RECOVERY_CODE_TTL_MINUTES", "15"))

    # Products at or below this stock count are reported as low stock
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))

    # Global commission percentage used when the config row is first created
    DEFAULT_COMMISSION_PERCENTAGE = os.environ.get("DEFAULT_COMMISSION_PERCENTAGE", "5")

    # bcrypt cost factor for PINs and recovery codes
    BCRYPT_LOG_ROUNDS = int(os.environ.get("BCRYPT_LOG_ROUNDS", "12"))
