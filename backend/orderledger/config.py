# backend/orderledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a writer waits on the order / balance lock before giving up
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

    # strict | clamp | allow
    OVERPAYMENT_POLICY = os.environ.get("OVERPAYMENT_POLICY", "strict")

    # Backorder / consignment stores may ship into negative stock
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", False)

    DEFAULT_WAREHOUSE = os.environ.get("DEFAULT_WAREHOUSE", "MAIN")

    PAGE_SIZE_DEFAULT = 10
    PAGE_SIZE_MAX = int(os.environ.get("PAGE_SIZE_MAX", "100"))

    # Window (days) for the due-soon projection used by reminder jobs
    DUE_SOON_DAYS = int(os.environ.get("DUE_SOON_DAYS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
