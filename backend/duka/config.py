# backend/duka/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/duka.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///duka.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pricing / loyalty
    DISCOUNT_THRESHOLD_DEFAULT = int(os.environ.get("DISCOUNT_THRESHOLD_DEFAULT", "7"))
    PHONE_COUNTRY_CODE = os.environ.get("PHONE_COUNTRY_CODE", "254")

    # When True, a failed ledger append aborts the operation it documents
    INVENTORY_LEDGER_STRICT = _env_bool("INVENTORY_LEDGER_STRICT", False)

    CHECKOUT_RETRY_ATTEMPTS = int(os.environ.get("CHECKOUT_RETRY_ATTEMPTS", "3"))

    # Recipient for low-stock alerts
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL")
