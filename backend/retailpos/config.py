# backend/retailpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # How long a write transaction may wait on locks before it is aborted
    # with ConcurrencyConflictError. SQLite gets it as the busy timeout.
    LOCK_TIMEOUT_MS = int(os.environ.get("LOCK_TIMEOUT_MS", "5000"))

    LEDGER_PAGE_SIZE = int(os.environ.get("LEDGER_PAGE_SIZE", "50"))
    LEDGER_MAX_PAGE_SIZE = int(os.environ.get("LEDGER_MAX_PAGE_SIZE", "200"))

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "12"))

    # Printed on sale receipts
    STORE_NAME = os.environ.get("STORE_NAME", "Retail POS")
    STORE_ADDRESS = os.environ.get("STORE_ADDRESS", "")
    STORE_PHONE = os.environ.get("STORE_PHONE", "")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Low-stock report: variants at or below this on-hand are listed
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))

    IMPORT_MAX_ROWS = int(os.environ.get("IMPORT_MAX_ROWS", "5000"))
