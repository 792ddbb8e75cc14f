# backend/labtrace/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/labtrace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///labtrace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Invoicing defaults (overridable per dentist / per invoice)
    DEFAULT_TAX_RATE = Decimal(os.environ.get("DEFAULT_TAX_RATE", "22.00"))
    DEFAULT_PAYMENT_TERMS_DAYS = int(os.environ.get("DEFAULT_PAYMENT_TERMS_DAYS", "30"))

    # Material alerting
    LOW_STOCK_THRESHOLD = Decimal(os.environ.get("LOW_STOCK_THRESHOLD", "20"))
    EXPIRY_ALERT_DAYS = int(os.environ.get("EXPIRY_ALERT_DAYS", "30"))

    # MDR retention windows for generated artifacts
    ANNEX_RETENTION_YEARS = 15
    INVOICE_RETENTION_YEARS = 10
    DOCUMENTS_DIR = os.environ.get("DOCUMENTS_DIR", "documents")

    # Outbound mail relay (optional; no sender is registered when unset)
    EMAIL_RELAY_URL = os.environ.get("EMAIL_RELAY_URL")
    EMAIL_RELAY_TIMEOUT = float(os.environ.get("EMAIL_RELAY_TIMEOUT", "10"))

    # Browser origins allowed to call the API, comma separated (none by default)
    CORS_ORIGINS = [
        origin.strip() for origin in os.environ.get("CORS_ORIGINS", "").split(",") if origin.strip()
    ]
