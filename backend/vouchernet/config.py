# backend/vouchernet/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vouchernet.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vouchernet.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway (Asaas-compatible REST API)
    GATEWAY_API_KEY = os.environ.get("GATEWAY_API_KEY")
    GATEWAY_SANDBOX = _env_bool("GATEWAY_SANDBOX", True)
    GATEWAY_BASE_URL = os.environ.get("GATEWAY_BASE_URL")
    GATEWAY_WEBHOOK_SECRET = os.environ.get("GATEWAY_WEBHOOK_SECRET")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))

    # Merchant activation billing
    ACTIVATION_FEE_CENTS = int(os.environ.get("ACTIVATION_FEE_CENTS", "15000"))
    ACTIVATION_CHARGE_DUE_DAYS = int(os.environ.get("ACTIVATION_CHARGE_DUE_DAYS", "30"))

    # Bearer sessions
    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_MINUTES = int(os.environ.get("SESSION_IDLE_TIMEOUT_MINUTES", "120"))
