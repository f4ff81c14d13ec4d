# backend/vouchernet/routes/system.py
"""
Liveness probe for load balancers and the ops dashboard.

The database is queried; the payment gateway is only checked for
configuration, never called.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Charge, ChargeStatus, Voucher
from ..services.gateway_client import get_gateway
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)

# Worst status wins.
_SEVERITY = {"healthy": 0, "degraded": 1, "unhealthy": 2}


def _ms_since(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def check_database_health() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "vouchers": db.session.query(Voucher).count(),
            "pending_charges": db.session.query(Charge).filter_by(status=ChargeStatus.PENDING).count(),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": _ms_since(started), "error": "Database error"}

    return {"status": "healthy", "latency_ms": _ms_since(started), "details": details}


def check_gateway_config() -> dict:
    config = get_gateway().config
    if not config.is_configured:
        return {
            "status": "degraded",
            "warning": "GATEWAY_API_KEY not set; charges are created without a gateway link",
        }
    return {
        "status": "healthy",
        "details": {"sandbox": config.sandbox, "webhook_signature": bool(config.webhook_secret)},
    }


@system_bp.get("/health")
def health():
    """200 while operational (healthy or degraded), 503 when the database is down."""
    started = time.perf_counter()
    checks = {
        "database": check_database_health(),
        "gateway": check_gateway_config(),
    }
    overall = max((c["status"] for c in checks.values()), key=_SEVERITY.__getitem__)

    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _ms_since(started),
        "checks": checks,
    }, 503 if overall == "unhealthy" else 200
