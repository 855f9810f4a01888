"""
Health check blueprint.

Endpoints:
    GET /api/health   (database and cache status)
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from hub.models import db
from hub.services import cache_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/health")


@health_bp.route("", methods=["GET"])
def health():
    """Liveness check with dependency status. 503 when the database is down."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Cache ────────────────────────────────────────────────────────
    checks["cache"] = cache_service.health_check()

    status_code = 200 if overall else 503
    return jsonify({
        "status": "ok" if overall else "degraded",
        "app": "NIA Excellence Hub",
        "checks": checks,
    }), status_code
