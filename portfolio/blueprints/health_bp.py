"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/live   — database reachability and open closure sessions
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from portfolio.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Readiness probe — always 200 if the app is running."""
    return jsonify({"status": "ok", "app": "Project Closure Platform"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    registry = current_app.extensions.get("closure_sessions")
    checks["closure_sessions"] = {"open": len(registry) if registry is not None else 0}

    status = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status
