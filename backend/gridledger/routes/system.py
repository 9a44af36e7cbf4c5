# Overview: System endpoints; health check, acting-user status and sheet initialization.

import time
from flask import Blueprint, current_app, g, jsonify

from ..decorators import current_context, envelope_response, require_admin, with_user
from ..services import record_service
from ..time_utils import utcnow, to_utc_z


system_bp = Blueprint("system", __name__)


def check_grid_health() -> dict:
    """Check that the grid store answers a sheet listing."""
    start_time = time.time()
    try:
        sheets = current_context().grid.sheet_names()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": {"sheets": len(sheets)},
        }
    except Exception:
        current_app.logger.exception("Grid health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Grid storage error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: grid storage reachable
    - 503: grid storage unavailable
    """
    grid_health = check_grid_health()
    healthy = grid_health["status"] == "healthy"
    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"grid": grid_health},
    }
    return response, 200 if healthy else 503


@system_bp.get("/api/auth/status")
@with_user
def auth_status_route():
    return jsonify({"is_admin": g.is_admin, "email": g.user_email or "unknown"})


@system_bp.post("/api/system/init")
@with_user
@require_admin
def init_route():
    """Create every sheet with its header row and seed the journal configuration."""
    return envelope_response(record_service.initialize_sheets(current_context()))
