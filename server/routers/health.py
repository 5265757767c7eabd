"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Room and connection counts for monitoring
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None
_cleanup_task = None


def set_health_dependencies(room_manager=None, cleanup_task=None):
    """Set dependencies for health checks."""
    global _room_manager, _cleanup_task
    _room_manager = room_manager
    _cleanup_task = cleanup_task


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Returns 503 until the room manager is wired up, or if the periodic
    room cleanup has died.
    """
    checks = {}
    overall_healthy = True

    if _room_manager is not None:
        checks["rooms"] = {"status": "ok"}
    else:
        checks["rooms"] = {"status": "error", "message": "room manager not initialized"}
        overall_healthy = False

    if _cleanup_task is None:
        checks["cleanup"] = {"status": "not_configured"}
    elif _cleanup_task.done():
        logger.warning("Room cleanup task is not running")
        checks["cleanup"] = {"status": "error", "message": "cleanup task stopped"}
        overall_healthy = False
    else:
        checks["cleanup"] = {"status": "ok"}

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose room and connection counts for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        metrics_data.update(_room_manager.get_stats())

    return metrics_data
