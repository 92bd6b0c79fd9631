"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Session and connection counts for monitoring
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

from game import GamePhase

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_registry = None
_hub = None


def set_health_dependencies(registry=None, hub=None):
    """Set dependencies for health checks."""
    global _registry, _hub
    _registry = registry
    _hub = hub


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

    Returns 503 until the session registry and connection hub are wired up.
    """
    checks = {
        "registry": {"status": "ok" if _registry is not None else "not_configured"},
        "transport": {"status": "ok" if _hub is not None else "not_configured"},
    }
    ready = _registry is not None and _hub is not None

    return Response(
        content=json.dumps({
            "status": "ok" if ready else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if ready else 503,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose session and connection counts for dashboards."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _registry is not None:
        sessions = list(_registry.sessions.values())
        metrics_data.update({
            "active_sessions": len(sessions),
            "waiting_sessions": sum(1 for s in sessions if s.game.phase == GamePhase.WAITING),
            "games_in_progress": sum(
                1 for s in sessions
                if s.game.phase in (GamePhase.SELECT_CARD, GamePhase.DRAW_CARD)
            ),
            "connected_players": sum(len(s.connected_players()) for s in sessions),
            "disconnected_players": sum(
                len(s.players) - len(s.connected_players()) for s in sessions
            ),
        })

    if _hub is not None:
        metrics_data["live_connections"] = len(_hub.connections)

    return metrics_data
