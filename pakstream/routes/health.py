"""
PakStream Health Check Routes
Liveness summary and detailed component status
"""
from fastapi import APIRouter, Request
from datetime import datetime
from pathlib import Path
import sys
import psutil
from typing import Dict, Any

from sqlalchemy import text

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = datetime.utcnow()

VERSION = "1.0.0"


def get_uptime() -> str:
    """Get uptime as human-readable string"""
    delta = datetime.utcnow() - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(session_factory) -> Dict[str, Any]:
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_storage(media_root: str) -> Dict[str, Any]:
    """Disk usage of the media root"""
    try:
        media_path = Path(media_root)
        if not media_path.exists():
            return {
                "status": "unhealthy",
                "error": f"Media root does not exist: {media_root}",
            }

        usage = psutil.disk_usage(str(media_path))
        free_percent = usage.free / usage.total * 100
        status = "healthy" if free_percent > 10 else "warning" if free_percent > 5 else "critical"

        return {
            "status": status,
            "path": media_root,
            "total_gb": round(usage.total / (1024**3), 2),
            "free_gb": round(usage.free / (1024**3), 2),
            "free_percent": round(free_percent, 1),
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_system() -> Dict[str, Any]:
    try:
        memory = psutil.virtual_memory()
        return {
            "status": "healthy" if memory.percent < 90 else "warning",
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_percent": memory.percent,
            "memory_available_gb": round(memory.available / (1024**3), 2),
            "python_version": sys.version.split()[0],
        }
    except Exception as e:
        return {"status": "unknown", "error": str(e)}


# ============================================================
# ROUTES
# ============================================================

@router.get("")
async def health_check(request: Request):
    """Health check endpoint for load balancers and monitoring."""
    settings = request.app.state.settings
    return {
        "ok": True,
        "status": "healthy",
        "environment": settings.environment,
        "version": VERSION,
        "uptime": get_uptime(),
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/detailed")
async def health_detailed(request: Request):
    """Queue, cache, edge and host status for monitoring dashboards."""
    state = request.app.state
    database = check_database(state.session_factory)
    storage = check_storage(state.settings.media_root)
    system = check_system()

    statuses = [database["status"], storage["status"], system["status"]]
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "warning" in statuses or "critical" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "ok": overall == "healthy",
        "status": overall,
        "uptime": get_uptime(),
        "started_at": START_TIME.isoformat() + "Z",
        "queue": state.queue.status(),
        "cache": state.cache.stats(),
        "edge_servers": state.edge_registry.counts(),
        "events": {"connected_clients": state.events.client_count},
        "checks": {
            "database": database,
            "storage": storage,
            "system": system,
        },
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
