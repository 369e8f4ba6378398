"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and synchronization status.
"""

from fastapi import APIRouter, HTTPException
from sentinel.core.settings import settings
from sentinel.services.engine import get_engine
from sentinel.services.live_view import SyncState
from datetime import datetime, timezone


router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/engine")
async def engine_health():
    """
    Report stream status.
    503 once the subscription has given up (ERROR); data may still be served as STALE.
    """
    status = get_engine().status()
    if status["state"] == SyncState.ERROR.value:
        raise HTTPException(
            status_code=503,
            detail=f"Report subscription failed, serving stale data ({status['reports']} reports)"
        )
    return {
        "status": "healthy",
        **status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
