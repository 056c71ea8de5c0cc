from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException

from roomy.api.dependencies import get_backend, get_realtime
from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeClient
from roomy.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    backend: BackendClient = Depends(get_backend),
    realtime: RealtimeClient = Depends(get_realtime)
):
    """Application health check endpoint"""
    backend_ok = await backend.ping()

    return {
        "status": "healthy" if backend_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc),
        "backend": "connected" if backend_ok else "disconnected",
        "realtime": "connected" if realtime.connected else "idle",
        "service": settings.app_name.lower(),
        "version": settings.version,
    }


@router.get("/health/ready")
async def readiness_check(backend: BackendClient = Depends(get_backend)):
    """Readiness probe endpoint"""
    if not await backend.ping():
        raise HTTPException(
            status_code=503,
            detail="Service not ready - backend unreachable"
        )

    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check():
    """Liveness probe endpoint"""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc)}
