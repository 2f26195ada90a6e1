"""Health check router: liveness + readiness.

Liveness never touches a backend. Readiness pings the transaction store
and the session store, each bounded by a short timeout so a hung backend
degrades the probe instead of blocking it.
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends

from apps.api.core.config import Settings, get_app_settings
from apps.api.deps import Services, get_services

router = APIRouter(tags=["health"])
logger = structlog.get_logger()

PING_TIMEOUT_SECONDS = 2


@router.get("/health")
async def health_liveness(settings: Settings = Depends(get_app_settings)):
    """Liveness probe: 200 while the API process is running."""
    return {"status": "healthy", "service": "api", "version": settings.APP_VERSION}


async def _probe(name: str, ping) -> str:
    try:
        ok = await asyncio.wait_for(ping(), timeout=PING_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("health_ping_timeout", backend=name, timeout_s=PING_TIMEOUT_SECONDS)
        return "timeout"
    return "up" if ok else "down"


@router.get("/health/ready")
async def health_readiness(services: Services = Depends(get_services)):
    """Readiness probe: checks the transaction store and session store."""
    status = {
        "status": "healthy",
        "services": {
            "api": "up",
            "store": await _probe("store", services.store.ping),
            "sessions": await _probe("sessions", services.sessions.ping),
        },
    }
    if any(state != "up" for state in status["services"].values()):
        status["status"] = "degraded"
    return status
