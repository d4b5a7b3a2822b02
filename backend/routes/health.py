"""Health and readiness check routes."""

import logging

from fastapi import APIRouter, Request

from config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ready")
async def ready() -> dict:
    """Lightweight readiness check — no external calls."""
    return {"status": "ok", "service": "nsap-analytics-api", "commit": settings.git_sha}


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check with cache occupancy and configuration status."""
    missing = settings.validate()
    return {
        "status": "ok" if not missing else "degraded",
        "service": "nsap-analytics-api",
        "commit": settings.git_sha,
        "data_source": "configured" if not missing else f"missing {', '.join(missing)}",
        "cache": request.app.state.cache.get_stats(),
        "sweeper_running": request.app.state.sweeper.running,
    }
