"""Health check API router."""

import time

from fastapi import APIRouter

from agents_hub.infra.config import config
from agents_hub.infra.metrics import get_metrics_response

router = APIRouter()

_started_at = time.monotonic()


@router.get("/", tags=["Health"])
async def root():
    """Service banner."""
    return {
        "message": "Waiter agents service is running.",
        "region": config.REGION,
    }


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "region": config.REGION,
        "uptime_seconds": round(time.monotonic() - _started_at, 3),
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
