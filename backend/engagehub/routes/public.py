# /engagehub/routes/public.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime, timezone

from engagehub.config.settings import settings
from engagehub.utils.dependencies import verify_metrics_access
from engagehub.services.db_service import db_service
from engagehub.services.cache_service import cache_service
from engagehub.services.gtm_tag_sync import gtm_tag_synchronizer
from engagehub.services.tracking_broadcaster import tracking_broadcaster
from engagehub.models.api import APIResponse

# Unauthenticated endpoints: root, health probes and the (optionally
# API-key protected) Prometheus metrics.

router = APIRouter()

@router.get("/")
async def root():
    return {
        "service": "EngageHub API",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}

@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unreachable")
    return {"status": "ready"}

@router.get("/health/detailed", response_model=APIResponse, tags=["Monitoring"])
async def comprehensive_health_check(request: Request):
    """Per-dependency status for the admin dashboard."""
    health_status = {"status": "healthy", "services": {}}

    if await db_service.health_check():
        health_status["services"]["database"] = "connected"
    else:
        health_status["services"]["database"] = "error"
        health_status["status"] = "degraded"

    if cache_service.redis is None:
        health_status["services"]["cache"] = "disabled"
    else:
        try:
            await cache_service.redis.ping()
            health_status["services"]["cache"] = "connected"
        except Exception:
            health_status["services"]["cache"] = "error"
            health_status["status"] = "degraded"

    health_status["services"]["whatsapp"] = "configured" if settings.whatsapp_access_token else "not_configured"
    health_status["services"]["gtm"] = "enabled" if gtm_tag_synchronizer.enabled else "disabled"
    health_status["services"]["tracking_clients"] = tracking_broadcaster.client_count

    return APIResponse(
        success=True,
        message="Comprehensive health status retrieved.",
        data=health_status,
        version=settings.api_version
    )

@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Prometheus metrics; requires X-API-KEY when API_KEY is set."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
