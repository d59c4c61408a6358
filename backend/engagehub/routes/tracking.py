# /engagehub/routes/tracking.py

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse
from engagehub.models.tracking import TrackEventRequest, DataLayerPushRequest
from engagehub.utils.dependencies import Identity, require_roles
from engagehub.utils.rate_limiter import limiter
from engagehub.services.db_service import db_service
from engagehub.services.tracking_service import tracking_service

router = APIRouter(prefix="/tracking", tags=["Tracking"])

any_account = require_roles("admin", "agent", "superadmin", "user")
analytics_reader = require_roles("admin", "superadmin")

@router.post("/events", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def track_event(request: Request, payload: TrackEventRequest, identity: Identity = Depends(any_account)):
    """Record a custom event; event_type and event_category are required."""
    fields = payload.model_dump(exclude={"attributes"})
    if identity["role"] == "user":
        fields["user_id"] = identity["account_id"]
    result = await tracking_service.track_custom_event(fields, payload.attributes or None)
    return APIResponse(success=True, message="Event tracked", data=result.model_dump(), version=settings.api_version)

@router.get("/events", response_model=APIResponse)
async def list_events(
    event_type: Optional[str] = None,
    event_category: Optional[str] = None,
    workflow_id: Optional[str] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(analytics_reader)
):
    filters = {
        key: value for key, value in {
            "event_type": event_type,
            "event_category": event_category,
            "workflow_id": workflow_id,
            "session_id": session_id,
            "user_id": user_id,
        }.items() if value
    }
    if start_date or end_date:
        filters["timestamp"] = {}
        if start_date:
            filters["timestamp"]["$gte"] = start_date
        if end_date:
            filters["timestamp"]["$lte"] = end_date

    events, total = await db_service.list_tracking_events(filters, page, limit)
    return APIResponse(
        success=True,
        message="Tracking events retrieved successfully",
        data={"events": events, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/analytics", response_model=APIResponse)
async def unified_analytics(
    workflow_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    identity: Identity = Depends(analytics_reader)
):
    analytics = await tracking_service.get_unified_analytics(workflow_id=workflow_id, start=start_date, end=end_date)
    return APIResponse(success=True, message="Unified analytics retrieved", data=analytics, version=settings.api_version)

@router.post("/data-layer", response_model=APIResponse)
async def push_data_layer(payload: DataLayerPushRequest, identity: Identity = Depends(any_account)):
    """Broadcast-only event for dashboards listening on the tracking WebSocket."""
    result = tracking_service.push_data_layer_event(payload.event_name, payload.data)
    return APIResponse(success=True, message="Data layer event pushed", data=result, version=settings.api_version)
