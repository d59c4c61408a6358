# /engagehub/routes/activity_logs.py

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse
from engagehub.utils.dependencies import Identity, verify_admin_token
from engagehub.services.db_service import db_service

router = APIRouter(
    prefix="/activity-logs",
    tags=["Activity Logs"],
    dependencies=[Depends(verify_admin_token)]
)

@router.get("", response_model=APIResponse)
async def list_activity_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    log_status: Optional[str] = Query(None, alias="status", pattern="^(success|failed)$"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    query = {"admin_id": db_service.to_object_id(identity["account_id"])}
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if log_status:
        query["status"] = log_status
    if start_date or end_date:
        query["created_at"] = {}
        if start_date:
            query["created_at"]["$gte"] = start_date
        if end_date:
            query["created_at"]["$lte"] = end_date

    logs, total = await db_service.list_documents("activity_logs", query, page, limit)
    return APIResponse(
        success=True,
        message="Activity logs retrieved successfully",
        data={"logs": logs, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )
