# /engagehub/routes/notifications.py

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse
from engagehub.utils.dependencies import Identity, require_roles
from engagehub.services.db_service import db_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])

notification_reader = require_roles("admin", "superadmin", "agent")


def _owner(identity: Identity) -> dict:
    return db_service.notification_owner_query(identity["role"], identity["account_id"])

@router.get("", response_model=APIResponse)
async def list_notifications(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(unread|read|archived)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(notification_reader)
):
    query = _owner(identity)
    if status_filter:
        query["status"] = status_filter
    else:
        query["status"] = {"$ne": "archived"}
    notifications, total = await db_service.list_documents("notifications", query, page, limit)
    return APIResponse(
        success=True,
        message="Notifications retrieved successfully",
        data={"notifications": notifications, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/unread-count", response_model=APIResponse)
async def unread_count(identity: Identity = Depends(notification_reader)):
    count = await db_service.count_unread_notifications(_owner(identity))
    return APIResponse(success=True, message="Unread count retrieved", data={"unread_count": count}, version=settings.api_version)

@router.put("/read-all", response_model=APIResponse)
async def mark_all_read(identity: Identity = Depends(notification_reader)):
    updated = await db_service.mark_all_notifications_read(_owner(identity))
    return APIResponse(success=True, message="All notifications marked as read", data={"updated": updated}, version=settings.api_version)

@router.put("/{notification_id}/read", response_model=APIResponse)
async def mark_read(notification_id: str, identity: Identity = Depends(notification_reader)):
    if not await db_service.set_notification_status(_owner(identity), notification_id, "read"):
        raise HTTPException(status_code=404, detail="Notification not found")
    return APIResponse(success=True, message="Notification marked as read", version=settings.api_version)

@router.put("/{notification_id}/archive", response_model=APIResponse)
async def archive(notification_id: str, identity: Identity = Depends(notification_reader)):
    if not await db_service.set_notification_status(_owner(identity), notification_id, "archived"):
        raise HTTPException(status_code=404, detail="Notification not found")
    return APIResponse(success=True, message="Notification archived", version=settings.api_version)
