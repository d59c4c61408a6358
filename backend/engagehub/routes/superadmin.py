# /engagehub/routes/superadmin.py

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, AdminDecisionRequest
from engagehub.utils.dependencies import Identity, verify_superadmin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service

router = APIRouter(
    prefix="/superadmin",
    tags=["Superadmin"],
    dependencies=[Depends(verify_superadmin_token)]
)

@router.get("/admins", response_model=APIResponse)
async def list_admins(registration_status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$")):
    admins = await db_service.list_admins(status=registration_status)
    return APIResponse(
        success=True,
        message="Admins retrieved successfully",
        data={"admins": admins, "count": len(admins)},
        version=settings.api_version
    )


async def _decide(request: Request, admin_id: str, approved: bool, identity: Identity, reason: Optional[str] = None) -> APIResponse:
    admin = await db_service.set_admin_registration(admin_id, approved, identity["account_id"], reason)
    if not admin:
        raise HTTPException(status_code=404, detail="Admin not found")

    decision = "approved" if approved else "rejected"
    message = "Your account has been approved. You can now log in." if approved else (
        f"Your registration was rejected{': ' + reason if reason else '.'}"
    )
    await db_service.create_notification({
        "admin_id": admin_id,
        "title": f"Registration {decision}",
        "message": message,
        "type": "admin_registration",
        "priority": "high",
    })
    await record_activity(
        request, "superadmin", identity["account_id"], f"admin_{decision}", "admin",
        entity_id=admin_id, admin_id=admin_id,
        description=f"Admin {admin.get('email_id')} {decision}",
    )
    return APIResponse(
        success=True,
        message=f"Admin {decision} successfully",
        data={"admin": admin},
        version=settings.api_version
    )

@router.post("/admins/{admin_id}/approve", response_model=APIResponse)
async def approve_admin(request: Request, admin_id: str, identity: Identity = Depends(verify_superadmin_token)):
    return await _decide(request, admin_id, True, identity)

@router.post("/admins/{admin_id}/reject", response_model=APIResponse)
async def reject_admin(
    request: Request,
    admin_id: str,
    payload: AdminDecisionRequest,
    identity: Identity = Depends(verify_superadmin_token)
):
    return await _decide(request, admin_id, False, identity, payload.reason)
