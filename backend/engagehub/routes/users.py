# /engagehub/routes/users.py

from fastapi import APIRouter, Depends, HTTPException, Request, Query

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, UserCreate, UserStatusUpdate
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services import security_service
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service

# End users (WhatsApp contacts) belonging to the calling admin.

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(verify_admin_token)]
)


async def _owned_user(user_id: str, identity: Identity) -> dict:
    user = await db_service.get_account("user", user_id)
    return ensure_owned(user, identity["account_id"], "User")

@router.post("", response_model=APIResponse, status_code=201)
async def create_user(request: Request, payload: UserCreate, identity: Identity = Depends(verify_admin_token)):
    phone = security_service.EnhancedSecurityService.sanitize_phone_number(payload.phone)
    if not phone:
        raise HTTPException(status_code=400, detail="Invalid phone number")
    if await db_service.get_user_by_phone(phone):
        raise HTTPException(status_code=400, detail="phone already exists")
    user = await db_service.create_user(phone, admin_id=identity["account_id"], name=payload.name)
    user_id = str(user["_id"])
    await record_activity(request, "admin", identity["account_id"], "create", "user",
                          entity_id=user_id, description=f"User {phone} added")
    return APIResponse(success=True, message="User created successfully",
                       data={"user": await db_service.get_account("user", user_id)}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    users, total = await db_service.list_users(identity["account_id"], page, limit)
    return APIResponse(
        success=True,
        message="Users retrieved successfully",
        data={"users": users, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/{user_id}", response_model=APIResponse)
async def get_user(user_id: str, identity: Identity = Depends(verify_admin_token)):
    user = await _owned_user(user_id, identity)
    return APIResponse(success=True, message="User retrieved successfully", data={"user": user}, version=settings.api_version)

@router.patch("/{user_id}/status", response_model=APIResponse)
async def update_user_status(request: Request, user_id: str, payload: UserStatusUpdate, identity: Identity = Depends(verify_admin_token)):
    await _owned_user(user_id, identity)
    user = await db_service.update_user_flags(user_id, {"status": payload.status})
    await record_activity(request, "admin", identity["account_id"], "update_status", "user",
                          entity_id=user_id, description=f"User {'activated' if payload.status else 'deactivated'}")
    return APIResponse(success=True, message="User status updated", data={"user": user}, version=settings.api_version)
