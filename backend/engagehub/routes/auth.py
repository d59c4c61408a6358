# /engagehub/routes/auth.py

import secrets
from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, status

from engagehub.config.settings import settings
from engagehub.models.api import (
    APIResponse, TokenResponse, PasswordLoginRequest, AdminRegisterRequest,
    UserOtpRequest, UserVerifyOtpRequest,
)
from engagehub.utils.dependencies import (
    Identity, verify_admin_token, verify_agent_token, verify_superadmin_token, verify_user_token,
)
from engagehub.utils.errors import ConflictError
from engagehub.utils.metrics import auth_attempts_counter
from engagehub.utils.request_utils import get_remote_address
from engagehub.utils.rate_limiter import limiter
from engagehub.services import security_service, jwt_service
from engagehub.services.activity_service import record_activity
from engagehub.services.cache_service import cache_service
from engagehub.services.db_service import db_service
from engagehub.services.whatsapp_service import whatsapp_service

# Login/logout for the four account kinds. Admins, agents and superadmins
# use email + password; end users log in with a WhatsApp OTP.

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

AUTH_RATE_LIMIT = f"{settings.auth_rate_limit_per_minute}/minute"


def _otp_cooldown_key(phone: str) -> str:
    return f"otp_cooldown:{phone}"


async def _password_login(request: Request, role: str, login_data: PasswordLoginRequest) -> TokenResponse:
    client_ip = get_remote_address(request)
    lockout_key = f"{role}:{client_ip}"

    if await security_service.login_tracker.is_locked_out(lockout_key):
        auth_attempts_counter.labels(status="lockout", role=role).inc()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Please try again later."
        )

    account = await db_service.find_account_by_email(role, login_data.email_id)
    if not account or not security_service.SecurityService.verify_password(login_data.password, account.get("password", "")):
        await security_service.login_tracker.record_attempt(lockout_key)
        auth_attempts_counter.labels(status="failure", role=role).inc()
        await db_service.log_security_event("failed_login", client_ip, {"role": role, "email_id": login_data.email_id})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if role == "admin" and account.get("registration_status") == "pending":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is pending superadmin approval")
    if role == "admin" and account.get("registration_status") == "rejected":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account registration was rejected")
    if account.get("status") is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    account_id = str(account["_id"])
    expires_in = settings.jwt_access_token_expire_hours * 3600
    access_token = jwt_service.jwt_service.create_role_token(role, account_id)
    await db_service.save_login_token(
        role, account_id, access_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    await db_service.touch_last_login(role, account_id)
    await security_service.login_tracker.reset(lockout_key)

    auth_attempts_counter.labels(status="success", role=role).inc()
    await record_activity(
        request, role, account_id, "login", role, entity_id=account_id,
        description=f"{role} logged in",
        admin_id=str(account["admin_id"]) if role == "agent" and account.get("admin_id") else None,
    )
    return TokenResponse(access_token=access_token, token_type="bearer", expires_in=expires_in)


async def _logout(request: Request, identity: Identity) -> APIResponse:
    await db_service.revoke_login_token(identity["role"], identity["account_id"], identity["token"])
    await db_service.log_security_event("logout", get_remote_address(request), {"role": identity["role"], "account_id": identity["account_id"]})
    return APIResponse(success=True, message="Logged out successfully", version=settings.api_version)


def _profile(identity: Identity) -> APIResponse:
    return APIResponse(
        success=True,
        message="Profile retrieved successfully",
        data={identity["role"]: identity["account"]},
        version=settings.api_version
    )

# --- Admin ---

@router.post("/admin/register", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_RATE_LIMIT)
async def register_admin(request: Request, payload: AdminRegisterRequest):
    if await db_service.find_account_by_email("admin", payload.email_id):
        raise ConflictError("email_id already exists")

    admin_data = payload.model_dump()
    admin_data["password"] = security_service.SecurityService.hash_password(payload.password)
    admin_id = await db_service.create_admin(admin_data)

    await db_service.create_notification({
        "for_super_admin": True,
        "title": "New admin registration",
        "message": f"{payload.first_name} {payload.last_name} ({payload.email_id}) is awaiting approval.",
        "type": "admin_registration",
        "priority": "high",
        "related_data": {"admin_id": admin_id},
    })
    await record_activity(request, "admin", admin_id, "register", "admin", entity_id=admin_id,
                          description="Admin registered and awaits approval")
    return APIResponse(
        success=True,
        message="Registration submitted. You can log in once a superadmin approves your account.",
        data={"admin_id": admin_id, "registration_status": "pending"},
        version=settings.api_version
    )

@router.post("/admin/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def admin_login(request: Request, login_data: PasswordLoginRequest):
    return await _password_login(request, "admin", login_data)

@router.post("/admin/logout", response_model=APIResponse)
async def admin_logout(request: Request, identity: Identity = Depends(verify_admin_token)):
    return await _logout(request, identity)

@router.get("/admin/me", response_model=APIResponse)
async def admin_me(identity: Identity = Depends(verify_admin_token)):
    return _profile(identity)

# --- Agent ---

@router.post("/agent/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def agent_login(request: Request, login_data: PasswordLoginRequest):
    return await _password_login(request, "agent", login_data)

@router.post("/agent/logout", response_model=APIResponse)
async def agent_logout(request: Request, identity: Identity = Depends(verify_agent_token)):
    return await _logout(request, identity)

@router.get("/agent/me", response_model=APIResponse)
async def agent_me(identity: Identity = Depends(verify_agent_token)):
    return _profile(identity)

# --- Superadmin ---

@router.post("/superadmin/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def superadmin_login(request: Request, login_data: PasswordLoginRequest):
    return await _password_login(request, "superadmin", login_data)

@router.post("/superadmin/logout", response_model=APIResponse)
async def superadmin_logout(request: Request, identity: Identity = Depends(verify_superadmin_token)):
    return await _logout(request, identity)

@router.get("/superadmin/me", response_model=APIResponse)
async def superadmin_me(identity: Identity = Depends(verify_superadmin_token)):
    return _profile(identity)

# --- End user (WhatsApp OTP) ---

@router.post("/user/otp", response_model=APIResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def request_user_otp(request: Request, payload: UserOtpRequest):
    phone = security_service.EnhancedSecurityService.sanitize_phone_number(payload.phone)
    if not phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number")
    if await cache_service.get(_otp_cooldown_key(phone)):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="An OTP was sent recently. Please wait before requesting another one."
        )

    user = await db_service.get_user_by_phone(phone)
    if user is None:
        user = await db_service.create_user(phone)
    elif user.get("status") is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    otp = security_service.SecurityService.generate_otp()
    await db_service.set_user_otp(
        user["_id"], otp,
        datetime.now(timezone.utc) + timedelta(minutes=settings.otp_expire_minutes),
    )
    if not await whatsapp_service.send_otp(phone, otp):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to send OTP over WhatsApp")
    await cache_service.set(_otp_cooldown_key(phone), "1", ttl=settings.otp_resend_cooldown_seconds)

    return APIResponse(
        success=True,
        message=f"OTP sent to {phone}",
        data={"expires_in": settings.otp_expire_minutes * 60},
        version=settings.api_version
    )

@router.post("/user/verify-otp", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def verify_user_otp(request: Request, payload: UserVerifyOtpRequest):
    phone = security_service.EnhancedSecurityService.sanitize_phone_number(payload.phone)
    user = await db_service.get_user_by_phone(phone) if phone else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    stored_otp = user.get("otp")
    expires_at = user.get("otp_expires_at")
    if (
        not stored_otp
        or not secrets.compare_digest(stored_otp, payload.otp)
        or not expires_at
        or expires_at < datetime.now(timezone.utc)
    ):
        auth_attempts_counter.labels(status="failure", role="user").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired OTP")

    user_id = str(user["_id"])
    await db_service.mark_user_otp_verified(user_id)

    lifetime = timedelta(days=settings.user_token_expire_days)
    access_token = jwt_service.jwt_service.create_role_token("user", user_id, expires_delta=lifetime)
    await db_service.save_login_token("user", user_id, access_token, expires_at=datetime.now(timezone.utc) + lifetime)
    auth_attempts_counter.labels(status="success", role="user").inc()

    return TokenResponse(access_token=access_token, token_type="bearer", expires_in=int(lifetime.total_seconds()))

@router.post("/user/logout", response_model=APIResponse)
async def user_logout(request: Request, identity: Identity = Depends(verify_user_token)):
    return await _logout(request, identity)

@router.get("/user/me", response_model=APIResponse)
async def user_me(identity: Identity = Depends(verify_user_token)):
    return _profile(identity)
