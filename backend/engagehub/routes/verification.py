# /engagehub/routes/verification.py

from typing import Any, Dict, Optional
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Query

from engagehub.config.settings import settings
from engagehub.models.api import (
    APIResponse, AadhaarValidationRequest, PanVerificationRequest, AadhaarPanLinkRequest,
    AadhaarOtpRequest, AadhaarOtpSubmitRequest, BankVerificationRequest,
)
from engagehub.models.tracking import EventCategory
from engagehub.utils.dependencies import Identity, ensure_owned, require_roles
from engagehub.services import surepass_service as surepass
from engagehub.services.activity_service import record_identity_activity
from engagehub.services.db_service import db_service
from engagehub.services.external_client import ApiResult
from engagehub.services.security_service import EnhancedSecurityService
from engagehub.services.tracking_service import tracking_service

# KYC checks through Surepass. Users verify themselves; admins and agents
# verify a user they own by passing ?user_id=. Every check emits a KYC step
# and an API-call event, and successful checks update the user's flags.

router = APIRouter(prefix="/verification", tags=["Verification"])
log = structlog.get_logger(__name__)

verifier = require_roles("user", "admin", "agent")


async def _target_user(identity: Identity, user_id: Optional[str]) -> Dict[str, Any]:
    if identity["role"] == "user":
        return identity["account"]
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    user = await db_service.get_account("user", user_id)
    owner = identity["account_id"] if identity["role"] == "admin" else identity["account"].get("admin_id")
    return ensure_owned(user, owner, "User")


def _verified(result: ApiResult) -> bool:
    body = result["data"]
    return result["success"] and not (isinstance(body, dict) and body.get("success") is False)


async def _run_check(
    request: Request,
    identity: Identity,
    user: Dict[str, Any],
    kyc_step: str,
    endpoint: str,
    result: ApiResult,
    flag: Optional[str] = None,
    masked_identifier: Optional[str] = None,
) -> APIResponse:
    success = _verified(result)

    await tracking_service.safely(tracking_service.track_api_call(
        endpoint, "POST", EventCategory.KYC, result["response_time_ms"], success,
        user=user, status_code=result["status_code"], error_message=result["error"],
    ))
    await tracking_service.safely(tracking_service.track_kyc_step(
        user, kyc_step,
        success=success,
        execution_time_ms=result["response_time_ms"],
        api_endpoint=endpoint,
        error_message=None if success else result["error"],
        context={"requested_by": identity["role"]},
    ))
    await db_service.insert_document("verifications", user.get("admin_id"), {
        "user_id": db_service.to_object_id(user["_id"]),
        "kyc_step": kyc_step,
        "identifier": masked_identifier,
        "status": "verified" if success else "failed",
        "error": result["error"],
    })
    await record_identity_activity(
        request, identity, kyc_step, "verification",
        entity_id=user["_id"], status="success" if success else "failed",
        description=f"{kyc_step} {'succeeded' if success else 'failed'}",
    )

    if success and flag:
        updated = await db_service.update_user_flags(user["_id"], {flag: True})
        if updated:
            await tracking_service.safely(tracking_service.track_kyc_status(
                updated, {k: v for k, v in updated.items() if k.startswith("is_")}
            ))

    if not success:
        status_code = result["status_code"] if result["status_code"] and 400 <= result["status_code"] < 500 else 502
        raise HTTPException(status_code=status_code, detail=f"{kyc_step} failed: {result['error'] or 'verification rejected'}")

    body = result["data"] if isinstance(result["data"], dict) else {}
    return APIResponse(
        success=True,
        message=f"{kyc_step.replace('_', ' ').capitalize()} successful",
        data=body.get("data", body),
        version=settings.api_version
    )

@router.post("/aadhaar-validation", response_model=APIResponse)
async def validate_aadhaar(request: Request, payload: AadhaarValidationRequest,
                           user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.validate_aadhaar(payload.aadhaar_number)
    return await _run_check(request, identity, user, "aadhaar_validation", surepass.AADHAAR_VALIDATION, result,
                            flag="is_aadhaar_validated",
                            masked_identifier=EnhancedSecurityService.mask_identifier(payload.aadhaar_number))

@router.post("/pan", response_model=APIResponse)
async def verify_pan(request: Request, payload: PanVerificationRequest,
                     user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.verify_pan(payload.pan_number)
    return await _run_check(request, identity, user, "pan_verification", surepass.PAN_VERIFICATION, result,
                            flag="is_pan_verified",
                            masked_identifier=EnhancedSecurityService.mask_identifier(payload.pan_number.upper()))

@router.post("/aadhaar-pan-link", response_model=APIResponse)
async def check_aadhaar_pan_link(request: Request, payload: AadhaarPanLinkRequest,
                                 user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.check_aadhaar_pan_link(payload.aadhaar_number, payload.pan_number)
    return await _run_check(request, identity, user, "aadhaar_pan_link", surepass.AADHAAR_PAN_LINK, result,
                            flag="is_aadhaar_pan_linked",
                            masked_identifier=EnhancedSecurityService.mask_identifier(payload.aadhaar_number))

@router.post("/aadhaar-otp", response_model=APIResponse)
async def generate_aadhaar_otp(request: Request, payload: AadhaarOtpRequest,
                               user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.generate_aadhaar_otp(payload.aadhaar_number)
    return await _run_check(request, identity, user, "aadhaar_otp_generation", surepass.AADHAAR_OTP_GENERATE, result,
                            masked_identifier=EnhancedSecurityService.mask_identifier(payload.aadhaar_number))

@router.post("/aadhaar-otp/verify", response_model=APIResponse)
async def submit_aadhaar_otp(request: Request, payload: AadhaarOtpSubmitRequest,
                             user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.submit_aadhaar_otp(payload.client_id, payload.otp)
    return await _run_check(request, identity, user, "aadhaar_otp_verification", surepass.AADHAAR_OTP_SUBMIT, result,
                            flag="is_aadhaar_verified")

@router.post("/bank-account", response_model=APIResponse)
async def verify_bank_account(request: Request, payload: BankVerificationRequest,
                              user_id: Optional[str] = Query(None), identity: Identity = Depends(verifier)):
    user = await _target_user(identity, user_id)
    result = await surepass.surepass_service.verify_bank_account(
        payload.account_number, payload.ifsc, payload.account_holder_name
    )
    return await _run_check(request, identity, user, "bank_verification", surepass.BANK_VERIFICATION, result,
                            flag="is_bank_verified",
                            masked_identifier=EnhancedSecurityService.mask_identifier(payload.account_number))
