# /engagehub/routes/calls.py

from datetime import datetime, timezone
from typing import Optional
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Query, Response, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, MakeCallRequest, SendDigitsRequest
from engagehub.models.domain import Call
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service
from engagehub.services.exotel_service import exotel_service
from engagehub.services.external_client import ApiResult
from engagehub.services.tracking_service import tracking_service

# Exotel calling. Admin endpoints proxy the Exotel REST API and keep a local
# call record; the webhooks are called by Exotel itself and are unauthenticated.

router = APIRouter(prefix="/calls", tags=["Calls"])
log = structlog.get_logger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "busy", "no-answer", "canceled")

VOICE_RESPONSE = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    "<Response>\n"
    "  <Say>Thank you for calling. Please stay on the line.</Say>\n"
    "</Response>\n"
)


def _raise_for_result(result: ApiResult, action: str) -> None:
    if not result["success"]:
        code = result["status_code"] if result["status_code"] and 400 <= result["status_code"] < 500 else 502
        raise HTTPException(status_code=code, detail=f"Failed to {action}: {result['error']}")


def _call_view(doc: dict) -> dict:
    return Call.from_document(doc).model_dump(mode="json") | {"_id": doc.get("_id")}


async def _owned_call(call_sid: str, identity: Identity) -> dict:
    call = await db_service.get_call_by_sid(call_sid)
    return ensure_owned(call, identity["account_id"], "Call")

# --- Admin endpoints ---

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def make_call(request: Request, payload: MakeCallRequest, identity: Identity = Depends(verify_admin_token)):
    caller_id = payload.caller_id or settings.exotel_caller_id
    if not caller_id:
        raise HTTPException(status_code=400, detail="caller_id is required")

    result = await exotel_service.make_call(
        payload.from_number, payload.to_number, caller_id,
        record=payload.record,
        time_limit=payload.time_limit,
        time_out=payload.time_out,
        custom_field=payload.custom_field,
        status_callback=settings.exotel_status_callback_url,
    )
    await tracking_service.safely(tracking_service.track_api_call(
        "/Calls/connect.json", "POST", "api", result["response_time_ms"], result["success"],
        status_code=result["status_code"], error_message=result["error"],
    ))
    _raise_for_result(result, "connect call")

    call_sid = exotel_service.call_sid_from(result)
    if not call_sid:
        raise HTTPException(status_code=502, detail="Exotel did not return a call SID")
    exotel_call = result["data"].get("Call", {})
    call_doc = {
        "call_sid": call_sid,
        "admin_id": identity["account_id"],
        "user_id": payload.user_id,
        "workflow_id": payload.workflow_id,
        "from_number": payload.from_number,
        "to_number": payload.to_number,
        "caller_id": caller_id,
        "direction": "outbound",
        "status": str(exotel_call.get("Status") or "initiated").lower(),
        "purpose": payload.purpose,
        "start_time": datetime.now(timezone.utc),
    }
    await db_service.insert_call(call_doc)
    await record_activity(request, "admin", identity["account_id"], "make_call", "call",
                          entity_id=None, description=f"Call {call_sid} to {payload.to_number}",
                          metadata={"call_sid": call_sid})
    call = await db_service.get_call_by_sid(call_sid)
    return APIResponse(success=True, message="Call initiated successfully", data={"call": _call_view(call)}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_calls(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    query = {"admin_id": db_service.to_object_id(identity["account_id"])}
    if status_filter:
        query["status"] = status_filter
    calls, total = await db_service.list_documents("calls", query, page, limit)
    return APIResponse(
        success=True,
        message="Calls retrieved successfully",
        data={"calls": [_call_view(c) for c in calls], "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/numbers", response_model=APIResponse)
async def list_phone_numbers(identity: Identity = Depends(verify_admin_token)):
    result = await exotel_service.list_phone_numbers()
    _raise_for_result(result, "list phone numbers")
    return APIResponse(success=True, message="Phone numbers retrieved", data=result["data"], version=settings.api_version)

@router.get("/{call_sid}", response_model=APIResponse)
async def get_call(call_sid: str, identity: Identity = Depends(verify_admin_token)):
    """Local record refreshed from Exotel's view of the call."""
    await _owned_call(call_sid, identity)
    result = await exotel_service.get_call(call_sid)
    if result["success"]:
        remote = (result["data"] or {}).get("Call", {})
        updates = {
            "status": str(remote.get("Status", "")).lower() or None,
            "duration": remote.get("Duration"),
            "recording_url": remote.get("RecordingUrl"),
        }
        updates = {k: v for k, v in updates.items() if v}
        call = await db_service.update_call_by_sid(call_sid, updates) if updates else await db_service.get_call_by_sid(call_sid)
    else:
        log.warning("Exotel call lookup failed; serving stored record", call_sid=call_sid, error=result["error"])
        call = await db_service.get_call_by_sid(call_sid)
    return APIResponse(success=True, message="Call retrieved successfully", data={"call": _call_view(call)}, version=settings.api_version)

@router.post("/{call_sid}/hangup", response_model=APIResponse)
async def hangup_call(request: Request, call_sid: str, identity: Identity = Depends(verify_admin_token)):
    await _owned_call(call_sid, identity)
    result = await exotel_service.hangup_call(call_sid)
    _raise_for_result(result, "hang up call")
    call = await db_service.update_call_by_sid(call_sid, {"status": "completed", "end_time": datetime.now(timezone.utc)})
    await record_activity(request, "admin", identity["account_id"], "hangup_call", "call",
                          description=f"Call {call_sid} hung up", metadata={"call_sid": call_sid})
    return APIResponse(success=True, message="Call hung up", data={"call": _call_view(call)}, version=settings.api_version)

@router.post("/{call_sid}/digits", response_model=APIResponse)
async def send_digits(call_sid: str, payload: SendDigitsRequest, identity: Identity = Depends(verify_admin_token)):
    await _owned_call(call_sid, identity)
    result = await exotel_service.send_digits(call_sid, payload.digits)
    _raise_for_result(result, "send digits")
    return APIResponse(success=True, message="Digits sent", data=result["data"], version=settings.api_version)

# --- Exotel webhooks ---

@router.post("/webhooks/status")
async def call_status_webhook(request: Request):
    """Exotel status callback. Always answers 200 so Exotel does not retry."""
    form = dict(await request.form())
    call_sid = form.get("CallSid")
    call_status = str(form.get("Status") or form.get("CallStatus") or "").lower()
    if not call_sid or not call_status:
        log.warning("Call status webhook without CallSid/Status", payload=form)
        return {"status": "ignored"}

    updates = {"status": call_status}
    if form.get("ConversationDuration") or form.get("Duration"):
        updates["duration"] = str(form.get("ConversationDuration") or form.get("Duration"))
    if form.get("RecordingUrl"):
        updates["recording_url"] = form["RecordingUrl"]
    if call_status in TERMINAL_STATUSES:
        updates["end_time"] = datetime.now(timezone.utc)

    try:
        call = await db_service.update_call_by_sid(call_sid, updates)
    except Exception as e:
        log.error("Failed to store call status", call_sid=call_sid, error=str(e))
        return {"status": "error"}
    if not call:
        log.warning("Call status webhook for unknown call", call_sid=call_sid)
        return {"status": "unknown_call"}

    await tracking_service.safely(tracking_service.track_call_status(call))

    if call_status == "completed" and call.get("admin_id"):
        view = Call.from_document(call)
        await db_service.create_notification({
            "admin_id": call["admin_id"],
            "title": "Call completed",
            "message": f"Call to {view.to_number} completed ({view.duration_formatted}).",
            "type": "call",
            "related_data": {"call_sid": call_sid},
        })
    return {"status": "ok"}

@router.api_route("/webhooks/voice", methods=["GET", "POST"])
async def voice_webhook(request: Request):
    """ExoML answer for calls routed to this application."""
    return Response(content=VOICE_RESPONSE, media_type="application/xml")
