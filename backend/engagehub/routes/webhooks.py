# /engagehub/routes/webhooks.py

import json
import structlog
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from fastapi.responses import PlainTextResponse

from engagehub.config.settings import settings
from engagehub.utils.dependencies import read_signed_webhook
from engagehub.utils.metrics import response_time_histogram
from engagehub.utils.rate_limiter import limiter
from engagehub.services.security_service import EnhancedSecurityService
from engagehub.services.db_service import db_service
from engagehub.services.workflow_executor import workflow_executor

# WhatsApp Cloud API webhook: subscription handshake and inbound messages.
# Text replies are routed to the sender's active workflow session.

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"]
)

log = structlog.get_logger(__name__)


def _extract_text_messages(data: dict):
    for entry in data.get("entry", []):
        for change in entry.get("changes", []):
            if change.get("field") != "messages":
                continue
            value = change.get("value", {})
            incoming_phone_id = (value.get("metadata") or {}).get("phone_number_id")
            if settings.whatsapp_phone_id and incoming_phone_id and incoming_phone_id != settings.whatsapp_phone_id:
                log.info("Ignoring webhook for another phone number", phone_number_id=incoming_phone_id)
                continue
            for message in value.get("messages", []):
                if message.get("type") == "text":
                    yield message.get("from"), (message.get("text") or {}).get("body", ""), message.get("id")
                elif message.get("type") == "interactive":
                    reply = (message.get("interactive") or {})
                    chosen = reply.get("button_reply") or reply.get("list_reply") or {}
                    yield message.get("from"), chosen.get("title", ""), message.get("id")

@router.get("/whatsapp")
async def verify_whatsapp_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge")
):
    """Meta subscription handshake."""
    if hub_mode == "subscribe" and hub_verify_token and hub_verify_token == settings.whatsapp_verify_token:
        log.info("WhatsApp webhook verification successful.")
        return PlainTextResponse(hub_challenge or "")
    log.error("WhatsApp webhook verification failed.")
    raise HTTPException(status_code=403, detail="Forbidden")

@router.post("/whatsapp")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_whatsapp_webhook(request: Request, verified_body: Optional[bytes] = Depends(read_signed_webhook)):
    if verified_body is None:
        return {"status": "ignored"}

    with response_time_histogram.labels(endpoint="whatsapp_webhook").time():
        try:
            data = json.loads(verified_body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.warning("WhatsApp webhook body is not valid JSON")
            return {"status": "ignored"}

        handled = 0
        for sender, text, wamid in _extract_text_messages(data):
            phone = EnhancedSecurityService.sanitize_phone_number(sender or "")
            if not phone or not text:
                continue
            await db_service.log_message({
                "wamid": wamid, "phone": phone, "direction": "inbound",
                "message_type": "text", "content": text, "status": "received",
            })
            try:
                session = await db_service.get_active_session_by_phone(phone)
                if session:
                    await workflow_executor.handle_input(session, text)
                    handled += 1
                else:
                    log.info("No active workflow session for inbound message", phone=phone)
            except Exception as e:
                # Meta retries anything but 200; a failed step must not replay the message
                log.error("Workflow input processing failed", phone=phone, error=str(e), exc_info=True)

        return {"status": "ok", "handled": handled}
