# /engagehub/services/whatsapp_service.py

import httpx
import logging
import json
import tenacity
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from engagehub.config.settings import settings
from engagehub.utils.circuit_breaker import RedisCircuitBreaker
from engagehub.utils.errors import ExternalServiceError
from engagehub.utils.metrics import external_api_counter
from engagehub.services.cache_service import cache_service
from engagehub.services.db_service import db_service
from engagehub.services.security_service import EnhancedSecurityService

logger = logging.getLogger(__name__)

def _graph_component(component: Dict[str, Any]) -> Dict[str, Any]:
    """Graph API expects upper-case enum values (HEADER, TEXT, QUICK_REPLY...)."""
    converted = {key: value for key, value in component.items() if value is not None}
    for key in ("type", "format"):
        if key in converted:
            converted[key] = converted[key].upper()
    if converted.get("buttons"):
        converted["buttons"] = [
            {**{k: v for k, v in button.items() if v is not None}, "type": button["type"].upper()}
            for button in converted["buttons"]
        ]
    return converted


class WhatsAppService:
    def __init__(self, access_token: str, phone_id: str, business_account_id: Optional[str]):
        self.access_token = access_token
        self.phone_id = phone_id
        self.business_account_id = business_account_id
        self.http_client = httpx.AsyncClient(timeout=15.0)
        self.base_url = f"https://graph.facebook.com/{settings.whatsapp_api_version}"
        self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "whatsapp")

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=2, min=1, max=10),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING)
    )
    async def resilient_api_call(self, func, *args, **kwargs):
        return await self.circuit_breaker.call(func, *args, **kwargs)

    async def send_whatsapp_request(self, payload: dict, metadata: dict | None = None) -> Optional[str]:
        """Send one message through the Cloud API; returns the wamid or None on failure."""
        to_phone = payload.get("to")
        if not to_phone:
            logger.error(f"send_whatsapp_request_invalid_phone: {to_phone}")
            return None
        try:
            url = f"{self.base_url}/{self.phone_id}/messages"
            response = await self.resilient_api_call(self.http_client.post, url, json=payload, headers=self.headers)
        except Exception as e:
            external_api_counter.labels(service="whatsapp", status="error").inc()
            logger.error(f"whatsapp_send_error to {to_phone}: {e}", exc_info=True)
            return None

        if response.status_code != 200:
            external_api_counter.labels(service="whatsapp", status="error").inc()
            error_message = (response.json().get("error") or {}).get("message", "Unknown error")
            logger.error(f"whatsapp_send_failed to {to_phone}: {response.status_code} - {error_message}")
            return None

        external_api_counter.labels(service="whatsapp", status="success").inc()
        message_id = response.json().get("messages", [{}])[0].get("id")
        logger.info(f"WhatsApp message sent to {to_phone}, wamid: {message_id}")

        message_type = payload.get("type")
        await db_service.log_message({
            "wamid": message_id,
            "phone": to_phone,
            "direction": "outbound",
            "message_type": message_type,
            "content": json.dumps(payload.get(message_type, {})),
            "status": "sent",
            "timestamp": datetime.now(timezone.utc),
            "metadata": metadata or {}
        })
        return message_id

    async def send_message(self, to_phone: str, message: str, metadata: dict | None = None) -> Optional[str]:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": EnhancedSecurityService.sanitize_phone_number(to_phone),
            "type": "text",
            "text": {"body": message[:4096]},
        }
        return await self.send_whatsapp_request(payload, metadata)

    async def send_otp(self, to_phone: str, otp: str) -> Optional[str]:
        message = (
            f"Your verification code is {otp}. "
            f"It expires in {settings.otp_expire_minutes} minutes. Do not share it with anyone."
        )
        return await self.send_message(to_phone, message, metadata={"purpose": "otp"})

    async def submit_template(self, name: str, category: str, language: str, components: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Submit a template definition for Meta review (`message_templates` edge)."""
        if not self.business_account_id:
            raise ExternalServiceError("WhatsApp business account ID is not configured")

        url = f"{self.base_url}/{self.business_account_id}/message_templates"
        body = {
            "name": name,
            "category": category.upper(),
            "language": language,
            "components": [_graph_component(c) for c in components],
        }
        try:
            response = await self.resilient_api_call(self.http_client.post, url, json=body, headers=self.headers)
        except Exception as e:
            external_api_counter.labels(service="whatsapp", status="error").inc()
            raise ExternalServiceError(f"WhatsApp template submission failed: {e}") from e

        data = response.json()
        if response.status_code >= 400:
            external_api_counter.labels(service="whatsapp", status="error").inc()
            error = data.get("error") or {}
            raise ExternalServiceError(
                f"WhatsApp rejected template: {error.get('message', 'Unknown error')}",
                {"status_code": response.status_code, "error": error},
            )
        external_api_counter.labels(service="whatsapp", status="success").inc()
        logger.info(f"WhatsApp template '{name}' submitted: {data.get('id')} ({data.get('status')})")
        return data

    async def close(self):
        await self.http_client.aclose()

# Globally accessible instance
whatsapp_service = WhatsAppService(
    settings.whatsapp_access_token,
    settings.whatsapp_phone_id,
    settings.whatsapp_business_account_id
)
