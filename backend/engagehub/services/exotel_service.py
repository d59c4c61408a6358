# /engagehub/services/exotel_service.py

import logging
from typing import Any, Dict, Optional

import httpx

from engagehub.config.settings import settings
from engagehub.services.external_client import ApiResult, ExternalApiClient

logger = logging.getLogger(__name__)

# Exotel REST API v1 (form-encoded requests, JSON responses).

class ExotelService(ExternalApiClient):
    service_name = "exotel"

    def __init__(self, api_key: str, api_token: str, account_sid: str, subdomain: str = "api"):
        self.account_sid = account_sid
        self.configured = bool(api_key and api_token and account_sid)
        if not self.configured:
            logger.warning("Exotel credentials are not configured; call APIs will fail.")
        super().__init__(
            f"https://{subdomain}.exotel.com/v1/Accounts/{account_sid}",
            timeout=20.0,
            auth=httpx.BasicAuth(api_key, api_token),
        )

    async def make_call(
        self,
        from_number: str,
        to_number: str,
        caller_id: str,
        record: bool = False,
        time_limit: Optional[int] = None,
        time_out: Optional[int] = None,
        custom_field: Optional[str] = None,
        status_callback: Optional[str] = None,
    ) -> ApiResult:
        form: Dict[str, Any] = {"From": from_number, "To": to_number, "CallerId": caller_id}
        if record:
            form["Record"] = "true"
        if time_limit:
            form["TimeLimit"] = time_limit
        if time_out:
            form["TimeOut"] = time_out
        if custom_field:
            form["CustomField"] = custom_field
        if status_callback:
            form["StatusCallback"] = status_callback
            form["StatusCallbackEvents[0]"] = "terminal"

        logger.info(f"Connecting call {from_number} -> {to_number}")
        return await self.request("POST", "/Calls/connect.json", data=form)

    async def get_call(self, call_sid: str) -> ApiResult:
        return await self.request("GET", f"/Calls/{call_sid}.json")

    async def list_calls(self, filters: Optional[Dict[str, Any]] = None) -> ApiResult:
        params = {key: value for key, value in (filters or {}).items() if value is not None}
        return await self.request("GET", "/Calls.json", params=params)

    async def hangup_call(self, call_sid: str) -> ApiResult:
        return await self.request("POST", f"/Calls/{call_sid}.json", data={"Status": "completed"})

    async def send_digits(self, call_sid: str, digits: str) -> ApiResult:
        return await self.request("POST", f"/Calls/{call_sid}/SendDigits.json", data={"Digits": digits})

    async def list_phone_numbers(self) -> ApiResult:
        return await self.request("GET", "/IncomingPhoneNumbers.json")

    @staticmethod
    def call_sid_from(result: ApiResult) -> Optional[str]:
        data = result.get("data") or {}
        return (data.get("Call") or {}).get("Sid") if isinstance(data, dict) else None


# Globally accessible instance
exotel_service = ExotelService(
    settings.exotel_api_key,
    settings.exotel_api_token,
    settings.exotel_sid,
    settings.exotel_subdomain,
)
