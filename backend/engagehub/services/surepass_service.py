# /engagehub/services/surepass_service.py

import logging
from typing import Any, Dict, Optional

from engagehub.config.settings import settings
from engagehub.services.external_client import ApiResult, ExternalApiClient
from engagehub.services.security_service import EnhancedSecurityService

logger = logging.getLogger(__name__)

# Surepass KYC API. Identifiers are normalised before sending and never
# logged unmasked.

AADHAAR_VALIDATION = "/aadhaar-validation/aadhaar-validation"
PAN_VERIFICATION = "/pan/pan"
AADHAAR_PAN_LINK = "/pan/aadhaar-pan-link-check"
AADHAAR_OTP_GENERATE = "/aadhaar-v2/generate-otp"
AADHAAR_OTP_SUBMIT = "/aadhaar-v2/submit-otp"
BANK_VERIFICATION = "/bank-verification/"


class SurepassService(ExternalApiClient):
    service_name = "surepass"

    def __init__(self, api_key: str, base_url: str):
        self.configured = bool(api_key)
        super().__init__(
            base_url,
            timeout=20.0,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        )

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> ApiResult:
        if not self.configured:
            return ApiResult(success=False, data=None, error="Surepass API key not configured",
                             status_code=None, response_time_ms=0.0)
        return await self.request("POST", endpoint, json=payload)

    async def validate_aadhaar(self, aadhaar_number: str) -> ApiResult:
        logger.info(f"Validating Aadhaar {EnhancedSecurityService.mask_identifier(aadhaar_number)}")
        return await self._post(AADHAAR_VALIDATION, {"id_number": aadhaar_number, "consent": "Y"})

    async def verify_pan(self, pan_number: str) -> ApiResult:
        return await self._post(PAN_VERIFICATION, {"id_number": pan_number.upper(), "consent": "Y"})

    async def check_aadhaar_pan_link(self, aadhaar_number: str, pan_number: str) -> ApiResult:
        logger.info(f"Checking Aadhaar-PAN link for {EnhancedSecurityService.mask_identifier(aadhaar_number)}")
        # Surepass takes the PAN in the `consent` field for this endpoint
        return await self._post(AADHAAR_PAN_LINK, {"aadhaar_number": aadhaar_number, "consent": pan_number.upper()})

    async def generate_aadhaar_otp(self, aadhaar_number: str) -> ApiResult:
        logger.info(f"Generating Aadhaar OTP for {EnhancedSecurityService.mask_identifier(aadhaar_number)}")
        return await self._post(AADHAAR_OTP_GENERATE, {"id_number": aadhaar_number})

    async def submit_aadhaar_otp(self, client_id: str, otp: str) -> ApiResult:
        return await self._post(AADHAAR_OTP_SUBMIT, {"client_id": client_id, "otp": otp})

    async def verify_bank_account(self, account_number: str, ifsc: str, account_holder_name: Optional[str] = None) -> ApiResult:
        logger.info(f"Verifying bank account {EnhancedSecurityService.mask_identifier(account_number)} ({ifsc.upper()})")
        payload: Dict[str, Any] = {"id_number": account_number, "ifsc": ifsc.upper(), "ifsc_details": True}
        if account_holder_name:
            payload["name"] = account_holder_name
        return await self._post(BANK_VERIFICATION, payload)


# Globally accessible instance
surepass_service = SurepassService(settings.surepass_api_key, settings.surepass_base_url)
