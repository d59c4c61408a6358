# backend/tests/unit/test_external_adapters.py

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from engagehub.services.exotel_service import ExotelService
from engagehub.services.surepass_service import SurepassService
from engagehub.services.whatsapp_service import WhatsAppService, _graph_component
from engagehub.utils.errors import ExternalServiceError


@pytest.fixture
def exotel():
    return ExotelService("key", "token", "acme1")


@pytest.fixture
def surepass():
    return SurepassService("sp-key", "https://kyc.example/api/v1")


# --- Shared request handling ---

@pytest.mark.asyncio
async def test_successful_call_returns_body(exotel, mocker):
    call = mocker.patch.object(exotel, "resilient_api_call", AsyncMock(
        return_value=httpx.Response(200, json={"Call": {"Sid": "CA123", "Status": "in-progress"}})))

    result = await exotel.make_call("+911111111111", "+912222222222", "08012345678",
                                    record=True, status_callback="https://hooks.example/status")

    assert result["success"] is True
    assert result["status_code"] == 200
    assert ExotelService.call_sid_from(result) == "CA123"
    args, kwargs = call.await_args
    assert args[1] == "POST"
    assert args[2] == "https://api.exotel.com/v1/Accounts/acme1/Calls/connect.json"
    assert kwargs["data"]["Record"] == "true"
    assert kwargs["data"]["StatusCallbackEvents[0]"] == "terminal"


@pytest.mark.asyncio
async def test_error_response_is_reported_not_raised(exotel, mocker):
    mocker.patch.object(exotel, "resilient_api_call", AsyncMock(
        return_value=httpx.Response(400, json={"RestException": {"Message": "Invalid To number"}})))

    result = await exotel.hangup_call("CA123")

    assert result["success"] is False
    assert result["status_code"] == 400
    assert result["error"] == "Invalid To number"
    assert ExotelService.call_sid_from(result) is None


@pytest.mark.asyncio
async def test_transport_failure_is_reported_not_raised(surepass, mocker):
    mocker.patch.object(surepass, "resilient_api_call", AsyncMock(side_effect=httpx.ConnectError("unreachable")))

    result = await surepass.verify_pan("abcde1234f")

    assert result["success"] is False
    assert result["status_code"] is None
    assert "unreachable" in result["error"]


# --- Surepass payloads ---

@pytest.mark.asyncio
async def test_surepass_payloads(surepass, mocker):
    call = mocker.patch.object(surepass, "resilient_api_call", AsyncMock(
        return_value=httpx.Response(200, json={"success": True, "data": {}})))

    await surepass.verify_pan("abcde1234f")
    await surepass.check_aadhaar_pan_link("123412341234", "abcde1234f")
    await surepass.verify_bank_account("000123456789", "hdfc0001234", "Asha Rao")

    pan, link, bank = call.await_args_list
    assert pan.args[2] == "https://kyc.example/api/v1/pan/pan"
    assert pan.kwargs["json"] == {"id_number": "ABCDE1234F", "consent": "Y"}
    assert link.kwargs["json"] == {"aadhaar_number": "123412341234", "consent": "ABCDE1234F"}
    assert bank.kwargs["json"] == {"id_number": "000123456789", "ifsc": "HDFC0001234",
                                   "ifsc_details": True, "name": "Asha Rao"}


@pytest.mark.asyncio
async def test_unconfigured_surepass_fails_without_calling(mocker):
    service = SurepassService("", "https://kyc.example/api/v1")
    call = mocker.patch.object(service, "resilient_api_call", AsyncMock())

    result = await service.validate_aadhaar("123412341234")

    assert result["success"] is False
    assert "not configured" in result["error"]
    call.assert_not_awaited()


# --- WhatsApp ---

@pytest.mark.asyncio
async def test_whatsapp_send_message_success(mocker):
    mock_log = mocker.patch("engagehub.services.db_service.db_service.log_message", new_callable=AsyncMock)
    mock_response = AsyncMock(return_value=MagicMock(status_code=200, json=lambda: {"messages": [{"id": "wamid_123"}]}))
    mocker.patch("engagehub.services.whatsapp_service.WhatsAppService.resilient_api_call", mock_response)

    service = WhatsAppService("token", "phone-id", None)
    wamid = await service.send_message("+91 98765 43210", "Hello")

    assert wamid == "wamid_123"
    mock_log.assert_awaited_once()
    payload = mock_response.await_args.kwargs["json"]
    assert payload["to"] == "+919876543210"
    assert payload["text"] == {"body": "Hello"}


@pytest.mark.asyncio
async def test_whatsapp_send_failure_returns_none(mocker):
    mock_log = mocker.patch("engagehub.services.db_service.db_service.log_message", new_callable=AsyncMock)
    mocker.patch("engagehub.services.whatsapp_service.WhatsAppService.resilient_api_call", AsyncMock(
        return_value=MagicMock(status_code=400, json=lambda: {"error": {"message": "Recipient not on WhatsApp"}})))

    service = WhatsAppService("token", "phone-id", None)

    assert await service.send_message("+919876543210", "Hello") is None
    mock_log.assert_not_awaited()


@pytest.mark.asyncio
async def test_template_submission_requires_business_account():
    service = WhatsAppService("token", "phone-id", None)
    with pytest.raises(ExternalServiceError):
        await service.submit_template("welcome", "marketing", "en", [])


def test_graph_component_uppercases_enums():
    component = _graph_component({
        "type": "buttons", "text": None,
        "buttons": [{"type": "quick_reply", "text": "Yes", "url": None}],
    })
    assert component == {"type": "BUTTONS", "buttons": [{"type": "QUICK_REPLY", "text": "Yes"}]}
