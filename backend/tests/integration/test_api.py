# backend/tests/integration/test_api.py
import hmac
import hashlib
import json

import pytest
from unittest.mock import AsyncMock
from starlette.websockets import WebSocketDisconnect

from engagehub.config.settings import settings
from engagehub.services.jwt_service import jwt_service

API_PREFIX = f"/api/{settings.api_version}"


def _signed(payload: dict):
    payload_bytes = json.dumps(payload).encode('utf-8')
    signature = "sha256=" + hmac.new(settings.whatsapp_app_secret.encode('utf-8'), payload_bytes, hashlib.sha256).hexdigest()
    return payload_bytes, {"X-Hub-Signature-256": signature, "Content-Type": "application/json"}


@pytest.fixture
def login_as(mocker):
    """Issue a real token for a role and make the token/account lookups succeed."""
    def _login(role: str, account_id: str = "65f000000000000000000001") -> dict:
        token = jwt_service.create_role_token(role, account_id)
        mocker.patch("engagehub.services.db_service.db_service.get_login_token",
                     new_callable=AsyncMock, return_value={"token": token, "expires_at": None})
        mocker.patch("engagehub.services.db_service.db_service.get_account",
                     new_callable=AsyncMock, return_value={"_id": account_id, "status": True})
        return {"Authorization": f"Bearer {token}"}
    return _login


# --- Public ---

def test_health(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_is_echoed_or_generated(test_client):
    assert test_client.get("/health", headers={"X-Request-ID": "req-42"}).headers["X-Request-ID"] == "req-42"
    assert len(test_client.get("/health").headers["X-Request-ID"]) == 32


def test_metrics_requires_api_key(test_client):
    assert test_client.get("/metrics").status_code == 403
    response = test_client.get("/metrics", headers={"X-API-KEY": settings.api_key})
    assert response.status_code == 200
    assert "tracking_events_total" in response.text


# --- WhatsApp webhook ---

def test_webhook_verification_success(test_client):
    params = {
        "hub.mode": "subscribe", "hub.challenge": "12345",
        "hub.verify_token": settings.whatsapp_verify_token
    }
    response = test_client.get(f"{API_PREFIX}/webhooks/whatsapp", params=params)
    assert response.status_code == 200
    assert response.text == "12345"


def test_webhook_verification_failure(test_client):
    params = {
        "hub.mode": "subscribe", "hub.challenge": "12345",
        "hub.verify_token": "wrong_token"
    }
    response = test_client.get(f"{API_PREFIX}/webhooks/whatsapp", params=params)
    assert response.status_code == 403


def test_webhook_text_message_feeds_active_session(test_client, mocker):
    session = {"_id": "s1", "workflow_id": "w1", "user_id": "u1", "phone": "+15551234567", "status": "active"}
    mocker.patch("engagehub.services.db_service.db_service.log_message", new_callable=AsyncMock)
    mock_lookup = mocker.patch("engagehub.services.db_service.db_service.get_active_session_by_phone",
                               new_callable=AsyncMock, return_value=session)
    mock_handle = mocker.patch("engagehub.routes.webhooks.workflow_executor.handle_input", new_callable=AsyncMock)

    payload = {"entry": [{"changes": [{"field": "messages", "value": {"messages": [
        {"from": "15551234567", "id": "wamid.ID", "text": {"body": "ABCDE1234F"}, "type": "text"}
    ]}}]}]}
    body, headers = _signed(payload)
    response = test_client.post(f"{API_PREFIX}/webhooks/whatsapp", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "handled": 1}
    mock_lookup.assert_awaited_once_with("+15551234567")
    mock_handle.assert_awaited_once_with(session, "ABCDE1234F")


def test_webhook_invalid_signature_is_acknowledged_but_ignored(test_client, mocker):
    mocker.patch("engagehub.services.db_service.db_service.log_security_event", new_callable=AsyncMock)
    mock_handle = mocker.patch("engagehub.routes.webhooks.workflow_executor.handle_input", new_callable=AsyncMock)
    headers = {"X-Hub-Signature-256": "sha256=invalid", "Content-Type": "application/json"}

    response = test_client.post(f"{API_PREFIX}/webhooks/whatsapp", content=b'{"entry": []}', headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    mock_handle.assert_not_awaited()


# --- Authentication ---

@pytest.mark.parametrize("path", [
    "/tracking/events", "/tracking/analytics", "/workflows", "/notifications", "/activity-logs", "/auth/admin/me",
])
def test_protected_routes_require_token(test_client, path):
    response = test_client.get(f"{API_PREFIX}{path}")
    assert response.status_code == 401


def test_garbage_token_is_rejected(test_client):
    response = test_client.get(f"{API_PREFIX}/tracking/events", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_revoked_token_is_rejected(test_client, mocker):
    token = jwt_service.create_role_token("admin", "65f000000000000000000001")
    mocker.patch("engagehub.services.db_service.db_service.get_login_token", new_callable=AsyncMock, return_value=None)
    response = test_client.get(f"{API_PREFIX}/tracking/events", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_wrong_role_is_forbidden(test_client, login_as):
    headers = login_as("agent")
    response = test_client.get(f"{API_PREFIX}/tracking/analytics", headers=headers)
    assert response.status_code == 403


# --- Tracking ---

def test_track_event_persists_and_returns_id(test_client, login_as, mocker):
    headers = login_as("admin")
    mock_insert = mocker.patch("engagehub.services.db_service.db_service.insert_tracking_event",
                               new_callable=AsyncMock, return_value="evt_1")

    response = test_client.post(f"{API_PREFIX}/tracking/events", headers=headers, json={
        "event_type": "promo_click", "event_category": "custom", "attributes": {"campaign": "diwali"},
    })

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"success": True, "event_type": "promo_click", "event_id": "evt_1"}
    stored = mock_insert.await_args.args[0]
    assert stored["event_type"] == "promo_click"
    assert stored["metadata"]["attributes"] == {"campaign": "diwali"}


def test_track_event_without_category_is_rejected(test_client, login_as, mocker):
    headers = login_as("admin")
    mock_insert = mocker.patch("engagehub.services.db_service.db_service.insert_tracking_event", new_callable=AsyncMock)

    response = test_client.post(f"{API_PREFIX}/tracking/events", headers=headers, json={"event_type": "promo_click"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    mock_insert.assert_not_awaited()


def test_list_tracking_events_applies_filters(test_client, login_as, mocker):
    headers = login_as("superadmin")
    mock_list = mocker.patch("engagehub.services.db_service.db_service.list_tracking_events",
                             new_callable=AsyncMock, return_value=([{"event_type": "kyc_verification"}], 1))

    response = test_client.get(f"{API_PREFIX}/tracking/events", headers=headers,
                               params={"event_category": "kyc", "workflow_id": "w1", "page": 2, "limit": 10})

    assert response.status_code == 200
    assert response.json()["data"]["pagination"] == {"page": 2, "limit": 10, "total": 1}
    mock_list.assert_awaited_once_with({"event_category": "kyc", "workflow_id": "w1"}, 2, 10)


def test_unified_analytics(test_client, login_as, mocker):
    headers = login_as("admin")
    analytics = {"event_breakdown": [], "kyc_funnel": [], "user_journeys": [], "total_events": 0}
    mock_analytics = mocker.patch("engagehub.services.db_service.db_service.get_unified_analytics",
                                  new_callable=AsyncMock, return_value=analytics)

    response = test_client.get(f"{API_PREFIX}/tracking/analytics", headers=headers, params={"workflow_id": "w1"})

    assert response.status_code == 200
    assert response.json()["data"] == analytics
    assert mock_analytics.await_args.kwargs["workflow_id"] == "w1"


# --- Tracking WebSocket ---

def test_tracking_socket_rejects_missing_token(test_client):
    with pytest.raises(WebSocketDisconnect):
        with test_client.websocket_connect("/ws/tracking"):
            pass


def test_tracking_socket_receives_data_layer_push(test_client, login_as):
    headers = login_as("admin")
    token = headers["Authorization"].split(" ", 1)[1]

    with test_client.websocket_connect(f"/ws/tracking?token={token}") as websocket:
        response = test_client.post(f"{API_PREFIX}/tracking/data-layer", headers=headers,
                                    json={"event_name": "kyc_started", "data": {"step": "pan"}})
        assert response.status_code == 200
        assert response.json()["data"]["clients"] == 1

        message = websocket.receive_json()
        assert message["event"] == "kyc_started"
        assert message["category"] == "data_layer"
        assert message["step"] == "pan"


# --- Workflows ---

def test_create_workflow_rejects_broken_graph(test_client, login_as, mocker):
    headers = login_as("admin")
    mock_insert = mocker.patch("engagehub.services.db_service.db_service.insert_document", new_callable=AsyncMock)

    response = test_client.post(f"{API_PREFIX}/workflows", headers=headers, json={
        "name": "PAN KYC", "start_node_id": "welcome",
        "nodes": [{"node_id": "welcome", "name": "Welcome", "type": "message", "next_node_id": "missing"}],
    })

    assert response.status_code == 400
    assert response.json()["error"]["error_code"] == "UNKNOWN_NODE_REFERENCE"
    mock_insert.assert_not_awaited()


def test_create_workflow(test_client, login_as, mocker):
    headers = login_as("admin")
    mocker.patch("engagehub.services.db_service.db_service.log_activity", new_callable=AsyncMock)
    mock_insert = mocker.patch("engagehub.services.db_service.db_service.insert_document", new_callable=AsyncMock,
                               return_value={"_id": "wf1", "name": "PAN KYC"})

    response = test_client.post(f"{API_PREFIX}/workflows", headers=headers, json={
        "name": "PAN KYC", "start_node_id": "welcome",
        "nodes": [{"node_id": "welcome", "name": "Welcome", "type": "message", "content": "Hi"}],
    })

    assert response.status_code == 201
    assert response.json()["data"]["workflow"]["_id"] == "wf1"
    collection, admin_id, data = mock_insert.await_args.args
    assert collection == "workflows"
    assert admin_id == "65f000000000000000000001"
    assert data["nodes"][0]["node_id"] == "welcome"


# --- Ownership of admin resources ---

OWNER_ID = "65f000000000000000000001"
OTHER_ADMIN_ID = "65f000000000000000000002"


@pytest.mark.parametrize("path", [
    "/products/65f0000000000000000000a1",
    "/product-catalogs/65f0000000000000000000a1",
    "/whatsapp-templates/65f0000000000000000000a1",
    "/workflows/65f0000000000000000000a1",
])
def test_other_admins_document_is_forbidden(test_client, login_as, mocker, path):
    headers = login_as("admin", OTHER_ADMIN_ID)
    mocker.patch("engagehub.services.db_service.db_service.get_document", new_callable=AsyncMock,
                 return_value={"_id": "65f0000000000000000000a1", "admin_id": OWNER_ID})

    response = test_client.get(f"{API_PREFIX}{path}", headers=headers)

    assert response.status_code == 403
    assert response.json()["success"] is False


@pytest.mark.parametrize("path", ["/users/65f0000000000000000000b1", "/agents/65f0000000000000000000b1"])
def test_other_admins_account_is_forbidden(test_client, login_as, path):
    # login_as resolves every account to one with no admin_id
    response = test_client.get(f"{API_PREFIX}{path}", headers=login_as("admin", OTHER_ADMIN_ID))
    assert response.status_code == 403


def test_other_admins_call_is_forbidden(test_client, login_as, mocker):
    headers = login_as("admin", OTHER_ADMIN_ID)
    mocker.patch("engagehub.services.db_service.db_service.get_call_by_sid", new_callable=AsyncMock,
                 return_value={"_id": "c1", "call_sid": "CA1", "admin_id": OWNER_ID})
    mock_exotel = mocker.patch("engagehub.routes.calls.exotel_service.get_call", new_callable=AsyncMock)

    response = test_client.get(f"{API_PREFIX}/calls/CA1", headers=headers)

    assert response.status_code == 403
    mock_exotel.assert_not_awaited()


def test_missing_document_is_not_found(test_client, login_as, mocker):
    headers = login_as("admin", OWNER_ID)
    mocker.patch("engagehub.services.db_service.db_service.get_document", new_callable=AsyncMock, return_value=None)

    response = test_client.get(f"{API_PREFIX}/products/65f0000000000000000000a1", headers=headers)

    assert response.status_code == 404
    assert response.json()["message"] == "Product not found"


def test_http_errors_use_response_envelope(test_client, login_as):
    response = test_client.get(f"{API_PREFIX}/tracking/analytics", headers=login_as("agent"))
    body = response.json()
    assert response.status_code == 403
    assert body["success"] is False
    assert body["message"]
    assert body["version"] == settings.api_version


# --- Product catalogs ---

@pytest.fixture
def owned_catalog(mocker):
    def _catalog(**fields):
        catalog = {"_id": "65f0000000000000000000c1", "admin_id": OWNER_ID, "name": "Main",
                   "status": "active", "is_default": False, **fields}
        mocker.patch("engagehub.services.db_service.db_service.get_document", new_callable=AsyncMock,
                     return_value=catalog)
        mocker.patch("engagehub.services.db_service.db_service.log_activity", new_callable=AsyncMock)
        return catalog
    return _catalog


def test_default_catalog_cannot_be_deleted(test_client, login_as, owned_catalog, mocker):
    headers = login_as("admin", OWNER_ID)
    owned_catalog(is_default=True)
    mock_delete = mocker.patch("engagehub.services.db_service.db_service.delete_document", new_callable=AsyncMock)

    response = test_client.delete(f"{API_PREFIX}/product-catalogs/65f0000000000000000000c1", headers=headers)

    assert response.status_code == 400
    mock_delete.assert_not_awaited()


def test_catalog_with_products_cannot_be_deleted(test_client, login_as, owned_catalog, mocker):
    headers = login_as("admin", OWNER_ID)
    owned_catalog()
    mocker.patch("engagehub.services.db_service.db_service.count_catalog_products", new_callable=AsyncMock, return_value=2)
    mock_delete = mocker.patch("engagehub.services.db_service.db_service.delete_document", new_callable=AsyncMock)

    response = test_client.delete(f"{API_PREFIX}/product-catalogs/65f0000000000000000000c1", headers=headers)

    assert response.status_code == 400
    assert "2 products" in response.json()["message"]
    mock_delete.assert_not_awaited()


def test_empty_catalog_can_be_deleted(test_client, login_as, owned_catalog, mocker):
    headers = login_as("admin", OWNER_ID)
    owned_catalog()
    mocker.patch("engagehub.services.db_service.db_service.count_catalog_products", new_callable=AsyncMock, return_value=0)
    mock_delete = mocker.patch("engagehub.services.db_service.db_service.delete_document", new_callable=AsyncMock)

    response = test_client.delete(f"{API_PREFIX}/product-catalogs/65f0000000000000000000c1", headers=headers)

    assert response.status_code == 200
    mock_delete.assert_awaited_once_with("product_catalogs", "65f0000000000000000000c1")


def test_only_active_catalog_can_become_default(test_client, login_as, owned_catalog, mocker):
    headers = login_as("admin", OWNER_ID)
    owned_catalog(status="draft")
    mock_default = mocker.patch("engagehub.services.db_service.db_service.set_default_catalog", new_callable=AsyncMock)

    response = test_client.post(f"{API_PREFIX}/product-catalogs/65f0000000000000000000c1/default", headers=headers)

    assert response.status_code == 400
    mock_default.assert_not_awaited()


def test_active_catalog_becomes_default(test_client, login_as, owned_catalog, mocker):
    headers = login_as("admin", OWNER_ID)
    owned_catalog()
    mock_default = mocker.patch("engagehub.services.db_service.db_service.set_default_catalog", new_callable=AsyncMock,
                                return_value={"_id": "65f0000000000000000000c1", "is_default": True})

    response = test_client.post(f"{API_PREFIX}/product-catalogs/65f0000000000000000000c1/default", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["catalog"]["is_default"] is True
    mock_default.assert_awaited_once_with(OWNER_ID, "65f0000000000000000000c1")


# --- Exotel webhooks ---

def test_call_status_webhook_answers_200_when_store_fails(test_client, mocker):
    mocker.patch("engagehub.services.db_service.db_service.update_call_by_sid", new_callable=AsyncMock,
                 side_effect=RuntimeError("mongo down"))
    mock_track = mocker.patch("engagehub.routes.calls.tracking_service.track_call_status", new_callable=AsyncMock)

    response = test_client.post(f"{API_PREFIX}/calls/webhooks/status", data={"CallSid": "CA1", "Status": "completed"})

    assert response.status_code == 200
    assert response.json() == {"status": "error"}
    mock_track.assert_not_awaited()


# --- User OTP ---

def test_user_otp_resend_is_throttled(test_client, mocker):
    mocker.patch("engagehub.routes.auth.cache_service.get", new_callable=AsyncMock, return_value="1")
    mock_send = mocker.patch("engagehub.routes.auth.whatsapp_service.send_otp", new_callable=AsyncMock)

    response = test_client.post(f"{API_PREFIX}/auth/user/otp", json={"phone": "+919876543210"})

    assert response.status_code == 429
    mock_send.assert_not_awaited()


def test_user_otp_send_starts_cooldown(test_client, mocker):
    mocker.patch("engagehub.routes.auth.cache_service.get", new_callable=AsyncMock, return_value=None)
    mock_set = mocker.patch("engagehub.routes.auth.cache_service.set", new_callable=AsyncMock)
    mocker.patch("engagehub.services.db_service.db_service.get_user_by_phone", new_callable=AsyncMock,
                 return_value={"_id": "65f0000000000000000000d1", "phone": "+919876543210", "status": True})
    mocker.patch("engagehub.services.db_service.db_service.set_user_otp", new_callable=AsyncMock)
    mocker.patch("engagehub.routes.auth.whatsapp_service.send_otp", new_callable=AsyncMock, return_value="wamid.1")

    response = test_client.post(f"{API_PREFIX}/auth/user/otp", json={"phone": "+919876543210"})

    assert response.status_code == 200
    mock_set.assert_awaited_once_with("otp_cooldown:+919876543210", "1", ttl=settings.otp_resend_cooldown_seconds)
