# /engagehub/utils/dependencies.py

import secrets
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import structlog
from fastapi import Request, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from engagehub.config.settings import settings
from engagehub.services import jwt_service, security_service
from engagehub.services.db_service import db_service
from engagehub.utils.errors import NotFoundError, PermissionDeniedError
from engagehub.utils.metrics import webhook_signature_counter
from engagehub.utils.request_utils import get_remote_address

# Request guards: bearer-token verification per role (the token must still
# have a live row in the role's token collection), WhatsApp webhook
# signatures and the /metrics API key.

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"/api/{settings.api_version}/auth/admin/login")
log = structlog.get_logger(__name__)

Identity = Dict[str, Any]


def ensure_owned(document: Optional[Dict[str, Any]], owner_id: Optional[str], label: str) -> Dict[str, Any]:
    """404 when the resource does not exist, 403 when another admin owns it."""
    if not document:
        raise NotFoundError(f"{label} not found")
    if document.get("admin_id") != owner_id:
        raise PermissionDeniedError(f"{label} belongs to another admin")
    return document


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate_token(token: str, *roles: str) -> Identity:
    """
    Resolve a bearer token to the account it was issued for. Shared by the
    HTTP dependencies below and the tracking WebSocket.
    """
    try:
        payload = jwt_service.jwt_service.decode(token)
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    role = payload.get("role")
    account_id = payload.get("sub")
    if payload.get("type") != "access" or not account_id:
        raise _unauthorized("Invalid token")
    if role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")

    token_row = await db_service.get_login_token(role, account_id, token)
    if not token_row:
        raise _unauthorized("Session expired or logged out")
    expires_at = token_row.get("expires_at")
    if expires_at and expires_at < datetime.now(timezone.utc):
        raise _unauthorized("Session expired")

    account = await db_service.get_account(role, account_id)
    if not account:
        raise _unauthorized("Account not found")
    if account.get("status") is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    structlog.contextvars.bind_contextvars(role=role, account_id=account_id)
    return {"role": role, "account_id": account_id, "account": account, "token": token}


async def verify_admin_token(token: str = Depends(oauth2_scheme)) -> Identity:
    return await authenticate_token(token, "admin")

async def verify_agent_token(token: str = Depends(oauth2_scheme)) -> Identity:
    return await authenticate_token(token, "agent")

async def verify_superadmin_token(token: str = Depends(oauth2_scheme)) -> Identity:
    return await authenticate_token(token, "superadmin")

async def verify_user_token(token: str = Depends(oauth2_scheme)) -> Identity:
    return await authenticate_token(token, "user")


def require_roles(*roles: str):
    """Dependency accepting a token issued to any of the given roles."""
    async def dependency(token: str = Depends(oauth2_scheme)) -> Identity:
        return await authenticate_token(token, *roles)
    return dependency


async def read_signed_webhook(request: Request) -> Optional[bytes]:
    """
    Body of a Meta webhook delivery, or None when the signature does not
    match. Meta retries non-200 answers, so callers acknowledge either way.
    """
    body = await request.body()
    signature = request.headers.get("x-hub-signature-256", "")
    if not security_service.SecurityService.verify_webhook_signature(body, signature, settings.whatsapp_app_secret):
        webhook_signature_counter.labels(status="invalid").inc()
        await db_service.log_security_event("invalid_webhook_signature", get_remote_address(request), {"signature": signature[:50]})
        log.warning("Invalid webhook signature.", signature=signature[:50])
        return None
    webhook_signature_counter.labels(status="valid").inc()
    return body


async def verify_metrics_access(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
