# /engagehub/services/activity_service.py

from typing import Any, Dict, Optional
from fastapi import Request

from engagehub.services.db_service import db_service
from engagehub.utils.request_utils import get_remote_address, get_user_agent

# Audit trail helpers used by the route handlers. Entries are scoped to the
# owning admin so admins can list activity on their own resources.


async def record_activity(
    request: Request,
    actor_role: str,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    description: str = "",
    admin_id: Optional[str] = None,
    status: str = "success",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    if admin_id is None and actor_role == "admin":
        admin_id = actor_id
    await db_service.log_activity({
        "actor_role": actor_role,
        "actor_id": actor_id,
        "admin_id": admin_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "description": description,
        "status": status,
        "ip_address": get_remote_address(request),
        "user_agent": get_user_agent(request),
        "metadata": metadata or {},
    })


async def record_identity_activity(request: Request, identity: Dict[str, Any], action: str, entity_type: str, **kwargs: Any) -> None:
    """Shortcut for handlers that already hold the authenticated identity."""
    account = identity.get("account") or {}
    admin_id = identity["account_id"] if identity["role"] == "admin" else account.get("admin_id")
    await record_activity(request, identity["role"], identity["account_id"], action, entity_type, admin_id=admin_id, **kwargs)
