# /engagehub/routes/gtm.py

from enum import Enum
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Body, Depends, Query, Request

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse
from engagehub.utils.dependencies import Identity, require_roles
from engagehub.services.activity_service import record_identity_activity
from engagehub.services.gtm_service import gtm_service

# Google Tag Manager administration, mirroring the Tag Manager v2 resource
# tree under /gtm/accounts/{account_id}/containers/{container_id}/...

gtm_admin = require_roles("admin", "superadmin")

router = APIRouter(
    prefix="/gtm",
    tags=["Google Tag Manager"],
    dependencies=[Depends(gtm_admin)]
)

CONTAINER = "/accounts/{account_id}/containers/{container_id}"
WORKSPACE = CONTAINER + "/workspaces/{workspace_id}"


class EntityKind(str, Enum):
    TAGS = "tags"
    TRIGGERS = "triggers"
    VARIABLES = "variables"
    FOLDERS = "folders"

    @property
    def singular(self) -> str:
        return self.value[:-1]


def _ok(message: str, data: Any = None) -> APIResponse:
    if isinstance(data, list):
        data = {"items": data, "count": len(data)}
    return APIResponse(success=True, message=message, data=data, version=settings.api_version)

# --- Accounts ---

@router.get("/accounts", response_model=APIResponse)
async def list_accounts():
    return _ok("GTM accounts retrieved", await gtm_service.list_accounts())

@router.get("/accounts/{account_id}", response_model=APIResponse)
async def get_account(account_id: str):
    return _ok("GTM account retrieved", await gtm_service.get_account(account_id))

# --- Containers ---

@router.get("/accounts/{account_id}/containers", response_model=APIResponse)
async def list_containers(account_id: str):
    return _ok("GTM containers retrieved", await gtm_service.list_containers(account_id))

@router.post("/accounts/{account_id}/containers", response_model=APIResponse, status_code=201)
async def create_container(request: Request, account_id: str, body: Dict[str, Any] = Body(...), identity: Identity = Depends(gtm_admin)):
    body.setdefault("usageContext", ["web"])
    container = await gtm_service.create_container(account_id, body)
    await record_identity_activity(request, identity, "create", "gtm_container", entity_id=container.get("containerId"),
                                   description=f"GTM container {body.get('name')} created")
    return _ok("GTM container created", container)

@router.get(CONTAINER, response_model=APIResponse)
async def get_container(account_id: str, container_id: str):
    return _ok("GTM container retrieved", await gtm_service.get_container(account_id, container_id))

@router.put(CONTAINER, response_model=APIResponse)
async def update_container(request: Request, account_id: str, container_id: str, body: Dict[str, Any] = Body(...), identity: Identity = Depends(gtm_admin)):
    container = await gtm_service.update_container(account_id, container_id, body)
    await record_identity_activity(request, identity, "update", "gtm_container", entity_id=container_id,
                                   description="GTM container updated")
    return _ok("GTM container updated", container)

@router.delete(CONTAINER, response_model=APIResponse)
async def delete_container(request: Request, account_id: str, container_id: str, identity: Identity = Depends(gtm_admin)):
    await gtm_service.delete_container(account_id, container_id)
    await record_identity_activity(request, identity, "delete", "gtm_container", entity_id=container_id,
                                   description="GTM container deleted")
    return _ok("GTM container deleted")

# --- Environments ---

@router.get(CONTAINER + "/environments", response_model=APIResponse)
async def list_environments(account_id: str, container_id: str):
    return _ok("GTM environments retrieved", await gtm_service.list_environments(account_id, container_id))

@router.post(CONTAINER + "/environments", response_model=APIResponse, status_code=201)
async def create_environment(account_id: str, container_id: str, body: Dict[str, Any] = Body(...)):
    body.setdefault("type", "user")
    return _ok("GTM environment created", await gtm_service.create_environment(account_id, container_id, body))

@router.put(CONTAINER + "/environments/{environment_id}", response_model=APIResponse)
async def update_environment(account_id: str, container_id: str, environment_id: str, body: Dict[str, Any] = Body(...)):
    return _ok("GTM environment updated", await gtm_service.update_environment(account_id, container_id, environment_id, body))

@router.delete(CONTAINER + "/environments/{environment_id}", response_model=APIResponse)
async def delete_environment(account_id: str, container_id: str, environment_id: str):
    await gtm_service.delete_environment(account_id, container_id, environment_id)
    return _ok("GTM environment deleted")

# --- Workspaces ---

@router.get(CONTAINER + "/workspaces", response_model=APIResponse)
async def list_workspaces(account_id: str, container_id: str):
    return _ok("GTM workspaces retrieved", await gtm_service.list_workspaces(account_id, container_id))

@router.post(CONTAINER + "/workspaces", response_model=APIResponse, status_code=201)
async def create_workspace(account_id: str, container_id: str, body: Dict[str, Any] = Body(...)):
    return _ok("GTM workspace created", await gtm_service.create_workspace(account_id, container_id, body))

@router.get(WORKSPACE, response_model=APIResponse)
async def get_workspace(account_id: str, container_id: str, workspace_id: str):
    return _ok("GTM workspace retrieved", await gtm_service.get_workspace(account_id, container_id, workspace_id))

@router.put(WORKSPACE, response_model=APIResponse)
async def update_workspace(account_id: str, container_id: str, workspace_id: str, body: Dict[str, Any] = Body(...)):
    return _ok("GTM workspace updated", await gtm_service.update_workspace(account_id, container_id, workspace_id, body))

@router.delete(WORKSPACE, response_model=APIResponse)
async def delete_workspace(account_id: str, container_id: str, workspace_id: str):
    await gtm_service.delete_workspace(account_id, container_id, workspace_id)
    return _ok("GTM workspace deleted")

@router.post(WORKSPACE + "/publish", response_model=APIResponse)
async def publish_workspace(
    request: Request,
    account_id: str,
    container_id: str,
    workspace_id: str,
    name: Optional[str] = Query(None, description="Version name"),
    identity: Identity = Depends(gtm_admin)
):
    published = await gtm_service.publish_workspace(account_id, container_id, workspace_id, name)
    await record_identity_activity(request, identity, "publish", "gtm_workspace", entity_id=workspace_id,
                                   description=f"GTM workspace {workspace_id} published")
    return _ok("GTM workspace published", published)

# --- Built-in variables (declared before the generic entity routes) ---

@router.get(WORKSPACE + "/built-in-variables", response_model=APIResponse)
async def list_built_in_variables(account_id: str, container_id: str, workspace_id: str):
    return _ok("Built-in variables retrieved",
               await gtm_service.list_built_in_variables(account_id, container_id, workspace_id))

@router.post(WORKSPACE + "/built-in-variables", response_model=APIResponse)
async def enable_built_in_variables(account_id: str, container_id: str, workspace_id: str, types: List[str] = Query(...)):
    return _ok("Built-in variables enabled",
               await gtm_service.enable_built_in_variables(account_id, container_id, workspace_id, types))

@router.delete(WORKSPACE + "/built-in-variables", response_model=APIResponse)
async def disable_built_in_variables(account_id: str, container_id: str, workspace_id: str, types: List[str] = Query(...)):
    await gtm_service.disable_built_in_variables(account_id, container_id, workspace_id, types)
    return _ok("Built-in variables disabled")

# --- Tags, triggers, variables, folders ---

@router.get(WORKSPACE + "/{kind}", response_model=APIResponse)
async def list_entities(kind: EntityKind, account_id: str, container_id: str, workspace_id: str):
    items = await gtm_service.list_entities(kind.singular, account_id, container_id, workspace_id)
    return _ok(f"GTM {kind.value} retrieved", items)

@router.post(WORKSPACE + "/{kind}", response_model=APIResponse, status_code=201)
async def create_entity(
    request: Request,
    kind: EntityKind,
    account_id: str,
    container_id: str,
    workspace_id: str,
    body: Dict[str, Any] = Body(...),
    identity: Identity = Depends(gtm_admin)
):
    entity = await gtm_service.create_entity(kind.singular, account_id, container_id, workspace_id, body)
    await record_identity_activity(request, identity, "create", f"gtm_{kind.singular}",
                                   description=f"GTM {kind.singular} {body.get('name')} created")
    return _ok(f"GTM {kind.singular} created", entity)

@router.get(WORKSPACE + "/{kind}/{entity_id}", response_model=APIResponse)
async def get_entity(kind: EntityKind, account_id: str, container_id: str, workspace_id: str, entity_id: str):
    entity = await gtm_service.get_entity(kind.singular, account_id, container_id, workspace_id, entity_id)
    return _ok(f"GTM {kind.singular} retrieved", entity)

@router.put(WORKSPACE + "/{kind}/{entity_id}", response_model=APIResponse)
async def update_entity(
    request: Request,
    kind: EntityKind,
    account_id: str,
    container_id: str,
    workspace_id: str,
    entity_id: str,
    body: Dict[str, Any] = Body(...),
    fingerprint: Optional[str] = Query(None),
    identity: Identity = Depends(gtm_admin)
):
    entity = await gtm_service.update_entity(
        kind.singular, account_id, container_id, workspace_id, entity_id, body,
        fingerprint=fingerprint or body.get("fingerprint"),
    )
    await record_identity_activity(request, identity, "update", f"gtm_{kind.singular}",
                                   description=f"GTM {kind.singular} {entity_id} updated")
    return _ok(f"GTM {kind.singular} updated", entity)

@router.delete(WORKSPACE + "/{kind}/{entity_id}", response_model=APIResponse)
async def delete_entity(
    request: Request,
    kind: EntityKind,
    account_id: str,
    container_id: str,
    workspace_id: str,
    entity_id: str,
    identity: Identity = Depends(gtm_admin)
):
    await gtm_service.delete_entity(kind.singular, account_id, container_id, workspace_id, entity_id)
    await record_identity_activity(request, identity, "delete", f"gtm_{kind.singular}",
                                   description=f"GTM {kind.singular} {entity_id} deleted")
    return _ok(f"GTM {kind.singular} deleted")
