# /engagehub/routes/agents.py

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, AgentCreate, AgentUpdate, AgentRole
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.utils.errors import ConflictError
from engagehub.services import security_service
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service

router = APIRouter(
    prefix="/agents",
    tags=["Agents"],
    dependencies=[Depends(verify_admin_token)]
)


async def _owned_agent(agent_id: str, identity: Identity) -> dict:
    agent = await db_service.get_account("agent", agent_id)
    return ensure_owned(agent, identity["account_id"], "Agent")

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(request: Request, payload: AgentCreate, identity: Identity = Depends(verify_admin_token)):
    if await db_service.find_account_by_email("agent", payload.email_id):
        raise ConflictError("email_id already exists")
    data = payload.model_dump(mode="json")
    data["password"] = security_service.SecurityService.hash_password(payload.password)
    agent = await db_service.create_agent(identity["account_id"], data)
    await record_activity(request, "admin", identity["account_id"], "create", "agent",
                          entity_id=agent["_id"], description=f"Agent {payload.email_id} created")
    return APIResponse(success=True, message="Agent created successfully", data={"agent": agent}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_agents(role: Optional[AgentRole] = None, identity: Identity = Depends(verify_admin_token)):
    agents = await db_service.list_agents(identity["account_id"], role.value if role else None)
    return APIResponse(success=True, message="Agents retrieved successfully",
                       data={"agents": agents, "count": len(agents)}, version=settings.api_version)

@router.get("/{agent_id}", response_model=APIResponse)
async def get_agent(agent_id: str, identity: Identity = Depends(verify_admin_token)):
    agent = await _owned_agent(agent_id, identity)
    return APIResponse(success=True, message="Agent retrieved successfully", data={"agent": agent}, version=settings.api_version)

@router.put("/{agent_id}", response_model=APIResponse)
async def update_agent(request: Request, agent_id: str, payload: AgentUpdate, identity: Identity = Depends(verify_admin_token)):
    await _owned_agent(agent_id, identity)
    updates = payload.model_dump(mode="json", exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    agent = await db_service.update_agent(agent_id, updates)
    await record_activity(request, "admin", identity["account_id"], "update", "agent",
                          entity_id=agent_id, description="Agent updated", metadata={"fields": list(updates)})
    return APIResponse(success=True, message="Agent updated successfully", data={"agent": agent}, version=settings.api_version)

@router.delete("/{agent_id}", response_model=APIResponse)
async def delete_agent(request: Request, agent_id: str, identity: Identity = Depends(verify_admin_token)):
    agent = await _owned_agent(agent_id, identity)
    await db_service.delete_agent(agent_id)
    await record_activity(request, "admin", identity["account_id"], "delete", "agent",
                          entity_id=agent_id, description=f"Agent {agent.get('email_id')} deleted")
    return APIResponse(success=True, message="Agent deleted successfully", version=settings.api_version)
