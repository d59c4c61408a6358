# /engagehub/routes/workflows.py

from fastapi import APIRouter, Depends, HTTPException, Request, Query, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, WorkflowCreate, WorkflowUpdate, StartSessionRequest
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service
from engagehub.services.workflow_executor import workflow_executor
from engagehub.workflows.validator import validate_workflow_graph

router = APIRouter(
    prefix="/workflows",
    tags=["Workflows"],
    dependencies=[Depends(verify_admin_token)]
)


async def _owned_workflow(workflow_id: str, identity: Identity) -> dict:
    workflow = await db_service.get_document("workflows", workflow_id)
    return ensure_owned(workflow, identity["account_id"], "Workflow")


def _check_graph(nodes: list, start_node_id: str) -> None:
    result = validate_workflow_graph(nodes, start_node_id)
    if not result["is_valid"]:
        raise HTTPException(status_code=400, detail={"error_code": result["error_code"], "message": result["message"]})

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(request: Request, payload: WorkflowCreate, identity: Identity = Depends(verify_admin_token)):
    data = payload.model_dump()
    _check_graph(data["nodes"], data["start_node_id"])
    workflow = await db_service.insert_document("workflows", identity["account_id"], data)
    await record_activity(request, "admin", identity["account_id"], "create", "workflow",
                          entity_id=workflow["_id"], description=f"Workflow {payload.name} created")
    return APIResponse(success=True, message="Workflow created successfully", data={"workflow": workflow}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_workflows(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    workflows, total = await db_service.list_documents(
        "workflows", {"admin_id": db_service.to_object_id(identity["account_id"])}, page, limit
    )
    return APIResponse(
        success=True,
        message="Workflows retrieved successfully",
        data={"workflows": workflows, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/{workflow_id}", response_model=APIResponse)
async def get_workflow(workflow_id: str, identity: Identity = Depends(verify_admin_token)):
    workflow = await _owned_workflow(workflow_id, identity)
    return APIResponse(success=True, message="Workflow retrieved successfully", data={"workflow": workflow}, version=settings.api_version)

@router.put("/{workflow_id}", response_model=APIResponse)
async def update_workflow(request: Request, workflow_id: str, payload: WorkflowUpdate, identity: Identity = Depends(verify_admin_token)):
    current = await _owned_workflow(workflow_id, identity)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "nodes" in updates or "start_node_id" in updates:
        _check_graph(updates.get("nodes", current.get("nodes", [])), updates.get("start_node_id", current.get("start_node_id")))
    workflow = await db_service.update_document("workflows", workflow_id, updates)
    await record_activity(request, "admin", identity["account_id"], "update", "workflow",
                          entity_id=workflow_id, description="Workflow updated", metadata={"fields": list(updates)})
    return APIResponse(success=True, message="Workflow updated successfully", data={"workflow": workflow}, version=settings.api_version)

@router.delete("/{workflow_id}", response_model=APIResponse)
async def delete_workflow(request: Request, workflow_id: str, identity: Identity = Depends(verify_admin_token)):
    workflow = await _owned_workflow(workflow_id, identity)
    await db_service.delete_document("workflows", workflow_id)
    await record_activity(request, "admin", identity["account_id"], "delete", "workflow",
                          entity_id=workflow_id, description=f"Workflow {workflow.get('name')} deleted")
    return APIResponse(success=True, message="Workflow deleted successfully", version=settings.api_version)

@router.post("/{workflow_id}/sessions", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def start_session(request: Request, workflow_id: str, payload: StartSessionRequest, identity: Identity = Depends(verify_admin_token)):
    """Start the workflow for one of the admin's users over WhatsApp."""
    workflow = await _owned_workflow(workflow_id, identity)
    if not workflow.get("is_active", True):
        raise HTTPException(status_code=400, detail="Workflow is not active")
    user = ensure_owned(await db_service.get_account("user", payload.user_id), identity["account_id"], "User")

    session = await workflow_executor.start_session(workflow, user)
    await record_activity(request, "admin", identity["account_id"], "start_session", "workflow",
                          entity_id=workflow_id, description=f"Workflow started for {user.get('phone')}")
    return APIResponse(success=True, message="Workflow session started", data={"session": session.model_dump()}, version=settings.api_version)
