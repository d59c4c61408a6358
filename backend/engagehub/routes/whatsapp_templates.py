# /engagehub/routes/whatsapp_templates.py

from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, Query, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, WhatsappTemplateCreate, WhatsappTemplateUpdate
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service
from engagehub.services.whatsapp_service import whatsapp_service

router = APIRouter(
    prefix="/whatsapp-templates",
    tags=["WhatsApp Templates"],
    dependencies=[Depends(verify_admin_token)]
)


async def _owned_template(template_id: str, identity: Identity) -> dict:
    template = await db_service.get_document("whatsapp_templates", template_id)
    return ensure_owned(template, identity["account_id"], "Template")

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_template(request: Request, payload: WhatsappTemplateCreate, identity: Identity = Depends(verify_admin_token)):
    data = payload.model_dump(mode="json", exclude_none=True)
    data["status"] = "draft"
    template = await db_service.insert_document("whatsapp_templates", identity["account_id"], data)
    await record_activity(request, "admin", identity["account_id"], "create", "whatsapp_template",
                          entity_id=template["_id"], description=f"Template {payload.name} created")
    return APIResponse(success=True, message="Template created successfully", data={"template": template}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    templates, total = await db_service.list_documents(
        "whatsapp_templates", {"admin_id": db_service.to_object_id(identity["account_id"])}, page, limit
    )
    return APIResponse(
        success=True,
        message="Templates retrieved successfully",
        data={"templates": templates, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/{template_id}", response_model=APIResponse)
async def get_template(template_id: str, identity: Identity = Depends(verify_admin_token)):
    template = await _owned_template(template_id, identity)
    return APIResponse(success=True, message="Template retrieved successfully", data={"template": template}, version=settings.api_version)

@router.put("/{template_id}", response_model=APIResponse)
async def update_template(request: Request, template_id: str, payload: WhatsappTemplateUpdate, identity: Identity = Depends(verify_admin_token)):
    template = await _owned_template(template_id, identity)
    if template.get("status") not in ("draft", "rejected"):
        raise HTTPException(status_code=400, detail="Only draft or rejected templates can be edited")
    updates = payload.model_dump(mode="json", exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    updated = await db_service.update_document("whatsapp_templates", template_id, updates)
    await record_activity(request, "admin", identity["account_id"], "update", "whatsapp_template",
                          entity_id=template_id, description="Template updated")
    return APIResponse(success=True, message="Template updated successfully", data={"template": updated}, version=settings.api_version)

@router.delete("/{template_id}", response_model=APIResponse)
async def delete_template(request: Request, template_id: str, identity: Identity = Depends(verify_admin_token)):
    template = await _owned_template(template_id, identity)
    await db_service.delete_document("whatsapp_templates", template_id)
    await record_activity(request, "admin", identity["account_id"], "delete", "whatsapp_template",
                          entity_id=template_id, description=f"Template {template.get('name')} deleted")
    return APIResponse(success=True, message="Template deleted successfully", version=settings.api_version)

@router.post("/{template_id}/submit", response_model=APIResponse)
async def submit_template(request: Request, template_id: str, identity: Identity = Depends(verify_admin_token)):
    """Send the template to Meta for review; the stored status follows Meta's answer."""
    template = await _owned_template(template_id, identity)
    result = await whatsapp_service.submit_template(
        template["name"], template["category"], template.get("language", "en_US"), template["components"]
    )
    updated = await db_service.update_document("whatsapp_templates", template_id, {
        "status": str(result.get("status", "PENDING")).lower(),
        "meta_template_id": result.get("id"),
        "submitted_at": datetime.now(timezone.utc),
    })
    await record_activity(request, "admin", identity["account_id"], "submit", "whatsapp_template",
                          entity_id=template_id, description=f"Template {template['name']} submitted for review")
    return APIResponse(success=True, message="Template submitted for review", data={"template": updated}, version=settings.api_version)
