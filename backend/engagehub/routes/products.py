# /engagehub/routes/products.py

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, ProductCreate, ProductUpdate
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service

router = APIRouter(
    prefix="/products",
    tags=["Products"],
    dependencies=[Depends(verify_admin_token)]
)


async def _resolve_catalog(catalog_id: Optional[str], admin_id: str) -> Optional[str]:
    """Explicit catalogs must belong to the admin; otherwise use their default catalog."""
    if catalog_id:
        ensure_owned(await db_service.get_document("product_catalogs", catalog_id), admin_id, "Product catalog")
        return catalog_id
    defaults, _ = await db_service.list_documents(
        "product_catalogs", {"admin_id": db_service.to_object_id(admin_id), "is_default": True}, limit=1
    )
    return defaults[0]["_id"] if defaults else None


async def _owned_product(product_id: str, identity: Identity) -> dict:
    product = await db_service.get_document("products", product_id)
    return ensure_owned(product, identity["account_id"], "Product")

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_product(request: Request, payload: ProductCreate, identity: Identity = Depends(verify_admin_token)):
    data = payload.model_dump()
    data["catalog_id"] = await _resolve_catalog(payload.catalog_id, identity["account_id"])
    product = await db_service.create_product(identity["account_id"], data)
    await record_activity(request, "admin", identity["account_id"], "create", "product",
                          entity_id=product["_id"], description=f"Product {payload.name} created")
    return APIResponse(success=True, message="Product created successfully", data={"product": product}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_products(
    catalog_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    query = {"admin_id": db_service.to_object_id(identity["account_id"])}
    if catalog_id:
        query["catalog_id"] = db_service.to_object_id(catalog_id)
    products, total = await db_service.list_documents("products", query, page, limit)
    return APIResponse(
        success=True,
        message="Products retrieved successfully",
        data={"products": products, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/{product_id}", response_model=APIResponse)
async def get_product(product_id: str, identity: Identity = Depends(verify_admin_token)):
    product = await _owned_product(product_id, identity)
    return APIResponse(success=True, message="Product retrieved successfully", data={"product": product}, version=settings.api_version)

@router.put("/{product_id}", response_model=APIResponse)
async def update_product(request: Request, product_id: str, payload: ProductUpdate, identity: Identity = Depends(verify_admin_token)):
    await _owned_product(product_id, identity)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "catalog_id" in updates:
        catalog_id = await _resolve_catalog(updates["catalog_id"], identity["account_id"])
        updates["catalog_id"] = db_service.to_object_id(catalog_id)
    product = await db_service.update_document("products", product_id, updates)
    await record_activity(request, "admin", identity["account_id"], "update", "product",
                          entity_id=product_id, description="Product updated", metadata={"fields": list(updates)})
    return APIResponse(success=True, message="Product updated successfully", data={"product": product}, version=settings.api_version)

@router.delete("/{product_id}", response_model=APIResponse)
async def delete_product(request: Request, product_id: str, identity: Identity = Depends(verify_admin_token)):
    product = await _owned_product(product_id, identity)
    await db_service.delete_document("products", product_id)
    await record_activity(request, "admin", identity["account_id"], "delete", "product",
                          entity_id=product_id, description=f"Product {product.get('name')} deleted")
    return APIResponse(success=True, message="Product deleted successfully", version=settings.api_version)
