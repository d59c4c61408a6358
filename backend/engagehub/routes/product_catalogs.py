# /engagehub/routes/product_catalogs.py

from fastapi import APIRouter, Depends, HTTPException, Request, Query, status

from engagehub.config.settings import settings
from engagehub.models.api import APIResponse, ProductCatalogCreate, ProductCatalogUpdate, CatalogStatus
from engagehub.utils.dependencies import Identity, ensure_owned, verify_admin_token
from engagehub.services.activity_service import record_activity
from engagehub.services.db_service import db_service

# Product catalogs. Rules: an admin's first catalog is their default, the
# default catalog and catalogs that still hold products cannot be deleted,
# and only an active catalog can become the default.

router = APIRouter(
    prefix="/product-catalogs",
    tags=["Product Catalogs"],
    dependencies=[Depends(verify_admin_token)]
)


async def _owned_catalog(catalog_id: str, identity: Identity) -> dict:
    catalog = await db_service.get_document("product_catalogs", catalog_id)
    return ensure_owned(catalog, identity["account_id"], "Product catalog")

@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_catalog(request: Request, payload: ProductCatalogCreate, identity: Identity = Depends(verify_admin_token)):
    catalog = await db_service.create_catalog(identity["account_id"], payload.model_dump())
    await record_activity(request, "admin", identity["account_id"], "create", "product_catalog",
                          entity_id=catalog["_id"], description=f"Catalog {payload.name} created")
    return APIResponse(success=True, message="Product catalog created successfully", data={"catalog": catalog}, version=settings.api_version)

@router.get("", response_model=APIResponse)
async def list_catalogs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(verify_admin_token)
):
    catalogs, total = await db_service.list_documents(
        "product_catalogs", {"admin_id": db_service.to_object_id(identity["account_id"])}, page, limit
    )
    return APIResponse(
        success=True,
        message="Product catalogs retrieved successfully",
        data={"catalogs": catalogs, "pagination": {"page": page, "limit": limit, "total": total}},
        version=settings.api_version
    )

@router.get("/{catalog_id}", response_model=APIResponse)
async def get_catalog(catalog_id: str, identity: Identity = Depends(verify_admin_token)):
    catalog = await _owned_catalog(catalog_id, identity)
    catalog["product_count"] = await db_service.count_catalog_products(catalog_id)
    return APIResponse(success=True, message="Product catalog retrieved successfully", data={"catalog": catalog}, version=settings.api_version)

@router.put("/{catalog_id}", response_model=APIResponse)
async def update_catalog(request: Request, catalog_id: str, payload: ProductCatalogUpdate, identity: Identity = Depends(verify_admin_token)):
    await _owned_catalog(catalog_id, identity)
    updates = payload.model_dump(mode="json", exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    updated = await db_service.update_document("product_catalogs", catalog_id, updates)
    await record_activity(request, "admin", identity["account_id"], "update", "product_catalog",
                          entity_id=catalog_id, description="Catalog updated", metadata={"fields": list(updates)})
    return APIResponse(success=True, message="Product catalog updated successfully", data={"catalog": updated}, version=settings.api_version)

@router.delete("/{catalog_id}", response_model=APIResponse)
async def delete_catalog(request: Request, catalog_id: str, identity: Identity = Depends(verify_admin_token)):
    catalog = await _owned_catalog(catalog_id, identity)
    if catalog.get("is_default"):
        raise HTTPException(status_code=400, detail="Cannot delete the default catalog")
    product_count = await db_service.count_catalog_products(catalog_id)
    if product_count:
        raise HTTPException(status_code=400, detail=f"Cannot delete a catalog that contains {product_count} products")
    await db_service.delete_document("product_catalogs", catalog_id)
    await record_activity(request, "admin", identity["account_id"], "delete", "product_catalog",
                          entity_id=catalog_id, description=f"Catalog {catalog.get('name')} deleted")
    return APIResponse(success=True, message="Product catalog deleted successfully", version=settings.api_version)

@router.post("/{catalog_id}/default", response_model=APIResponse)
async def set_default_catalog(request: Request, catalog_id: str, identity: Identity = Depends(verify_admin_token)):
    catalog = await _owned_catalog(catalog_id, identity)
    if catalog.get("status") != CatalogStatus.ACTIVE.value:
        raise HTTPException(status_code=400, detail="Only an active catalog can be set as default")
    updated = await db_service.set_default_catalog(identity["account_id"], catalog_id)
    await record_activity(request, "admin", identity["account_id"], "set_default", "product_catalog",
                          entity_id=catalog_id, description=f"Catalog {catalog.get('name')} set as default")
    return APIResponse(success=True, message="Default catalog updated", data={"catalog": updated}, version=settings.api_version)
