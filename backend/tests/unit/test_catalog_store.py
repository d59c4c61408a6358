# backend/tests/unit/test_catalog_store.py

import pytest
from bson import ObjectId
from unittest.mock import AsyncMock, MagicMock

from engagehub.services.db_service import db_service

ADMIN_ID = "65f000000000000000000001"
CATALOG_ID = "65f0000000000000000000c1"


@pytest.fixture
def catalogs(mocker):
    """A stand-in product_catalogs collection, reachable by attribute and by key."""
    collection = MagicMock()
    collection.count_documents = AsyncMock(return_value=0)
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId(CATALOG_ID)))
    collection.update_many = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value={"_id": ObjectId(CATALOG_ID), "is_default": True})

    db = MagicMock()
    db.product_catalogs = collection
    db.__getitem__.return_value = collection
    mocker.patch.object(db_service, "db", db)
    return collection


@pytest.mark.asyncio
async def test_first_catalog_becomes_default(catalogs):
    catalog = await db_service.create_catalog(ADMIN_ID, {"name": "Main"})

    assert catalog["is_default"] is True
    assert catalog["status"] == "draft"
    assert catalog["_id"] == CATALOG_ID
    catalogs.count_documents.assert_awaited_once_with({"admin_id": ObjectId(ADMIN_ID)})


@pytest.mark.asyncio
async def test_later_catalogs_are_not_default(catalogs):
    catalogs.count_documents.return_value = 2
    catalog = await db_service.create_catalog(ADMIN_ID, {"name": "Festive"})
    assert catalog["is_default"] is False


@pytest.mark.asyncio
async def test_set_default_unsets_previous_default_first(catalogs):
    order = []
    catalogs.update_many.side_effect = lambda *a, **k: order.append("unset")
    original = catalogs.find_one_and_update.return_value
    catalogs.find_one_and_update.side_effect = lambda *a, **k: order.append("set") or original

    updated = await db_service.set_default_catalog(ADMIN_ID, CATALOG_ID)

    assert order == ["unset", "set"]
    unset_filter = catalogs.update_many.await_args.args[0]
    assert unset_filter == {"admin_id": ObjectId(ADMIN_ID), "is_default": True}
    assert updated == {"_id": CATALOG_ID, "is_default": True}
