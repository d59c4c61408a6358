# backend/tests/unit/test_gtm_tag_sync.py

import asyncio
import pytest

from engagehub.models.tracking import UnifiedTrackingEvent
from engagehub.services.gtm_tag_sync import (
    UNIFIED_TRIGGER_NAME,
    GtmTagSynchronizer,
    KeyedLock,
    build_tag_body,
    build_tag_name,
)


class FakeGtm:
    """In-memory Tag Manager workspace with a yield point on every call."""

    is_configured = True

    def __init__(self):
        self.entities = {"tag": [], "trigger": []}
        self.workspaces = []
        self.updates = []
        self._next_id = 0

    def _new_id(self):
        self._next_id += 1
        return str(self._next_id)

    async def list_workspaces(self, account_id, container_id):
        await asyncio.sleep(0)
        return list(self.workspaces)

    async def create_workspace(self, account_id, container_id, body):
        workspace = {"workspaceId": self._new_id(), **body}
        self.workspaces.append(workspace)
        return workspace

    async def list_entities(self, kind, account_id, container_id, workspace_id):
        await asyncio.sleep(0)
        return [dict(e) for e in self.entities[kind]]

    async def create_entity(self, kind, account_id, container_id, workspace_id, body):
        await asyncio.sleep(0)
        entity = {**body, f"{kind}Id": self._new_id(), "fingerprint": "fp-1"}
        self.entities[kind].append(entity)
        return entity

    async def update_entity(self, kind, account_id, container_id, workspace_id, entity_id, body, fingerprint=None):
        await asyncio.sleep(0)
        self.updates.append((entity_id, fingerprint))
        return {**body, f"{kind}Id": entity_id, "fingerprint": "fp-2"}


def _event(**overrides):
    fields = {"event_type": "kyc_verification", "event_category": "kyc", "kyc_step": "pan", "user_id": "u1"}
    fields.update(overrides)
    return UnifiedTrackingEvent(**fields)


@pytest.fixture
def gtm():
    return FakeGtm()


@pytest.fixture
def synchronizer(gtm):
    return GtmTagSynchronizer(gtm, account_id="6000", container_id="7000", workspace_id="9",
                              measurement_id="G-TEST123")


# --- Naming ---

def test_tag_name_uses_kyc_step_and_user():
    assert build_tag_name(_event()) == "UNIFIED_KYC_KYC_VERIFICATION_pan_u1"


def test_tag_name_cleans_node_name_and_defaults_user():
    event = _event(event_type="node_executed", event_category="workflow", kyc_step=None,
                   node_name="Ask PAN / Step-2", user_id=None)
    assert build_tag_name(event) == "UNIFIED_WORKFLOW_NODE_EXECUTED_ask_pan___step_2_anonymous"


def test_tag_name_falls_back_to_unknown_entity():
    event = _event(kyc_step=None)
    assert build_tag_name(event) == "UNIFIED_KYC_KYC_VERIFICATION_unknown_u1"


def test_tag_body_is_ga4_event_fired_by_trigger():
    body = build_tag_body(_event(execution_time_ms=420), "G-TEST123", "55")
    params = {p["key"]: p for p in body["parameter"]}

    assert body["type"] == "gaawe"
    assert body["firingTriggerId"] == ["55"]
    assert params["eventName"]["value"] == "kyc_kyc_verification"
    assert params["measurementIdOverride"]["value"] == "G-TEST123"
    names = [item["map"][0]["value"] for item in params["eventParameters"]["list"]]
    assert names == ["event_type", "event_category", "user_id", "kyc_step", "execution_time_ms"]


# --- Sync ---

@pytest.mark.asyncio
async def test_sync_creates_trigger_once_and_tag(synchronizer, gtm):
    action, tag = await synchronizer.sync_tag(_event())
    second_action, _ = await synchronizer.sync_tag(_event(kyc_step="aadhaar"))

    assert action == "created"
    assert second_action == "created"
    assert [t["name"] for t in gtm.entities["trigger"]] == [UNIFIED_TRIGGER_NAME]
    assert tag["firingTriggerId"] == [gtm.entities["trigger"][0]["triggerId"]]
    assert len(gtm.entities["tag"]) == 2


@pytest.mark.asyncio
async def test_same_tag_synced_twice_updates_with_fingerprint(synchronizer, gtm):
    await synchronizer.sync_tag(_event())
    action, _ = await synchronizer.sync_tag(_event())

    assert action == "updated"
    assert len(gtm.entities["tag"]) == 1
    assert gtm.updates == [(gtm.entities["tag"][0]["tagId"], "fp-1")]


@pytest.mark.asyncio
async def test_concurrent_syncs_of_one_name_create_at_most_one_tag(synchronizer, gtm):
    results = await asyncio.gather(*[synchronizer.sync_tag(_event()) for _ in range(5)])

    assert len(gtm.entities["tag"]) == 1
    assert len(gtm.entities["trigger"]) == 1
    assert sorted(action for action, _ in results) == ["created"] + ["updated"] * 4
    assert len(synchronizer._locks) == 0


@pytest.mark.asyncio
async def test_sync_skipped_without_measurement_id(gtm):
    synchronizer = GtmTagSynchronizer(gtm, account_id="6000", container_id="7000", workspace_id="9")
    action, tag = await synchronizer.sync_tag(_event())
    assert (action, tag) == ("skipped", None)
    assert gtm.entities["tag"] == []


@pytest.mark.asyncio
async def test_sync_disabled_without_container(gtm):
    synchronizer = GtmTagSynchronizer(gtm, account_id="6000", container_id=None, measurement_id="G-1")
    assert synchronizer.enabled is False
    assert await synchronizer.sync_tag(_event()) == ("skipped", None)


@pytest.mark.asyncio
async def test_workspace_created_when_container_has_none(gtm):
    synchronizer = GtmTagSynchronizer(gtm, account_id="6000", container_id="7000", measurement_id="G-1")
    await synchronizer.sync_tag(_event())

    assert [w["name"] for w in gtm.workspaces] == ["Unified Tracking"]
    assert synchronizer.workspace_id == gtm.workspaces[0]["workspaceId"]


@pytest.mark.asyncio
async def test_keyed_lock_serializes_holders_of_one_key():
    lock = KeyedLock()
    order = []

    async def worker(name):
        async with lock.hold("tag"):
            order.append(f"{name}:in")
            await asyncio.sleep(0)
            order.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a:in", "a:out", "b:in", "b:out"]
    assert len(lock) == 0
