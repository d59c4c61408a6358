# /engagehub/services/gtm_tag_sync.py

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from engagehub.config.settings import settings
from engagehub.models.tracking import UnifiedTrackingEvent
from engagehub.services.gtm_service import GtmService, gtm_service
from engagehub.utils.metrics import gtm_sync_counter

# Mirrors tracking events into GTM: one GA4 event tag per derived name, all
# fired by a single custom-event trigger. Tag writes are find-then-create or
# find-then-update, so they are serialized per tag name.

logger = logging.getLogger(__name__)

UNIFIED_TRIGGER_NAME = "UNIFIED_TRACKING_TRIGGER"
UNIFIED_EVENT_NAME = "unified_tracking_event"

_ENTITY_CLEANUP = re.compile(r"[^a-zA-Z0-9_]")


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


def build_tag_name(event: UnifiedTrackingEvent) -> str:
    entity = event.node_name or event.kyc_step or event.workflow_name or "unknown"
    clean_entity = _ENTITY_CLEANUP.sub("_", entity).lower()
    user_id = event.user_id or "anonymous"
    return f"UNIFIED_{event.event_category.upper()}_{event.event_type.upper()}_{clean_entity}_{user_id}"


def _event_parameter(name: str, value: Any) -> Dict[str, Any]:
    return {
        "type": "map",
        "map": [
            {"key": "name", "type": "template", "value": name},
            {"key": "value", "type": "template", "value": str(value)},
        ],
    }


def build_event_parameters(event: UnifiedTrackingEvent) -> List[Dict[str, Any]]:
    params = [
        _event_parameter("event_type", event.event_type),
        _event_parameter("event_category", event.event_category),
        _event_parameter("user_id", event.user_id or "anonymous"),
    ]
    optional = [
        ("workflow_id", event.workflow_id),
        ("kyc_step", event.kyc_step),
        ("execution_time_ms", event.execution_time_ms),
        ("completion_percentage", event.completion_percentage),
    ]
    for name, value in optional:
        if value:
            params.append(_event_parameter(name, value))
    return params


def build_tag_body(event: UnifiedTrackingEvent, measurement_id: str, trigger_id: Optional[str]) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "name": build_tag_name(event),
        "type": "gaawe",
        "parameter": [
            {"key": "eventName", "type": "template", "value": f"{event.event_category}_{event.event_type}"},
            {"key": "measurementIdOverride", "type": "template", "value": measurement_id},
            {"key": "eventParameters", "type": "list", "list": build_event_parameters(event)},
        ],
    }
    if trigger_id:
        body["firingTriggerId"] = [trigger_id]
    return body


def unified_trigger_body() -> Dict[str, Any]:
    return {
        "name": UNIFIED_TRIGGER_NAME,
        "type": "customEvent",
        "customEventFilter": [
            {
                "type": "equals",
                "parameter": [
                    {"key": "arg0", "type": "template", "value": "{{_event}}"},
                    {"key": "arg1", "type": "template", "value": UNIFIED_EVENT_NAME},
                ],
            }
        ],
    }


class GtmTagSynchronizer:
    def __init__(
        self,
        gtm: GtmService,
        account_id: Optional[str],
        container_id: Optional[str],
        workspace_id: Optional[str] = None,
        measurement_id: Optional[str] = None,
    ):
        self.gtm = gtm
        self.account_id = account_id
        self.container_id = container_id
        self.workspace_id = workspace_id
        self.measurement_id = measurement_id
        self._locks = KeyedLock()
        self._trigger_ids: Dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.gtm.is_configured and self.account_id and self.container_id)

    async def _resolve_workspace(self) -> str:
        if self.workspace_id:
            return self.workspace_id
        async with self._locks.hold("workspace"):
            if not self.workspace_id:
                workspaces = await self.gtm.list_workspaces(self.account_id, self.container_id)
                if not workspaces:
                    workspace = await self.gtm.create_workspace(
                        self.account_id, self.container_id, {"name": "Unified Tracking"}
                    )
                    workspaces = [workspace]
                self.workspace_id = workspaces[0]["workspaceId"]
                logger.info(f"Using GTM workspace {self.workspace_id} for unified tracking tags")
        return self.workspace_id

    async def get_or_create_unified_trigger(self, workspace_id: str) -> str:
        cached = self._trigger_ids.get(workspace_id)
        if cached:
            return cached
        async with self._locks.hold(f"trigger:{workspace_id}"):
            if workspace_id in self._trigger_ids:
                return self._trigger_ids[workspace_id]
            triggers = await self.gtm.list_entities("trigger", self.account_id, self.container_id, workspace_id)
            trigger = next((t for t in triggers if t.get("name") == UNIFIED_TRIGGER_NAME), None)
            if trigger is None:
                trigger = await self.gtm.create_entity(
                    "trigger", self.account_id, self.container_id, workspace_id, unified_trigger_body()
                )
                logger.info(f"Created GTM trigger {UNIFIED_TRIGGER_NAME} ({trigger.get('triggerId')})")
            self._trigger_ids[workspace_id] = trigger["triggerId"]
            return trigger["triggerId"]

    async def sync_tag(self, event: UnifiedTrackingEvent) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Create or update the GA4 tag for this event. Returns the action taken
        ("created", "updated" or "skipped") and the tag resource.
        """
        if not self.enabled:
            return "skipped", None
        if not self.measurement_id:
            logger.warning("GA4 measurement ID is not configured; skipping GTM tag sync.")
            gtm_sync_counter.labels(action="skipped").inc()
            return "skipped", None

        workspace_id = await self._resolve_workspace()
        trigger_id = await self.get_or_create_unified_trigger(workspace_id)
        body = build_tag_body(event, self.measurement_id, trigger_id)
        tag_name = body["name"]

        async with self._locks.hold(tag_name):
            tags = await self.gtm.list_entities("tag", self.account_id, self.container_id, workspace_id)
            existing = next((t for t in tags if t.get("name") == tag_name), None)
            if existing:
                merged = {**existing, **body, "fingerprint": existing.get("fingerprint")}
                tag = await self.gtm.update_entity(
                    "tag", self.account_id, self.container_id, workspace_id,
                    existing["tagId"], merged, fingerprint=existing.get("fingerprint"),
                )
                action = "updated"
            else:
                tag = await self.gtm.create_entity("tag", self.account_id, self.container_id, workspace_id, body)
                action = "created"

        gtm_sync_counter.labels(action=action).inc()
        logger.debug(f"GTM tag {tag_name} {action}")
        return action, tag


# Globally accessible instance
gtm_tag_synchronizer = GtmTagSynchronizer(
    gtm_service,
    account_id=settings.gtm_default_account_id,
    container_id=settings.gtm_default_container_id,
    workspace_id=settings.gtm_default_workspace_id,
    measurement_id=settings.ga4_measurement_id,
)
