# /engagehub/services/tracking_service.py

"""
Unified tracking pipeline.

Every tracked event goes through `TrackingService.track_event`:

1. validate that `event_type` and `event_category` are present,
2. persist the record (stored as given, sensitive input included),
3. publish a broadcast copy with sensitive input redacted,
4. best-effort mirror the event into a GTM tag.

Steps 3 and 4 never raise. The specialized trackers only shape domain
events (workflow nodes, KYC steps, API calls...) into the unified record.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from engagehub.models.tracking import (
    ApiCallMetadata,
    CallStatusMetadata,
    ConditionMetadata,
    CustomMetadata,
    EventCategory,
    KycStatusMetadata,
    KycStepMetadata,
    NodeExecutionMetadata,
    TrackingResult,
    UnifiedTrackingEvent,
    UserInputMetadata,
    WorkflowCompletionMetadata,
    WorkflowStartMetadata,
)
from engagehub.services.db_service import db_service
from engagehub.services.gtm_tag_sync import GtmTagSynchronizer, gtm_tag_synchronizer
from engagehub.services.tracking_broadcaster import TrackingBroadcaster, tracking_broadcaster
from engagehub.utils.errors import ValidationAppError
from engagehub.utils.metrics import tracking_events_counter

logger = logging.getLogger(__name__)

SENSITIVE_KEYWORDS = ("password", "otp", "pin", "aadhaar", "pan", "account")
REDACTED = "[REDACTED]"
REQUIRED_FIELDS = ("event_type", "event_category")


class TrackingValidationError(ValidationAppError):
    """The event is missing event_type or event_category (or is malformed)."""


class TrackingEventStore(Protocol):
    async def insert_tracking_event(self, event: Dict[str, Any]) -> str: ...

    async def get_unified_analytics(
        self,
        workflow_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]: ...


def is_sensitive_variable(variable_name: Optional[str]) -> bool:
    if not variable_name:
        return False
    lowered = variable_name.lower()
    return any(keyword in lowered for keyword in SENSITIVE_KEYWORDS)


def mask_input_value(value: Any) -> Any:
    """Length-only placeholder stored for sensitive workflow input."""
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return f"[{len(text)} characters]" if text else "[empty]"


def build_broadcast_payload(event: UnifiedTrackingEvent, event_id: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "event": event.event_type,
        "category": event.event_category,
        **event.model_dump(mode="json", exclude_none=True),
    }
    if event_id:
        payload["event_id"] = event_id
    if event.input_value is not None and is_sensitive_variable(event.input_variable):
        payload["input_value"] = REDACTED
    return payload


def _field(entity: Any, *names: str) -> Any:
    """Read the first non-None attribute/key from a document or model."""
    if entity is None:
        return None
    for name in names:
        if isinstance(entity, Mapping):
            value = entity.get(name)
        else:
            value = getattr(entity, name, None)
        if value is not None:
            return value
    return None


def _entity_id(entity: Any) -> Optional[str]:
    value = _field(entity, "_id", "id")
    return str(value) if value is not None else None


class TrackingService:
    def __init__(
        self,
        store: TrackingEventStore,
        broadcaster: TrackingBroadcaster,
        tag_sync: Optional[GtmTagSynchronizer] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.tag_sync = tag_sync

    # ==================== Core ====================

    @staticmethod
    def build_event(data: Union[UnifiedTrackingEvent, Mapping[str, Any]]) -> UnifiedTrackingEvent:
        if isinstance(data, UnifiedTrackingEvent):
            return data
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise TrackingValidationError(
                "event_type and event_category are required",
                {"missing": missing},
            )
        try:
            return UnifiedTrackingEvent.model_validate(dict(data))
        except ValidationError as e:
            raise TrackingValidationError(
                "Invalid tracking event",
                {"errors": e.errors(include_url=False)},
            ) from e

    async def track_event(self, data: Union[UnifiedTrackingEvent, Mapping[str, Any]]) -> TrackingResult:
        event = self.build_event(data)
        if not event.event_type.strip() or not event.event_category.strip():
            raise TrackingValidationError("event_type and event_category are required")

        logger.debug(f"Tracking event: {event.event_type} ({event.event_category})")
        try:
            event_id = await self.store.insert_tracking_event(event.model_dump(exclude_none=True))
        except Exception:
            tracking_events_counter.labels(category=event.event_category, status="store_failed").inc()
            raise
        tracking_events_counter.labels(category=event.event_category, status="stored").inc()

        self.broadcaster.publish(build_broadcast_payload(event, event_id))

        if self.tag_sync is not None and self.tag_sync.enabled:
            try:
                await self.tag_sync.sync_tag(event)
            except Exception as e:
                logger.error(f"GTM tag sync failed for {event.event_type}: {e}")

        return TrackingResult(success=True, event_type=event.event_type, event_id=event_id)

    async def safely(self, tracking_call: Awaitable[TrackingResult]) -> Optional[TrackingResult]:
        """Await a tracker from a request path where tracking must not fail the request."""
        try:
            return await tracking_call
        except Exception as e:
            logger.error(f"Tracking failed and was skipped: {e}")
            return None

    # ==================== Workflow trackers ====================

    async def track_workflow_start(self, workflow: Any, session: Any, user: Any = None) -> TrackingResult:
        nodes = _field(workflow, "nodes") or []
        return await self.track_event({
            "event_type": "workflow_start",
            "event_category": EventCategory.WORKFLOW,
            "workflow_id": _entity_id(workflow),
            "workflow_name": _field(workflow, "name"),
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "success": True,
            "metadata": WorkflowStartMetadata(
                workflow_name=_field(workflow, "name"),
                total_nodes=len(nodes),
                start_node_id=_field(workflow, "start_node_id"),
                user_phone=_field(user, "phone") or _field(session, "phone"),
            ),
        })

    async def track_node_execution(
        self,
        node: Any,
        session: Any,
        user: Any = None,
        success: bool = True,
        execution_time_ms: float = 0,
        error_message: Optional[str] = None,
        workflow_name: Optional[str] = None,
    ) -> TrackingResult:
        content = _field(node, "content")
        return await self.track_event({
            "event_type": "node_executed",
            "event_category": EventCategory.WORKFLOW,
            "workflow_id": _field(session, "workflow_id"),
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "node_id": _field(node, "node_id"),
            "node_name": _field(node, "name"),
            "node_type": _field(node, "type"),
            "execution_time_ms": execution_time_ms,
            "success": success,
            "error_message": error_message,
            "metadata": NodeExecutionMetadata(
                workflow_name=workflow_name,
                next_node_id=_field(node, "next_node_id"),
                content_preview=content[:100] if content else None,
            ),
        })

    async def track_user_input(
        self, node: Any, session: Any, user: Any, variable_name: str, input_value: Any
    ) -> TrackingResult:
        sensitive = is_sensitive_variable(variable_name)
        stored_value = mask_input_value(input_value) if sensitive else input_value
        return await self.track_event({
            "event_type": "user_input",
            "event_category": EventCategory.USER_INTERACTION,
            "workflow_id": _field(session, "workflow_id"),
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "node_id": _field(node, "node_id"),
            "node_name": _field(node, "name"),
            "input_variable": variable_name,
            "input_value": stored_value,
            "success": True,
            "metadata": UserInputMetadata(
                input_length=len(input_value) if isinstance(input_value, str) else 0,
                input_type=type(input_value).__name__,
                is_sensitive=sensitive,
            ),
        })

    async def track_condition_evaluation(
        self,
        node: Any,
        session: Any,
        user: Any,
        expression: Optional[str],
        result: bool,
        next_node_id: Optional[str],
    ) -> TrackingResult:
        return await self.track_event({
            "event_type": "condition_evaluated",
            "event_category": EventCategory.WORKFLOW,
            "workflow_id": _field(session, "workflow_id"),
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "node_id": _field(node, "node_id"),
            "node_name": _field(node, "name"),
            "condition_result": result,
            "success": True,
            "metadata": ConditionMetadata(
                condition_expression=expression,
                next_node_id=next_node_id,
                evaluation_path="true_path" if result else "false_path",
            ),
        })

    async def track_workflow_completion(
        self,
        workflow: Any,
        session: Any,
        user: Any = None,
        completed_steps: Optional[int] = None,
        total_nodes: Optional[int] = None,
        execution_time_ms: float = 0,
    ) -> TrackingResult:
        if total_nodes is None:
            total_nodes = len(_field(workflow, "nodes") or [])
        if completed_steps is None:
            completed_steps = len(_field(session, "steps_completed") or [])
        completion = round(completed_steps / total_nodes * 100) if total_nodes > 0 else 0
        completion = min(completion, 100)

        name = _field(workflow, "name") or ""
        is_kyc = "kyc" in name.lower() or bool(_field(workflow, "has_surepass_integration"))
        return await self.track_event({
            "event_type": "kyc_workflow_complete" if is_kyc else "workflow_complete",
            "event_category": EventCategory.KYC if is_kyc else EventCategory.WORKFLOW,
            "workflow_id": _entity_id(workflow),
            "workflow_name": name or None,
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "completion_percentage": completion,
            "execution_time_ms": execution_time_ms,
            "success": True,
            "metadata": WorkflowCompletionMetadata(
                workflow_name=name or None,
                completed_steps=completed_steps,
                total_nodes=total_nodes,
                is_kyc_workflow=is_kyc,
            ),
        })

    # ==================== API & KYC trackers ====================

    async def track_api_call(
        self,
        endpoint: str,
        method: str,
        category: str,
        response_time_ms: float,
        success: bool,
        session: Any = None,
        user: Any = None,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> TrackingResult:
        """`category` is the caller's declaration: "kyc" for verification calls, "api" otherwise."""
        is_kyc = category == EventCategory.KYC
        return await self.track_event({
            "event_type": "kyc_api_call" if is_kyc else "api_call",
            "event_category": category,
            "workflow_id": _field(session, "workflow_id"),
            "session_id": _entity_id(session),
            "user_id": _field(session, "user_id") or _entity_id(user),
            "response_time_ms": response_time_ms,
            "success": success,
            "error_message": error_message,
            "metadata": ApiCallMetadata(
                api_endpoint=endpoint,
                http_method=method.upper(),
                api_category=category,
                status_code=status_code,
                verification_step=endpoint.rstrip("/").split("/")[-1] if is_kyc else None,
            ),
        })

    async def track_kyc_step(
        self,
        user: Any,
        kyc_step: str,
        success: bool = True,
        execution_time_ms: float = 0,
        verification_type: str = "api_verification",
        provider: str = "surepass",
        api_endpoint: Optional[str] = None,
        session: Any = None,
        error_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> TrackingResult:
        return await self.track_event({
            "event_type": "kyc_verification",
            "event_category": EventCategory.KYC,
            "workflow_id": _field(session, "workflow_id"),
            "session_id": _entity_id(session),
            "user_id": _entity_id(user),
            "kyc_step": kyc_step,
            "verification_type": verification_type,
            "success": success,
            "execution_time_ms": execution_time_ms,
            "error_message": error_message,
            "metadata": KycStepMetadata(
                provider=provider,
                user_name=_field(user, "name"),
                user_phone=_field(user, "phone"),
                api_endpoint=api_endpoint,
                additional_context=context or {},
            ),
        })

    async def track_kyc_status(self, user: Any, kyc_status: Mapping[str, Any]) -> TrackingResult:
        steps = {key: bool(value) for key, value in kyc_status.items() if key.startswith("is")}
        completed = [key for key, done in steps.items() if done]
        completion = round(len(completed) / len(steps) * 100) if steps else 0
        return await self.track_event({
            "event_type": "kyc_status_updated",
            "event_category": EventCategory.KYC,
            "user_id": _entity_id(user),
            "completion_percentage": completion,
            "success": True,
            "metadata": KycStatusMetadata(
                steps=steps,
                completed_steps=completed,
                user_phone=_field(user, "phone"),
            ),
        })

    # ==================== Telephony ====================

    async def track_call_status(self, call: Mapping[str, Any]) -> TrackingResult:
        status = call.get("status")
        if status == "completed":
            success = True
        elif status in ("failed", "busy", "no-answer", "canceled"):
            success = False
        else:
            success = None
        try:
            duration = int(call.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0
        return await self.track_event({
            "event_type": "call_status_changed",
            "event_category": EventCategory.COMMUNICATION,
            "user_id": call.get("user_id"),
            "workflow_id": call.get("workflow_id"),
            "success": success,
            "metadata": CallStatusMetadata(
                call_sid=call["call_sid"],
                status=status,
                direction=call.get("direction"),
                duration_seconds=duration,
                recording_url=call.get("recording_url"),
            ),
        })

    # ==================== Manual & data layer ====================

    async def track_custom_event(self, fields: Mapping[str, Any], attributes: Optional[Dict[str, Any]] = None) -> TrackingResult:
        data = {key: value for key, value in fields.items() if value is not None}
        if attributes:
            data["metadata"] = CustomMetadata(attributes=attributes)
        return await self.track_event(data)

    def push_data_layer_event(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Broadcast-only event for client-side data layers; nothing is stored."""
        payload = {
            "event": event_name,
            "category": "data_layer",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(data or {}),
        }
        delivered = self.broadcaster.publish(payload)
        return {"success": True, "event": event_name, "clients": delivered}

    # ==================== Analytics ====================

    async def get_unified_analytics(
        self,
        workflow_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.store.get_unified_analytics(workflow_id=workflow_id, start=start, end=end)


# Globally accessible instance
tracking_service = TrackingService(db_service, tracking_broadcaster, gtm_tag_synchronizer)
