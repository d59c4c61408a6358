# /engagehub/models/tracking.py

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Unified tracking event schema. Workflow, KYC, user-input, API-call and
# telephony telemetry share one record shape; the per-category context that
# used to live in a free-form bag is a closed set of metadata variants keyed
# by `kind`.

Scalar = Union[str, int, float, bool, None]


class EventCategory:
    WORKFLOW = "workflow"
    KYC = "kyc"
    API = "api"
    USER_INTERACTION = "user_interaction"
    COMMUNICATION = "communication"
    CUSTOM = "custom"


class WorkflowStartMetadata(BaseModel):
    kind: Literal["workflow_start"] = "workflow_start"
    workflow_name: Optional[str] = None
    total_nodes: int = 0
    start_node_id: Optional[str] = None
    user_phone: Optional[str] = None


class NodeExecutionMetadata(BaseModel):
    kind: Literal["node_execution"] = "node_execution"
    workflow_name: Optional[str] = None
    next_node_id: Optional[str] = None
    content_preview: Optional[str] = None


class UserInputMetadata(BaseModel):
    kind: Literal["user_input"] = "user_input"
    input_length: int = 0
    input_type: str = "str"
    is_sensitive: bool = False


class ConditionMetadata(BaseModel):
    kind: Literal["condition"] = "condition"
    condition_expression: Optional[str] = None
    next_node_id: Optional[str] = None
    evaluation_path: Literal["true_path", "false_path"] = "false_path"


class ApiCallMetadata(BaseModel):
    kind: Literal["api_call"] = "api_call"
    api_endpoint: str
    http_method: str = "GET"
    api_category: str = "api"
    status_code: Optional[int] = None
    verification_step: Optional[str] = None


class WorkflowCompletionMetadata(BaseModel):
    kind: Literal["workflow_completion"] = "workflow_completion"
    workflow_name: Optional[str] = None
    completed_steps: int = 0
    total_nodes: int = 0
    is_kyc_workflow: bool = False


class KycStepMetadata(BaseModel):
    kind: Literal["kyc_step"] = "kyc_step"
    provider: str = "surepass"
    user_name: Optional[str] = None
    user_phone: Optional[str] = None
    api_endpoint: Optional[str] = None
    additional_context: Dict[str, Scalar] = Field(default_factory=dict)


class KycStatusMetadata(BaseModel):
    kind: Literal["kyc_status"] = "kyc_status"
    steps: Dict[str, bool] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list)
    user_phone: Optional[str] = None


class CallStatusMetadata(BaseModel):
    kind: Literal["call_status"] = "call_status"
    call_sid: str
    status: Optional[str] = None
    direction: Optional[str] = None
    duration_seconds: int = 0
    recording_url: Optional[str] = None


class CustomMetadata(BaseModel):
    kind: Literal["custom"] = "custom"
    attributes: Dict[str, Scalar] = Field(default_factory=dict)


TrackingMetadata = Annotated[
    Union[
        WorkflowStartMetadata,
        NodeExecutionMetadata,
        UserInputMetadata,
        ConditionMetadata,
        ApiCallMetadata,
        WorkflowCompletionMetadata,
        KycStepMetadata,
        KycStatusMetadata,
        CallStatusMetadata,
        CustomMetadata,
    ],
    Field(discriminator="kind"),
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnifiedTrackingEvent(BaseModel):
    """Append-only tracking record. Only event_type and event_category are required."""
    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(..., min_length=1)
    event_category: str = Field(..., min_length=1)

    workflow_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None

    # Workflow context
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    node_type: Optional[str] = None
    workflow_name: Optional[str] = None

    # KYC context
    kyc_step: Optional[str] = None
    verification_type: Optional[str] = None

    input_variable: Optional[str] = None
    input_value: Scalar = None
    condition_result: Optional[bool] = None

    execution_time_ms: Optional[float] = None
    response_time_ms: Optional[float] = None
    success: Optional[bool] = None
    completion_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    error_message: Optional[str] = None

    metadata: Optional[TrackingMetadata] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("workflow_id", "session_id", "user_id", mode="before")
    @classmethod
    def stringify_reference(cls, v):
        # ObjectIds and ints arrive from Mongo documents and path params
        if v is None:
            return v
        return str(v)


class TrackingResult(BaseModel):
    success: bool
    event_type: str
    event_id: Optional[str] = None


class TrackEventRequest(BaseModel):
    """Body accepted by the manual tracking endpoint."""
    event_type: Optional[str] = None
    event_category: Optional[str] = None
    workflow_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    kyc_step: Optional[str] = None
    input_variable: Optional[str] = None
    input_value: Scalar = None
    success: Optional[bool] = None
    execution_time_ms: Optional[float] = None
    attributes: Dict[str, Scalar] = Field(default_factory=dict)


class DataLayerPushRequest(BaseModel):
    event_name: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
