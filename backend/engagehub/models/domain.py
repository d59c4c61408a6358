# /engagehub/models/domain.py

from pydantic import BaseModel, Field, computed_field
from typing import Optional, List, Dict, Any
from datetime import datetime
from bson import ObjectId

# Read models over stored documents. Derived values (call duration text,
# KYC completion) are plain computed fields.


def _model_fields(model: type, doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (str(v) if isinstance(v, ObjectId) else v)
            for k, v in doc.items() if k in model.model_fields and k != "id"}


class Call(BaseModel):
    call_sid: str
    admin_id: str
    user_id: Optional[str] = None
    from_number: str
    to_number: str
    caller_id: Optional[str] = None
    direction: str = "outbound"
    status: str = "initiated"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[str] = None
    recording_url: Optional[str] = None
    purpose: str = "other"
    workflow_id: Optional[str] = None

    @computed_field
    @property
    def duration_in_seconds(self) -> int:
        try:
            return int(self.duration) if self.duration else 0
        except ValueError:
            return 0

    @computed_field
    @property
    def duration_formatted(self) -> str:
        seconds = self.duration_in_seconds
        if seconds < 60:
            return f"{seconds}s"
        if seconds < 3600:
            return f"{seconds // 60}m {seconds % 60}s"
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"

    @computed_field
    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @computed_field
    @property
    def has_recording(self) -> bool:
        return bool(self.recording_url)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Call":
        return cls(**_model_fields(cls, doc))


class WorkflowNode(BaseModel):
    node_id: str
    name: str
    type: str
    content: Optional[str] = None
    variable_name: Optional[str] = None
    condition: Optional[str] = None
    true_node_id: Optional[str] = None
    false_node_id: Optional[str] = None
    next_node_id: Optional[str] = None


class Workflow(BaseModel):
    id: str
    name: str
    admin_id: Optional[str] = None
    start_node_id: str
    nodes: List[WorkflowNode] = Field(default_factory=list)
    has_surepass_integration: bool = False
    is_active: bool = True

    def get_node(self, node_id: Optional[str]) -> Optional[WorkflowNode]:
        if not node_id:
            return None
        return next((n for n in self.nodes if n.node_id == node_id), None)

    @property
    def is_kyc_workflow(self) -> bool:
        return "kyc" in self.name.lower() or self.has_surepass_integration

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Workflow":
        return cls(id=str(doc["_id"]), **_model_fields(cls, doc))


class UserSession(BaseModel):
    id: str
    workflow_id: str
    user_id: str
    phone: Optional[str] = None
    admin_id: Optional[str] = None
    current_node_id: Optional[str] = None
    previous_node_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    status: str = "active"
    steps_completed: List[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserSession":
        return cls(id=str(doc["_id"]), **_model_fields(cls, doc))
