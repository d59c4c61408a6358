# backend/tests/unit/test_domain_models.py

import pytest
from bson import ObjectId
from pydantic import ValidationError

from engagehub.models.domain import Call, UserSession, Workflow
from engagehub.models.tracking import UnifiedTrackingEvent, WorkflowStartMetadata


class TestCall:

    @pytest.mark.parametrize("duration, expected", [
        (None, "0s"),
        ("45", "45s"),
        ("125", "2m 5s"),
        ("3725", "1h 2m"),
        ("n/a", "0s"),
    ])
    def test_duration_formatted(self, duration, expected):
        call = Call(call_sid="CA1", admin_id="a1", from_number="+911", to_number="+912", duration=duration)
        assert call.duration_formatted == expected

    def test_from_document_converts_object_ids(self):
        admin_id = ObjectId()
        call = Call.from_document({
            "_id": ObjectId(), "call_sid": "CA1", "admin_id": admin_id,
            "from_number": "+911", "to_number": "+912", "status": "completed",
            "recording_url": "https://recordings.example/CA1.mp3", "raw_exotel": {"ignored": True},
        })
        assert call.admin_id == str(admin_id)
        assert call.is_completed is True
        assert call.has_recording is True
        dumped = call.model_dump()
        assert dumped["duration_in_seconds"] == 0
        assert "raw_exotel" not in dumped


class TestWorkflowModels:

    def test_workflow_from_document(self):
        oid = ObjectId()
        workflow = Workflow.from_document({
            "_id": oid, "name": "Bank KYC", "start_node_id": "n1",
            "nodes": [{"node_id": "n1", "name": "Hi", "type": "message", "content": "Hello"}],
            "created_at": "ignored",
        })
        assert workflow.id == str(oid)
        assert workflow.is_kyc_workflow is True
        assert workflow.get_node("n1").content == "Hello"
        assert workflow.get_node("missing") is None
        assert workflow.get_node(None) is None

    def test_session_from_document(self):
        oid, wf, user = ObjectId(), ObjectId(), ObjectId()
        session = UserSession.from_document({"_id": oid, "workflow_id": wf, "user_id": user, "phone": "+919876543210"})
        assert session.id == str(oid)
        assert session.workflow_id == str(wf)
        assert session.status == "active"
        assert session.data == {}


class TestUnifiedTrackingEvent:

    def test_required_fields(self):
        with pytest.raises(ValidationError):
            UnifiedTrackingEvent(event_type="x")
        with pytest.raises(ValidationError):
            UnifiedTrackingEvent(event_type="", event_category="workflow")

    def test_references_are_stringified(self):
        oid = ObjectId()
        event = UnifiedTrackingEvent(event_type="x", event_category="workflow", workflow_id=oid, user_id=42)
        assert event.workflow_id == str(oid)
        assert event.user_id == "42"

    def test_metadata_variant_is_selected_by_kind(self):
        event = UnifiedTrackingEvent.model_validate({
            "event_type": "workflow_start", "event_category": "workflow",
            "metadata": {"kind": "workflow_start", "workflow_name": "Onboarding", "total_nodes": 4},
        })
        assert isinstance(event.metadata, WorkflowStartMetadata)
        assert event.metadata.total_nodes == 4

    def test_unknown_metadata_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            UnifiedTrackingEvent.model_validate({
                "event_type": "x", "event_category": "custom", "metadata": {"kind": "free_form"},
            })

    def test_completion_percentage_bounds(self):
        with pytest.raises(ValidationError):
            UnifiedTrackingEvent(event_type="x", event_category="workflow", completion_percentage=101)
