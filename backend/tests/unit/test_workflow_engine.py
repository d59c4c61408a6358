# backend/tests/unit/test_workflow_engine.py

import pytest
from unittest.mock import AsyncMock, MagicMock

from engagehub.models.domain import Workflow, WorkflowNode
from engagehub.services.workflow_executor import MAX_STEPS_PER_RUN, WorkflowExecutor
from engagehub.workflows.engine import apply_input, plan_node, should_pause_before
from engagehub.workflows.validator import validate_workflow_graph

KYC_NODES = [
    {"node_id": "welcome", "name": "Welcome", "type": "message",
     "content": "Hi {{ name }}! Let's verify your PAN.", "next_node_id": "ask_pan"},
    {"node_id": "ask_pan", "name": "Ask PAN", "type": "input",
     "content": "Please send your PAN number", "variable_name": "pan_number", "next_node_id": "check_pan"},
    {"node_id": "check_pan", "name": "Check PAN", "type": "condition",
     "condition": "pan_number.length == 10", "true_node_id": "done", "false_node_id": "retry"},
    {"node_id": "retry", "name": "Retry", "type": "message", "content": "That PAN looks wrong."},
    {"node_id": "done", "name": "Done", "type": "message", "content": "Thanks, PAN {{ pan_number }} received."},
]


def _workflow(nodes=None, start="welcome", name="PAN KYC"):
    return {"_id": "wf1", "name": name, "admin_id": "a1", "start_node_id": start, "nodes": nodes or KYC_NODES}


# --- Validator ---

class TestValidator:

    def test_valid_graph(self):
        assert validate_workflow_graph(KYC_NODES, "welcome")["is_valid"] is True

    def test_duplicate_node_id(self):
        nodes = KYC_NODES + [{"node_id": "done", "name": "Again", "type": "message"}]
        assert validate_workflow_graph(nodes, "welcome")["error_code"] == "DUPLICATE_NODE_ID"

    def test_missing_and_unknown_start(self):
        assert validate_workflow_graph(KYC_NODES, None)["error_code"] == "MISSING_START_NODE"
        assert validate_workflow_graph(KYC_NODES, "nope")["error_code"] == "UNKNOWN_START_NODE"

    def test_unknown_reference(self):
        nodes = [{"node_id": "a", "name": "A", "type": "message", "next_node_id": "ghost"}]
        assert validate_workflow_graph(nodes, "a")["error_code"] == "UNKNOWN_NODE_REFERENCE"

    def test_input_without_variable_and_condition_without_expression(self):
        nodes = [{"node_id": "a", "name": "A", "type": "input"}]
        assert validate_workflow_graph(nodes, "a")["error_code"] == "MISSING_VARIABLE_NAME"
        nodes = [{"node_id": "a", "name": "A", "type": "condition"}]
        assert validate_workflow_graph(nodes, "a")["error_code"] == "MISSING_CONDITION"


# --- Pure engine ---

class TestEngine:

    def test_message_node_renders_content(self):
        node = WorkflowNode(**KYC_NODES[0])
        step = plan_node(node, {"name": "Asha"})
        assert step["action"] == "send"
        assert step["message"] == "Hi Asha! Let's verify your PAN."
        assert step["next_node_id"] == "ask_pan"
        assert step["wait_for_input"] is False

    def test_input_node_prompts_and_waits(self):
        step = plan_node(WorkflowNode(**KYC_NODES[1]), {})
        assert step["action"] == "prompt"
        assert step["wait_for_input"] is True

    def test_condition_node_branches(self):
        node = WorkflowNode(**KYC_NODES[2])
        assert plan_node(node, {"pan_number": "ABCDE1234F"})["next_node_id"] == "done"
        step = plan_node(node, {"pan_number": "ABC"})
        assert step["next_node_id"] == "retry"
        assert step["condition_result"] is False

    def test_unknown_node_type_is_unsupported(self):
        step = plan_node(WorkflowNode(node_id="x", name="X", type="api_call"), {})
        assert step["action"] == "unsupported"

    def test_apply_input_stores_variable(self):
        result = apply_input(WorkflowNode(**KYC_NODES[1]), {"name": "Asha"}, "ABCDE1234F")
        assert result["accepted"] is True
        assert result["data"] == {"name": "Asha", "pan_number": "ABCDE1234F"}
        assert result["next_node_id"] == "check_pan"

    def test_apply_input_rejected_on_non_input_node(self):
        result = apply_input(WorkflowNode(**KYC_NODES[0]), {}, "hello")
        assert result["accepted"] is False

    def test_pause_before_silent_input(self):
        nodes = [
            {"node_id": "m", "name": "M", "type": "message", "content": "hi", "next_node_id": "i"},
            {"node_id": "i", "name": "I", "type": "input", "variable_name": "v"},
        ]
        workflow = Workflow.from_document(_workflow(nodes, start="m"))
        assert should_pause_before(workflow, "i") is True
        assert should_pause_before(workflow, "m") is False


# --- Executor ---

@pytest.fixture
def executor():
    db = MagicMock()
    db.create_session = AsyncMock(return_value={
        "_id": "s1", "workflow_id": "wf1", "user_id": "u1", "admin_id": "a1",
        "phone": "+919876543210", "data": {}, "status": "active", "steps_completed": [],
    })
    db.save_session = AsyncMock()
    db.get_document = AsyncMock(return_value=_workflow())
    whatsapp = MagicMock()
    whatsapp.send_message = AsyncMock(return_value="wamid.1")
    tracker = MagicMock()
    tracker.safely = AsyncMock()
    for name in ("track_workflow_start", "track_node_execution", "track_user_input",
                 "track_condition_evaluation", "track_workflow_completion"):
        setattr(tracker, name, MagicMock(return_value="tracked"))
    return WorkflowExecutor(db=db, whatsapp=whatsapp, tracker=tracker)


@pytest.mark.asyncio
async def test_start_session_sends_until_first_input(executor):
    session = await executor.start_session(_workflow(), {"_id": "u1", "phone": "+919876543210"})

    assert session.current_node_id == "ask_pan"
    assert session.status == "active"
    assert session.steps_completed == ["welcome"]
    sent = [c.args[1] for c in executor.whatsapp.send_message.await_args_list]
    assert sent == ["Hi {{ name }}! Let's verify your PAN.", "Please send your PAN number"]
    executor.tracker.track_workflow_start.assert_called_once()
    assert executor.tracker.track_node_execution.call_count == 2


@pytest.mark.asyncio
async def test_input_drives_condition_to_completion(executor):
    session_doc = {
        "_id": "s1", "workflow_id": "wf1", "user_id": "u1", "phone": "+919876543210",
        "current_node_id": "ask_pan", "data": {}, "status": "active", "steps_completed": ["welcome"],
    }

    session = await executor.handle_input(session_doc, "ABCDE1234F")

    assert session.status == "completed"
    assert session.data == {"pan_number": "ABCDE1234F"}
    assert session.current_node_id == "done"
    executor.whatsapp.send_message.assert_awaited_once()
    assert executor.whatsapp.send_message.await_args.args[1] == "Thanks, PAN ABCDE1234F received."
    executor.tracker.track_user_input.assert_called_once()
    condition_call = executor.tracker.track_condition_evaluation.call_args
    assert condition_call.args[4] is True
    completion = executor.tracker.track_workflow_completion.call_args
    assert completion.kwargs == {"completed_steps": 3, "total_nodes": 5}


@pytest.mark.asyncio
async def test_failed_send_is_tracked_as_failed_node(executor):
    executor.whatsapp.send_message.return_value = None
    await executor.start_session(_workflow(), {"_id": "u1", "phone": "+919876543210"})

    kwargs = executor.tracker.track_node_execution.call_args_list[0].kwargs
    assert kwargs["success"] is False
    assert kwargs["error_message"]


@pytest.mark.asyncio
async def test_cyclic_workflow_stops_after_step_cap(executor):
    nodes = [
        {"node_id": "a", "name": "A", "type": "message", "content": "ping", "next_node_id": "b"},
        {"node_id": "b", "name": "B", "type": "message", "content": "pong", "next_node_id": "a"},
    ]
    session = await executor.start_session(_workflow(nodes, start="a"), {"_id": "u1", "phone": "+919876543210"})

    assert session.status == "active"
    assert executor.whatsapp.send_message.await_count == MAX_STEPS_PER_RUN


@pytest.mark.asyncio
async def test_input_for_missing_workflow_is_ignored(executor):
    executor.db.get_document.return_value = None
    result = await executor.handle_input({"_id": "s1", "workflow_id": "wf1", "user_id": "u1"}, "hi")
    assert result is None
    executor.whatsapp.send_message.assert_not_awaited()
