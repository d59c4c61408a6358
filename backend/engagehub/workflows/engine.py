# /engagehub/workflows/engine.py

"""
Pure step resolution for admin-defined workflows.

Given a node and the session data, decide what the executor should do
next. No database writes, no message sending, no tracking.
"""

from typing import Any, Dict, Optional, TypedDict

from engagehub.models.domain import Workflow, WorkflowNode
from engagehub.workflows.conditions import evaluate_condition, render_template

SUPPORTED_NODE_TYPES = ("message", "input", "condition")


class NodeStep(TypedDict):
    """What executing one node amounts to."""
    action: str                 # send | prompt | branch | unsupported
    message: Optional[str]
    next_node_id: Optional[str]
    condition_result: Optional[bool]
    wait_for_input: bool


class InputResult(TypedDict):
    accepted: bool
    reason: Optional[str]
    data: Dict[str, Any]
    next_node_id: Optional[str]


def plan_node(node: WorkflowNode, data: Dict[str, Any]) -> NodeStep:
    if node.type == "message":
        return NodeStep(action="send", message=render_template(node.content, data),
                        next_node_id=node.next_node_id, condition_result=None, wait_for_input=False)
    if node.type == "input":
        return NodeStep(action="prompt", message=render_template(node.content, data) or None,
                        next_node_id=node.next_node_id, condition_result=None, wait_for_input=True)
    if node.type == "condition":
        result = evaluate_condition(node.condition, data)
        return NodeStep(action="branch", message=None,
                        next_node_id=node.true_node_id if result else node.false_node_id,
                        condition_result=result, wait_for_input=False)
    return NodeStep(action="unsupported", message=None, next_node_id=None,
                    condition_result=None, wait_for_input=False)


def should_pause_before(workflow: Workflow, next_node_id: Optional[str]) -> bool:
    """An input node without a prompt is entered silently; the session just waits on it."""
    next_node = workflow.get_node(next_node_id)
    return bool(next_node and next_node.type == "input" and not next_node.content)


def apply_input(node: WorkflowNode, data: Dict[str, Any], value: str) -> InputResult:
    if node.type != "input":
        return InputResult(accepted=False, reason=f"current node is a {node.type} node",
                           data=data, next_node_id=None)
    if not node.variable_name:
        return InputResult(accepted=False, reason="input node has no variable name",
                           data=data, next_node_id=None)
    return InputResult(accepted=True, reason=None,
                       data={**data, node.variable_name: value},
                       next_node_id=node.next_node_id)
