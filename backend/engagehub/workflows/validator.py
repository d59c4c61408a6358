# /engagehub/workflows/validator.py

"""
Pure structural checks for workflow graphs submitted by admins.

All functions are side-effect free and work on plain node dicts as they
arrive from the API.
"""

from typing import Any, Dict, List, Optional, TypedDict


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _ok() -> ValidationResult:
    return {"is_valid": True, "error_code": None, "message": None}


def _fail(code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": code, "message": message}


def validate_node_ids(nodes: List[Dict[str, Any]]) -> ValidationResult:
    seen = set()
    for node in nodes:
        node_id = node.get("node_id")
        if node_id in seen:
            return _fail("DUPLICATE_NODE_ID", f"Node id '{node_id}' is used more than once")
        seen.add(node_id)
    return _ok()


def validate_start_node(nodes: List[Dict[str, Any]], start_node_id: Optional[str]) -> ValidationResult:
    if not start_node_id:
        return _fail("MISSING_START_NODE", "start_node_id is required")
    if not any(node.get("node_id") == start_node_id for node in nodes):
        return _fail("UNKNOWN_START_NODE", f"Start node '{start_node_id}' is not defined")
    return _ok()


def validate_references(nodes: List[Dict[str, Any]]) -> ValidationResult:
    known = {node.get("node_id") for node in nodes}
    for node in nodes:
        for field in ("next_node_id", "true_node_id", "false_node_id"):
            target = node.get(field)
            if target and target not in known:
                return _fail("UNKNOWN_NODE_REFERENCE",
                             f"Node '{node.get('node_id')}' points {field} at unknown node '{target}'")
        if node.get("type") == "input" and not node.get("variable_name"):
            return _fail("MISSING_VARIABLE_NAME", f"Input node '{node.get('node_id')}' needs a variable_name")
        if node.get("type") == "condition" and not node.get("condition"):
            return _fail("MISSING_CONDITION", f"Condition node '{node.get('node_id')}' needs a condition")
    return _ok()


def validate_workflow_graph(nodes: List[Dict[str, Any]], start_node_id: Optional[str]) -> ValidationResult:
    for check in (
        validate_node_ids(nodes),
        validate_start_node(nodes, start_node_id),
        validate_references(nodes),
    ):
        if not check["is_valid"]:
            return check
    return _ok()
