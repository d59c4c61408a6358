# /engagehub/workflows/conditions.py

"""
Condition expressions and message templating for workflow nodes.

Supported condition forms, checked in this order:

- ``field.length OP n``           e.g. ``pan_number.length == 10``
- ``field.includes('text')``
- ``field OP value``              value is a quoted string, true/false,
                                  a number, or another field name

OP is one of ``>= <= == != > <``. Anything unparseable evaluates to False.
"""

import re
from typing import Any, Dict, Optional

# Two-character operators come first so ">=" is never read as ">"
_OPERATOR = r"(>=|<=|==|!=|>|<)"
_LENGTH_RE = re.compile(rf"(\w+)\.length\s*{_OPERATOR}\s*(\d+)")
_INCLUDES_RE = re.compile(r"""(\w+)\.includes\(\s*['"](.+?)['"]\s*\)""")
_COMPARE_RE = re.compile(rf"""(\w+)\s*{_OPERATOR}\s*("[^"]*"|'[^']*'|[\w.\-]+)""")
_PLACEHOLDER_RE = re.compile(r"{{\s*(\w+)\s*}}")


def _compare(left: Any, operator: str, right: Any) -> bool:
    if operator == "==":
        return left == right
    if operator == "!=":
        return left != right
    try:
        if operator == ">":
            return left > right
        if operator == "<":
            return left < right
        if operator == ">=":
            return left >= right
        if operator == "<=":
            return left <= right
    except TypeError:
        return False
    return False


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _parse_literal(token: str, data: Dict[str, Any]) -> Any:
    if token[:1] in ("'", '"'):
        return token[1:-1]
    if token == "true":
        return True
    if token == "false":
        return False
    number = _to_number(token)
    if number is not None:
        return number
    return data.get(token)


def evaluate_condition(condition: Optional[str], data: Dict[str, Any]) -> bool:
    if not condition:
        return False
    data = data or {}

    match = _LENGTH_RE.search(condition)
    if match:
        field, operator, size = match.groups()
        value = data.get(field)
        if not value:
            return False
        return _compare(len(str(value)), operator, int(size))

    match = _INCLUDES_RE.search(condition)
    if match:
        field, needle = match.groups()
        value = data.get(field)
        return bool(value) and needle in str(value)

    match = _COMPARE_RE.search(condition)
    if match:
        field, operator, token = match.groups()
        left = data.get(field)
        right = _parse_literal(token, data)
        # Numeric input arrives as text; compare as numbers when both sides allow it
        if isinstance(right, float) and not isinstance(left, bool):
            left_number = _to_number(left)
            if left_number is not None:
                left = left_number
        return _compare(left, operator, right)

    return False


def render_template(content: Optional[str], data: Dict[str, Any]) -> str:
    """Replace ``{{ name }}`` placeholders; unknown names are left as-is."""
    if not content:
        return ""
    data = data or {}

    def substitute(match: "re.Match[str]") -> str:
        value = data.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER_RE.sub(substitute, content)
