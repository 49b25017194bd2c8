"""Helpers for building tool results."""

import json
from typing import Any

# Largest integer a JSON client backed by IEEE-754 doubles can hold exactly
MAX_SAFE_INTEGER = 2**53 - 1


def convert_big_int_to_string(value: Any) -> Any:
    """
    Recursively convert integers outside the safe double range to strings.

    Dicts, lists and tuples are walked; tuples come back as lists. Booleans
    and integers within range are returned unchanged.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, dict):
        return {key: convert_big_int_to_string(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [convert_big_int_to_string(item) for item in value]
    return value


def build_response(data: Any) -> dict[str, Any]:
    """Wrap plain data into the standard tool result payload."""
    safe_data = convert_big_int_to_string(data)
    return {
        "content": [
            {
                "type": "text",
                "text": json.dumps(safe_data, indent=2, default=str),
            }
        ]
    }


def is_tool_result(value: Any) -> bool:
    """Return True if value already has the tool result shape."""
    return isinstance(value, dict) and isinstance(value.get("content"), list)
