"""JSON Schema validation utilities."""

from typing import Any

from jsonschema import Draft7Validator


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Errors are sorted by instance path, so the `data` of an invalid-params
    error from the dispatcher is the same for the same arguments.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def object_schema(
    properties: dict[str, dict[str, Any]],
    required: list[str] | None = None
) -> dict[str, Any]:
    """
    Build an object schema for tool arguments.

    Args:
        properties: Property name to JSON Schema mapping
        required: Required property names (defaults to all properties)

    Returns:
        JSON Schema dictionary
    """
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties) if required is None else required,
    }
