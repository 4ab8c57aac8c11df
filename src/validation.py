"""
Schema Validation - JSON Schema (Draft 7) validation utilities.

Used to check attribute bags against the schema generated from a resource
descriptor and to check manifest documents.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError

logger = logging.getLogger(__name__)


def validate_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is itself a valid Draft 7 JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def schema_errors(
    document: Dict[str, Any], schema: Dict[str, Any]
) -> List[Tuple[str, str]]:
    """
    Collect every violation of a schema.

    Args:
        document: The document to validate
        schema: The JSON Schema to validate against

    Returns:
        List of (path, message) tuples; path is "(root)" for top-level errors.
        For a missing required property the path is the property name.
    """
    validator = Draft7Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(document), key=lambda e: [str(p) for p in e.path]):
        path = ".".join(str(p) for p in error.absolute_path)
        if not path and error.validator == "required":
            # "'password' is a required property"
            path = error.message.split("'")[1] if "'" in error.message else ""
        if not path and error.validator == "additionalProperties":
            unexpected = [p for p in document if p not in schema.get("properties", {})]
            path = ",".join(str(p) for p in unexpected)
        errors.append((path or "(root)", error.message))
    return errors


def validate_document(
    document: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a document against a JSON Schema.

    Args:
        document: The document to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    errors = schema_errors(document, schema)
    if not errors:
        return True, None
    return False, "; ".join(f"{path}: {message}" for path, message in errors)
