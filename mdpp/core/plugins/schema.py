"""Manifest schemas and a small schema validator.

The validator understands the subset of JSON Schema used by plugin
manifests and contribution declarations (``type``, ``required``,
``properties``, ``items``, ``pattern``, ``enum``, ``minLength``,
``maxLength``, ``minItems``). It walks the whole document and returns every
violation so a plugin author sees all problems in one pass.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List

ID_PATTERN = r"\A[a-z0-9-]+\Z"
VERSION_PATTERN = r"^\d+\.\d+\.\d+"
PLUGIN_TYPES = ["parser", "components", "hybrid", "theme"]

_ID_LIST = {"type": "array", "items": {"type": "string", "pattern": ID_PATTERN}}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "name", "version", "type"],
    "properties": {
        "id": {"type": "string", "pattern": ID_PATTERN, "maxLength": 64},
        "name": {"type": "string", "minLength": 1, "maxLength": 100},
        "version": {"type": "string", "pattern": VERSION_PATTERN},
        "type": {"type": "string", "enum": PLUGIN_TYPES},
        "description": {"type": "string", "maxLength": 500},
        "author": {"type": "string", "maxLength": 100},
        "dependencies": _ID_LIST,
        "optional_dependencies": _ID_LIST,
        "conflicts": _ID_LIST,
        "parser": {
            "type": "object",
            "properties": {
                "code_block_languages": _STRING_LIST,
                "priority": {"type": "number"},
            },
        },
        "components": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["tag"],
                "properties": {"tag": {"type": "string", "minLength": 1}},
            },
        },
        "assets": {
            "type": "object",
            "properties": {"css": _STRING_LIST, "js": _STRING_LIST},
        },
        "contributes": {"type": "object"},
        "settings": {"type": "object"},
    },
}

LEGACY_MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["framework", "components"],
    "properties": {
        "framework": {"type": "string", "pattern": ID_PATTERN},
        "version": {"type": "string", "pattern": VERSION_PATTERN},
        "description": {"type": "string"},
        "components": MANIFEST_SCHEMA["properties"]["components"],
        "code_block_languages": _STRING_LIST,
    },
}

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, (list, tuple)),
    "object": lambda v: hasattr(v, "keys") and hasattr(v, "__getitem__"),
}

_TYPE_NAMES = {
    "string": "a string",
    "number": "a number",
    "integer": "an integer",
    "boolean": "a boolean",
    "array": "an array",
    "object": "an object",
}


def validate_against_schema(data: Any, schema: Dict[str, Any], path: str = "") -> List[str]:
    """Validate *data* against *schema* and return all violations found."""
    errors: List[str] = []
    label = path or "manifest"

    expected_type = schema.get("type")
    if expected_type and not _TYPE_CHECKS[expected_type](data):
        errors.append(f"Field '{label}' must be {_TYPE_NAMES[expected_type]}")
        return errors

    if expected_type == "object":
        for required in schema.get("required", []):
            if required not in data:
                errors.append(f"Missing required field: {_join(path, required)}")
        properties = schema.get("properties", {})
        for key in data.keys():
            if key in properties:
                errors.extend(validate_against_schema(data[key], properties[key], _join(path, key)))

    elif expected_type == "array":
        if "minItems" in schema and len(data) < schema["minItems"]:
            errors.append(f"Field '{label}' needs at least {schema['minItems']} item(s)")
        item_schema = schema.get("items")
        if item_schema:
            for index, item in enumerate(data):
                errors.extend(validate_against_schema(item, item_schema, f"{label}[{index}]"))

    elif expected_type == "string":
        if "minLength" in schema and len(data) < schema["minLength"]:
            errors.append(f"Field '{label}' is too short (minimum {schema['minLength']} characters)")
        if "maxLength" in schema and len(data) > schema["maxLength"]:
            errors.append(f"Field '{label}' is too long (maximum {schema['maxLength']} characters)")
        if "pattern" in schema and not re.search(schema["pattern"], data):
            errors.append(f"Field '{label}' does not match pattern {schema['pattern']}")

    if "enum" in schema and data not in schema["enum"]:
        valid_values = ", ".join(str(v) for v in schema["enum"])
        errors.append(f"Field '{label}' must be one of: {valid_values}")

    return errors


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key
