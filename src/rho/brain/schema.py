"""Schema registry: required fields, field types and enum constraints per entry type."""

from __future__ import annotations

import dataclasses
from typing import Any

from rho.brain.entries import Entry, entry_to_dict

PRIORITIES = ["urgent", "high", "normal", "low"]

SCHEMA_REGISTRY: dict[str, dict[str, Any]] = {
    "behavior": {
        "required": ["category", "text"],
        "fields": {"category": str, "text": str},
        "enums": {"category": ["do", "dont", "value"]},
    },
    "identity": {"required": ["key", "value"], "fields": {"key": str, "value": str}},
    "user": {"required": ["key", "value"], "fields": {"key": str, "value": str}},
    "learning": {
        "required": ["text"],
        "fields": {"text": str, "source": str, "scope": str, "projectPath": str},
        "enums": {"scope": ["global", "project"]},
    },
    "preference": {
        "required": ["text", "category"],
        "fields": {"text": str, "category": str},
    },
    "context": {
        "required": ["project", "path", "content"],
        "fields": {"project": str, "path": str, "content": str},
    },
    "task": {
        "required": ["description"],
        "fields": {
            "description": str,
            "status": str,
            "priority": str,
            "tags": list,
            "due": str,
            "completedAt": str,
        },
        "enums": {"status": ["pending", "done"], "priority": PRIORITIES},
    },
    "reminder": {
        "required": ["text", "cadence", "enabled"],
        "fields": {
            "text": str,
            "cadence": dict,
            "enabled": bool,
            "priority": str,
            "tags": list,
            "last_run": str,
            "next_due": str,
            "last_result": str,
            "last_error": str,
        },
        "enums": {"priority": PRIORITIES, "last_result": ["ok", "error", "skipped"]},
    },
    "tombstone": {
        "required": ["target_id", "target_type", "reason"],
        "fields": {"target_id": str, "target_type": str, "reason": str},
    },
    "meta": {"required": ["key", "value"], "fields": {"key": str, "value": str}},
}

_TYPE_NAMES = {str: "a string", list: "a list", dict: "an object", bool: "a boolean"}


class ValidationError(ValueError):
    """Entry failed schema checks; nothing was written."""


def validate(entry: Entry) -> None:
    """Check an entry against the registry. Raises ValidationError with the reason."""
    if dataclasses.is_dataclass(entry):
        entry = entry_to_dict(entry)
    if not isinstance(entry, dict):
        raise ValidationError("entry must be an object")

    for name, hint in (("id", "string"), ("type", "string"), ("created", "ISO 8601 string")):
        value = entry.get(name)
        if not isinstance(value, str) or not value:
            raise ValidationError(f"entry requires {name} ({hint})")

    entry_type = entry["type"]
    schema = SCHEMA_REGISTRY.get(entry_type)
    if schema is None:
        raise ValidationError(f'unknown type "{entry_type}"')

    for name in schema["required"]:
        if entry.get(name) is None:
            raise ValidationError(f"{entry_type} requires {name}")

    # Optional fields may be absent or null; present ones must have the right type
    for name, expected in schema.get("fields", {}).items():
        value = entry.get(name)
        if value is not None and not isinstance(value, expected):
            raise ValidationError(
                f'{entry_type} field "{name}" must be {_TYPE_NAMES[expected]}'
            )

    for name, allowed in schema.get("enums", {}).items():
        value = entry.get(name)
        if value is not None and value not in allowed:
            raise ValidationError(
                f'{entry_type} field "{name}" must be one of: {", ".join(allowed)} (got "{value}")'
            )


def is_valid(entry: Entry) -> bool:
    try:
        validate(entry)
    except ValidationError:
        return False
    return True
