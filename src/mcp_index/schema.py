"""JSON Schema for instruction records on disk."""

from typing import Any

from jsonschema import Draft7Validator

from .models import AUDIENCES, CLASSIFICATIONS, PRIORITY_TIERS, REQUIREMENTS, STATUSES

SCHEMA_ID = "https://mcp-index.local/schemas/instruction.schema.json"

INSTRUCTION_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "$id": SCHEMA_ID,
    "title": "Instruction",
    "type": "object",
    "required": ["id", "title", "body", "priority", "audience", "requirement", "categories"],
    "additionalProperties": True,
    "properties": {
        "id": {"type": "string", "minLength": 1, "maxLength": 200},
        "title": {"type": "string", "minLength": 1},
        "body": {"type": "string", "minLength": 1},
        "rationale": {"type": "string"},
        "priority": {"type": "number", "minimum": 1, "maximum": 100},
        "audience": {"enum": list(AUDIENCES)},
        "requirement": {"enum": list(REQUIREMENTS)},
        "categories": {"type": "array", "items": {"type": "string"}},
        "primaryCategory": {"type": "string"},
        "sourceHash": {"type": "string"},
        "schemaVersion": {"type": "string"},
        "deprecatedBy": {"type": "string"},
        "createdAt": {"type": "string"},
        "updatedAt": {"type": "string"},
        "usageCount": {"type": "number", "minimum": 0},
        "firstSeenTs": {"type": "string"},
        "lastUsedAt": {"type": "string"},
        "riskScore": {"type": "number"},
        "workspaceId": {"type": "string"},
        "userId": {"type": "string"},
        "teamIds": {"type": "array", "items": {"type": "string"}},
        "version": {"type": "string"},
        "status": {"enum": list(STATUSES)},
        "owner": {"type": "string"},
        "priorityTier": {"enum": list(PRIORITY_TIERS)},
        "classification": {"enum": list(CLASSIFICATIONS)},
        "lastReviewedAt": {"type": "string"},
        "nextReviewDue": {"type": "string"},
        "reviewIntervalDays": {"type": "number", "minimum": 1},
        "changeLog": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["version", "changedAt", "summary"],
                "properties": {
                    "version": {"type": "string"},
                    "changedAt": {"type": "string"},
                    "summary": {"type": "string"},
                },
            },
        },
        "supersedes": {"type": "string"},
        "semanticSummary": {"type": "string"},
        "createdByAgent": {"type": "string"},
        "sourceWorkspace": {"type": "string"},
    },
}

Draft7Validator.check_schema(INSTRUCTION_SCHEMA)
_validator = Draft7Validator(INSTRUCTION_SCHEMA)


def validate_record(record: Any) -> list[str]:
    """Validate a raw record; returns human readable messages (empty when valid)."""
    errors = sorted(_validator.iter_errors(record), key=lambda e: list(e.absolute_path))
    messages = []
    for error in errors:
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages


def input_schema_for_add() -> dict[str, Any]:
    """Schema returned to clients alongside shape errors from ``add``."""
    return {
        "type": "object",
        "required": ["entry"],
        "properties": {
            "entry": {
                "type": "object",
                "required": ["id", "body"],
                "properties": {
                    "id": INSTRUCTION_SCHEMA["properties"]["id"],
                    "title": {"type": "string"},
                    "body": {"type": "string"},
                    "priority": INSTRUCTION_SCHEMA["properties"]["priority"],
                    "audience": INSTRUCTION_SCHEMA["properties"]["audience"],
                    "requirement": INSTRUCTION_SCHEMA["properties"]["requirement"],
                    "categories": INSTRUCTION_SCHEMA["properties"]["categories"],
                },
            },
            "overwrite": {"type": "boolean"},
            "lax": {"type": "boolean"},
        },
    }
