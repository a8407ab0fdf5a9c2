"""Tool metadata: descriptions, stability and mutation flags, JSON Schemas.

The MCP ``tools/list`` response and the ``meta/tools`` tool are both built
from :data:`TOOLS`.
"""

from dataclasses import dataclass, field
from typing import Any

from mcp import types

from .config import load_config
from .feedback import FEEDBACK_STATUSES, FEEDBACK_TYPES, SEVERITIES
from .models import AUDIENCES, PRIORITY_TIERS, REQUIREMENTS, STATUSES, utc_now_iso
from .registry import is_mutation, list_registered_methods, register_handler
from .schema import SCHEMA_ID

REGISTRY_VERSION = "2025-08-27"

ANY_OBJECT: dict[str, Any] = {"type": "object", "additionalProperties": True}
NO_PARAMS: dict[str, Any] = {"type": "object", "additionalProperties": False, "properties": {}}
STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}


def _string_required(name: str) -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": [name],
        "properties": {name: {"type": "string"}},
    }


ENTRY_PROPERTIES: dict[str, Any] = {
    "id": {"type": "string"},
    "title": {"type": "string"},
    "body": {"type": "string"},
    "rationale": {"type": "string"},
    "priority": {"type": "number"},
    "audience": {"type": "string", "enum": list(AUDIENCES)},
    "requirement": {"type": "string", "enum": list(REQUIREMENTS)},
    "categories": STRING_LIST,
    "deprecatedBy": {"type": "string"},
    "riskScore": {"type": "number"},
    "version": {"type": "string"},
    "owner": {"type": "string"},
    "status": {"type": "string"},
    "priorityTier": {"type": "string", "enum": list(PRIORITY_TIERS)},
}


@dataclass
class ToolSpec:
    name: str
    description: str
    stable: bool = False
    input_schema: dict[str, Any] = field(default_factory=lambda: dict(ANY_OBJECT))
    output_schema: dict[str, Any] | None = None


TOOLS: list[ToolSpec] = [
    ToolSpec(
        "health/check",
        "Returns server health status & version.",
        stable=True,
        output_schema={
            "type": "object",
            "required": ["status", "timestamp", "version"],
            "properties": {
                "status": {"const": "ok"},
                "timestamp": {"type": "string"},
                "version": {"type": "string"},
            },
        },
    ),
    ToolSpec(
        "instructions/dispatch",
        "Unified dispatcher for instruction catalog actions "
        "(list, get, search, diff, export, query, categories, dir, batch, capabilities & mutations).",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": True,
            "required": ["action"],
            "properties": {"action": {"type": "string"}},
        },
    ),
    ToolSpec(
        "instructions/search",
        "Keyword search over titles, bodies and optionally categories, ranked by relevance.",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["keywords"],
            "properties": {
                "keywords": {
                    "type": "array",
                    "minItems": 1,
                    "maxItems": 10,
                    "items": {"type": "string", "minLength": 1, "maxLength": 100},
                },
                "limit": {"type": "number", "minimum": 1, "maximum": 100},
                "includeCategories": {"type": "boolean"},
                "caseSensitive": {"type": "boolean"},
            },
        },
        output_schema={
            "type": "object",
            "required": ["results", "totalMatches", "query", "executionTimeMs"],
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["instructionId", "relevanceScore", "matchedFields"],
                        "properties": {
                            "instructionId": {"type": "string"},
                            "relevanceScore": {"type": "number"},
                            "matchedFields": STRING_LIST,
                        },
                    },
                },
                "totalMatches": {"type": "integer"},
                "query": {"type": "object"},
                "executionTimeMs": {"type": "number"},
            },
        },
    ),
    ToolSpec(
        "instructions/governanceHash",
        "Return governance projection & deterministic governance hash.",
        stable=True,
    ),
    ToolSpec(
        "instructions/query",
        "Filter instruction catalog by categories, priorities, tiers, requirements, and text search.",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": True,
            "properties": {
                "categoriesAll": STRING_LIST,
                "categoriesAny": STRING_LIST,
                "excludeCategories": STRING_LIST,
                "priorityMin": {"type": "number"},
                "priorityMax": {"type": "number"},
                "priorityTiers": {"type": "array", "items": {"type": "string", "enum": list(PRIORITY_TIERS)}},
                "requirements": {"type": "array", "items": {"type": "string", "enum": list(REQUIREMENTS)}},
                "text": {"type": "string"},
                "limit": {"type": "number", "minimum": 1, "maximum": 1000},
                "offset": {"type": "number", "minimum": 0},
            },
        },
    ),
    ToolSpec(
        "instructions/categories",
        "Return category taxonomy with occurrence counts.",
        stable=True,
    ),
    ToolSpec("instructions/dir", "Describe the instructions directory and its JSON files."),
    ToolSpec(
        "instructions/inspect",
        "Inspect the raw file, schema errors and normalized form of one instruction.",
        input_schema=_string_required("id"),
    ),
    ToolSpec(
        "instructions/import",
        "Import (create/overwrite) instruction entries from provided objects.",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["entries"],
            "properties": {
                "entries": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["id", "title", "body", "priority", "audience", "requirement"],
                        "additionalProperties": True,
                        "properties": ENTRY_PROPERTIES,
                    },
                },
                "mode": {"enum": ["skip", "overwrite"]},
            },
        },
    ),
    ToolSpec(
        "instructions/add",
        "Add a single instruction (lax mode fills defaults; overwrite optional).",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["entry"],
            "properties": {
                "entry": {
                    "type": "object",
                    "required": ["id"],
                    "additionalProperties": True,
                    "properties": ENTRY_PROPERTIES,
                },
                "overwrite": {"type": "boolean"},
                "lax": {"type": "boolean"},
            },
        },
    ),
    ToolSpec("instructions/repair", "Repair out-of-sync sourceHash fields (noop if none drifted)."),
    ToolSpec("instructions/reload", "Force reload of instruction catalog from disk."),
    ToolSpec(
        "instructions/remove",
        "Delete one or more instruction entries by id.",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["ids"],
            "properties": {"ids": {"type": "array", "minItems": 1, "items": {"type": "string"}}},
        },
    ),
    ToolSpec(
        "instructions/groom",
        "Groom catalog: normalize, repair hashes, merge duplicates, remove deprecated.",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "mode": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "dryRun": {"type": "boolean"},
                        "removeDeprecated": {"type": "boolean"},
                        "mergeDuplicates": {"type": "boolean"},
                        "purgeLegacyScopes": {"type": "boolean"},
                    },
                },
            },
        },
    ),
    ToolSpec("instructions/enrich", "Persist normalization of placeholder governance fields to disk."),
    ToolSpec(
        "instructions/governanceUpdate",
        "Patch limited governance fields (owner/status/review dates + optional version bump).",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["id"],
            "properties": {
                "id": {"type": "string"},
                "owner": {"type": "string"},
                "status": {"type": "string", "enum": [*STATUSES, "active"]},
                "lastReviewedAt": {"type": "string"},
                "nextReviewDue": {"type": "string"},
                "bump": {"type": "string", "enum": ["patch", "minor", "major", "none"]},
            },
        },
    ),
    ToolSpec("instructions/health", "Compare live catalog to canonical snapshot for drift."),
    ToolSpec(
        "prompt/review",
        "Static analysis of a prompt returning issues & summary.",
        stable=True,
        input_schema=_string_required("prompt"),
    ),
    ToolSpec(
        "integrity/verify",
        "Verify each instruction body hash against stored sourceHash.",
        stable=True,
    ),
    ToolSpec("integrity/manifest", "Compare the catalog against the persisted manifest and report drift."),
    ToolSpec("manifest/status", "Report manifest presence, entry count and drift."),
    ToolSpec("manifest/refresh", "Rewrite the catalog manifest from the current catalog."),
    ToolSpec("manifest/repair", "Rewrite the manifest when it has drifted from the catalog."),
    ToolSpec("feature/status", "Report active index feature flags and counters.", input_schema=dict(NO_PARAMS)),
    ToolSpec(
        "usage/track",
        "Increment usage counters & timestamps for an instruction id.",
        stable=True,
        input_schema=_string_required("id"),
    ),
    ToolSpec(
        "usage/hotset",
        "Return the most-used instruction entries (hot set).",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "properties": {"limit": {"type": "number", "minimum": 1, "maximum": 100}},
        },
    ),
    ToolSpec("usage/flush", "Flush usage snapshot to persistent storage."),
    ToolSpec("metrics/snapshot", "Performance metrics summary for handled methods.", stable=True),
    ToolSpec(
        "graph/export",
        "Export the instruction relationship graph as JSON or DOT.",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "includeEdgeTypes": {
                    "type": "array",
                    "items": {"type": "string", "enum": ["primary", "category", "belongs"]},
                },
                "maxEdges": {"type": "number", "minimum": 0},
                "format": {"type": "string", "enum": ["json", "dot"]},
                "enrich": {"type": "boolean"},
                "includeCategoryNodes": {"type": "boolean"},
                "includeUsage": {"type": "boolean"},
            },
        },
    ),
    ToolSpec("gates/evaluate", "Evaluate configured gating criteria over current catalog.", stable=True),
    ToolSpec("meta/tools", "Enumerate available tools & their metadata.", stable=True),
    ToolSpec(
        "feedback/submit",
        "Submit feedback entry (issue, status report, security alert, feature request, etc.).",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["type", "severity", "title", "description"],
            "properties": {
                "type": {"type": "string", "enum": list(FEEDBACK_TYPES)},
                "severity": {"type": "string", "enum": list(SEVERITIES)},
                "title": {"type": "string", "maxLength": 200},
                "description": {"type": "string", "maxLength": 2000},
                "context": {"type": "object", "additionalProperties": True},
                "metadata": {"type": "object", "additionalProperties": True},
                "tags": {"type": "array", "maxItems": 10, "items": {"type": "string"}},
            },
        },
    ),
    ToolSpec(
        "feedback/list",
        "List feedback entries with filtering options (type, severity, status, date range).",
        stable=True,
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "type": {"type": "string", "enum": list(FEEDBACK_TYPES)},
                "severity": {"type": "string", "enum": list(SEVERITIES)},
                "status": {"type": "string", "enum": list(FEEDBACK_STATUSES)},
                "limit": {"type": "number", "minimum": 1, "maximum": 200},
                "offset": {"type": "number", "minimum": 0},
                "since": {"type": "string"},
                "tags": STRING_LIST,
            },
        },
    ),
    ToolSpec(
        "feedback/get",
        "Get specific feedback entry by ID with full details.",
        stable=True,
        input_schema=_string_required("id"),
    ),
    ToolSpec(
        "feedback/update",
        "Update feedback entry status and metadata (admin function).",
        input_schema={
            "type": "object",
            "additionalProperties": False,
            "required": ["id"],
            "properties": {
                "id": {"type": "string"},
                "status": {"type": "string", "enum": list(FEEDBACK_STATUSES)},
                "metadata": {"type": "object", "additionalProperties": True},
            },
        },
    ),
    ToolSpec(
        "feedback/stats",
        "Get feedback system statistics and metrics dashboard.",
        stable=True,
        input_schema={"type": "object", "additionalProperties": False, "properties": {"since": {"type": "string"}}},
    ),
    ToolSpec("feedback/health", "Health check for feedback system storage and configuration.", stable=True),
]

_by_name = {tool.name: tool for tool in TOOLS}


def get_tool(name: str) -> ToolSpec | None:
    return _by_name.get(name)


def tool_entry(tool: ToolSpec) -> dict[str, Any]:
    entry = {
        "name": tool.name,
        "description": tool.description,
        "stable": tool.stable,
        "mutation": is_mutation(tool.name),
        "inputSchema": tool.input_schema,
    }
    if tool.output_schema is not None:
        entry["outputSchema"] = tool.output_schema
    return entry


def get_tool_registry() -> list[dict[str, Any]]:
    """Registry entries for every tool with a registered handler, sorted by name."""
    registered = set(list_registered_methods())
    return [tool_entry(t) for t in sorted(TOOLS, key=lambda t: t.name) if t.name in registered]


def mcp_tools() -> list[types.Tool]:
    """Tool list for MCP ``tools/list``; output schemas stay in ``meta/tools``."""
    return [
        types.Tool(name=e["name"], description=e["description"], inputSchema=e["inputSchema"])
        for e in get_tool_registry()
    ]


@register_handler("meta/tools")
def meta_tools(params: dict[str, Any]) -> dict[str, Any]:
    tools = get_tool_registry()
    mutation_enabled = load_config().mutation_enabled
    return {
        "stable": {
            "dispatcher": "instructions/dispatch",
            "tools": [t["name"] for t in tools if t["stable"]],
        },
        "dynamic": {
            "generatedAt": utc_now_iso(),
            "mutationEnabled": mutation_enabled,
            "disabled": [] if mutation_enabled else [t["name"] for t in tools if t["mutation"]],
        },
        "tools": tools,
        "registryVersion": REGISTRY_VERSION,
        "schemaId": SCHEMA_ID,
    }
