"""Instruction catalog actions: reads, CRUD and governance maintenance.

Read actions are reached through ``instructions/dispatch``. Mutation and
governance actions are additionally registered as direct tools; the mutating
ones are gated behind MCP_ENABLE_MUTATION when called directly.
"""

import json
import logging
import re
from collections import defaultdict
from typing import Any

from pydantic import ValidationError

from .atomic_fs import atomic_write_json
from .audit_log import log_audit
from .canonical import hash_body
from .catalog import USAGE_FIELDS, CatalogContext, get_catalog, is_safe_id
from .classification import STATUS_ALIASES, salvage_record
from .config import load_config
from .errors import invalid_params
from .governance import (
    DEFAULT_OWNER,
    DEFAULT_VERSION,
    bump_version,
    is_greater_version,
    next_review_due,
    parse_semver,
    repair_change_log,
    review_interval_days,
)
from .loader import CatalogLoader, is_instruction_record
from .manifest import update_manifest_after_mutation
from .models import STATUSES, InstructionEntry, utc_now_iso
from .ownership import resolve_owner
from .registry import register_handler
from .schema import SCHEMA_ID, input_schema_for_add, validate_record

logger = logging.getLogger(__name__)

QUERY_DEFAULT_LIMIT = 100
QUERY_MAX_LIMIT = 1000
LEGACY_SCOPE_PATTERN = re.compile(r"^scope:(workspace|user|team):", re.IGNORECASE)
FEEDBACK_HINT = "Creation failed. If unexpected, call feedback/submit with reproEntry."

# Optional fields copied verbatim from caller input when present
PASSTHROUGH_FIELDS = (
    "rationale",
    "deprecatedBy",
    "workspaceId",
    "userId",
    "teamIds",
    "version",
    "owner",
    "status",
    "priorityTier",
    "classification",
    "lastReviewedAt",
    "nextReviewDue",
    "reviewIntervalDays",
    "changeLog",
    "supersedes",
    "semanticSummary",
    "createdByAgent",
    "sourceWorkspace",
)

# Governance fields kept from the previous revision on overwrite unless supplied
CARRY_OVER_FIELDS = (
    "owner",
    "status",
    "classification",
    "lastReviewedAt",
    "nextReviewDue",
    "reviewIntervalDays",
    "supersedes",
    "createdByAgent",
    "sourceWorkspace",
)

# Fields whose change counts as a metadata update for versioning
METADATA_FIELDS = ("title", "priority", "audience", "requirement", "categories", "rationale", "deprecatedBy")


def _records(entries: list[InstructionEntry]) -> list[dict[str, Any]]:
    return [e.to_record() for e in entries]


def _clean_categories(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        return []
    return sorted({c.strip().lower() for c in raw if isinstance(c, str) and c.strip()})


def _finish_mutation(ctx: CatalogContext, action: str, ids: list[str], meta: dict[str, Any] | None = None) -> None:
    ctx.after_mutation(action, ids)
    log_audit(action, ids, meta)
    update_manifest_after_mutation()


def _require_id(params: dict[str, Any]) -> str:
    instruction_id = params.get("id")
    if not isinstance(instruction_id, str) or not instruction_id.strip():
        raise invalid_params("Missing required parameter: id", {"reason": "missing_id"})
    return instruction_id.strip()


def _governance_error(record: dict[str, Any], had_categories: bool) -> str | None:
    """Prerequisites for high-stakes entries. Returns error message or None."""
    owner = record.get("owner")
    has_owner = isinstance(owner, str) and owner and owner != DEFAULT_OWNER
    if record.get("priorityTier") == "P1" and (not had_categories or not has_owner):
        return "P1 requires category & owner"
    if record.get("requirement") in ("mandatory", "critical") and not has_owner:
        return "mandatory/critical require owner"
    return None


# ============================================================================
# Read actions
# ============================================================================

def list_entries(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    state = ctx.ensure_loaded()
    category = params.get("category")
    expect_id = params.get("expectId")
    extras: dict[str, Any] = {}

    if is_safe_id(expect_id) and expect_id not in state.by_id and ctx.file_for(expect_id).exists():
        # File on disk but not in the cache: force a reload, then load it directly
        ctx.invalidate()
        state = ctx.ensure_loaded()
        extras["repairedVisibility"] = True
        if expect_id not in state.by_id and ctx.materialize(expect_id) is not None:
            extras["lateMaterialized"] = True
            state = ctx.ensure_loaded()

    entries = list(state.entries)
    if isinstance(category, str) and category.strip():
        wanted = category.strip().lower()
        entries = [e for e in entries if wanted in e.categories]
    if isinstance(expect_id, str):
        entries.sort(key=lambda e: e.id != expect_id)

    return {"hash": state.hash, "count": len(entries), "items": _records(entries), **extras}


def list_scoped(params: dict[str, Any]) -> dict[str, Any]:
    state = get_catalog().ensure_loaded()
    user_id = params.get("userId")
    workspace_id = params.get("workspaceId")
    team_ids = params.get("teamIds")

    def _lower(value: Any) -> str | None:
        return value.lower() if isinstance(value, str) and value else None

    matches: list[InstructionEntry] = []
    scope = "all"
    if _lower(user_id):
        matches = [e for e in state.entries if _lower(e.user_id) == _lower(user_id)]
        scope = "user"
    if not matches and _lower(workspace_id):
        matches = [e for e in state.entries if _lower(e.workspace_id) == _lower(workspace_id)]
        scope = "workspace"
    if not matches and isinstance(team_ids, list) and team_ids:
        wanted = {t.lower() for t in team_ids if isinstance(t, str)}
        matches = [e for e in state.entries if wanted & {t.lower() for t in (e.team_ids or [])}]
        scope = "team"
    if not matches:
        matches = [e for e in state.entries if e.audience == "all"]
        scope = "all"
    return {"hash": state.hash, "count": len(matches), "scope": scope, "items": _records(matches)}


def get_entry(params: dict[str, Any]) -> dict[str, Any]:
    instruction_id = _require_id(params)
    state = get_catalog().ensure_loaded()
    entry = state.by_id.get(instruction_id)
    if entry is None:
        return get_enhanced(params)
    return {"hash": state.hash, "item": entry.to_record()}


def get_enhanced(params: dict[str, Any]) -> dict[str, Any]:
    """Lookup that tolerates a stale cache: reload, then read the file directly."""
    instruction_id = _require_id(params)
    ctx = get_catalog()
    if not is_safe_id(instruction_id) or not ctx.file_for(instruction_id).exists():
        return {"notFound": True}
    ctx.invalidate()
    state = ctx.ensure_loaded()
    entry = state.by_id.get(instruction_id)
    if entry is not None:
        return {"hash": state.hash, "item": entry.to_record()}
    entry = ctx.materialize(instruction_id)
    if entry is None:
        return {"notFound": True}
    return {"hash": ctx.ensure_loaded().hash, "item": entry.to_record(), "lateMaterialized": True}


def search_entries(params: dict[str, Any]) -> dict[str, Any]:
    state = get_catalog().ensure_loaded()
    q = params.get("q")
    needle = q.lower() if isinstance(q, str) else ""
    items = [e for e in state.entries if needle in e.title.lower() or needle in e.body.lower()]
    return {"hash": state.hash, "count": len(items), "items": _records(items)}


def diff_entries(params: dict[str, Any]) -> dict[str, Any]:
    state = get_catalog().ensure_loaded()
    client_hash = params.get("clientHash")
    known = params.get("known")

    if isinstance(known, list):
        known_map = {
            k["id"]: k.get("sourceHash")
            for k in known
            if isinstance(k, dict) and isinstance(k.get("id"), str)
        }
        added = [e for e in state.entries if e.id not in known_map]
        updated = [e for e in state.entries if e.id in known_map and known_map[e.id] != e.source_hash]
        removed = sorted(id_ for id_ in known_map if id_ not in state.by_id)
        if not (added or updated or removed) and client_hash == state.hash:
            return {"upToDate": True, "hash": state.hash}
        return {"hash": state.hash, "added": _records(added), "updated": _records(updated), "removed": removed}

    if client_hash == state.hash:
        return {"upToDate": True, "hash": state.hash}
    return {"hash": state.hash, "changed": _records(state.entries)}


def export_entries(params: dict[str, Any]) -> dict[str, Any]:
    state = get_catalog().ensure_loaded()
    ids = params.get("ids")
    entries = state.entries
    if isinstance(ids, list) and ids:
        wanted = set(ids)
        entries = [e for e in entries if e.id in wanted]
    items = _records(entries)
    if params.get("metaOnly"):
        for item in items:
            item["body"] = ""
    return {"hash": state.hash, "count": len(items), "items": items}


@register_handler("instructions/query")
def query_entries(params: dict[str, Any]) -> dict[str, Any]:
    state = get_catalog().ensure_loaded()
    applied: dict[str, Any] = {}
    entries = list(state.entries)

    def _str_list(key: str, lower: bool = True) -> list[str]:
        raw = params.get(key)
        if not isinstance(raw, list):
            return []
        values = [v.strip() for v in raw if isinstance(v, str) and v.strip()]
        return [v.lower() for v in values] if lower else values

    categories_all = _str_list("categoriesAll")
    if categories_all:
        applied["categoriesAll"] = categories_all
        entries = [e for e in entries if all(c in e.categories for c in categories_all)]
    categories_any = _str_list("categoriesAny")
    if categories_any:
        applied["categoriesAny"] = categories_any
        entries = [e for e in entries if any(c in e.categories for c in categories_any)]
    exclude = _str_list("excludeCategories")
    if exclude:
        applied["excludeCategories"] = exclude
        entries = [e for e in entries if not any(c in e.categories for c in exclude)]

    priority_min = params.get("priorityMin")
    if isinstance(priority_min, int | float) and not isinstance(priority_min, bool):
        applied["priorityMin"] = priority_min
        entries = [e for e in entries if e.priority >= priority_min]
    priority_max = params.get("priorityMax")
    if isinstance(priority_max, int | float) and not isinstance(priority_max, bool):
        applied["priorityMax"] = priority_max
        entries = [e for e in entries if e.priority <= priority_max]

    tiers = [t.upper() for t in _str_list("priorityTiers", lower=False)]
    if tiers:
        applied["priorityTiers"] = tiers
        entries = [e for e in entries if e.priority_tier in tiers]
    requirements = _str_list("requirements")
    if requirements:
        applied["requirements"] = requirements
        entries = [e for e in entries if e.requirement in requirements]

    text = params.get("text")
    if isinstance(text, str) and text.strip():
        needle = text.strip().lower()
        applied["text"] = text.strip()
        entries = [
            e for e in entries
            if needle in e.title.lower() or needle in e.body.lower() or needle in (e.semantic_summary or "").lower()
        ]

    limit = params.get("limit")
    if not isinstance(limit, int) or isinstance(limit, bool):
        limit = QUERY_DEFAULT_LIMIT
    limit = max(1, min(QUERY_MAX_LIMIT, limit))
    offset = params.get("offset")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        offset = 0

    page = entries[offset:offset + limit]
    return {
        "hash": state.hash,
        "total": len(entries),
        "count": len(page),
        "offset": offset,
        "limit": limit,
        "items": _records(page),
        "applied": applied,
    }


@register_handler("instructions/categories")
def list_categories(params: dict[str, Any]) -> dict[str, Any]:
    counts: dict[str, int] = defaultdict(int)
    for entry in get_catalog().ensure_loaded().entries:
        for category in entry.categories:
            counts[category] += 1
    categories = [{"name": name, "count": counts[name]} for name in sorted(counts)]
    return {"count": len(categories), "categories": categories}


@register_handler("instructions/dir")
def describe_dir(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    files = sorted(p.name for p in ctx.instructions_dir.glob("*.json"))
    return {"dir": str(ctx.instructions_dir), "filesCount": len(files), "files": files}


@register_handler("instructions/inspect")
def inspect_entry(params: dict[str, Any]) -> dict[str, Any]:
    """Explain how one file is seen by the loader, without modifying it."""
    instruction_id = _require_id(params)
    ctx = get_catalog()
    if not is_safe_id(instruction_id):
        raise invalid_params("Invalid id", {"id": instruction_id})
    path = ctx.file_for(instruction_id)
    if not path.exists():
        return {"id": instruction_id, "exists": False, "fileMissing": True}

    outcome = CatalogLoader(ctx.instructions_dir, ctx.classifier, persist_migrations=False).read_file(path)
    result: dict[str, Any] = {"id": instruction_id, "exists": True, "file": str(path)}
    if outcome.bucket == "parse":
        result["parseError"] = outcome.reason
    if outcome.bucket == "ignored":
        result["ignored"] = outcome.reason
    if outcome.schema_errors:
        result["schemaErrors"] = outcome.schema_errors
    if outcome.classification_issues:
        result["classificationIssues"] = outcome.classification_issues
    if outcome.entry is not None:
        result["normalized"] = outcome.entry.to_record()
    result["raw"] = outcome.raw
    return result


# ============================================================================
# Mutations
# ============================================================================

def _build_record(data: dict[str, Any], categories: list[str], config) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": data["id"].strip(),
        "title": data["title"].strip(),
        "body": data["body"],
        "priority": data.get("priority", 50),
        "audience": data.get("audience", "all"),
        "requirement": data.get("requirement", "optional"),
        "categories": categories,
    }
    primary = data.get("primaryCategory")
    if isinstance(primary, str) and primary.strip().lower() in categories:
        record["primaryCategory"] = primary.strip().lower()
    elif categories:
        record["primaryCategory"] = categories[0]
    for key in PASSTHROUGH_FIELDS:
        if data.get(key) not in (None, ""):
            record[key] = data[key]
    if "createdByAgent" not in record and config.agent_id:
        record["createdByAgent"] = config.agent_id
    if "sourceWorkspace" not in record and config.workspace_id:
        record["sourceWorkspace"] = config.workspace_id
    if record.get("owner") in (None, DEFAULT_OWNER):
        owner = resolve_owner(record["id"])
        if owner:
            record["owner"] = owner
    salvage_record(record, {})
    return record


@register_handler("instructions/import", mutation=True)
def import_entries(params: dict[str, Any]) -> dict[str, Any]:
    entries = params.get("entries")
    if not isinstance(entries, list) or not entries:
        return {"error": "no entries"}
    mode = params.get("mode") if params.get("mode") in ("skip", "overwrite") else "skip"
    config = load_config()
    ctx = get_catalog()

    imported = skipped = overwritten = 0
    errors: list[dict[str, Any]] = []
    touched: list[str] = []
    for data in entries:
        if not isinstance(data, dict) or not all(
            isinstance(data.get(k), str) and data.get(k).strip() for k in ("id", "title", "body")
        ):
            errors.append({"id": data.get("id") if isinstance(data, dict) else None, "error": "missing required fields"})
            continue
        instruction_id = data["id"].strip()
        if not is_safe_id(instruction_id):
            errors.append({"id": instruction_id, "error": "invalid id"})
            continue

        categories = _clean_categories(data.get("categories"))
        had_categories = bool(categories)
        if not categories:
            if config.require_category:
                errors.append({"id": instruction_id, "error": "category_required"})
                continue
            categories = ["uncategorized"]

        record = _build_record(data, categories, config)
        governance_error = _governance_error(record, had_categories)
        if governance_error:
            errors.append({"id": instruction_id, "error": governance_error})
            continue

        exists = ctx.file_for(instruction_id).exists()
        if exists and mode == "skip":
            skipped += 1
            continue
        if exists:
            previous = ctx.read_raw(instruction_id) or {}
            if isinstance(previous.get("createdAt"), str) and previous["createdAt"]:
                record.setdefault("createdAt", previous["createdAt"])
        now = utc_now_iso()
        record.setdefault("createdAt", now)
        record["updatedAt"] = now

        try:
            entry = InstructionEntry.model_validate(record)
        except ValidationError as e:
            errors.append({"id": instruction_id, "error": f"invalid entry: {e.errors()[0]['msg']}"})
            continue
        issues = ctx.classifier.validate(entry)
        if issues:
            errors.append({"id": instruction_id, "error": "; ".join(issues)})
            continue
        try:
            ctx.write_entry(entry)
        except OSError as e:
            logger.error(f"Import write failed for {instruction_id}: {e}")
            errors.append({"id": instruction_id, "error": "write-failed"})
            continue
        touched.append(instruction_id)
        if exists:
            overwritten += 1
        else:
            imported += 1

    if touched:
        _finish_mutation(ctx, "import", touched, {
            "imported": imported, "overwritten": overwritten, "skipped": skipped, "errors": len(errors),
        })
    state = ctx.ensure_loaded()
    return {
        "hash": state.hash,
        "imported": imported,
        "skipped": skipped,
        "overwritten": overwritten,
        "total": len(entries),
        "errors": errors,
    }


def _add_failure(
    ctx: CatalogContext,
    instruction_id: Any,
    error: str,
    data: dict[str, Any] | None = None,
    shape_error: bool = False,
) -> dict[str, Any]:
    data = data or {}
    body = data.get("body") if isinstance(data.get("body"), str) else ""
    result: dict[str, Any] = {
        "id": instruction_id,
        "created": False,
        "overwritten": False,
        "skipped": False,
        "error": error,
        "feedbackHint": FEEDBACK_HINT,
        "reproEntry": {
            "id": instruction_id,
            "title": data.get("title"),
            "requirement": data.get("requirement"),
            "priorityTier": data.get("priorityTier"),
            "owner": data.get("owner"),
            "bodyPreview": body[:200],
        },
    }
    if shape_error or error.startswith("missing"):
        result["schemaRef"] = SCHEMA_ID
        result["inputSchema"] = input_schema_for_add()
    try:
        result["hash"] = ctx.ensure_loaded().hash
    except OSError:
        pass
    logger.info(f"instructions/add failed for {instruction_id!r}: {error}")
    return result


def _resolve_version(
    record: dict[str, Any],
    previous: dict[str, Any] | None,
    provided_version: str | None,
    now: str,
) -> str | None:
    """Apply semver rules and extend the change log. Returns an error code or None."""
    if previous is None:
        version = provided_version or DEFAULT_VERSION
        record["version"] = version
        record["changeLog"] = repair_change_log(record.get("changeLog"), version, now)
        return None

    prev_version = previous.get("version") if parse_semver(previous.get("version")) else DEFAULT_VERSION
    base_log = record.get("changeLog") if isinstance(record.get("changeLog"), list) else previous.get("changeLog")
    change_log = repair_change_log(base_log, prev_version, previous.get("createdAt"))
    body_changed = hash_body(previous.get("body") or "") != hash_body(record["body"])
    meta_changed = any(previous.get(key) != record.get(key) for key in METADATA_FIELDS)

    if body_changed:
        if provided_version is None:
            version = bump_version(prev_version, "patch")
            summary = "auto bump (body change)"
        elif not is_greater_version(provided_version, prev_version):
            return "version_not_bumped"
        else:
            version = provided_version
            summary = "body update"
        change_log.append({"version": version, "changedAt": now, "summary": summary})
    else:
        # An unchanged body keeps its version unless a greater one is supplied
        version = prev_version
        if provided_version is not None:
            if not is_greater_version(provided_version, prev_version):
                return "version_not_bumped"
            version = provided_version
        if meta_changed or version != prev_version:
            change_log.append({"version": version, "changedAt": now, "summary": "metadata update"})

    record["version"] = version
    record["changeLog"] = change_log
    return None


@register_handler("instructions/add", mutation=True)
def add_entry(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    config = load_config()
    data = params.get("entry")
    if not isinstance(data, dict):
        return _add_failure(ctx, None, "missing entry", shape_error=True)
    data = dict(data)
    overwrite = bool(params.get("overwrite"))
    lax = bool(params.get("lax"))

    instruction_id = data.get("id")
    if not isinstance(instruction_id, str) or not instruction_id.strip():
        return _add_failure(ctx, instruction_id, "missing id", data)
    instruction_id = instruction_id.strip()
    data["id"] = instruction_id
    if not is_safe_id(instruction_id):
        return _add_failure(ctx, instruction_id, "invalid id", data, shape_error=True)

    exists = ctx.file_for(instruction_id).exists()
    previous = ctx.read_raw(instruction_id) if exists else None
    if overwrite and previous:
        for key in ("body", "title"):
            if not isinstance(data.get(key), str) or not data[key].strip():
                if isinstance(previous.get(key), str):
                    data[key] = previous[key]
    if lax:
        if not isinstance(data.get("title"), str) or not data["title"].strip():
            data["title"] = instruction_id
        data.setdefault("priority", 50)
        data.setdefault("audience", "all")
        data.setdefault("requirement", "optional")
        data.setdefault("categories", [])

    missing = [k for k in ("title", "body") if not isinstance(data.get(k), str) or not data[k].strip()]
    if missing:
        return _add_failure(ctx, instruction_id, f"missing required fields: {', '.join(missing)}", data)

    if exists and not overwrite:
        state = ctx.ensure_loaded()
        if instruction_id not in state.by_id:
            ctx.invalidate()
            if instruction_id not in ctx.ensure_loaded().by_id:
                ctx.materialize(instruction_id)
        return {
            "id": instruction_id,
            "skipped": True,
            "created": False,
            "overwritten": False,
            "hash": ctx.ensure_loaded().hash,
        }

    categories = _clean_categories(data.get("categories"))
    if not categories and config.require_category:
        return _add_failure(ctx, instruction_id, "category_required", data)

    provided_version = data.get("version")
    if provided_version is not None and parse_semver(provided_version) is None:
        return _add_failure(ctx, instruction_id, "invalid_semver", data)

    if previous:
        for key in CARRY_OVER_FIELDS:
            if data.get(key) in (None, "") and previous.get(key) not in (None, ""):
                data[key] = previous[key]

    record = _build_record(data, categories, config)
    governance_error = _governance_error(record, bool(categories))
    if governance_error:
        return _add_failure(ctx, instruction_id, governance_error, data)

    now = utc_now_iso()
    version_error = _resolve_version(record, previous if overwrite else None, provided_version, now)
    if version_error:
        return _add_failure(ctx, instruction_id, version_error, data)
    record["createdAt"] = (previous or {}).get("createdAt") or now
    record["updatedAt"] = now

    schema_errors = validate_record(record)
    if schema_errors:
        return _add_failure(ctx, instruction_id, f"invalid entry: {schema_errors[0]}", data, shape_error=True)
    try:
        entry = InstructionEntry.model_validate(record)
    except ValidationError as e:
        return _add_failure(ctx, instruction_id, f"invalid entry: {e.errors()[0]['msg']}", data, shape_error=True)
    issues = ctx.classifier.validate(entry)
    if issues:
        return _add_failure(ctx, instruction_id, "; ".join(issues), data)

    try:
        written = ctx.write_entry(entry)
    except OSError as e:
        logger.error(f"instructions/add write failed for {instruction_id}: {e}")
        return _add_failure(ctx, instruction_id, f"write-failed: {e}", data)
    ctx.after_mutation("add", [instruction_id])

    # Read back what is on disk and confirm the catalog can see it
    on_disk = ctx.read_raw(instruction_id)
    if on_disk is None:
        return _add_failure(ctx, instruction_id, "atomic_readback_failed", data)
    if not is_instruction_record(on_disk) or on_disk.get("id") != instruction_id:
        return _add_failure(ctx, instruction_id, "readback_invalid_shape", data)
    state = ctx.ensure_loaded()
    visible = state.by_id.get(instruction_id) or ctx.materialize(instruction_id)
    if visible is None:
        return _add_failure(ctx, instruction_id, "atomic_readback_failed", data)

    result: dict[str, Any] = {
        "id": instruction_id,
        "created": not exists,
        "overwritten": exists,
        "skipped": False,
        "hash": ctx.ensure_loaded().hash,
        "verified": True,
    }
    if config.strict_create:
        if visible.source_hash != written.source_hash or visible.title != written.title:
            return _add_failure(ctx, instruction_id, "strict_verification_failed", data)
        result["strictVerified"] = True

    log_audit("add", [instruction_id], {"created": not exists, "overwritten": exists, "version": written.version})
    update_manifest_after_mutation()
    return result


@register_handler("instructions/remove", mutation=True)
def remove_entries(params: dict[str, Any]) -> dict[str, Any]:
    raw_ids = params.get("ids")
    if not isinstance(raw_ids, list):
        raw_ids = [params["id"]] if isinstance(params.get("id"), str) else []
    ids = list(dict.fromkeys(i.strip() for i in raw_ids if isinstance(i, str) and i.strip()))
    if not ids:
        return {"removed": 0, "removedIds": [], "missing": [], "errorCount": 1, "errors": ["no ids supplied"]}

    ctx = get_catalog()
    removed: list[str] = []
    missing: list[str] = []
    errors: list[str] = []
    for instruction_id in ids:
        if not is_safe_id(instruction_id):
            errors.append(f"invalid id: {instruction_id}")
            continue
        try:
            if ctx.remove_entry(instruction_id):
                removed.append(instruction_id)
            else:
                missing.append(instruction_id)
        except OSError as e:
            errors.append(f"{instruction_id}: {e}")

    if removed:
        _finish_mutation(ctx, "remove", removed, {"missing": len(missing), "errors": len(errors)})

    result: dict[str, Any] = {
        "removed": len(removed),
        "removedIds": removed,
        "missing": missing,
        "errorCount": len(errors),
        "errors": errors,
    }
    if load_config().strict_remove or params.get("strict"):
        state = ctx.ensure_loaded()
        still_present = [i for i in removed if i in state.by_id or ctx.file_for(i).exists()]
        result["strictVerified"] = not still_present
        result["strictFailed"] = still_present
    return result


@register_handler("instructions/reload", mutation=True)
def reload_catalog(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    ctx.invalidate()
    state = ctx.ensure_loaded()
    log_audit("reload", None, {"count": len(state.entries)})
    return {"reloaded": True, "hash": state.hash, "count": len(state.entries)}


@register_handler("instructions/governanceHash")
def governance_hash(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    items = ctx.governance_projection()
    return {"count": len(items), "governanceHash": ctx.governance_hash(), "items": items}


@register_handler("instructions/health")
def catalog_health(params: dict[str, Any]) -> dict[str, Any]:
    """Compare the live catalog against the committed canonical snapshot."""
    ctx = get_catalog()
    state = ctx.ensure_loaded()
    base = {"hash": state.hash, "count": len(state.entries)}
    path = load_config().canonical_snapshot_path
    if not path.exists():
        return {"snapshot": "missing", **base, "governanceHash": ctx.governance_hash()}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        items = data if isinstance(data, list) else data.get("items", [])
        recorded = {i["id"]: i.get("sourceHash") for i in items if isinstance(i, dict) and "id" in i}
    except (OSError, ValueError, AttributeError, TypeError) as e:
        return {"snapshot": "error", "error": str(e), **base, "governanceHash": ctx.governance_hash()}

    missing = sorted(i for i in recorded if i not in state.by_id)
    extra = sorted(i for i in state.by_id if i not in recorded)
    changed = sorted(i for i in recorded if i in state.by_id and recorded[i] != state.by_id[i].source_hash)
    return {
        "snapshot": "present",
        **base,
        "missing": missing,
        "changed": changed,
        "extra": extra,
        "drift": len(missing) + len(changed) + len(extra),
        "governanceHash": ctx.governance_hash(),
    }


@register_handler("instructions/enrich", mutation=True)
def enrich_entries(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    entries = ctx.ensure_loaded().entries
    updated = ctx.persist_enrichment(entries)
    if updated:
        _finish_mutation(ctx, "enrich", updated)
    return {"rewritten": len(updated), "updated": updated, "skipped": len(entries) - len(updated)}


@register_handler("instructions/governanceUpdate", mutation=True)
def governance_update(params: dict[str, Any]) -> dict[str, Any]:
    instruction_id = _require_id(params)
    ctx = get_catalog()
    entry = ctx.ensure_loaded().by_id.get(instruction_id)
    if entry is None:
        return {"id": instruction_id, "notFound": True}

    record = entry.to_record()
    for key in USAGE_FIELDS:
        record.pop(key, None)
    changed = False

    owner = params.get("owner")
    if isinstance(owner, str) and owner.strip() and owner.strip() != record.get("owner"):
        record["owner"] = owner.strip()
        changed = True

    status = params.get("status")
    if status is not None:
        normalized = STATUS_ALIASES.get(str(status).strip().lower(), str(status).strip().lower())
        if normalized not in STATUSES:
            return {"id": instruction_id, "error": "invalid status", "provided": status}
        if normalized != record.get("status"):
            record["status"] = normalized
            changed = True

    last_reviewed = params.get("lastReviewedAt")
    next_due = params.get("nextReviewDue")
    if isinstance(last_reviewed, str) and last_reviewed and last_reviewed != record.get("lastReviewedAt"):
        record["lastReviewedAt"] = last_reviewed
        changed = True
        if not isinstance(next_due, str) or not next_due:
            interval = record.get("reviewIntervalDays") or review_interval_days(
                record.get("priorityTier"), record.get("requirement")
            )
            due = next_review_due(last_reviewed, interval)
            if due:
                record["nextReviewDue"] = due
    if isinstance(next_due, str) and next_due and next_due != record.get("nextReviewDue"):
        record["nextReviewDue"] = next_due
        changed = True

    bump = params.get("bump", "none")
    if bump in ("patch", "minor", "major"):
        record["version"] = bump_version(record.get("version"), bump)
        log = repair_change_log(record.get("changeLog"), record["version"], record.get("createdAt"))
        log.append({
            "version": record["version"],
            "changedAt": utc_now_iso(),
            "summary": f"manual {bump} bump via governanceUpdate",
        })
        record["changeLog"] = log
        changed = True

    if not changed:
        return {"id": instruction_id, "changed": False}

    record["updatedAt"] = utc_now_iso()
    written = ctx.write_entry(InstructionEntry.model_validate(record))
    _finish_mutation(ctx, "governanceUpdate", [instruction_id], {"bump": bump})
    return {
        "id": instruction_id,
        "changed": True,
        "version": written.version,
        "owner": written.owner,
        "status": written.status,
        "lastReviewedAt": written.last_reviewed_at,
        "nextReviewDue": written.next_review_due,
    }


@register_handler("instructions/repair", mutation=True)
def repair_hashes(params: dict[str, Any]) -> dict[str, Any]:
    """Rewrite files whose stored sourceHash no longer matches their body."""
    ctx = get_catalog()
    updated: list[str] = []
    for entry in ctx.ensure_loaded().entries:
        raw = ctx.read_raw(entry.id)
        if raw is None or raw.get("sourceHash") == entry.source_hash:
            continue
        raw["sourceHash"] = entry.source_hash
        try:
            atomic_write_json(ctx.file_for(entry.id), raw)
            updated.append(entry.id)
        except OSError as e:
            logger.warning(f"Hash repair failed for {entry.id}: {e}")
    if updated:
        _finish_mutation(ctx, "repair", updated)
    return {"repaired": len(updated), "updated": updated}


@register_handler("instructions/groom", mutation=True)
def groom_catalog(params: dict[str, Any]) -> dict[str, Any]:
    """Normalize, de-duplicate and prune the catalog in one pass."""
    mode = params.get("mode") if isinstance(params.get("mode"), dict) else {}
    dry_run = bool(mode.get("dryRun"))
    remove_deprecated = bool(mode.get("removeDeprecated"))
    merge_duplicates = bool(mode.get("mergeDuplicates"))
    purge_legacy_scopes = bool(mode.get("purgeLegacyScopes"))

    ctx = get_catalog()
    state = ctx.ensure_loaded()
    previous_hash = state.hash
    raws = {e.id: raw for e in state.entries if (raw := ctx.read_raw(e.id)) is not None}
    dirty: set[str] = set()
    to_remove: set[str] = set()
    notes: list[str] = []
    repaired_hashes = normalized_categories = purged_scopes = 0
    duplicates_merged = deprecated_removed = 0

    for instruction_id, raw in raws.items():
        entry = state.by_id[instruction_id]
        if raw.get("sourceHash") != entry.source_hash:
            raw["sourceHash"] = entry.source_hash
            repaired_hashes += 1
            dirty.add(instruction_id)
        categories = raw.get("categories") if isinstance(raw.get("categories"), list) else []
        if purge_legacy_scopes:
            kept = [c for c in categories if not (isinstance(c, str) and LEGACY_SCOPE_PATTERN.match(c))]
            if len(kept) != len(categories):
                purged_scopes += len(categories) - len(kept)
                if dry_run:
                    notes.append(f"would-purge:{instruction_id}")
                categories = kept
        cleaned = _clean_categories(categories)
        if cleaned != raw.get("categories"):
            raw["categories"] = cleaned
            if raw.get("primaryCategory") not in cleaned:
                if cleaned:
                    raw["primaryCategory"] = cleaned[0]
                else:
                    raw.pop("primaryCategory", None)
            normalized_categories += 1
            dirty.add(instruction_id)

    if merge_duplicates:
        groups: dict[str, list[InstructionEntry]] = defaultdict(list)
        for entry in state.entries:
            if entry.id in raws and entry.requirement != "deprecated":
                groups[entry.source_hash].append(entry)
        for group in groups.values():
            if len(group) < 2:
                continue
            primary = min(group, key=lambda e: (e.created_at or "\uffff", e.id))
            primary_raw = raws[primary.id]
            merged_categories = set(primary_raw.get("categories") or [])
            # Salvaged entries carry numeric priorities even when the file holds a legacy string
            primary_raw["priority"] = min(e.priority for e in group)
            primary_raw["riskScore"] = max(e.risk_score or 0 for e in group)
            for dup in group:
                if dup.id == primary.id:
                    continue
                merged_categories.update(raws[dup.id].get("categories") or [])
                duplicates_merged += 1
                if remove_deprecated:
                    to_remove.add(dup.id)
                    deprecated_removed += 1
                else:
                    raws[dup.id]["deprecatedBy"] = primary.id
                    raws[dup.id]["requirement"] = "deprecated"
                    raws[dup.id]["status"] = "deprecated"
                    dirty.add(dup.id)
            primary_raw["categories"] = sorted(merged_categories)
            dirty.add(primary.id)

    if remove_deprecated:
        for entry in state.entries:
            if (
                entry.requirement == "deprecated"
                and entry.deprecated_by in state.by_id
                and entry.deprecated_by not in to_remove
                and entry.id not in to_remove
            ):
                to_remove.add(entry.id)
                deprecated_removed += 1

    dirty -= to_remove
    files_rewritten = 0
    if dry_run:
        notes.extend(f"would-rewrite:{i}" for i in sorted(dirty))
        notes.extend(f"would-remove:{i}" for i in sorted(to_remove))
    else:
        now = utc_now_iso()
        for instruction_id in sorted(dirty):
            raw = raws[instruction_id]
            raw["updatedAt"] = now
            try:
                atomic_write_json(ctx.file_for(instruction_id), raw)
                files_rewritten += 1
            except OSError as e:
                notes.append(f"write-failed:{instruction_id}: {e}")
        for instruction_id in sorted(to_remove):
            try:
                ctx.remove_entry(instruction_id)
            except OSError as e:
                notes.append(f"remove-failed:{instruction_id}: {e}")
        if dirty or to_remove:
            _finish_mutation(ctx, "groom", sorted(dirty | to_remove), {
                "rewritten": files_rewritten, "removed": len(to_remove),
            })

    return {
        "previousHash": previous_hash,
        "hash": ctx.ensure_loaded().hash,
        "scanned": len(state.entries),
        "repairedHashes": repaired_hashes,
        "normalizedCategories": normalized_categories,
        "deprecatedRemoved": deprecated_removed,
        "duplicatesMerged": duplicates_merged,
        "filesRewritten": files_rewritten,
        "purgedScopes": purged_scopes,
        "dryRun": dry_run,
        "notes": notes,
    }
