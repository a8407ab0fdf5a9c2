"""Client feedback channel (``feedback/*`` tools).

Entries live in ``<FEEDBACK_DIR>/feedback-entries.json``. Only the most
recent ``FEEDBACK_MAX_ENTRIES`` are kept.
"""

import json
import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from .atomic_fs import atomic_write_json
from .config import load_config
from .errors import invalid_params
from .models import parse_iso, utc_now_iso
from .registry import register_handler

logger = logging.getLogger(__name__)

FEEDBACK_FILE = "feedback-entries.json"
STORAGE_VERSION = "1.0.0"

FEEDBACK_TYPES = (
    "issue", "status", "security", "feature-request",
    "bug-report", "performance", "usability", "other",
)
SEVERITIES = ("low", "medium", "high", "critical")
FEEDBACK_STATUSES = ("new", "acknowledged", "in-progress", "resolved", "closed")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_TAGS = 10
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def feedback_path() -> Path:
    return load_config().feedback_dir / FEEDBACK_FILE


def load_storage() -> dict[str, Any]:
    path = feedback_path()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict) and isinstance(data.get("entries"), list):
            return data
        logger.warning(f"Invalid feedback storage format in {path}, starting empty")
    except FileNotFoundError:
        pass
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load feedback storage {path}: {e}")
    return {"entries": [], "lastUpdated": utc_now_iso(), "version": STORAGE_VERSION}


def save_storage(storage: dict[str, Any]) -> None:
    max_entries = load_config().feedback_max_entries
    entries = storage["entries"]
    if len(entries) > max_entries:
        entries.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        storage["entries"] = entries[:max_entries]
    storage["lastUpdated"] = utc_now_iso()
    atomic_write_json(feedback_path(), storage)


def _require_choice(params: dict[str, Any], key: str, choices: tuple[str, ...]) -> str:
    value = params.get(key)
    if value not in choices:
        raise invalid_params(f"Invalid {key}. Must be one of: {', '.join(choices)}", {key: value})
    return value


@register_handler("feedback/submit")
def feedback_submit(params: dict[str, Any]) -> dict[str, Any]:
    missing = [k for k in ("type", "severity", "title", "description") if not params.get(k)]
    if missing:
        raise invalid_params(
            "Missing required parameters: type, severity, title, description",
            {"missing": missing},
        )
    feedback_type = _require_choice(params, "type", FEEDBACK_TYPES)
    severity = _require_choice(params, "severity", SEVERITIES)

    tags = params.get("tags")
    entry: dict[str, Any] = {
        "id": secrets.token_hex(8),
        "timestamp": utc_now_iso(),
        "type": feedback_type,
        "severity": severity,
        "title": str(params["title"])[:MAX_TITLE_LENGTH],
        "description": str(params["description"])[:MAX_DESCRIPTION_LENGTH],
        "status": "new",
    }
    for key in ("context", "metadata"):
        if isinstance(params.get(key), dict):
            entry[key] = params[key]
    if isinstance(tags, list):
        entry["tags"] = [str(t) for t in tags[:MAX_TAGS]]

    storage = load_storage()
    storage["entries"].append(entry)
    save_storage(storage)

    logger.info(f"Feedback submitted: {entry['id']} ({feedback_type}/{severity}) {entry['title']}")
    if feedback_type == "security" or severity == "critical":
        logger.warning(
            f"[SECURITY/CRITICAL] Feedback ID: {entry['id']}, Type: {feedback_type}, Title: {entry['title']}"
        )

    return {
        "success": True,
        "feedbackId": entry["id"],
        "timestamp": entry["timestamp"],
        "message": "Feedback submitted successfully",
    }


@register_handler("feedback/list")
def feedback_list(params: dict[str, Any]) -> dict[str, Any]:
    entries = list(load_storage()["entries"])
    for key in ("type", "severity", "status"):
        if params.get(key):
            entries = [e for e in entries if e.get(key) == params[key]]
    since = params.get("since")
    if isinstance(since, str) and since:
        entries = [e for e in entries if e.get("timestamp", "") >= since]
    tags = params.get("tags")
    if isinstance(tags, list) and tags:
        entries = [e for e in entries if set(e.get("tags") or []) & set(tags)]

    entries.sort(key=lambda e: e.get("timestamp", ""), reverse=True)

    limit = params.get("limit")
    limit = min(limit, MAX_PAGE_SIZE) if isinstance(limit, int) and limit > 0 else DEFAULT_PAGE_SIZE
    offset = params.get("offset")
    offset = offset if isinstance(offset, int) and offset > 0 else 0

    return {
        "entries": entries[offset:offset + limit],
        "total": len(entries),
        "limit": limit,
        "offset": offset,
        "hasMore": offset + limit < len(entries),
    }


def _find(storage: dict[str, Any], feedback_id: Any) -> dict[str, Any]:
    if not feedback_id:
        raise invalid_params("Missing required parameter: id")
    for entry in storage["entries"]:
        if entry.get("id") == feedback_id:
            return entry
    raise invalid_params(f"Feedback entry not found: {feedback_id}", {"id": feedback_id})


@register_handler("feedback/get")
def feedback_get(params: dict[str, Any]) -> dict[str, Any]:
    return {"entry": _find(load_storage(), params.get("id"))}


@register_handler("feedback/update")
def feedback_update(params: dict[str, Any]) -> dict[str, Any]:
    status = params.get("status")
    if status is not None:
        _require_choice(params, "status", FEEDBACK_STATUSES)

    storage = load_storage()
    entry = _find(storage, params.get("id"))
    old_status = entry.get("status")
    if status is not None:
        entry["status"] = status
    metadata = dict(entry.get("metadata") or {})
    if isinstance(params.get("metadata"), dict):
        metadata.update(params["metadata"])
    metadata["lastUpdated"] = utc_now_iso()
    metadata["updatedBy"] = "system"
    entry["metadata"] = metadata
    save_storage(storage)

    logger.info(f"Feedback entry updated: {entry['id']} {old_status} -> {entry['status']}")
    return {"success": True, "entry": entry, "message": "Feedback entry updated successfully"}


@register_handler("feedback/stats")
def feedback_stats(params: dict[str, Any]) -> dict[str, Any]:
    storage = load_storage()
    entries = storage["entries"]
    since = params.get("since")
    if isinstance(since, str) and since:
        entries = [e for e in entries if e.get("timestamp", "") >= since]

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    by_status: dict[str, int] = {}
    recent = {"last24h": 0, "last7d": 0, "last30d": 0}
    now = datetime.now(UTC)
    for entry in entries:
        by_type[entry.get("type")] = by_type.get(entry.get("type"), 0) + 1
        by_severity[entry.get("severity")] = by_severity.get(entry.get("severity"), 0) + 1
        by_status[entry.get("status")] = by_status.get(entry.get("status"), 0) + 1
        ts = parse_iso(entry.get("timestamp"))
        if ts is None:
            continue
        age = now - ts
        if age <= timedelta(days=1):
            recent["last24h"] += 1
        if age <= timedelta(days=7):
            recent["last7d"] += 1
        if age <= timedelta(days=30):
            recent["last30d"] += 1

    return {
        "stats": {
            "total": len(entries),
            "byType": by_type,
            "bySeverity": by_severity,
            "byStatus": by_status,
            "recentActivity": recent,
        },
        "storageInfo": {
            "lastUpdated": storage.get("lastUpdated"),
            "version": storage.get("version", STORAGE_VERSION),
            "maxEntries": load_config().feedback_max_entries,
        },
    }


@register_handler("feedback/health")
def feedback_health(params: dict[str, Any]) -> dict[str, Any]:
    config = load_config()
    directory = config.feedback_dir
    path = feedback_path()
    accessible = os.access(path, os.R_OK) if path.exists() else directory.exists()
    writable = directory.exists() and os.access(directory, os.W_OK)
    if not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
            writable = os.access(directory, os.W_OK)
            accessible = True
        except OSError as e:
            logger.warning(f"Feedback directory {directory} is not creatable: {e}")
    return {
        "status": "ok" if accessible and writable else "degraded",
        "timestamp": utc_now_iso(),
        "storage": {
            "accessible": accessible,
            "writable": writable,
            "directory": str(directory),
            "file": str(path),
        },
        "config": {"maxEntries": config.feedback_max_entries, "feedbackDir": str(directory)},
    }
