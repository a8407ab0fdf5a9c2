"""Catalog manifest: a committed snapshot of ids and hashes used for drift checks.

The manifest lives at ``snapshots/catalog-manifest.json``. ``generatedAt`` is
carried over when the entries did not change and identical bytes are never
rewritten, so the file stays quiet under version control.
"""

import json
import logging
from typing import Any

from .atomic_fs import atomic_write_text
from .canonical import hash_body
from .catalog import get_catalog
from .config import load_config
from .models import InstructionEntry, utc_now_iso
from .registry import register_handler

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


def build_manifest_entries(entries: list[InstructionEntry]) -> list[dict[str, str]]:
    return sorted(
        ({"id": e.id, "sourceHash": e.source_hash, "bodyHash": hash_body(e.body)} for e in entries),
        key=lambda m: m["id"],
    )


def read_manifest() -> tuple[str, dict[str, Any] | None]:
    """Return (status, manifest) where status is missing, invalid or present."""
    path = load_config().manifest_path
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return "missing", None
    except (OSError, ValueError):
        return "invalid", None
    if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
        return "invalid", None
    return "present", data


def write_manifest(force: bool = False) -> dict[str, Any]:
    """Write the manifest for the current catalog.

    Returns ``{written, count, generatedAt}``; ``disabled`` is set when
    MCP_MANIFEST_WRITE=0 and ``force`` is false.
    """
    config = load_config()
    entries = build_manifest_entries(get_catalog().ensure_loaded().entries)
    if not config.manifest_write and not force:
        return {"written": False, "disabled": True, "count": len(entries)}

    status, existing = read_manifest()
    generated_at = utc_now_iso()
    if status == "present" and existing.get("entries") == entries and existing.get("generatedAt"):
        generated_at = existing["generatedAt"]

    manifest = {
        "version": MANIFEST_VERSION,
        "generatedAt": generated_at,
        "count": len(entries),
        "entries": entries,
    }
    text = json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"
    path = config.manifest_path
    try:
        if path.read_text(encoding="utf-8") == text:
            return {"written": False, "unchanged": True, "count": len(entries), "generatedAt": generated_at}
    except (FileNotFoundError, UnicodeDecodeError):
        pass
    atomic_write_text(path, text)
    logger.info(f"Manifest written: {len(entries)} entries")
    return {"written": True, "count": len(entries), "generatedAt": generated_at}


def update_manifest_after_mutation() -> None:
    """Best-effort manifest refresh after a catalog mutation."""
    try:
        write_manifest()
    except OSError as e:
        logger.warning(f"Manifest update failed: {e}")


def compute_manifest_drift() -> dict[str, Any]:
    """Compare the manifest with the live catalog."""
    config = load_config()
    state = get_catalog().ensure_loaded()
    status, manifest = read_manifest()
    if status != "present":
        return {"manifest": status, "drift": len(state.entries), "details": []}

    current = {m["id"]: m for m in build_manifest_entries(state.entries)}
    if config.manifest_fastload and manifest.get("count") == len(current):
        return {"manifest": status, "drift": 0, "details": [], "fastload": True}

    recorded = {m.get("id"): m for m in manifest["entries"] if isinstance(m, dict)}
    details = []
    for id_ in sorted(set(current) | set(recorded)):
        if id_ not in recorded:
            details.append({"id": id_, "change": "added"})
        elif id_ not in current:
            details.append({"id": id_, "change": "removed"})
        elif (
            recorded[id_].get("sourceHash") != current[id_]["sourceHash"]
            or recorded[id_].get("bodyHash") != current[id_]["bodyHash"]
        ):
            details.append({"id": id_, "change": "hash-mismatch"})
    return {"manifest": status, "drift": len(details), "details": details}


def repair_manifest() -> dict[str, Any]:
    before = compute_manifest_drift()
    if before["drift"] == 0 and before["manifest"] == "present":
        return {"repaired": False, "driftBefore": 0, "driftAfter": 0}
    write_manifest(force=True)
    after = compute_manifest_drift()
    return {"repaired": True, "driftBefore": before["drift"], "driftAfter": after["drift"]}


@register_handler("manifest/status")
def manifest_status(params: dict[str, Any]) -> dict[str, Any]:
    status, manifest = read_manifest()
    drift = compute_manifest_drift()
    return {
        "manifestPresent": status == "present",
        "status": status,
        "path": str(load_config().manifest_path),
        "generatedAt": manifest.get("generatedAt") if manifest else None,
        "count": manifest.get("count") if manifest else 0,
        "drift": drift["drift"],
        "details": drift["details"],
    }


@register_handler("manifest/refresh", mutation=True)
def manifest_refresh(params: dict[str, Any]) -> dict[str, Any]:
    result = write_manifest(force=True)
    return {"refreshed": True, **result}


@register_handler("manifest/repair", mutation=True)
def manifest_repair(params: dict[str, Any]) -> dict[str, Any]:
    return repair_manifest()


@register_handler("integrity/manifest")
def integrity_manifest(params: dict[str, Any]) -> dict[str, Any]:
    return compute_manifest_drift()
