"""Integrity check: stored ``sourceHash`` values against recomputed hashes."""

from typing import Any

from .catalog import get_catalog
from .registry import register_handler


@register_handler("integrity/verify")
def verify_integrity(params: dict[str, Any]) -> dict[str, Any]:
    ctx = get_catalog()
    state = ctx.ensure_loaded()
    issues = []
    for entry in state.entries:
        raw = ctx.read_raw(entry.id)
        stored = raw.get("sourceHash") if raw else None
        if stored != entry.source_hash:
            issues.append({"id": entry.id, "expected": entry.source_hash, "actual": stored or ""})
    return {"hash": state.hash, "count": len(state.entries), "issues": issues, "issueCount": len(issues)}
