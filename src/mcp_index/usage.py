"""Usage tracking tools."""

from typing import Any

from .catalog import get_catalog
from .registry import register_handler

HOTSET_DEFAULT_LIMIT = 10
HOTSET_MAX_LIMIT = 100


@register_handler("usage/track")
def track_usage(params: dict[str, Any]) -> dict[str, Any]:
    instruction_id = params.get("id")
    if not isinstance(instruction_id, str) or not instruction_id.strip():
        return {"error": "missing id"}
    result = get_catalog().increment_usage(instruction_id.strip())
    if result is None:
        return {"notFound": True}
    return result


@register_handler("usage/hotset")
def usage_hotset(params: dict[str, Any]) -> dict[str, Any]:
    limit = params.get("limit")
    if isinstance(limit, bool) or not isinstance(limit, int):
        limit = HOTSET_DEFAULT_LIMIT
    limit = max(1, min(HOTSET_MAX_LIMIT, limit))

    state = get_catalog().ensure_loaded()
    used = [e for e in state.entries if (e.usage_count or 0) > 0]
    used.sort(key=lambda e: (e.usage_count or 0, e.last_used_at or ""), reverse=True)
    items = [
        {"id": e.id, "usageCount": e.usage_count, "lastUsedAt": e.last_used_at}
        for e in used[:limit]
    ]
    return {"hash": state.hash, "count": len(items), "items": items, "limit": limit}


@register_handler("usage/flush", mutation=True)
def flush_usage(params: dict[str, Any]) -> dict[str, Any]:
    get_catalog().flush_usage()
    return {"flushed": True}
