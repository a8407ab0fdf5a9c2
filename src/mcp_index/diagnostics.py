"""Server health, metrics and feature-flag tools."""

from typing import Any

from .features import feature_status
from .models import utc_now_iso
from .registry import get_metrics_raw, register_handler
from .version import __version__


@register_handler("health/check")
def health_check(params: dict[str, Any]) -> dict[str, Any]:
    return {"status": "ok", "timestamp": utc_now_iso(), "version": __version__}


@register_handler("metrics/snapshot")
def metrics_snapshot(params: dict[str, Any]) -> dict[str, Any]:
    methods = []
    for method, stats in sorted(get_metrics_raw().items()):
        count = int(stats["count"])
        methods.append({
            "method": method,
            "count": count,
            "avgMs": round(stats["totalMs"] / count, 2) if count else 0,
            "maxMs": round(stats["maxMs"], 2),
        })
    return {"generatedAt": utc_now_iso(), "methods": methods, "features": feature_status()}


@register_handler("feature/status")
def feature_status_tool(params: dict[str, Any]) -> dict[str, Any]:
    return feature_status()
