"""Metrics snapshots for the dashboard, built from registry counters."""

import threading
import time
from collections import deque
from typing import Any

from .models import utc_now_iso
from .registry import get_metrics_raw, reset_metrics
from .version import __version__

MAX_HISTORY = 100


class MetricsCollector:
    """Builds point-in-time metrics snapshots and keeps a bounded history."""

    def __init__(self, max_history: int = MAX_HISTORY):
        self.started_at = time.time()
        self._history: deque[dict[str, Any]] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self.active_connections = 0
        self.total_connections = 0

    def connection_opened(self) -> None:
        with self._lock:
            self.active_connections += 1
            self.total_connections += 1

    def connection_closed(self) -> None:
        with self._lock:
            self.active_connections = max(0, self.active_connections - 1)

    def tool_metrics(self) -> dict[str, dict[str, Any]]:
        tools = {}
        for name, stats in get_metrics_raw().items():
            count = int(stats["count"])
            tools[name] = {
                "callCount": count,
                "errorCount": int(stats["errors"]),
                "avgResponseTime": round(stats["totalMs"] / count, 3) if count else 0.0,
                "maxResponseTime": round(stats["maxMs"], 3),
                "totalTime": round(stats["totalMs"], 3),
            }
        return tools

    def snapshot(self) -> dict[str, Any]:
        tools = self.tool_metrics()
        total_calls = sum(t["callCount"] for t in tools.values())
        total_errors = sum(t["errorCount"] for t in tools.values())
        total_time = sum(t["totalTime"] for t in tools.values())
        with self._lock:
            connections = {"active": self.active_connections, "total": self.total_connections}
        snap = {
            "timestamp": utc_now_iso(),
            "server": {
                "uptime": round(time.time() - self.started_at, 3),
                "version": __version__,
                "startedAt": self.started_at,
            },
            "tools": tools,
            "connections": connections,
            "performance": {
                "totalCalls": total_calls,
                "errorRate": round(total_errors / total_calls, 4) if total_calls else 0.0,
                "avgResponseTime": round(total_time / total_calls, 3) if total_calls else 0.0,
            },
        }
        with self._lock:
            self._history.append(snap)
        return snap

    def history(self, count: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            items = list(self._history)
        if count is not None and count >= 0:
            items = items[-count:] if count else []
        return items

    def clear(self) -> None:
        reset_metrics()
        with self._lock:
            self._history.clear()
