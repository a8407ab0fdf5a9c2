"""Method registry: maps tool names to handlers and records call metrics."""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .config import load_config
from .errors import SemanticError, internal_error, invalid_params, method_not_found
from .telemetry import EventType, event_bus

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]

_handlers: dict[str, Handler] = {}
_mutations: set[str] = set()
_metrics: dict[str, dict[str, float]] = {}
_metrics_lock = threading.Lock()


def register_handler(name: str, mutation: bool = False) -> Callable[[Handler], Handler]:
    """Decorator registering ``func`` as the handler for method ``name``."""

    def decorator(func: Handler) -> Handler:
        _handlers[name] = func
        if mutation:
            _mutations.add(name)
        return func

    return decorator


def get_handler(name: str) -> Handler | None:
    return _handlers.get(name)


def is_mutation(name: str) -> bool:
    return name in _mutations


def list_registered_methods() -> list[str]:
    return sorted(_handlers)


def _record(name: str, elapsed_ms: float, success: bool) -> None:
    with _metrics_lock:
        stats = _metrics.setdefault(name, {"count": 0, "totalMs": 0.0, "maxMs": 0.0, "errors": 0})
        stats["count"] += 1
        stats["totalMs"] += elapsed_ms
        stats["maxMs"] = max(stats["maxMs"], elapsed_ms)
        if not success:
            stats["errors"] += 1


def invoke(name: str, params: dict[str, Any] | None = None) -> Any:
    """Run a registered handler with metrics, telemetry and error wrapping.

    Raises:
        SemanticError: unknown method, disabled mutation, bad params, or an
            internal failure (-32603) wrapping any other exception.
    """
    handler = _handlers.get(name)
    if handler is None:
        raise method_not_found(f"Unknown tool: {name}", {"tool": name})
    if name in _mutations and not load_config().mutation_enabled:
        raise method_not_found(
            f"Mutation disabled. Use instructions/dispatch with action or set MCP_ENABLE_MUTATION=1 to call {name}",
            {"method": name, "reason": "mutation_disabled"},
        )
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise invalid_params("Params must be an object", {"method": name})

    started = time.perf_counter()
    success = True
    try:
        return handler(params)
    except SemanticError:
        success = False
        raise
    except Exception as e:
        success = False
        logger.exception("Handler %s failed", name)
        raise internal_error(f"Internal error in {name}: {e}", {"method": name}) from e
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        _record(name, elapsed_ms, success)
        event_bus.emit(EventType.TOOL_CALL, {
            "tool": name,
            "durationMs": round(elapsed_ms, 3),
            "success": success,
        })


def get_metrics_raw() -> dict[str, dict[str, float]]:
    with _metrics_lock:
        return {name: dict(stats) for name, stats in _metrics.items()}


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics.clear()
