"""Feature flags and lightweight counters."""

import threading

from .config import load_config

_lock = threading.Lock()
_enabled: set[str] | None = None
_counters: dict[str, int] = {}


def _features() -> set[str]:
    global _enabled
    if _enabled is None:
        _enabled = set(load_config().features)
        for feature in sorted(_enabled):
            _counters[f"featureActivated:{feature}"] = _counters.get(f"featureActivated:{feature}", 0) + 1
    return _enabled


def has_feature(name: str) -> bool:
    with _lock:
        return name in _features()


def increment_counter(name: str, amount: int = 1) -> None:
    with _lock:
        _counters[name] = _counters.get(name, 0) + amount


def get_counters() -> dict[str, int]:
    with _lock:
        return dict(_counters)


def feature_status() -> dict:
    with _lock:
        features = sorted(_features())
        counters = dict(_counters)
    return {
        "features": features,
        "counters": counters,
        "env": {"INDEX_FEATURES": ",".join(load_config().features)},
    }


def reset_features() -> None:
    global _enabled
    with _lock:
        _enabled = None
        _counters.clear()
