"""Append-only JSONL audit trail of catalog mutations."""

import json
import logging
from typing import Any

from .config import load_config
from .models import utc_now_iso

logger = logging.getLogger(__name__)


def log_audit(action: str, ids: str | list[str] | None = None, meta: dict[str, Any] | None = None) -> None:
    """Append one audit line. Failures are logged, never raised."""
    record: dict[str, Any] = {"ts": utc_now_iso(), "action": action}
    if ids is not None:
        record["ids"] = [ids] if isinstance(ids, str) else list(ids)
    if meta:
        record["meta"] = meta
    path = load_config().audit_log_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning(f"Audit log write failed ({action}): {e}")


def read_audit_entries(limit: int = 1000) -> list[dict[str, Any]]:
    """Most recent audit entries, oldest first."""
    path = load_config().audit_log_path
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    entries = []
    for line in lines[-limit:] if limit > 0 else []:
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except ValueError:
            continue
    return entries
