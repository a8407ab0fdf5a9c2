"""Owner resolution from ``owners.json`` pattern rules."""

import json
import logging
import re
from pathlib import Path

from .config import load_config

logger = logging.getLogger(__name__)

_cache: dict[str, object] = {"path": None, "mtime": None, "rules": []}


def _load_rules(path: Path) -> list[tuple[re.Pattern[str], str]]:
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        _cache.update(path=None, mtime=None, rules=[])
        return []
    if _cache["path"] == str(path) and _cache["mtime"] == mtime:
        return _cache["rules"]

    rules: list[tuple[re.Pattern[str], str]] = []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable ownership file {path}: {e}")
        data = {}
    for rule in data.get("ownership", []) if isinstance(data, dict) else []:
        if not isinstance(rule, dict):
            continue
        pattern, owner = rule.get("pattern"), rule.get("owner")
        if not isinstance(pattern, str) or not isinstance(owner, str) or not owner:
            continue
        try:
            rules.append((re.compile(pattern), owner))
        except re.error as e:
            logger.warning(f"Skipping invalid ownership pattern {pattern!r}: {e}")

    _cache.update(path=str(path), mtime=mtime, rules=rules)
    return rules


def resolve_owner(instruction_id: str) -> str | None:
    """First matching owner for an instruction id, or None."""
    for pattern, owner in _load_rules(load_config().owners_path):
        if pattern.search(instruction_id):
            return owner
    return None
