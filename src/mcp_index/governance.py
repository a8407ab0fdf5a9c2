"""Governance metadata helpers: semver, tiers, review cadence and hashing."""

import hashlib
import json
import re
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from .config import load_config
from .models import InstructionEntry, format_iso, parse_iso, utc_now_iso

SEMVER_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$")
DEFAULT_VERSION = "1.0.0"
DEFAULT_OWNER = "unowned"
INITIAL_CHANGE_SUMMARY = "initial import"
MAX_SUMMARY_LENGTH = 200

_SENTENCE_END = re.compile(r"(?<=[.!?])\s")


def parse_semver(version: str | None) -> tuple[int, int, int] | None:
    """Parse ``MAJOR.MINOR.PATCH`` (pre-release/build suffix ignored). None if invalid."""
    if not isinstance(version, str):
        return None
    match = SEMVER_PATTERN.match(version.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def is_greater_version(candidate: str, current: str) -> bool:
    a = parse_semver(candidate)
    b = parse_semver(current)
    if a is None or b is None:
        return False
    return a > b


def bump_version(version: str | None, kind: str = "patch") -> str:
    """Bump a semantic version. Unparseable input restarts from the default version."""
    parsed = parse_semver(version) or parse_semver(DEFAULT_VERSION)
    major, minor, patch = parsed
    if kind == "major":
        return f"{major + 1}.0.0"
    if kind == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


def derive_priority_tier(priority: int, requirement: str | None = None) -> str:
    if priority <= 20 or requirement in ("mandatory", "critical"):
        return "P1"
    if priority <= 40:
        return "P2"
    if priority <= 70:
        return "P3"
    return "P4"


def review_interval_days(priority_tier: str | None, requirement: str | None) -> int:
    """Days between reviews: stricter entries are reviewed more often."""
    if priority_tier == "P1" or requirement in ("mandatory", "critical"):
        return 30
    if priority_tier == "P2":
        return 60
    if priority_tier == "P3":
        return 90
    return 120


def next_review_due(last_reviewed_at: str | None, interval_days: int) -> str | None:
    reviewed = parse_iso(last_reviewed_at)
    if reviewed is None:
        return None
    return format_iso(reviewed + timedelta(days=interval_days))


def derive_semantic_summary(body: str) -> str:
    """First sentence (or first line) of the body, capped at 200 characters."""
    text = (body or "").strip()
    if not text:
        return ""
    first_line = text.split("\n", 1)[0].strip()
    sentence = _SENTENCE_END.split(first_line, maxsplit=1)[0].strip()
    return sentence[:MAX_SUMMARY_LENGTH]


def repair_change_log(raw: Any, version: str, fallback_ts: str | None = None) -> list[dict[str, str]]:
    """Coerce a change log into well-formed entries.

    Malformed items are dropped or patched; an empty log is seeded with the
    initial import line.
    """
    ts = fallback_ts or utc_now_iso()
    repaired: list[dict[str, str]] = []
    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            item_version = item.get("version") if isinstance(item.get("version"), str) else version
            changed_at = item.get("changedAt") if isinstance(item.get("changedAt"), str) else ts
            summary = item.get("summary") if isinstance(item.get("summary"), str) else "change"
            repaired.append({"version": item_version, "changedAt": changed_at, "summary": summary})
    if not repaired:
        repaired.append({"version": version, "changedAt": ts, "summary": INITIAL_CHANGE_SUMMARY})
    return repaired


def project_governance(entry: InstructionEntry) -> dict[str, Any]:
    """Stable projection of the fields that make up the governance hash."""
    summary = entry.semantic_summary or ""
    return {
        "id": entry.id,
        "title": entry.title,
        "version": entry.version or DEFAULT_VERSION,
        "owner": entry.owner or DEFAULT_OWNER,
        "priorityTier": entry.priority_tier or "P4",
        "nextReviewDue": entry.next_review_due or "",
        "semanticSummarySha256": hashlib.sha256(summary.encode("utf-8")).hexdigest(),
        "changeLogLength": len(entry.change_log or []),
    }


def compute_governance_hash(entries: Iterable[InstructionEntry]) -> str:
    """SHA-256 over newline-joined compact JSON projections sorted by id."""
    projections = sorted((project_governance(e) for e in entries), key=lambda p: p["id"])
    lines = [json.dumps(p, separators=(",", ":"), ensure_ascii=False) for p in projections]
    payload = "\n".join(lines)
    if load_config().gov_hash_trailing_newline:
        payload += "\n"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
