"""Validation, normalization and legacy salvage for instruction entries."""

import math
import re
from typing import Any

from .canonical import source_hash
from .governance import (
    DEFAULT_OWNER,
    DEFAULT_VERSION,
    derive_priority_tier,
    derive_semantic_summary,
    next_review_due,
    repair_change_log,
    review_interval_days,
)
from .models import (
    AUDIENCES,
    CLASSIFICATIONS,
    PRIORITY_TIERS,
    REQUIREMENTS,
    STATUSES,
    ChangeLogEntry,
    InstructionEntry,
    utc_now_iso,
)

MAX_BODY_LENGTH = 20000
DEFAULT_PRIORITY = 50

REQUIREMENT_WEIGHTS = {
    "mandatory": 50,
    "critical": 60,
    "recommended": 20,
    "optional": 5,
    "deprecated": -30,
}

AUDIENCE_ALIASES = {
    "team": "group",
    "teams": "group",
    "developers": "group",
    "developer": "group",
    "devs": "group",
    "group": "group",
    "groups": "group",
    "user": "individual",
    "individual": "individual",
    "personal": "individual",
    "self": "individual",
    "everyone": "all",
    "global": "all",
    "public": "all",
    "org": "all",
    "organization": "all",
    "*": "all",
}

REQUIREMENT_ALIASES = {
    "must": "mandatory",
    "required": "mandatory",
    "shall": "mandatory",
    "mandatory": "mandatory",
    "critical": "critical",
    "blocker": "critical",
    "should": "recommended",
    "recommended": "recommended",
    "may": "optional",
    "optional": "optional",
    "nice-to-have": "optional",
    "deprecated": "deprecated",
    "obsolete": "deprecated",
}

STATUS_ALIASES = {"active": "approved"}

_NUMERIC = re.compile(r"^\s*-?\d+(\.\d+)?\s*$")


def compute_risk_score(priority: int, requirement: str) -> int:
    """Higher for high-priority (low number) and stricter requirements."""
    clamped = max(1, min(100, int(priority)))
    return (100 - clamped) + REQUIREMENT_WEIGHTS.get(requirement, 0)


def _bump(counters: dict[str, int], key: str) -> None:
    counters[key] = counters.get(key, 0) + 1


def salvage_record(record: dict[str, Any], counters: dict[str, int]) -> None:
    """Coerce legacy or sloppy field values into the current vocabulary, in place.

    Every coercion is counted under a ``<field>Invalid`` style key so load
    summaries show how much legacy data was rescued.
    """
    audience = record.get("audience")
    if audience not in AUDIENCES:
        key = str(audience).strip().lower() if audience is not None else ""
        record["audience"] = AUDIENCE_ALIASES.get(key, "all")
        _bump(counters, "audienceInvalid")

    requirement = record.get("requirement")
    if requirement not in REQUIREMENTS:
        key = str(requirement).strip().lower() if requirement is not None else ""
        # Free-form sentences ("You should always ...") read as guidance
        record["requirement"] = REQUIREMENT_ALIASES.get(key, "recommended")
        _bump(counters, "requirementInvalid")

    priority = record.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, int | float):
        if isinstance(priority, str) and _NUMERIC.match(priority):
            priority = float(priority)
        else:
            priority = DEFAULT_PRIORITY
        _bump(counters, "priorityInvalid")
    if not math.isfinite(priority):
        # 1e400 and NaN parse as floats but have no integer value
        priority = DEFAULT_PRIORITY
        _bump(counters, "priorityInvalid")
    if priority != int(priority) or not 1 <= priority <= 100:
        _bump(counters, "priorityClamped")
    record["priority"] = max(1, min(100, int(round(priority))))

    categories = record.get("categories")
    if not isinstance(categories, list):
        if isinstance(categories, str):
            categories = categories.split(",")
        else:
            categories = []
        _bump(counters, "categoriesInvalid")
    cleaned = [c.strip() for c in categories if isinstance(c, str) and c.strip()]
    if len(cleaned) != len(categories):
        _bump(counters, "categoriesCleaned")
    record["categories"] = cleaned

    body = record.get("body")
    if isinstance(body, str) and len(body) > MAX_BODY_LENGTH:
        record["body"] = body[:MAX_BODY_LENGTH]
        _bump(counters, "bodyTruncated")

    status = record.get("status")
    if status is not None and status not in STATUSES:
        alias = STATUS_ALIASES.get(str(status).strip().lower())
        if alias:
            record["status"] = alias
        else:
            del record["status"]
        _bump(counters, "statusInvalid")

    for key, allowed in (("priorityTier", PRIORITY_TIERS), ("classification", CLASSIFICATIONS)):
        if key in record and record[key] not in allowed:
            del record[key]
            _bump(counters, f"{key}Invalid")

    if "changeLog" in record:
        raw_log = record["changeLog"]
        version = record.get("version") if isinstance(record.get("version"), str) else DEFAULT_VERSION
        repaired = repair_change_log(raw_log, version, record.get("createdAt") or None)
        if repaired != raw_log:
            record["changeLog"] = repaired
            _bump(counters, "changeLogRepaired")


class ClassificationService:
    """Validates and normalizes entries before they enter the catalog."""

    def validate(self, entry: InstructionEntry | dict[str, Any]) -> list[str]:
        """Return a list of issues; empty means the entry is acceptable."""
        if isinstance(entry, InstructionEntry):
            entry = entry.to_record()
        issues = []
        for key in ("id", "title", "body"):
            value = entry.get(key)
            if not isinstance(value, str) or not value.strip():
                issues.append(f"missing {key}")
        if entry.get("requirement") == "deprecated" and not entry.get("deprecatedBy"):
            issues.append("deprecated requires deprecatedBy")
        return issues

    def normalize(self, entry: InstructionEntry) -> InstructionEntry:
        """Return a copy with trimmed text, canonical categories and derived fields filled."""
        now = utc_now_iso()
        e = entry.model_copy(deep=True)
        e.title = e.title.strip()
        e.body = e.body.strip()

        e.categories = sorted({c.strip().lower() for c in e.categories if c and c.strip()})
        primary = (e.primary_category or "").strip().lower()
        if not primary or primary not in e.categories:
            primary = e.categories[0] if e.categories else ""
        e.primary_category = primary or None

        e.created_at = e.created_at or now
        e.updated_at = e.updated_at or e.created_at
        e.source_hash = source_hash(e.body)
        e.risk_score = compute_risk_score(e.priority, e.requirement)

        e.version = e.version or DEFAULT_VERSION
        if e.status is None:
            e.status = "deprecated" if e.requirement == "deprecated" else "approved"
        e.owner = e.owner or DEFAULT_OWNER
        e.priority_tier = e.priority_tier or derive_priority_tier(e.priority, e.requirement)
        e.classification = e.classification or "internal"
        e.last_reviewed_at = e.last_reviewed_at or e.updated_at
        if not e.review_interval_days:
            e.review_interval_days = review_interval_days(e.priority_tier, e.requirement)
        e.next_review_due = e.next_review_due or next_review_due(e.last_reviewed_at, e.review_interval_days)
        e.semantic_summary = e.semantic_summary or derive_semantic_summary(e.body)
        if not e.change_log:
            e.change_log = [
                ChangeLogEntry.model_validate(item)
                for item in repair_change_log(None, e.version, e.created_at)
            ]
        return e
