"""Data models for the instruction catalog."""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Audience = Literal[
    "individual",  # A single user
    "group",       # A team or group of developers
    "all",         # Everyone
]

Requirement = Literal[
    "mandatory",
    "critical",
    "recommended",
    "optional",
    "deprecated",  # Superseded; should carry deprecatedBy
]

GovernanceStatus = Literal["draft", "review", "approved", "deprecated"]
PriorityTier = Literal["P1", "P2", "P3", "P4"]
Classification = Literal["public", "internal", "restricted"]

AUDIENCES: tuple[str, ...] = ("individual", "group", "all")
REQUIREMENTS: tuple[str, ...] = ("mandatory", "critical", "recommended", "optional", "deprecated")
STATUSES: tuple[str, ...] = ("draft", "review", "approved", "deprecated")
PRIORITY_TIERS: tuple[str, ...] = ("P1", "P2", "P3", "P4")
CLASSIFICATIONS: tuple[str, ...] = ("public", "internal", "restricted")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(UTC)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when it is absent or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_iso(value: datetime) -> str:
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class ChangeLogEntry(BaseModel):
    """One governance change log line."""

    model_config = ConfigDict(populate_by_name=True)

    version: str
    changed_at: str = Field(..., alias="changedAt")
    summary: str


class InstructionEntry(BaseModel):
    """A policy or guidance document in the catalog.

    Field names are snake_case in Python and camelCase on disk. Unknown keys
    are preserved so hand-edited files round-trip without losing data.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(..., min_length=1, description="Stable identifier, also the file stem")
    title: str
    body: str
    rationale: str | None = None
    priority: int = Field(default=50, ge=1, le=100, description="1 is the highest priority")
    audience: Audience = "all"
    requirement: Requirement = "optional"
    categories: list[str] = Field(default_factory=list)
    primary_category: str | None = None
    source_hash: str = ""
    schema_version: str = "2"
    deprecated_by: str | None = None
    created_at: str = ""
    updated_at: str = ""

    # Usage (merged from the usage snapshot, never authoritative on disk)
    usage_count: int | None = None
    first_seen_ts: str | None = None
    last_used_at: str | None = None
    risk_score: float | None = None

    # Scoping
    workspace_id: str | None = None
    user_id: str | None = None
    team_ids: list[str] | None = None

    # Governance
    version: str | None = None
    status: GovernanceStatus | None = None
    owner: str | None = None
    priority_tier: PriorityTier | None = None
    classification: Classification | None = None
    last_reviewed_at: str | None = None
    next_review_due: str | None = None
    review_interval_days: int | None = None
    change_log: list[ChangeLogEntry] | None = None
    supersedes: str | None = None
    semantic_summary: str | None = None
    created_by_agent: str | None = None
    source_workspace: str | None = None

    def to_record(self) -> dict[str, Any]:
        """Serialize with on-disk (camelCase) keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LoadSummary(BaseModel):
    """Counters describing one directory scan."""

    scanned: int = 0
    accepted: int = 0
    skipped: int = 0
    reasons: dict[str, int] = Field(default_factory=dict)
    salvage: dict[str, int] = Field(default_factory=dict)


class LoadError(BaseModel):
    file: str
    error: str


class CatalogLoadResult(BaseModel):
    """Outcome of loading an instructions directory."""

    entries: list[InstructionEntry] = Field(default_factory=list)
    errors: list[LoadError] = Field(default_factory=list)
    hash: str = ""
    summary: LoadSummary = Field(default_factory=LoadSummary)
    trace: list[dict[str, Any]] | None = None
