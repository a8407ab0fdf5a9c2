"""Load an instructions directory into validated, normalized entries."""

import hashlib
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .atomic_fs import atomic_write_json
from .canonical import source_hash
from .classification import ClassificationService, salvage_record
from .config import load_config
from .migrations import SCHEMA_VERSION, migrate_record
from .models import CatalogLoadResult, InstructionEntry, LoadError, utc_now_iso
from .schema import validate_record

logger = logging.getLogger(__name__)

NON_INSTRUCTION_REASON = "ignored:non-instruction-config"

# Fields that older tooling wrote as "" instead of omitting them
PLACEHOLDER_FIELDS = (
    "createdAt",
    "updatedAt",
    "lastReviewedAt",
    "nextReviewDue",
    "priorityTier",
    "semanticSummary",
)


def compute_catalog_hash(entries: Iterable[InstructionEntry]) -> str:
    """SHA-256 over ``id:sourceHash`` pairs sorted by id."""
    pairs = sorted((e.id, e.source_hash) for e in entries)
    payload = "|".join(f"{id_}:{h}" for id_, h in pairs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def is_instruction_record(raw: Any) -> bool:
    return isinstance(raw, dict) and all(isinstance(raw.get(k), str) for k in ("id", "title", "body"))


class FileOutcome:
    """Result of reading one file: an entry, or a skip reason and its bucket."""

    __slots__ = ("entry", "reason", "bucket", "raw", "schema_errors", "classification_issues")

    def __init__(self):
        self.entry: InstructionEntry | None = None
        self.reason: str | None = None
        self.bucket: str | None = None
        self.raw: Any = None
        self.schema_errors: list[str] = []
        self.classification_issues: list[str] = []

    def skip(self, bucket: str, reason: str) -> "FileOutcome":
        self.bucket = bucket
        self.reason = reason
        return self


class CatalogLoader:
    """Reads ``*.json`` files, migrating and salvaging legacy records."""

    def __init__(
        self,
        base_dir: Path,
        classifier: ClassificationService | None = None,
        persist_migrations: bool = True,
    ):
        self.base_dir = Path(base_dir)
        self.classifier = classifier or ClassificationService()
        self.persist_migrations = persist_migrations

    def load(self) -> CatalogLoadResult:
        config = load_config()
        result = CatalogLoadResult()
        if config.file_trace:
            result.trace = []

        if not self.base_dir.is_dir():
            result.errors.append(LoadError(file=str(self.base_dir), error="missing directory"))
            return result

        summary = result.summary
        seen: dict[str, str] = {}
        for path in sorted(self.base_dir.glob("*.json")):
            summary.scanned += 1
            outcome = self.read_file(path, summary.salvage)
            entry = outcome.entry
            if entry is not None and entry.id in seen:
                outcome.skip("duplicate", f"duplicate id (already loaded from {seen[entry.id]})")
                outcome.entry = entry = None

            if entry is None:
                summary.skipped += 1
                summary.reasons[outcome.bucket] = summary.reasons.get(outcome.bucket, 0) + 1
                if outcome.bucket != "ignored":
                    result.errors.append(LoadError(file=path.name, error=outcome.reason))
                if result.trace is not None:
                    result.trace.append({"file": path.name, "accepted": False, "reason": outcome.reason})
                continue

            seen[entry.id] = path.name
            summary.accepted += 1
            result.entries.append(entry)
            if result.trace is not None:
                result.trace.append({"file": path.name, "accepted": True})

        result.hash = compute_catalog_hash(result.entries)
        if result.errors:
            logger.info(
                f"Loaded {summary.accepted}/{summary.scanned} instructions from {self.base_dir} "
                f"({len(result.errors)} rejected)"
            )
        return result

    def read_file(self, path: Path, salvage_counters: dict[str, int] | None = None) -> FileOutcome:
        """Parse, migrate, salvage, validate and normalize a single file."""
        outcome = FileOutcome()
        counters = salvage_counters if salvage_counters is not None else {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return outcome.skip("parse", f"parse: {e}")
        outcome.raw = raw

        if not is_instruction_record(raw):
            return outcome.skip("ignored", NON_INSTRUCTION_REASON)

        record = dict(raw)
        if self._migrate(path, record):
            outcome.raw = dict(record)

        self._fill_derived(record)
        salvage_record(record, counters)

        outcome.schema_errors = validate_record(record)
        if outcome.schema_errors:
            return outcome.skip("schema", "schema: " + "; ".join(outcome.schema_errors))

        try:
            entry = InstructionEntry.model_validate(record)
        except ValidationError as e:
            outcome.schema_errors = [err["msg"] for err in e.errors()]
            return outcome.skip("schema", "schema: " + "; ".join(outcome.schema_errors))

        outcome.classification_issues = self.classifier.validate(entry)
        if outcome.classification_issues:
            return outcome.skip("classification", "; ".join(outcome.classification_issues))

        outcome.entry = self.classifier.normalize(entry)
        return outcome

    def _migrate(self, path: Path, record: dict[str, Any]) -> bool:
        if record.get("schemaVersion") == SCHEMA_VERSION:
            return False
        result = migrate_record(record)
        if not result.changed:
            return False
        if not self.persist_migrations:
            return True
        try:
            atomic_write_json(path, record)
            logger.info(f"Migrated {path.name} to schema {SCHEMA_VERSION}: {', '.join(result.notes)}")
        except OSError as e:
            logger.warning(f"Could not persist migration of {path.name}: {e}")
        return True

    @staticmethod
    def _fill_derived(record: dict[str, Any]) -> None:
        for key in PLACEHOLDER_FIELDS:
            if record.get(key) == "":
                del record[key]
        if not record.get("sourceHash"):
            record["sourceHash"] = source_hash(record["body"])
        now = utc_now_iso()
        record.setdefault("createdAt", now)
        record.setdefault("updatedAt", record["createdAt"])
