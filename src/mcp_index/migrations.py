"""Schema version migrations for instruction records.

Records are migrated in memory by the loader; files whose record changed are
written back. ``main()`` migrates a whole directory up front.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .atomic_fs import atomic_write_json
from .governance import derive_priority_tier, review_interval_days

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2"


@dataclass
class MigrationResult:
    changed: bool = False
    notes: list[str] = field(default_factory=list)


def _migrate_v1_to_v2(record: dict[str, Any], result: MigrationResult) -> None:
    """v2 introduced ``reviewIntervalDays``."""
    if isinstance(record.get("reviewIntervalDays"), int | float):
        return
    tier = record.get("priorityTier")
    if tier not in ("P1", "P2", "P3", "P4"):
        priority = record.get("priority")
        tier = derive_priority_tier(priority, record.get("requirement")) if isinstance(priority, int | float) else None
    record["reviewIntervalDays"] = review_interval_days(tier, record.get("requirement"))
    result.changed = True
    result.notes.append("added reviewIntervalDays")


def migrate_record(record: dict[str, Any]) -> MigrationResult:
    """Bring a raw record up to ``SCHEMA_VERSION`` in place."""
    result = MigrationResult()
    current = record.get("schemaVersion")
    if current == SCHEMA_VERSION:
        return result

    if current in (None, "", "1"):
        _migrate_v1_to_v2(record, result)
    else:
        result.notes.append(f"unknown schemaVersion {current!r} coerced to {SCHEMA_VERSION}")

    record["schemaVersion"] = SCHEMA_VERSION
    result.changed = True
    return result


def migrate_directory(directory: Path) -> dict[str, int]:
    """Migrate every instruction file in ``directory``; returns counters."""
    results = {"scanned": 0, "migrated": 0, "failed": 0}
    for path in sorted(directory.glob("*.json")):
        results["scanned"] += 1
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable file {path.name}: {e}")
            results["failed"] += 1
            continue
        if not isinstance(record, dict) or not isinstance(record.get("id"), str):
            continue
        outcome = migrate_record(record)
        if outcome.changed:
            atomic_write_json(path, record)
            results["migrated"] += 1
            logger.info(f"Migrated {path.name}: {', '.join(outcome.notes) or 'schemaVersion'}")
    return results


def main():
    """CLI entry point for migrating an instructions directory."""
    import argparse

    from .config import load_config

    parser = argparse.ArgumentParser(description="Migrate instruction files to the current schema")
    parser.add_argument("--dir", default=None, help="Instructions directory (default: $INSTRUCTIONS_DIR)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    directory = Path(args.dir) if args.dir else load_config().instructions_dir
    results = migrate_directory(directory)
    print(f"Migration results: {results}")


if __name__ == "__main__":
    main()
