"""Catalog context: the cached, file-signature-invalidated view of the catalog.

One ``CatalogContext`` per process owns the instructions directory. Reads go
through ``ensure_loaded()``, which reloads only when the directory's file
signature or the ``.catalog-version`` marker changed. Usage counters live in a
separate snapshot file so that tracking usage never rewrites instruction files.
"""

import atexit
import hashlib
import json
import logging
import os
import secrets
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

from .atomic_fs import atomic_write_json
from .classification import ClassificationService
from .config import load_config
from .features import has_feature, increment_counter
from .governance import DEFAULT_OWNER, compute_governance_hash, project_governance
from .loader import CatalogLoader, compute_catalog_hash
from .models import InstructionEntry, LoadError, LoadSummary, utc_now_iso
from .ownership import resolve_owner
from .telemetry import EventType, event_bus

logger = logging.getLogger(__name__)

VERSION_MARKER = ".catalog-version"

# Derived at load time but worth persisting so that files are self-describing
ENRICHABLE_FIELDS = ("sourceHash", "owner", "semanticSummary", "lastReviewedAt", "nextReviewDue")

# Usage lives in the usage snapshot, not in instruction files
USAGE_FIELDS = ("usageCount", "firstSeenTs", "lastUsedAt")


class DirMeta(NamedTuple):
    signature: str
    latest_mtime: float
    file_count: int


def compute_dir_meta(directory: Path) -> DirMeta:
    """Cheap fingerprint of the ``*.json`` files in a directory."""
    parts = []
    latest = 0.0
    for path in sorted(directory.glob("*.json")):
        try:
            st = path.stat()
        except FileNotFoundError:
            continue
        parts.append(f"{path.name}:{st.st_mtime_ns}:{st.st_size}")
        latest = max(latest, st.st_mtime)
    signature = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return DirMeta(signature, latest, len(parts))


def is_safe_id(instruction_id: Any) -> bool:
    """Ids double as file stems and must not escape the instructions directory."""
    if not isinstance(instruction_id, str) or not instruction_id.strip():
        return False
    if instruction_id != instruction_id.strip() or instruction_id.startswith("."):
        return False
    return not any(ch in instruction_id for ch in ("/", "\\", "\x00")) and ".." not in instruction_id


@dataclass
class CatalogState:
    loaded_at: str
    hash: str
    by_id: dict[str, InstructionEntry]
    entries: list[InstructionEntry]
    latest_mtime: float
    file_signature: str
    file_count: int
    version_mtime: float
    summary: LoadSummary = field(default_factory=LoadSummary)
    errors: list[LoadError] = field(default_factory=list)
    enriched: int = 0


class CatalogContext:
    """Process-wide owner of the instructions directory."""

    def __init__(self, instructions_dir: Path | None = None):
        config = load_config()
        self.instructions_dir = Path(instructions_dir or config.instructions_dir)
        self.instructions_dir.mkdir(parents=True, exist_ok=True)
        self.usage_snapshot_path = config.usage_snapshot_path
        self.classifier = ClassificationService()
        self._lock = threading.RLock()
        self._state: CatalogState | None = None
        self._usage: dict[str, dict[str, Any]] | None = None
        self._usage_dirty = False
        self._usage_timer: threading.Timer | None = None
        self.reload_count = 0
        atexit.register(self.flush_usage)

    # ------------------------------------------------------------------
    # Directory helpers
    # ------------------------------------------------------------------

    def file_for(self, instruction_id: str) -> Path:
        return self.instructions_dir / f"{instruction_id}.json"

    @property
    def version_marker(self) -> Path:
        return self.instructions_dir / VERSION_MARKER

    def _version_mtime(self) -> float:
        try:
            return self.version_marker.stat().st_mtime
        except FileNotFoundError:
            return 0.0

    def diagnose_instructions_dir(self) -> dict[str, Any]:
        """Check that the directory exists and is writable using a probe file."""
        directory = self.instructions_dir
        result: dict[str, Any] = {"dir": str(directory), "exists": directory.is_dir(), "writable": False, "error": None}
        if not result["exists"]:
            result["error"] = "missing directory"
            return result
        probe = directory / f".write-probe-{os.getpid()}-{secrets.token_hex(4)}"
        try:
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
            result["writable"] = True
        except OSError as e:
            result["error"] = str(e)
        return result

    def read_raw(self, instruction_id: str) -> dict[str, Any] | None:
        """Raw on-disk record, or None when absent or unparseable."""
        try:
            raw = json.loads(self.file_for(instruction_id).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return raw if isinstance(raw, dict) else None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _needs_reload(self) -> bool:
        state = self._state
        if state is None or load_config().always_reload:
            return True
        if self._version_mtime() > state.version_mtime:
            return True
        return compute_dir_meta(self.instructions_dir).signature != state.file_signature

    def ensure_loaded(self) -> CatalogState:
        """Return the current state, reloading from disk when files changed."""
        with self._lock:
            if self._needs_reload():
                self._state = self._reload()
            return self._state

    def _reload(self) -> CatalogState:
        started = time.perf_counter()
        result = CatalogLoader(self.instructions_dir, self.classifier).load()
        entries = result.entries

        for entry in entries:
            if entry.owner == DEFAULT_OWNER:
                owner = resolve_owner(entry.id)
                if owner:
                    entry.owner = owner
        enriched = len(self.persist_enrichment(entries))
        self._merge_usage(entries)

        # Signature is taken after enrichment so our own writes do not trigger a reload
        meta = compute_dir_meta(self.instructions_dir)
        self.reload_count += 1
        state = CatalogState(
            loaded_at=utc_now_iso(),
            hash=result.hash,
            by_id={e.id: e for e in entries},
            entries=entries,
            latest_mtime=meta.latest_mtime,
            file_signature=meta.signature,
            file_count=meta.file_count,
            version_mtime=self._version_mtime(),
            summary=result.summary,
            errors=result.errors,
            enriched=enriched,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Catalog loaded: {len(entries)} entries, {len(result.errors)} errors, "
            f"{enriched} enriched in {elapsed_ms:.1f}ms"
        )
        event_bus.emit(EventType.CATALOG_RELOAD, {
            "hash": state.hash,
            "count": len(entries),
            "errors": len(result.errors),
            "durationMs": round(elapsed_ms, 2),
        })
        return state

    def persist_enrichment(self, entries: list[InstructionEntry]) -> list[str]:
        """Write derived governance fields back to files that lack them.

        Returns the ids of the files rewritten.
        """
        rewritten: list[str] = []
        for entry in entries:
            raw = self.read_raw(entry.id)
            if raw is None or raw.get("id") != entry.id:
                continue
            record = entry.to_record()
            changed = False
            for key in ENRICHABLE_FIELDS:
                current = raw.get(key)
                wanted = record.get(key)
                if not wanted:
                    continue
                if key == "owner":
                    if current in (None, "", DEFAULT_OWNER) and wanted != current:
                        raw[key] = wanted
                        changed = True
                elif current in (None, ""):
                    raw[key] = wanted
                    changed = True
            if changed:
                try:
                    atomic_write_json(self.file_for(entry.id), raw)
                    rewritten.append(entry.id)
                except OSError as e:
                    logger.warning(f"Enrichment write failed for {entry.id}: {e}")
        return rewritten

    def invalidate(self) -> None:
        with self._lock:
            self._state = None

    def touch_catalog_version(self) -> None:
        """Bump the version marker so every process sharing the directory reloads."""
        try:
            self.version_marker.write_text(f"{time.time_ns()}\n", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not touch {VERSION_MARKER}: {e}")

    def after_mutation(self, action: str, ids: list[str] | None = None) -> None:
        self.touch_catalog_version()
        self.invalidate()
        event_bus.emit(EventType.CATALOG_MUTATION, {"action": action, "ids": ids or []})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_entry(self, entry: InstructionEntry) -> InstructionEntry:
        """Normalize, resolve the owner and atomically persist an entry."""
        normalized = self.classifier.normalize(entry)
        if normalized.owner == DEFAULT_OWNER:
            owner = resolve_owner(normalized.id)
            if owner:
                normalized.owner = owner
        record = normalized.to_record()
        for key in USAGE_FIELDS:
            record.pop(key, None)
        atomic_write_json(self.file_for(normalized.id), record)
        return normalized

    def remove_entry(self, instruction_id: str) -> bool:
        try:
            self.file_for(instruction_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def materialize(self, instruction_id: str) -> InstructionEntry | None:
        """Load a single file straight into the cached state, bypassing a full reload."""
        path = self.file_for(instruction_id)
        if not path.exists():
            return None
        outcome = CatalogLoader(self.instructions_dir, self.classifier).read_file(path)
        entry = outcome.entry
        if entry is None or entry.id != instruction_id:
            return None
        with self._lock:
            state = self.ensure_loaded()
            self._merge_usage([entry])
            if instruction_id in state.by_id:
                state.entries = [e for e in state.entries if e.id != instruction_id]
            state.by_id[instruction_id] = entry
            state.entries.append(entry)
            state.hash = compute_catalog_hash(state.entries)
        return entry

    # ------------------------------------------------------------------
    # Usage tracking
    # ------------------------------------------------------------------

    def _load_usage(self) -> dict[str, dict[str, Any]]:
        if self._usage is None:
            try:
                data = json.loads(self.usage_snapshot_path.read_text(encoding="utf-8"))
                self._usage = data if isinstance(data, dict) else {}
            except FileNotFoundError:
                self._usage = {}
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable usage snapshot: {e}")
                self._usage = {}
        return self._usage

    def _merge_usage(self, entries: list[InstructionEntry]) -> None:
        usage = self._load_usage()
        for entry in entries:
            record = usage.get(entry.id)
            if not isinstance(record, dict):
                continue
            entry.usage_count = record.get("usageCount", entry.usage_count)
            entry.first_seen_ts = record.get("firstSeenTs", entry.first_seen_ts)
            entry.last_used_at = record.get("lastUsedAt", entry.last_used_at)

    def increment_usage(self, instruction_id: str) -> dict[str, Any] | None:
        """Count one use of an entry. None when the id is unknown."""
        if not has_feature("usage"):
            increment_counter("usage:gated")
            return {"featureDisabled": True}

        with self._lock:
            entry = self.ensure_loaded().by_id.get(instruction_id)
            if entry is None:
                return None
            usage = self._load_usage()
            now = utc_now_iso()
            previous = usage.get(instruction_id) or {}
            record = {
                "usageCount": int(previous.get("usageCount", entry.usage_count or 0)) + 1,
                "firstSeenTs": previous.get("firstSeenTs") or entry.first_seen_ts or now,
                "lastUsedAt": now,
            }
            usage[instruction_id] = record
            entry.usage_count = record["usageCount"]
            entry.first_seen_ts = record["firstSeenTs"]
            entry.last_used_at = record["lastUsedAt"]
            self._usage_dirty = True
            increment_counter("usage:tracked")

            if not previous:
                # First sighting is flushed immediately so it survives a crash
                self.flush_usage()
            else:
                self._schedule_usage_flush()
        return {"id": instruction_id, **record}

    def _schedule_usage_flush(self) -> None:
        if self._usage_timer is not None:
            return
        delay = load_config().usage_flush_ms / 1000.0
        timer = threading.Timer(delay, self.flush_usage)
        timer.daemon = True
        self._usage_timer = timer
        timer.start()

    def flush_usage(self) -> bool:
        """Write the usage snapshot if it has unsaved changes."""
        with self._lock:
            if self._usage_timer is not None:
                self._usage_timer.cancel()
                self._usage_timer = None
            if not self._usage_dirty or self._usage is None:
                return False
            try:
                atomic_write_json(self.usage_snapshot_path, self._usage)
            except OSError as e:
                logger.warning(f"Usage snapshot flush failed: {e}")
                return False
            self._usage_dirty = False
            return True

    def close(self) -> None:
        self.flush_usage()
        atexit.unregister(self.flush_usage)

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def governance_projection(self) -> list[dict[str, Any]]:
        entries = self.ensure_loaded().entries
        return sorted((project_governance(e) for e in entries), key=lambda p: p["id"])

    def governance_hash(self) -> str:
        return compute_governance_hash(self.ensure_loaded().entries)


_catalog: CatalogContext | None = None
_catalog_lock = threading.Lock()


def get_catalog() -> CatalogContext:
    """Process-wide catalog context, created on first use."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:
                _catalog = CatalogContext()
    return _catalog


def reset_catalog() -> None:
    """Flush and drop the current context (tests, directory changes)."""
    global _catalog
    with _catalog_lock:
        if _catalog is not None:
            _catalog.close()
        _catalog = None
