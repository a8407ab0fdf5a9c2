"""Persistence for dashboard WebSocket connection records."""

import hashlib
import json
import logging
import secrets
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any

from .atomic_fs import atomic_write_json
from .config import load_config
from .models import parse_iso, utc_now_iso

logger = logging.getLogger(__name__)

CONNECTIONS_FILE = "connections.json"
MAX_HISTORY_ENTRIES = 500
MAX_HISTORY_DAYS = 7


def _checksum(records: list[dict[str, Any]]) -> str:
    payload = json.dumps(records, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SessionStore:
    """Tracks connection records and persists them to ``connections.json``.

    Records older than :data:`MAX_HISTORY_DAYS` or beyond the newest
    :data:`MAX_HISTORY_ENTRIES` inactive ones are dropped on each persist.
    Writes are skipped when the content checksum has not changed.
    """

    def __init__(self, directory: Path | None = None):
        self.directory = Path(directory) if directory else load_config().session_dir
        self.path = self.directory / CONNECTIONS_FILE
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}
        self._last_checksum: str | None = None
        self.last_persisted_at: str | None = None
        self.last_error: str | None = None
        self.write_count = 0
        self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return
        for record in data.get("connections", []) if isinstance(data, dict) else []:
            if isinstance(record, dict) and isinstance(record.get("id"), str):
                # A previous process cannot still own these connections
                if record.get("isActive"):
                    record["isActive"] = False
                    record.setdefault("disconnectedAt", record.get("lastActivity"))
                    record.setdefault("disconnectReason", "server_restart")
                self._records[record["id"]] = record
        self._last_checksum = data.get("checksum") if isinstance(data, dict) else None

    def open(self, client_id: str | None = None) -> dict[str, Any]:
        now = utc_now_iso()
        record = {
            "id": secrets.token_hex(8),
            "clientId": client_id or "anonymous",
            "connectedAt": now,
            "lastActivity": now,
            "isActive": True,
        }
        with self._lock:
            self._records[record["id"]] = record
        self.persist()
        return dict(record)

    def touch(self, session_id: str) -> None:
        with self._lock:
            record = self._records.get(session_id)
            if record is not None:
                record["lastActivity"] = utc_now_iso()

    def close(self, session_id: str, reason: str = "client_disconnect") -> None:
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return
            now = utc_now_iso()
            record.update(isActive=False, lastActivity=now, disconnectedAt=now, disconnectReason=reason)
        self.persist()

    def active(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._records.values() if r.get("isActive")]

    def history(self) -> list[dict[str, Any]]:
        with self._lock:
            records = [dict(r) for r in self._records.values() if not r.get("isActive")]
        records.sort(key=lambda r: r.get("disconnectedAt") or "", reverse=True)
        return records

    def _apply_retention(self) -> None:
        cutoff = parse_iso(utc_now_iso()) - timedelta(days=MAX_HISTORY_DAYS)
        inactive = []
        for record in list(self._records.values()):
            if record.get("isActive"):
                continue
            ts = parse_iso(record.get("disconnectedAt") or record.get("lastActivity"))
            if ts is None or ts < cutoff:
                del self._records[record["id"]]
            else:
                inactive.append(record)
        inactive.sort(key=lambda r: r.get("disconnectedAt") or "", reverse=True)
        for record in inactive[MAX_HISTORY_ENTRIES:]:
            del self._records[record["id"]]

    def persist(self) -> bool:
        """Write the records when they changed. Returns True when a write happened."""
        with self._lock:
            self._apply_retention()
            records = sorted(self._records.values(), key=lambda r: r.get("connectedAt", ""))
            checksum = _checksum(records)
            if checksum == self._last_checksum:
                return False
            payload = {
                "version": 1,
                "updatedAt": utc_now_iso(),
                "checksum": checksum,
                "connections": records,
            }
            try:
                atomic_write_json(self.path, payload)
            except OSError as e:
                self.last_error = str(e)
                logger.warning(f"Failed to persist sessions to {self.path}: {e}")
                return False
            self._last_checksum = checksum
            self.last_persisted_at = payload["updatedAt"]
            self.last_error = None
            self.write_count += 1
            return True

    def clear_history(self) -> int:
        with self._lock:
            stale = [sid for sid, r in self._records.items() if not r.get("isActive")]
            for sid in stale:
                del self._records[sid]
        self.persist()
        return len(stale)

    def status(self) -> dict[str, Any]:
        with self._lock:
            active = sum(1 for r in self._records.values() if r.get("isActive"))
            total = len(self._records)
        return {
            "enabled": True,
            "file": str(self.path),
            "exists": self.path.exists(),
            "activeConnections": active,
            "historyEntries": total - active,
            "lastPersistedAt": self.last_persisted_at,
            "writeCount": self.write_count,
            "lastError": self.last_error,
            "retention": {"maxHistoryEntries": MAX_HISTORY_ENTRIES, "maxHistoryDays": MAX_HISTORY_DAYS},
        }
