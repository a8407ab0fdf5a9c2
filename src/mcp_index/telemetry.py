"""Telemetry for the instruction index: a live event bus plus event history.

Handlers run on the MCP server's thread while dashboard WebSocket clients
listen on the dashboard's event loop, so ``EventBus.emit`` hands events to
subscriber queues with ``call_soon_threadsafe``. ``TelemetryLogger`` persists
events to SQLite for the dashboard's history views.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TOOL_CALL = "tool_call"
    CATALOG_RELOAD = "catalog_reload"
    CATALOG_MUTATION = "catalog_mutation"
    CLIENT_CONNECT = "client_connect"
    CLIENT_DISCONNECT = "client_disconnect"
    METRICS_UPDATE = "metrics_update"


@dataclass
class TelemetryEvent:
    """A telemetry event."""

    id: str
    timestamp: datetime
    session_id: str
    event_type: EventType
    payload: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.event_type.value,
            "session_id": self.session_id,
            "payload": self.payload,
        }


class EventBus:
    """Fan-out of telemetry events to asyncio subscribers on any loop."""

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self.session_id = str(uuid4())[:8]
        self._lock = threading.Lock()
        self._subscribers: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []

    def subscribe(self) -> asyncio.Queue:
        """Subscribe from inside a running loop; events arrive on that loop."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.append((loop, queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = [(lp, q) for lp, q in self._subscribers if q is not queue]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @staticmethod
    def _offer(queue: asyncio.Queue, event: TelemetryEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            pass  # Drop if queue is full

    def emit(self, event_type: EventType, payload: dict[str, Any]) -> TelemetryEvent:
        """Publish an event. Safe to call from any thread, with or without a loop."""
        event = TelemetryEvent(
            id=str(uuid4()),
            timestamp=datetime.now(UTC),
            session_id=self.session_id,
            event_type=event_type,
            payload=payload,
        )
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return event

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        for loop, queue in subscribers:
            if loop is current:
                self._offer(queue, event)
            elif not loop.is_closed():
                try:
                    loop.call_soon_threadsafe(self._offer, queue, event)
                except RuntimeError:
                    logger.debug("Dropping event for subscriber on a closed loop")
        return event


event_bus = EventBus()


TELEMETRY_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    session_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    payload JSON NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp);

CREATE TABLE IF NOT EXISTS tool_stats (
    tool TEXT PRIMARY KEY,
    calls INTEGER DEFAULT 0,
    errors INTEGER DEFAULT 0,
    total_ms REAL DEFAULT 0.0,
    last_called TEXT
);
"""


def default_telemetry_path() -> Path:
    from .config import load_config

    return load_config().data_dir / "telemetry.db"


class TelemetryLogger:
    """Persists telemetry events and answers history queries."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else default_telemetry_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    async def _get_conn(self) -> aiosqlite.Connection:
        """Get database connection."""
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        if not self._initialized:
            await conn.executescript(TELEMETRY_SCHEMA)
            await conn.commit()
            self._initialized = True
        return conn

    async def record(self, event: TelemetryEvent) -> None:
        """Persist an event; tool calls also update per-tool aggregates."""
        conn = await self._get_conn()
        try:
            await conn.execute(
                "INSERT OR IGNORE INTO events (id, timestamp, session_id, event_type, payload) VALUES (?, ?, ?, ?, ?)",
                (
                    event.id,
                    event.timestamp.isoformat(),
                    event.session_id,
                    event.event_type.value,
                    json.dumps(event.payload),
                ),
            )
            if event.event_type == EventType.TOOL_CALL:
                tool = event.payload.get("tool", "unknown")
                await conn.execute(
                    """
                    INSERT INTO tool_stats (tool, calls, errors, total_ms, last_called)
                    VALUES (?, 1, ?, ?, ?)
                    ON CONFLICT(tool) DO UPDATE SET
                        calls = calls + 1,
                        errors = errors + excluded.errors,
                        total_ms = total_ms + excluded.total_ms,
                        last_called = excluded.last_called
                    """,
                    (
                        tool,
                        0 if event.payload.get("success", True) else 1,
                        float(event.payload.get("durationMs", 0.0)),
                        event.timestamp.isoformat(),
                    ),
                )
            await conn.commit()
        finally:
            await conn.close()

    async def get_recent_events(self, limit: int = 50, event_type: str | None = None) -> list[dict]:
        """Most recent events, newest first."""
        conn = await self._get_conn()
        try:
            if event_type:
                cursor = await conn.execute(
                    "SELECT * FROM events WHERE event_type = ? ORDER BY timestamp DESC LIMIT ?",
                    (event_type, limit),
                )
            else:
                cursor = await conn.execute(
                    "SELECT * FROM events ORDER BY timestamp DESC LIMIT ?",
                    (limit,),
                )
            rows = await cursor.fetchall()
            return [{**dict(row), "payload": json.loads(row["payload"])} for row in rows]
        finally:
            await conn.close()

    async def get_tool_stats(self) -> list[dict]:
        """Lifetime per-tool aggregates, busiest first."""
        conn = await self._get_conn()
        try:
            cursor = await conn.execute(
                """
                SELECT
                    tool,
                    calls,
                    errors,
                    CASE WHEN calls > 0 THEN total_ms / calls ELSE 0 END AS avg_ms,
                    last_called
                FROM tool_stats
                ORDER BY calls DESC
                """
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        finally:
            await conn.close()

    async def get_timeline(self, hours: int = 1) -> list[dict]:
        """Event counts per minute for the last ``hours`` hours."""
        since = (datetime.now(UTC) - timedelta(hours=hours)).isoformat()
        conn = await self._get_conn()
        try:
            cursor = await conn.execute(
                """
                SELECT substr(timestamp, 1, 16) AS minute, event_type, COUNT(*) AS count
                FROM events
                WHERE timestamp >= ?
                GROUP BY minute, event_type
                ORDER BY minute
                """,
                (since,),
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        finally:
            await conn.close()

    async def clear(self) -> None:
        conn = await self._get_conn()
        try:
            await conn.execute("DELETE FROM events")
            await conn.execute("DELETE FROM tool_stats")
            await conn.commit()
        finally:
            await conn.close()
