"""MCP Index dashboard: REST API and WebSocket event stream."""

import asyncio
import contextlib
import json
import logging
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse

from .audit_log import read_audit_entries
from .catalog import get_catalog
from .config import load_config
from .errors import SemanticError
from .graph import export_graph
from .handlers import register_all
from .instructions import get_entry, governance_hash, list_entries
from .metrics import MetricsCollector
from .models import utc_now_iso
from .sessions import SessionStore
from .telemetry import EventType, TelemetryLogger, event_bus
from .tool_registry import get_tool, get_tool_registry, tool_entry
from .version import __version__

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 30.0

# Global instances
telemetry: TelemetryLogger | None = None
sessions: SessionStore | None = None
metrics = MetricsCollector()
_recorder_task: asyncio.Task | None = None


async def _record_events(queue: asyncio.Queue) -> None:
    """Persist bus events to the telemetry database until cancelled."""
    while True:
        event = await queue.get()
        try:
            await telemetry.record(event)
        except Exception as e:
            logger.warning(f"Failed to record telemetry event {event.event_type.value}: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize stores and the event recorder on startup."""
    global telemetry, sessions, _recorder_task

    register_all()
    telemetry = TelemetryLogger()
    sessions = SessionStore()
    queue = event_bus.subscribe()
    _recorder_task = asyncio.create_task(_record_events(queue))

    state = get_catalog().ensure_loaded()
    logger.info(f"Dashboard initialized with {len(state.entries)} instructions")
    yield

    logger.info("Shutting down dashboard")
    _recorder_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await _recorder_task
    _recorder_task = None
    event_bus.unsubscribe(queue)
    sessions.persist()


app = FastAPI(
    title="MCP Index Dashboard API",
    description="REST API and WebSocket for the instruction index server",
    version=__version__,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# REST API Endpoints
# ============================================================================

async def ensure_initialized():
    """Ensure stores are initialized (for TestClient compatibility)."""
    global telemetry, sessions
    register_all()
    if telemetry is None:
        telemetry = TelemetryLogger()
    if sessions is None:
        sessions = SessionStore()


@app.get("/api/status")
async def get_status() -> dict[str, Any]:
    """Server, catalog and connection overview."""
    await ensure_initialized()
    config = load_config()
    state = get_catalog().ensure_loaded()
    snap = metrics.snapshot()
    return {
        "server": snap["server"],
        "mutationEnabled": config.mutation_enabled,
        "instructionsDir": str(config.instructions_dir),
        "catalog": {
            "count": len(state.entries),
            "hash": state.hash,
            "loadedAt": state.loaded_at,
            "errors": len(state.errors),
        },
        "connections": snap["connections"],
        "subscribers": event_bus.subscriber_count,
    }


@app.get("/api/tools")
async def get_tools() -> list[dict[str, Any]]:
    """Registered tools with their call metrics."""
    await ensure_initialized()
    tool_metrics = metrics.tool_metrics()
    return [{**entry, "metrics": tool_metrics.get(entry["name"])} for entry in get_tool_registry()]


@app.get("/api/tools/{name:path}")
async def get_tool_detail(name: str) -> dict[str, Any]:
    await ensure_initialized()
    tool = get_tool(name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
    return {**tool_entry(tool), "metrics": metrics.tool_metrics().get(name)}


@app.get("/api/metrics")
async def get_metrics() -> dict[str, Any]:
    return metrics.snapshot()


@app.get("/api/metrics/history")
async def get_metrics_history(count: int = 50) -> list[dict[str, Any]]:
    return metrics.history(count)


@app.get("/api/performance")
async def get_performance() -> dict[str, Any]:
    """Aggregate performance plus the slowest tools by average response time."""
    snap = metrics.snapshot()
    slowest = sorted(
        ({"tool": name, **stats} for name, stats in snap["tools"].items()),
        key=lambda t: t["avgResponseTime"],
        reverse=True,
    )
    return {**snap["performance"], "uptime": snap["server"]["uptime"], "slowestTools": slowest[:10]}


@app.post("/api/admin/clear-metrics")
async def clear_metrics() -> dict[str, Any]:
    metrics.clear()
    event_bus.emit(EventType.METRICS_UPDATE, {"cleared": True})
    return {"success": True, "clearedAt": utc_now_iso()}


@app.get("/api/health")
async def health_check():
    """Health check; 503 when the instructions directory is unusable."""
    await ensure_initialized()
    diagnosis = get_catalog().diagnose_instructions_dir()
    state = get_catalog().ensure_loaded()
    healthy = diagnosis["exists"] and diagnosis["writable"]
    body = {
        "status": "healthy" if healthy else "degraded",
        "timestamp": utc_now_iso(),
        "version": __version__,
        "instructions": {
            **diagnosis,
            "count": len(state.entries),
            "loadErrors": len(state.errors),
        },
        "telemetry": "enabled" if telemetry else "disabled",
        "sessions": sessions.status() if sessions else None,
    }
    return JSONResponse(body, status_code=200 if healthy else 503)


@app.get("/api/instructions")
def get_instructions(category: str | None = None) -> dict[str, Any]:
    return list_entries({"category": category} if category else {})


@app.get("/api/instructions/{instruction_id}")
def get_instruction(instruction_id: str) -> dict[str, Any]:
    try:
        result = get_entry({"id": instruction_id})
    except SemanticError as e:
        raise HTTPException(status_code=400, detail=e.message) from e
    if result.get("notFound"):
        raise HTTPException(status_code=404, detail=f"Instruction not found: {instruction_id}")
    return result


@app.get("/api/governance")
def get_governance() -> dict[str, Any]:
    return governance_hash({})


@app.get("/api/audit")
def get_audit(limit: int = 100) -> list[dict[str, Any]]:
    return read_audit_entries(max(1, min(limit, 1000)))


@app.get("/api/graph")
def get_graph(enrich: bool = False) -> dict[str, Any]:
    params = {"enrich": True, "includeCategoryNodes": True} if enrich else {}
    return export_graph(params)


@app.get("/api/sessions")
async def get_sessions() -> dict[str, Any]:
    await ensure_initialized()
    return {
        "active": sessions.active(),
        "history": sessions.history(),
        "persistence": sessions.status(),
    }


@app.get("/api/events")
async def get_events(limit: int = 50, event_type: str | None = None) -> list[dict[str, Any]]:
    """Recent persisted telemetry events."""
    await ensure_initialized()
    return await telemetry.get_recent_events(max(1, min(limit, 500)), event_type)


@app.get("/api/timeline")
async def get_timeline(hours: int = 1) -> list[dict[str, Any]]:
    await ensure_initialized()
    return await telemetry.get_timeline(hours)


# ============================================================================
# WebSocket for Real-time Updates
# ============================================================================


class ConnectionManager:
    """Manages WebSocket connections and their session records."""

    def __init__(self):
        self.active_connections: dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket) -> dict[str, Any]:
        await websocket.accept()
        record = sessions.open(websocket.query_params.get("clientId"))
        self.active_connections[websocket] = record["id"]
        metrics.connection_opened()
        event_bus.emit(EventType.CLIENT_CONNECT, {"sessionId": record["id"], "clientId": record["clientId"]})
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")
        return record

    def disconnect(self, websocket: WebSocket, reason: str = "client_disconnect"):
        session_id = self.active_connections.pop(websocket, None)
        if session_id is None:
            return
        sessions.close(session_id, reason)
        metrics.connection_closed()
        event_bus.emit(EventType.CLIENT_DISCONNECT, {"sessionId": session_id, "reason": reason})
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    def touch(self, websocket: WebSocket):
        session_id = self.active_connections.get(websocket)
        if session_id is not None:
            sessions.touch(session_id)


manager = ConnectionManager()


def _reply(message: Any) -> dict[str, Any]:
    """Response to one client message."""
    if not isinstance(message, dict):
        return {"type": "error", "message": "message must be a JSON object"}
    kind = message.get("type")
    if kind == "ping":
        return {"type": "pong", "timestamp": utc_now_iso()}
    if kind == "subscribe":
        return {"type": "subscribed", "events": [e.value for e in EventType], "timestamp": utc_now_iso()}
    if kind == "get_metrics":
        return {"type": EventType.METRICS_UPDATE.value, "data": metrics.snapshot()}
    return {"type": "error", "message": f"Unknown message type: {kind}"}


@app.websocket("/ws/events")
async def websocket_events(websocket: WebSocket):
    """Real-time event stream via WebSocket."""
    await ensure_initialized()
    record = await manager.connect(websocket)
    await websocket.send_json({
        "type": "welcome",
        "sessionId": record["id"],
        "serverVersion": __version__,
        "timestamp": utc_now_iso(),
    })

    queue = event_bus.subscribe()
    receive_task = asyncio.create_task(websocket.receive_text())
    event_task = asyncio.create_task(queue.get())
    reason = "client_disconnect"
    try:
        while True:
            done, _ = await asyncio.wait(
                {receive_task, event_task},
                timeout=HEARTBEAT_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not done:
                # Send heartbeat to keep connection alive
                await websocket.send_json({"type": "heartbeat", "timestamp": utc_now_iso()})
                continue
            if event_task in done:
                await websocket.send_json(event_task.result().to_message())
                event_task = asyncio.create_task(queue.get())
            if receive_task in done:
                text = receive_task.result()
                manager.touch(websocket)
                try:
                    message = json.loads(text)
                except ValueError:
                    message = None
                await websocket.send_json(_reply(message))
                receive_task = asyncio.create_task(websocket.receive_text())
    except WebSocketDisconnect:
        pass
    except Exception as e:
        reason = "error"
        logger.warning(f"WebSocket stream failed: {e}")
    finally:
        for task in (receive_task, event_task):
            task.cancel()
        event_bus.unsubscribe(queue)
        manager.disconnect(websocket, reason)


# ============================================================================
# Static Files & Dashboard
# ============================================================================

# Get the docs directory path
DOCS_DIR = Path(__file__).parent.parent.parent / "docs"

FALLBACK_DASHBOARD = """<!doctype html>
<html>
<head><title>MCP Index Dashboard</title></head>
<body>
<h1>MCP Index Dashboard</h1>
<p>REST API: <a href="/api/status">/api/status</a>, <a href="/api/metrics">/api/metrics</a>,
<a href="/api/instructions">/api/instructions</a>, <a href="/api/health">/api/health</a></p>
<pre id="events"></pre>
<script>
const ws = new WebSocket(`ws://${location.host}/ws/events`);
ws.onmessage = (m) => {
  const el = document.getElementById("events");
  el.textContent = m.data + "\\n" + el.textContent.slice(0, 20000);
};
</script>
</body>
</html>
"""


@app.get("/")
async def serve_dashboard():
    """Serve the main dashboard."""
    dashboard_path = DOCS_DIR / "dashboard.html"
    if dashboard_path.exists():
        return FileResponse(dashboard_path)
    return HTMLResponse(FALLBACK_DASHBOARD)


def run_server(host: str | None = None, port: int | None = None):
    """Run the web server."""
    import uvicorn

    config = load_config()
    uvicorn.run(app, host=host or config.dashboard_host, port=port or config.dashboard_port, log_level="info")


def start_dashboard_thread(host: str, port: int):
    """Serve the dashboard from a daemon thread of the current process.

    Uvicorn's logging config is left alone so stdout stays free for MCP stdio.
    """
    import uvicorn

    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_config=None, access_log=False))
    thread = threading.Thread(target=server.run, name="mcp-index-dashboard", daemon=True)
    thread.start()
    logger.info(f"Dashboard listening on http://{host}:{port}")
    return server


def main():
    """Entry point for web server."""
    from .logging_config import configure_logging

    configure_logging()
    run_server()


if __name__ == "__main__":
    main()
