"""Pytest configuration for MCP Index tests.

Every test runs against its own workspace root under ``tmp_path`` with fresh
configuration, catalog, feature and metrics state.
"""

import json
import os
import tempfile
from pathlib import Path

import pytest

# Keep file logging out of the home directory (server.py configures it on import)
os.environ.setdefault("MCP_INDEX_LOG_DIR", tempfile.mkdtemp(prefix="mcp-index-test-logs-"))

from mcp_index.catalog import reset_catalog  # noqa: E402
from mcp_index.config import reset_config  # noqa: E402
from mcp_index.features import reset_features  # noqa: E402
from mcp_index.handlers import register_all  # noqa: E402
from mcp_index.registry import reset_metrics  # noqa: E402

ENV_VARS = (
    "INSTRUCTIONS_DIR",
    "MCP_ENABLE_MUTATION",
    "MCP_REQUIRE_CATEGORY",
    "MCP_CANONICAL_DISABLE",
    "INSTRUCTIONS_ALWAYS_RELOAD",
    "INSTRUCTIONS_AUDIT_LOG",
    "GRAPH_INCLUDE_PRIMARY_EDGES",
    "GRAPH_LARGE_CATEGORY_CAP",
    "MCP_MANIFEST_WRITE",
    "MCP_MANIFEST_FASTLOAD",
    "MCP_INSTRUCTIONS_STRICT_CREATE",
    "MCP_INSTRUCTIONS_STRICT_REMOVE",
    "FEEDBACK_DIR",
    "FEEDBACK_MAX_ENTRIES",
    "PROMPT_CRITERIA_FILE",
    "MCP_DASHBOARD",
    "MCP_CATALOG_FILE_TRACE",
    "GOV_HASH_TRAILING_NEWLINE",
    "MCP_ATOMIC_WRITE_RETRIES",
    "MCP_SESSION_DIR",
    "MCP_AGENT_ID",
    "WORKSPACE_ID",
    "INSTRUCTIONS_WORKSPACE",
)


def _reset_state():
    reset_catalog()
    reset_config()
    reset_features()
    reset_metrics()


@pytest.fixture(autouse=True)
def workspace(tmp_path, monkeypatch):
    """Isolated workspace root with an empty instructions directory."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MCP_INDEX_ROOT", str(tmp_path))
    monkeypatch.setenv("INDEX_FEATURES", "usage")
    monkeypatch.setenv("MCP_USAGE_FLUSH_MS", "50")
    monkeypatch.setenv("MCP_ATOMIC_WRITE_BACKOFF_MS", "1")
    (tmp_path / "instructions").mkdir()
    _reset_state()
    register_all()
    yield tmp_path
    _reset_state()


@pytest.fixture
def instructions_dir(workspace) -> Path:
    return workspace / "instructions"


@pytest.fixture
def mutation_enabled(monkeypatch):
    monkeypatch.setenv("MCP_ENABLE_MUTATION", "1")
    reset_config()


def make_record(instruction_id: str, **overrides) -> dict:
    record = {
        "id": instruction_id,
        "title": f"Title {instruction_id}",
        "body": f"Body text for {instruction_id}.",
        "priority": 50,
        "audience": "all",
        "requirement": "optional",
        "categories": ["general"],
    }
    record.update(overrides)
    return record


def write_instruction(directory: Path, instruction_id: str, **overrides) -> Path:
    """Write a raw instruction file the way a hand-edited catalog would have it."""
    path = directory / f"{instruction_id}.json"
    path.write_text(json.dumps(make_record(instruction_id, **overrides), indent=2), encoding="utf-8")
    return path


def read_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))
