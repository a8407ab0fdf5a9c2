"""Runtime configuration read from environment variables.

All knobs live on a single ``RuntimeConfig`` model so handlers never read
``os.environ`` directly. The model is built lazily and cached; tests that
tweak the environment call ``reset_config()`` afterwards.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})

DEFAULT_DASHBOARD_PORT = 8787


def env_flag(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable. Unrecognized values yield the default."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return default


def env_int(name: str, default: int | None, minimum: int | None = None) -> int | None:
    """Parse an integer environment variable, falling back to the default."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def env_str(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


class RuntimeConfig(BaseModel):
    """Resolved runtime settings for one server process."""

    root: Path = Field(..., description="Workspace root; relative paths resolve here")
    instructions_dir: Path = Field(..., description="Directory holding instruction JSON files")
    always_reload: bool = Field(default=False, description="Bypass the catalog cache on every access")
    mutation_enabled: bool = Field(default=False, description="Expose direct mutation tools")
    require_category: bool = Field(default=False, description="Reject entries without categories")
    canonical_disable: bool = Field(default=False, description="Hash trimmed bodies instead of canonical text")
    atomic_write_retries: int = Field(default=5, ge=1)
    atomic_write_backoff_ms: int = Field(default=10, ge=0)
    features: list[str] = Field(default_factory=list)
    file_trace: bool = False
    audit_log_path: Path
    usage_snapshot_path: Path
    usage_flush_ms: int = 500
    graph_include_primary_edges: bool = True
    graph_large_category_cap: int | None = None
    manifest_write: bool = True
    manifest_fastload: bool = False
    agent_id: str | None = None
    workspace_id: str | None = None
    strict_create: bool = False
    strict_remove: bool = False
    feedback_dir: Path
    feedback_max_entries: int = 1000
    prompt_criteria_file: Path
    gov_hash_trailing_newline: bool = False
    dashboard_enabled: bool = False
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = DEFAULT_DASHBOARD_PORT
    session_dir: Path
    log_level: str = "INFO"

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def manifest_path(self) -> Path:
        return self.snapshots_dir / "catalog-manifest.json"

    @property
    def canonical_snapshot_path(self) -> Path:
        return self.snapshots_dir / "canonical-instructions.json"

    @property
    def owners_path(self) -> Path:
        return self.root / "owners.json"

    @property
    def gates_path(self) -> Path:
        return self.instructions_dir / "gates.json"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"


def _resolve(root: Path, value: str | None, default: Path) -> Path:
    if value is None:
        return default
    path = Path(os.path.expanduser(value))
    return path if path.is_absolute() else root / path


def build_config() -> RuntimeConfig:
    """Build a fresh configuration snapshot from the current environment."""
    root = Path(env_str("MCP_INDEX_ROOT") or os.getcwd()).resolve()
    features = [
        f.strip().lower()
        for f in (os.environ.get("INDEX_FEATURES") or "").split(",")
        if f.strip()
    ]
    return RuntimeConfig(
        root=root,
        instructions_dir=_resolve(root, env_str("INSTRUCTIONS_DIR"), root / "instructions"),
        always_reload=env_flag("INSTRUCTIONS_ALWAYS_RELOAD"),
        mutation_enabled=env_flag("MCP_ENABLE_MUTATION"),
        require_category=env_flag("MCP_REQUIRE_CATEGORY"),
        canonical_disable=env_flag("MCP_CANONICAL_DISABLE"),
        atomic_write_retries=env_int("MCP_ATOMIC_WRITE_RETRIES", 5, minimum=1),
        atomic_write_backoff_ms=env_int("MCP_ATOMIC_WRITE_BACKOFF_MS", 10, minimum=0),
        features=features,
        file_trace=env_flag("MCP_CATALOG_FILE_TRACE"),
        audit_log_path=_resolve(
            root,
            env_str("INSTRUCTIONS_AUDIT_LOG"),
            root / "logs" / "instruction-transactions.log.jsonl",
        ),
        usage_snapshot_path=root / "data" / "usage-snapshot.json",
        usage_flush_ms=env_int("MCP_USAGE_FLUSH_MS", 500, minimum=0),
        graph_include_primary_edges=env_flag("GRAPH_INCLUDE_PRIMARY_EDGES", True),
        graph_large_category_cap=env_int("GRAPH_LARGE_CATEGORY_CAP", None, minimum=1),
        manifest_write=env_flag("MCP_MANIFEST_WRITE", True),
        manifest_fastload=env_flag("MCP_MANIFEST_FASTLOAD"),
        agent_id=env_str("MCP_AGENT_ID"),
        workspace_id=env_str("WORKSPACE_ID") or env_str("INSTRUCTIONS_WORKSPACE"),
        strict_create=env_flag("MCP_INSTRUCTIONS_STRICT_CREATE"),
        strict_remove=env_flag("MCP_INSTRUCTIONS_STRICT_REMOVE"),
        feedback_dir=_resolve(root, env_str("FEEDBACK_DIR"), root / "feedback"),
        feedback_max_entries=env_int("FEEDBACK_MAX_ENTRIES", 1000, minimum=1),
        prompt_criteria_file=_resolve(
            root, env_str("PROMPT_CRITERIA_FILE"), root / "docs" / "PROMPT-CRITERIA.json"
        ),
        gov_hash_trailing_newline=env_flag("GOV_HASH_TRAILING_NEWLINE"),
        dashboard_enabled=env_flag("MCP_DASHBOARD"),
        dashboard_host=env_str("MCP_DASHBOARD_HOST") or "127.0.0.1",
        dashboard_port=env_int("MCP_DASHBOARD_PORT", DEFAULT_DASHBOARD_PORT, minimum=1),
        session_dir=_resolve(root, env_str("MCP_SESSION_DIR"), root / "data" / "sessions"),
        log_level=(env_str("MCP_LOG_LEVEL") or "INFO").upper(),
    )


_config: RuntimeConfig | None = None


def load_config() -> RuntimeConfig:
    """Return the cached configuration, building it on first use."""
    global _config
    if _config is None:
        _config = build_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _config
    _config = None
