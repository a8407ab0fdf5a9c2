"""
Environment configuration tests.
"""

import pytest

from mcp_index.config import build_config, env_flag, env_int, load_config, reset_config


class TestParsers:
    @pytest.mark.parametrize("raw,expected", [("1", True), ("TRUE", True), (" on ", True), ("0", False), ("no", False)])
    def test_env_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("X_FLAG", raw)
        assert env_flag("X_FLAG") is expected

    def test_env_flag_unrecognized_uses_default(self, monkeypatch):
        monkeypatch.setenv("X_FLAG", "maybe")
        assert env_flag("X_FLAG", True) is True
        assert env_flag("X_MISSING") is False

    def test_env_int(self, monkeypatch):
        monkeypatch.setenv("X_INT", "12")
        assert env_int("X_INT", 5) == 12
        monkeypatch.setenv("X_INT", "abc")
        assert env_int("X_INT", 5) == 5
        monkeypatch.setenv("X_INT", "0")
        assert env_int("X_INT", 5, minimum=1) == 5


class TestBuildConfig:
    def test_defaults(self, workspace):
        config = build_config()
        assert config.root == workspace.resolve()
        assert config.instructions_dir == workspace.resolve() / "instructions"
        assert config.mutation_enabled is False
        assert config.atomic_write_retries == 5
        assert config.feedback_max_entries == 1000
        assert config.dashboard_port == 8787
        assert config.manifest_path.name == "catalog-manifest.json"
        assert config.audit_log_path.name == "instruction-transactions.log.jsonl"

    def test_relative_paths_resolve_against_root(self, workspace, monkeypatch):
        monkeypatch.setenv("INSTRUCTIONS_DIR", "catalog")
        monkeypatch.setenv("FEEDBACK_DIR", "fb")
        config = build_config()
        assert config.instructions_dir == workspace.resolve() / "catalog"
        assert config.feedback_dir == workspace.resolve() / "fb"

    def test_features_normalized(self, monkeypatch):
        monkeypatch.setenv("INDEX_FEATURES", " Usage, window ,,")
        assert build_config().features == ["usage", "window"]

    def test_workspace_id_fallback(self, monkeypatch):
        monkeypatch.setenv("INSTRUCTIONS_WORKSPACE", "ws-2")
        assert build_config().workspace_id == "ws-2"
        monkeypatch.setenv("WORKSPACE_ID", "ws-1")
        assert build_config().workspace_id == "ws-1"

    def test_cached_until_reset(self, monkeypatch):
        first = load_config()
        monkeypatch.setenv("MCP_ENABLE_MUTATION", "1")
        assert load_config() is first
        reset_config()
        assert load_config().mutation_enabled is True
