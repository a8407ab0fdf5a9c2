"""
Catalog context tests: caching, enrichment, ownership and usage tracking.
"""

import json
import time

import pytest
from conftest import read_json, write_instruction

from mcp_index.catalog import get_catalog, is_safe_id, reset_catalog
from mcp_index.config import load_config, reset_config
from mcp_index.features import get_counters, reset_features
from mcp_index.registry import invoke


class TestCaching:
    """The catalog reloads only when the directory changes."""

    def test_second_access_uses_cache(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.ensure_loaded()
        ctx.ensure_loaded()
        assert ctx.reload_count == 1

    def test_new_file_triggers_reload(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        assert len(ctx.ensure_loaded().entries) == 1

        write_instruction(instructions_dir, "b")

        assert sorted(ctx.ensure_loaded().by_id) == ["a", "b"]
        assert ctx.reload_count == 2

    def test_version_marker_triggers_reload(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.ensure_loaded()
        ctx.touch_catalog_version()
        ctx.ensure_loaded()
        assert ctx.reload_count == 2

    def test_always_reload(self, instructions_dir, monkeypatch):
        monkeypatch.setenv("INSTRUCTIONS_ALWAYS_RELOAD", "1")
        reset_config()
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.ensure_loaded()
        ctx.ensure_loaded()
        assert ctx.reload_count == 2

    def test_load_errors_kept_on_state(self, instructions_dir):
        (instructions_dir / "broken.json").write_text("{", encoding="utf-8")
        state = get_catalog().ensure_loaded()
        assert state.entries == []
        assert state.errors[0].file == "broken.json"


class TestEnrichment:
    def test_derived_fields_written_back(self, instructions_dir):
        path = write_instruction(instructions_dir, "plain", body="Keep it short. Really.")
        get_catalog().ensure_loaded()

        on_disk = read_json(path)
        assert len(on_disk["sourceHash"]) == 64
        assert on_disk["owner"] == "unowned"
        assert on_disk["semanticSummary"] == "Keep it short."
        assert on_disk["lastReviewedAt"]
        assert on_disk["nextReviewDue"]

    def test_enrichment_does_not_cause_reload(self, instructions_dir):
        write_instruction(instructions_dir, "plain")
        ctx = get_catalog()
        ctx.ensure_loaded()
        ctx.ensure_loaded()
        assert ctx.reload_count == 1

    def test_existing_values_not_overwritten(self, instructions_dir):
        path = write_instruction(instructions_dir, "mine", owner="alice", semanticSummary="custom")
        get_catalog().ensure_loaded()
        on_disk = read_json(path)
        assert on_disk["owner"] == "alice"
        assert on_disk["semanticSummary"] == "custom"

    def test_owner_resolved_from_ownership_rules(self, workspace, instructions_dir):
        (workspace / "owners.json").write_text(
            json.dumps({"ownership": [{"pattern": "^sec-", "owner": "security-team"}]}),
            encoding="utf-8",
        )
        path = write_instruction(instructions_dir, "sec-passwords")
        write_instruction(instructions_dir, "style-guide")

        state = get_catalog().ensure_loaded()

        assert state.by_id["sec-passwords"].owner == "security-team"
        assert state.by_id["style-guide"].owner == "unowned"
        assert read_json(path)["owner"] == "security-team"


class TestSafeIds:
    @pytest.mark.parametrize("value", ["abc", "a-b_c.1", "Upper"])
    def test_accepted(self, value):
        assert is_safe_id(value)

    @pytest.mark.parametrize("value", ["", " a", "../x", "a/b", "a\\b", ".hidden", "a..b", None, 3])
    def test_rejected(self, value):
        assert not is_safe_id(value)


class TestUsage:
    def test_first_use_flushed_immediately(self, workspace, instructions_dir):
        write_instruction(instructions_dir, "a")
        result = get_catalog().increment_usage("a")

        assert result["usageCount"] == 1
        assert result["firstSeenTs"] == result["lastUsedAt"]
        snapshot = read_json(load_config().usage_snapshot_path)
        assert snapshot["a"]["usageCount"] == 1

    def test_later_uses_coalesced_until_flush(self, instructions_dir, monkeypatch):
        monkeypatch.setenv("MCP_USAGE_FLUSH_MS", "60000")
        reset_config()
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.increment_usage("a")
        ctx.increment_usage("a")
        third = ctx.increment_usage("a")
        assert third["usageCount"] == 3

        assert ctx.flush_usage() is True
        assert read_json(load_config().usage_snapshot_path)["a"]["usageCount"] == 3
        assert ctx.flush_usage() is False

    def test_scheduled_flush(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.increment_usage("a")
        ctx.increment_usage("a")

        deadline = time.monotonic() + 5
        path = load_config().usage_snapshot_path
        while read_json(path)["a"]["usageCount"] != 2 and time.monotonic() < deadline:
            time.sleep(0.02)
        assert read_json(path)["a"]["usageCount"] == 2

    def test_usage_never_written_to_instruction_file(self, instructions_dir):
        path = write_instruction(instructions_dir, "a")
        ctx = get_catalog()
        ctx.increment_usage("a")
        ctx.flush_usage()
        assert "usageCount" not in read_json(path)

    def test_usage_survives_restart(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        get_catalog().increment_usage("a")
        get_catalog().increment_usage("a")
        reset_catalog()

        entry = get_catalog().ensure_loaded().by_id["a"]
        assert entry.usage_count == 2

    def test_unknown_id(self, instructions_dir):
        assert get_catalog().increment_usage("missing") is None

    def test_disabled_without_feature(self, instructions_dir, monkeypatch):
        monkeypatch.setenv("INDEX_FEATURES", "")
        reset_config()
        reset_features()
        write_instruction(instructions_dir, "a")

        assert get_catalog().increment_usage("a") == {"featureDisabled": True}
        assert get_counters()["usage:gated"] == 1

    def test_track_and_hotset_tools(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        write_instruction(instructions_dir, "b")
        write_instruction(instructions_dir, "c")
        for instruction_id in ("a", "b", "b"):
            invoke("usage/track", {"id": instruction_id})

        hotset = invoke("usage/hotset", {"limit": 5})

        assert [item["id"] for item in hotset["items"]] == ["b", "a"]
        assert hotset["items"][0]["usageCount"] == 2
        assert hotset["limit"] == 5

    def test_track_tool_errors(self, instructions_dir):
        assert invoke("usage/track", {}) == {"error": "missing id"}
        assert invoke("usage/track", {"id": "ghost"}) == {"notFound": True}


class TestDiagnostics:
    def test_writable_directory(self, instructions_dir):
        diagnosis = get_catalog().diagnose_instructions_dir()
        assert diagnosis["exists"] is True
        assert diagnosis["writable"] is True
        assert diagnosis["error"] is None
        # Probe file is cleaned up
        assert list(instructions_dir.iterdir()) == []

    def test_dir_tool(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        result = invoke("instructions/dir", {})
        assert result["filesCount"] == 1
        assert result["files"] == ["a.json"]
