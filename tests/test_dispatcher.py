"""
Dispatcher and method registry tests: routing, batches, mutation gating and metrics.
"""

import pytest
from conftest import write_instruction

from mcp_index import registry
from mcp_index.dispatcher import dispatch, supported_actions
from mcp_index.errors import SemanticError
from mcp_index.registry import get_metrics_raw, invoke, is_mutation
from mcp_index.version import __version__


class TestDispatch:
    def test_capabilities(self):
        result = dispatch({"action": "capabilities"})
        assert result["version"] == __version__
        assert result["mutationEnabled"] is False
        for action in ("list", "get", "add", "remove", "groom", "batch", "capabilities"):
            assert action in result["supportedActions"]
        assert result["supportedActions"] == supported_actions()

    def test_missing_action(self):
        with pytest.raises(SemanticError) as exc_info:
            dispatch({})
        assert exc_info.value.code == -32602
        assert exc_info.value.data["reason"] == "missing_action"

    def test_unknown_action(self):
        with pytest.raises(SemanticError) as exc_info:
            dispatch({"action": "teleport"})
        assert exc_info.value.code == -32601
        assert exc_info.value.message == "Unknown action: teleport"

    def test_mutations_allowed_without_flag(self, instructions_dir):
        result = dispatch({"action": "add", "entry": {"id": "x", "title": "X", "body": "body"}})
        assert result["created"] is True


class TestBatch:
    def test_mixed_results(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        result = dispatch({
            "action": "batch",
            "operations": [
                {"action": "get", "id": "a"},
                {"action": "teleport"},
                "not an object",
                {"action": "get"},
            ],
        })
        results = result["results"]
        assert results[0]["item"]["id"] == "a"
        assert results[1]["error"]["code"] == -32601
        assert results[2]["error"]["code"] == -32602
        assert results[3]["error"]["code"] == -32602

    def test_ops_alias(self, instructions_dir):
        result = dispatch({"action": "batch", "ops": [{"action": "capabilities"}]})
        assert result["results"][0]["version"] == __version__

    def test_requires_operations(self):
        with pytest.raises(SemanticError) as exc_info:
            dispatch({"action": "batch"})
        assert exc_info.value.code == -32602


class TestRegistry:
    def test_unknown_tool(self):
        with pytest.raises(SemanticError) as exc_info:
            invoke("does/not-exist", {})
        assert exc_info.value.code == -32601

    def test_mutation_tool_gated(self, instructions_dir):
        assert is_mutation("instructions/add")
        with pytest.raises(SemanticError) as exc_info:
            invoke("instructions/add", {"entry": {"id": "x", "title": "X", "body": "b"}})
        assert exc_info.value.code == -32601
        assert exc_info.value.message.startswith("Mutation disabled")
        assert exc_info.value.data["reason"] == "mutation_disabled"
        assert not (instructions_dir / "x.json").exists()

    def test_mutation_tool_enabled(self, instructions_dir, mutation_enabled):
        result = invoke("instructions/add", {"entry": {"id": "x", "title": "X", "body": "b"}})
        assert result["created"] is True

    def test_params_must_be_object(self):
        with pytest.raises(SemanticError) as exc_info:
            invoke("health/check", ["not", "a", "dict"])
        assert exc_info.value.code == -32602

    def test_unexpected_exception_wrapped(self, monkeypatch):
        def explode(params):
            raise RuntimeError("boom")

        monkeypatch.setitem(registry._handlers, "test/explode", explode)

        with pytest.raises(SemanticError) as exc_info:
            invoke("test/explode", {})

        assert exc_info.value.code == -32603
        assert "boom" in exc_info.value.message
        assert get_metrics_raw()["test/explode"]["errors"] == 1

    def test_metrics_recorded(self):
        invoke("health/check", {})
        invoke("health/check", {})
        stats = get_metrics_raw()["health/check"]
        assert stats["count"] == 2
        assert stats["errors"] == 0

    def test_error_string_is_json(self):
        error = SemanticError(-32602, "bad", {"field": "x"})
        assert str(error) == '{"error": {"code": -32602, "message": "bad", "data": {"field": "x"}}}'


class TestDiagnosticsTools:
    def test_health(self):
        result = invoke("health/check", {})
        assert result["status"] == "ok"
        assert result["version"] == __version__

    def test_metrics_snapshot(self):
        invoke("health/check", {})
        result = invoke("metrics/snapshot", {})
        methods = {m["method"]: m for m in result["methods"]}
        assert methods["health/check"]["count"] == 1
        assert result["features"]["features"] == ["usage"]

    def test_feature_status(self):
        result = invoke("feature/status", {})
        assert result["features"] == ["usage"]
        assert result["env"] == {"INDEX_FEATURES": "usage"}
        assert result["counters"]["featureActivated:usage"] == 1
