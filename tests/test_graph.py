"""
Graph export tests (graph/export).

Fixture catalog:
    a: categories x, y (primary x)
    b: categories x, y (primary x)
    c: category z
"""

import pytest
from conftest import write_instruction

from mcp_index.config import reset_config
from mcp_index.graph import InstructionGraph, export_graph
from mcp_index.registry import invoke


@pytest.fixture
def catalog(instructions_dir):
    write_instruction(instructions_dir, "a", categories=["x", "y"])
    write_instruction(instructions_dir, "b", categories=["y", "x"])
    write_instruction(instructions_dir, "c", categories=["z"])
    return instructions_dir


def edge_set(result):
    return {(e["type"], e["source"], e["target"]) for e in result["edges"]}


class TestDefaultExport:
    def test_nodes_and_edges(self, catalog):
        result = invoke("graph/export", {})

        assert result["meta"]["graphSchemaVersion"] == 1
        assert [n["id"] for n in result["nodes"]] == ["a", "b", "c"]
        assert edge_set(result) == {
            ("category", "a", "b"),
            ("primary", "a", "category:x"),
            ("primary", "b", "category:x"),
            ("primary", "c", "category:z"),
        }
        assert result["meta"]["nodeCount"] == 3
        assert result["meta"]["edgeCount"] == 4

    def test_shared_categories_collapse_into_one_edge(self, catalog):
        result = export_graph({})
        category_edges = [e for e in result["edges"] if e["type"] == "category"]
        assert len(category_edges) == 1
        assert category_edges[0]["categories"] == ["x", "y"]

    def test_default_result_cached(self, catalog):
        first = export_graph({})
        first["meta"]["nodeCount"] = 999
        assert export_graph({})["meta"]["nodeCount"] == 3

    def test_without_primary_edges(self, catalog, monkeypatch):
        monkeypatch.setenv("GRAPH_INCLUDE_PRIMARY_EDGES", "0")
        reset_config()
        result = export_graph({})
        assert edge_set(result) == {("category", "a", "b")}

    def test_large_category_cap(self, catalog, monkeypatch):
        monkeypatch.setenv("GRAPH_LARGE_CATEGORY_CAP", "1")
        reset_config()
        result = export_graph({"includeEdgeTypes": ["category"]})
        assert result["edges"] == []
        assert len(result["meta"]["notes"]) == 2


class TestOptions:
    def test_edge_type_filter(self, catalog):
        result = export_graph({"includeEdgeTypes": ["primary"]})
        assert {e["type"] for e in result["edges"]} == {"primary"}

    def test_max_edges(self, catalog):
        result = export_graph({"maxEdges": 2})
        assert len(result["edges"]) == 2
        assert result["meta"]["truncated"] is True
        assert result["meta"]["edgeCount"] == 2

    def test_enriched_with_category_nodes(self, catalog):
        result = export_graph({"enrich": True, "includeCategoryNodes": True})

        assert result["meta"]["graphSchemaVersion"] == 2
        nodes = {n["id"]: n for n in result["nodes"]}
        assert nodes["a"]["nodeType"] == "instruction"
        assert nodes["a"]["categories"] == ["x", "y"]
        assert nodes["category:x"]["nodeType"] == "category"
        assert nodes["category:x"]["memberCount"] == 2
        belongs = {(e["source"], e["target"]) for e in result["edges"] if e["type"] == "belongs"}
        assert belongs == {
            ("a", "category:x"), ("a", "category:y"),
            ("b", "category:x"), ("b", "category:y"),
            ("c", "category:z"),
        }
        assert all(e["weight"] == 1 for e in result["edges"])

    def test_include_usage(self, catalog):
        invoke("usage/track", {"id": "a"})
        result = export_graph({"enrich": True, "includeUsage": True})
        nodes = {n["id"]: n for n in result["nodes"]}
        assert nodes["a"]["usageCount"] == 1
        assert nodes["b"]["usageCount"] == 0

    def test_dot_format(self, catalog):
        result = export_graph({"format": "dot"})
        assert result["dot"].startswith("graph Instructions {")
        assert '"a" -- "b" [label="category"];' in result["dot"]


class TestInstructionGraph:
    def test_empty(self):
        builder = InstructionGraph().build([])
        assert builder.nodes() == []
        assert builder.edges() == []
