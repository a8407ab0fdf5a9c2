"""Instruction relationship graph using NetworkX (``graph/export``).

Instructions are linked through the categories they share. The graph is an
undirected multigraph keyed by edge ``type``: ``primary`` (instruction to its
primary category), ``category`` (instructions sharing a category) and
``belongs`` (instruction to an explicit category node).
"""

import hashlib
import json
from itertools import combinations
from typing import Any

import networkx as nx

from .catalog import get_catalog
from .config import load_config
from .models import InstructionEntry
from .registry import register_handler

EDGE_PRIMARY = "primary"
EDGE_CATEGORY = "category"
EDGE_BELONGS = "belongs"
CATEGORY_NODE_PREFIX = "category:"

_default_cache: dict[str, Any] = {"key": None, "result": None}


class InstructionGraph:
    """Builds the catalog graph from a list of entries."""

    def __init__(self):
        self.graph = nx.MultiGraph()
        self.notes: list[str] = []

    def build(
        self,
        entries: list[InstructionEntry],
        enrich: bool = False,
        include_category_nodes: bool = False,
        include_usage: bool = False,
        include_primary_edges: bool = True,
        large_category_cap: int | None = None,
    ) -> "InstructionGraph":
        for entry in sorted(entries, key=lambda e: e.id):
            attrs: dict[str, Any] = {"label": entry.title}
            if enrich:
                attrs.update(
                    nodeType="instruction",
                    categories=list(entry.categories),
                    primaryCategory=entry.primary_category,
                    priority=entry.priority,
                    priorityTier=entry.priority_tier,
                    requirement=entry.requirement,
                    owner=entry.owner,
                    status=entry.status,
                    createdAt=entry.created_at,
                    updatedAt=entry.updated_at,
                )
                if include_usage:
                    attrs["usageCount"] = entry.usage_count or 0
            self.graph.add_node(entry.id, **attrs)

        by_category: dict[str, list[str]] = {}
        for entry in entries:
            for category in entry.categories:
                by_category.setdefault(category, []).append(entry.id)

        if include_primary_edges:
            for entry in entries:
                if entry.primary_category:
                    self._add_edge(entry.id, f"{CATEGORY_NODE_PREFIX}{entry.primary_category}", EDGE_PRIMARY, enrich)

        for category in sorted(by_category):
            members = sorted(by_category[category])
            if large_category_cap is not None and len(members) > large_category_cap:
                self.notes.append(
                    f"skipped pairwise edges for category '{category}' ({len(members)} > cap {large_category_cap})"
                )
                continue
            for a, b in combinations(members, 2):
                self._add_edge(a, b, EDGE_CATEGORY, enrich, category=category)

        if enrich and include_category_nodes:
            for category in sorted(by_category):
                node = f"{CATEGORY_NODE_PREFIX}{category}"
                self.graph.add_node(node, label=category, nodeType="category", memberCount=len(by_category[category]))
                for member in sorted(by_category[category]):
                    self._add_edge(member, node, EDGE_BELONGS, enrich)
        return self

    def _add_edge(self, a: str, b: str, edge_type: str, enrich: bool, category: str | None = None) -> None:
        # One edge per (pair, type); shared categories accumulate on it
        if self.graph.has_edge(a, b, key=edge_type):
            if category is not None:
                self.graph.edges[a, b, edge_type]["categories"].append(category)
            return
        attrs: dict[str, Any] = {"type": edge_type}
        if enrich:
            attrs["weight"] = 1
        if category is not None:
            attrs["categories"] = [category]
        self.graph.add_edge(a, b, key=edge_type, **attrs)

    def nodes(self) -> list[dict[str, Any]]:
        return [{"id": node, **data} for node, data in sorted(self.graph.nodes(data=True), key=lambda n: n[0])]

    def edges(self) -> list[dict[str, Any]]:
        edges = []
        for a, b, data in self.graph.edges(data=True):
            if b.startswith(CATEGORY_NODE_PREFIX) or (not a.startswith(CATEGORY_NODE_PREFIX) and a <= b):
                source, target = a, b
            else:
                source, target = b, a
            edges.append({"source": source, "target": target, **data})
        edges.sort(key=lambda e: (e["type"], e["source"], e["target"]))
        return edges


def to_dot(nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> str:
    """Render an undirected DOT graph."""
    lines = ["graph Instructions {"]
    for node in nodes:
        label = str(node.get("label", node["id"])).replace('"', '\\"')
        lines.append(f'  "{node["id"]}" [label="{label}"];')
    for edge in edges:
        lines.append(f'  "{edge["source"]}" -- "{edge["target"]}" [label="{edge["type"]}"];')
    lines.append("}")
    return "\n".join(lines)


def _env_signature() -> str:
    config = load_config()
    return f"{int(config.graph_include_primary_edges)}:{config.graph_large_category_cap}"


def export_graph(params: dict[str, Any]) -> dict[str, Any]:
    config = load_config()
    state = get_catalog().ensure_loaded()
    enrich = bool(params.get("enrich"))
    include_category_nodes = bool(params.get("includeCategoryNodes"))
    include_usage = bool(params.get("includeUsage"))
    include_edge_types = params.get("includeEdgeTypes")
    max_edges = params.get("maxEdges")
    output_format = params.get("format", "json")

    is_default = not any(params.get(k) for k in (
        "enrich", "includeCategoryNodes", "includeUsage", "includeEdgeTypes", "maxEdges",
    )) and output_format == "json"
    # The catalog hash only covers bodies; the file signature catches metadata edits
    signature = f"{state.hash}|{state.file_signature}|{state.loaded_at}|{_env_signature()}"
    cache_key = hashlib.sha256(signature.encode()).hexdigest()
    if is_default and _default_cache["key"] == cache_key:
        return json.loads(json.dumps(_default_cache["result"]))

    builder = InstructionGraph().build(
        state.entries,
        enrich=enrich,
        include_category_nodes=include_category_nodes,
        include_usage=include_usage,
        include_primary_edges=config.graph_include_primary_edges,
        large_category_cap=config.graph_large_category_cap,
    )
    nodes = [n for n in builder.nodes() if n["id"] in state.by_id or n.get("nodeType") == "category"]
    edges = builder.edges()
    if isinstance(include_edge_types, list) and include_edge_types:
        wanted = {t for t in include_edge_types if isinstance(t, str)}
        edges = [e for e in edges if e["type"] in wanted]

    meta: dict[str, Any] = {"graphSchemaVersion": 2 if enrich else 1}
    if isinstance(max_edges, int) and not isinstance(max_edges, bool) and 0 <= max_edges < len(edges):
        edges = edges[:max_edges]
        meta["truncated"] = True
    meta["nodeCount"] = len(nodes)
    meta["edgeCount"] = len(edges)
    if builder.notes:
        meta["notes"] = builder.notes

    result: dict[str, Any] = {"meta": meta, "nodes": nodes, "edges": edges}
    if output_format == "dot":
        result["dot"] = to_dot(nodes, edges)
    if is_default:
        _default_cache.update(key=cache_key, result=json.loads(json.dumps(result)))
    return result


register_handler("graph/export")(export_graph)
