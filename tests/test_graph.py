"""
Graph Model tests — structural queries and submission-time validation.
图模型测试：结构查询与提交校验。
"""

from __future__ import annotations

import pytest

from dag.graph import (
    GraphValidationError,
    children_of,
    descendants_of,
    find_cycle_nodes,
    parents_of,
    parse_graph,
    root_nodes,
    topological_sort,
    validate_graph,
)
from schema import FlowEdge, FlowNode, Graph


class TestQueries:

    def test_parents_and_children_follow_edge_order(self, make_graph):
        graph = make_graph([("c", "d"), ("a", "d"), ("b", "d"), ("d", "e"), ("d", "f")])

        assert [n.id for n in parents_of(graph, "d")] == ["c", "a", "b"]
        assert [n.id for n in children_of(graph, "d")] == ["e", "f"]

    def test_root_nodes(self, make_graph):
        graph = make_graph([("a", "b"), ("b", "c")], extra_nodes=("lonely",))
        assert [n.id for n in root_nodes(graph)] == ["a", "lonely"]

    def test_unknown_node_has_no_neighbours(self, make_graph):
        graph = make_graph([("a", "b")])
        assert parents_of(graph, "zzz") == []
        assert children_of(graph, "zzz") == []

    def test_descendants(self, make_graph):
        graph = make_graph([("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("x", "y")])
        assert sorted(descendants_of(graph, "a")) == ["b", "c", "d"]
        assert descendants_of(graph, "d") == []

    def test_topological_order_puts_parents_first(self, make_graph):
        graph = make_graph([("b", "d"), ("a", "b"), ("a", "c"), ("c", "d")])
        order = topological_sort(graph)
        idx = {nid: i for i, nid in enumerate(order)}

        assert len(order) == 4
        assert idx["a"] < idx["b"] < idx["d"]
        assert idx["a"] < idx["c"] < idx["d"]


class TestValidation:

    def test_valid_graph_passes(self, make_graph):
        validate_graph(make_graph([("a", "b"), ("a", "c")]))

    def test_edge_to_absent_node_is_rejected(self):
        graph = Graph(
            nodes=[FlowNode(id="a")],
            edges=[FlowEdge(id="e1", source="a", target="ghost")],
        )
        with pytest.raises(GraphValidationError, match="ghost"):
            validate_graph(graph)

    def test_edge_from_absent_node_is_rejected(self):
        graph = Graph(
            nodes=[FlowNode(id="a")],
            edges=[FlowEdge(id="e1", source="ghost", target="a")],
        )
        with pytest.raises(GraphValidationError, match="source 'ghost'"):
            validate_graph(graph)

    def test_duplicate_node_ids_are_rejected(self):
        graph = Graph(nodes=[FlowNode(id="a"), FlowNode(id="a")], edges=[])
        with pytest.raises(GraphValidationError, match="Duplicate"):
            validate_graph(graph)

    def test_cycle_is_rejected(self, make_graph):
        graph = make_graph([("root", "a"), ("a", "b"), ("b", "a")])
        assert sorted(find_cycle_nodes(graph)) == ["a", "b"]
        with pytest.raises(GraphValidationError, match="cycle"):
            validate_graph(graph)

    def test_cycle_allowed_when_disabled(self, make_graph):
        validate_graph(make_graph([("a", "b"), ("b", "a")]), reject_cycles=False)


class TestParseGraph:

    @pytest.mark.parametrize("payload", [
        {"nodes": []},
        {"edges": []},
        {"nodes": None, "edges": []},
        [],
    ])
    def test_missing_fields(self, payload):
        with pytest.raises(GraphValidationError, match="Invalid workflow format"):
            parse_graph(payload)

    def test_malformed_node(self):
        with pytest.raises(GraphValidationError):
            parse_graph({"nodes": [{"data": {"label": "no id"}}], "edges": []})

    def test_canvas_fields_are_kept(self):
        graph = parse_graph({
            "nodes": [{"id": "a", "type": "custom", "position": {"x": 1, "y": 2},
                       "data": {"label": "A", "prompt": "hi"}}],
            "edges": [],
        })
        node = graph.nodes[0]
        assert node.data.prompt == "hi"
        assert node.model_extra["position"] == {"x": 1, "y": 2}

    def test_graph_instance_passes_through(self, make_graph):
        graph = make_graph([("a", "b")])
        assert parse_graph(graph) is graph
