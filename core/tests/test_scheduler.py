"""
Tests for layering and run scope resolution.
"""

import pytest

from nodeflow.errors import InternalSchedulingError, ValidationError
from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.node import NodeSpec
from nodeflow.graph.scheduler import (
    downstream_nodes,
    is_valid_dag,
    layer,
    resolve_scope,
    upstream_nodes,
)
from nodeflow.schemas.run import RunScope


def _edge(source: str, target: str, handle: str = "user_message") -> EdgeSpec:
    return EdgeSpec(id=f"{source}->{target}:{handle}", source=source, target=target,
                    target_handle=handle)


def _nodes(*ids: str, kind: str = "llm") -> list[NodeSpec]:
    return [NodeSpec(id=node_id, type=kind) for node_id in ids]


# ---- layer() ----


class TestLayer:
    def test_edgeless_graph_is_one_layer(self):
        assert layer(_nodes("a", "b", "c"), []) == [["a", "b", "c"]]

    def test_chain(self):
        edges = [_edge("a", "b"), _edge("b", "c")]
        assert layer(_nodes("a", "b", "c"), edges) == [["a"], ["b"], ["c"]]

    def test_diamond(self):
        edges = [
            _edge("a", "b"),
            _edge("a", "c", "system_prompt"),
            _edge("b", "d"),
            _edge("c", "d", "system_prompt"),
        ]
        layers = layer(_nodes("a", "b", "c", "d"), edges)
        assert layers[0] == ["a"]
        assert sorted(layers[1]) == ["b", "c"]
        assert layers[2] == ["d"]

    def test_layer_sizes_sum_to_node_count(self):
        edges = [_edge("a", "c"), _edge("b", "c", "system_prompt"), _edge("c", "e")]
        nodes = _nodes("a", "b", "c", "d", "e")
        layers = layer(nodes, edges)
        assert sum(len(group) for group in layers) == len(nodes)

    def test_every_dependency_in_an_earlier_layer(self):
        edges = [_edge("a", "c"), _edge("b", "c", "system_prompt"), _edge("c", "e"),
                 _edge("d", "e", "system_prompt")]
        layers = layer(_nodes("a", "b", "c", "d", "e"), edges)
        position = {node_id: i for i, group in enumerate(layers) for node_id in group}
        for edge in edges:
            assert position[edge.source] < position[edge.target]

    def test_edges_outside_subset_are_ignored(self):
        edges = [_edge("outside", "b"), _edge("b", "c")]
        assert layer(_nodes("b", "c"), edges) == [["b"], ["c"]]

    def test_cycle_raises_internal_scheduling_error(self):
        edges = [_edge("a", "b"), _edge("b", "a")]
        with pytest.raises(InternalSchedulingError) as exc_info:
            layer(_nodes("a", "b", "c"), edges)
        assert exc_info.value.unscheduled == ["a", "b"]
        assert "Scheduled 1 of 3 nodes" in str(exc_info.value)

    def test_is_valid_dag(self):
        assert is_valid_dag(_nodes("a", "b"), [_edge("a", "b")])
        assert not is_valid_dag(_nodes("a", "b"), [_edge("a", "b"), _edge("b", "a")])


# ---- upstream / downstream ----


class TestTraversal:
    def test_upstream_is_transitive(self):
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("x", "y")]
        assert set(upstream_nodes(["c"], edges)) == {"a", "b"}

    def test_downstream_is_transitive(self):
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("a", "d", "system_prompt")]
        assert set(downstream_nodes(["a"], edges)) == {"b", "c", "d"}


# ---- resolve_scope() ----


class TestResolveScope:
    def _graph(self) -> GraphSpec:
        # t1 -> llm1 -> llm2 ; t2 standalone
        return GraphSpec(
            nodes=[
                NodeSpec(id="t1", type="text", data={"text": "hi"}),
                NodeSpec(id="llm1", type="llm"),
                NodeSpec(id="llm2", type="llm"),
                NodeSpec(id="t2", type="text"),
            ],
            edges=[_edge("t1", "llm1"), _edge("llm1", "llm2")],
        )

    def test_full_scope_is_every_node(self):
        selected = resolve_scope(self._graph(), RunScope.FULL)
        assert [n.id for n in selected] == ["t1", "llm1", "llm2", "t2"]

    def test_single_scope_includes_upstream(self):
        selected = resolve_scope(self._graph(), "SINGLE", ["llm2"])
        assert [n.id for n in selected] == ["t1", "llm1", "llm2"]

    def test_partial_scope_is_exact(self):
        selected = resolve_scope(self._graph(), RunScope.PARTIAL, ["llm2", "t2"])
        assert [n.id for n in selected] == ["llm2", "t2"]

    def test_node_ids_required(self):
        with pytest.raises(ValidationError, match="nodeIds are required"):
            resolve_scope(self._graph(), RunScope.SINGLE, [])

    def test_unknown_node_ids(self):
        with pytest.raises(ValidationError, match="Unknown node IDs"):
            resolve_scope(self._graph(), RunScope.PARTIAL, ["nope"])

    def test_bad_scope_value(self):
        with pytest.raises(ValueError):
            resolve_scope(self._graph(), "EVERYTHING")
