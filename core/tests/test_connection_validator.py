"""
Tests for the Connection Validator and GraphSpec edge admission.
"""

import itertools

import pytest

from nodeflow.errors import ValidationError
from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.node import NODE_CATALOG, HandleType, NodeKind, NodeSpec
from nodeflow.graph.validator import ConnectionValidator, validate_connection, would_create_cycle


def _node(node_id: str, kind: str) -> NodeSpec:
    return NodeSpec(id=node_id, type=kind)


def _edge(source: str, target: str, target_handle: str, source_handle: str = "output") -> EdgeSpec:
    return EdgeSpec(
        id=f"e_{source}_{target}_{target_handle}",
        source=source,
        source_handle=source_handle,
        target=target,
        target_handle=target_handle,
    )


class TestConnectionRules:
    """Each rule in isolation."""

    def test_valid_text_to_llm(self):
        check = validate_connection(
            _node("t1", "text"), "output", _node("llm1", "llm"), "user_message", []
        )
        assert check.valid
        assert check.reason is None
        assert bool(check) is True

    def test_self_loop_rejected(self):
        llm = _node("llm1", "llm")
        check = validate_connection(llm, "output", llm, "user_message", [])
        assert not check.valid
        assert check.reason == "Cannot connect node to itself"

    def test_unknown_node_type_rejected(self):
        check = validate_connection(
            _node("x", "mystery"), "output", _node("llm1", "llm"), "user_message", []
        )
        assert check.reason == "Unknown node type"

    def test_invalid_source_handle(self):
        check = validate_connection(
            _node("t1", "text"), "nope", _node("llm1", "llm"), "user_message", []
        )
        assert check.reason == "Invalid source handle"

    def test_invalid_target_handle(self):
        check = validate_connection(
            _node("t1", "text"), "output", _node("llm1", "llm"), "nope", []
        )
        assert check.reason == "Invalid target handle"

    def test_type_mismatch_image_to_text(self):
        check = validate_connection(
            _node("img", "uploadImage"), "output", _node("llm1", "llm"), "user_message", []
        )
        assert not check.valid
        assert check.reason == "Type mismatch: cannot connect image to text"

    def test_upload_video_feeds_extract_frame(self):
        check = validate_connection(
            _node("vid", "uploadVideo"), "output", _node("ef", "extractFrame"), "video_url", []
        )
        assert check.valid

    def test_single_input_per_handle(self):
        existing = [_edge("t1", "llm1", "user_message")]
        check = validate_connection(
            _node("t2", "text"), "output", _node("llm1", "llm"), "user_message", existing
        )
        assert check.reason == "Input handle already has a connection"

    def test_fan_in_handle_accepts_many(self):
        existing = [_edge("img1", "llm1", "images")]
        check = validate_connection(
            _node("img2", "uploadImage"), "output", _node("llm1", "llm"), "images", existing
        )
        assert check.valid

    def test_cycle_rejected(self):
        existing = [
            _edge("a", "b", "user_message"),
            _edge("b", "c", "user_message"),
        ]
        check = validate_connection(
            _node("c", "llm"), "output", _node("a", "llm"), "user_message", existing
        )
        assert check.reason == "Connection would create a cycle"

    def test_rules_checked_in_order(self):
        """A self-loop on a bad handle reports the self-loop."""
        llm = _node("llm1", "llm")
        check = validate_connection(llm, "bogus", llm, "bogus", [])
        assert check.reason == "Cannot connect node to itself"


class TestTypeCompatibility:
    """Image outputs never reach text inputs, whatever the node kinds."""

    def test_image_to_text_rejected_for_every_kind_pair(self):
        image_sources = [
            kind for kind, spec in NODE_CATALOG.items()
            if any(h.type == HandleType.IMAGE for h in spec.outputs)
        ]
        text_targets = [
            (kind, handle.id)
            for kind, spec in NODE_CATALOG.items()
            for handle in spec.inputs
            if handle.type == HandleType.TEXT
        ]
        assert image_sources and text_targets

        for source_kind, (target_kind, handle) in itertools.product(image_sources, text_targets):
            check = validate_connection(
                _node("src", source_kind), "output", _node("dst", target_kind), handle, []
            )
            assert not check.valid, f"{source_kind} -> {target_kind}.{handle} was admitted"
            assert check.reason.startswith("Type mismatch")

    def test_any_handle_accepts_everything(self):
        from nodeflow.graph.node import HandleSpec, NodeKindSpec

        catalog = dict(NODE_CATALOG)
        catalog["sink"] = NodeKindSpec(
            kind=NodeKind.TEXT,
            label="Sink",
            inputs=(HandleSpec("in", HandleType.ANY, fan_in=True),),
        )
        validator = ConnectionValidator(catalog)
        for source_kind in (NodeKind.TEXT, NodeKind.UPLOAD_IMAGE, NodeKind.UPLOAD_VIDEO):
            check = validator.validate(
                _node("src", source_kind), "output", _node("dst", "sink"), "in", []
            )
            assert check.valid

    def test_allowed_source_kinds_message(self):
        from nodeflow.graph.node import HandleSpec, NodeKindSpec

        catalog = dict(NODE_CATALOG)
        catalog["videoMaker"] = NodeKindSpec(
            kind=NodeKind.UPLOAD_VIDEO,
            label="Video Maker",
            outputs=(HandleSpec("output", HandleType.VIDEO),),
        )
        validator = ConnectionValidator(catalog)
        check = validator.validate(
            _node("vm", "videoMaker"), "output", _node("ef", "extractFrame"), "video_url", []
        )
        assert not check.valid
        assert check.reason == "Extract Frame node only accepts input from Upload Video node"


class TestWouldCreateCycle:
    def test_no_edges(self):
        assert would_create_cycle("a", "b", []) is False

    def test_indirect_path(self):
        edges = [_edge("b", "c", "user_message"), _edge("c", "a", "user_message")]
        assert would_create_cycle("a", "b", edges) is True

    def test_diamond_is_not_a_cycle(self):
        edges = [
            _edge("a", "b", "user_message"),
            _edge("a", "c", "user_message"),
            _edge("b", "d", "user_message"),
        ]
        assert would_create_cycle("c", "d", edges) is False


class TestGraphSpecConnect:
    """GraphSpec only admits edges through the validator."""

    def _graph(self) -> GraphSpec:
        return GraphSpec(
            nodes=[
                NodeSpec(id="t1", type="text", data={"text": "hi"}),
                NodeSpec(id="img1", type="uploadImage", data={"imageUrl": "https://x/a.png"}),
                NodeSpec(id="llm1", type="llm"),
                NodeSpec(id="llm2", type="llm"),
            ]
        )

    def test_connect_appends_edge(self):
        graph = self._graph()
        edge = graph.connect("t1", "output", "llm1", "user_message")
        assert graph.edges == [edge]
        assert edge.target_handle == "user_message"

    def test_connect_rejects_invalid(self):
        graph = self._graph()
        with pytest.raises(ValidationError, match="Type mismatch"):
            graph.connect("img1", "output", "llm1", "user_message")
        assert graph.edges == []

    def test_connect_rejects_unknown_node(self):
        graph = self._graph()
        with pytest.raises(ValidationError, match="Unknown node 'ghost'"):
            graph.connect("ghost", "output", "llm1", "user_message")

    def test_connect_rejects_cycle(self):
        graph = self._graph()
        graph.connect("llm1", "output", "llm2", "user_message")
        with pytest.raises(ValidationError, match="cycle"):
            graph.connect("llm2", "output", "llm1", "user_message")

    def test_validate_replays_edges(self):
        graph = GraphSpec.model_validate(
            {
                "nodes": [
                    {"id": "a", "type": "llm"},
                    {"id": "b", "type": "llm"},
                ],
                "edges": [
                    {"id": "e1", "source": "a", "sourceHandle": "output",
                     "target": "b", "targetHandle": "user_message"},
                    {"id": "e2", "source": "b", "sourceHandle": "output",
                     "target": "a", "targetHandle": "user_message"},
                    {"id": "e3", "source": "a", "target": "ghost",
                     "targetHandle": "user_message"},
                ],
            }
        )
        errors = graph.validate()
        assert errors == [
            "Edge 'e2': Connection would create a cycle",
            "Edge 'e3' references missing target 'ghost'",
        ]

    def test_validate_duplicate_ids(self):
        graph = GraphSpec(
            nodes=[NodeSpec(id="a", type="text"), NodeSpec(id="a", type="text")]
        )
        assert graph.validate() == ["Duplicate node ID: 'a'"]

    def test_editor_round_trip_keeps_camel_case(self):
        graph = self._graph()
        graph.connect("t1", "output", "llm1", "user_message", edge_id="e1")
        dumped = graph.to_editor_dict()
        assert dumped["edges"][0]["sourceHandle"] == "output"
        assert dumped["edges"][0]["targetHandle"] == "user_message"

    def test_detect_fan_in_handles(self):
        graph = self._graph()
        graph.nodes.append(NodeSpec(id="img2", type="uploadImage"))
        graph.connect("img1", "output", "llm1", "images")
        graph.connect("img2", "output", "llm1", "images")
        assert graph.detect_fan_in_handles() == {("llm1", "images"): ["img1", "img2"]}
