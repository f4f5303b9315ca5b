"""
Edge Protocol - How nodes connect in a workflow graph.

Edges carry data from a source node's output handle to a target node's
input handle:

    EdgeSpec(id="e1", source="t1", sourceHandle="output",
             target="llm1", targetHandle="user_message")

Edges are admitted only through the Connection Validator, so the graph stays
acyclic and well-typed after every insertion, not just at execution time.
"""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.errors import ValidationError
from nodeflow.graph.node import NodeSpec
from nodeflow.graph.validator import ConnectionValidator


class EdgeSpec(BaseModel):
    """
    Specification for an edge between two node handles.

    Accepts the editor's camelCase field names (``sourceHandle``,
    ``targetHandle``) as well as snake_case.
    """

    id: str
    source: str = Field(description="Source node ID")
    source_handle: str = Field(default="output", alias="sourceHandle")
    target: str = Field(description="Target node ID")
    target_handle: str = Field(alias="targetHandle")

    model_config = {"extra": "allow", "populate_by_name": True}


class GraphSpec(BaseModel):
    """
    A workflow graph as passed into a run.

    Contains all nodes and edges. The engine treats it as a value: runs work on
    the caller's copy and never add, remove or rewire anything.

    Example:
        graph = GraphSpec(nodes=[
            NodeSpec(id="t1", type="text", data={"text": "hello"}),
            NodeSpec(id="llm1", type="llm"),
        ])
        graph.connect("t1", "output", "llm1", "user_message")
    """

    id: str = "workflow"
    name: str = ""
    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in insertion order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node, in insertion order."""
        return [e for e in self.edges if e.target == node_id]

    def detect_fan_in_handles(self) -> dict[tuple[str, str], list[str]]:
        """
        Find input handles fed by more than one edge.

        Returns:
            Dict mapping (target_node_id, target_handle) -> ordered source ids
        """
        feeds: dict[tuple[str, str], list[str]] = {}
        for edge in self.edges:
            feeds.setdefault((edge.target, edge.target_handle), []).append(edge.source)
        return {key: sources for key, sources in feeds.items() if len(sources) > 1}

    def connect(
        self,
        source: str,
        source_handle: str,
        target: str,
        target_handle: str,
        edge_id: str | None = None,
        validator: ConnectionValidator | None = None,
    ) -> EdgeSpec:
        """
        Validate and append a new edge.

        Raises:
            ValidationError: if a node is unknown or the validator rejects the edge
        """
        source_node = self.get_node(source)
        target_node = self.get_node(target)
        if source_node is None or target_node is None:
            missing = source if source_node is None else target
            raise ValidationError(f"Unknown node '{missing}'")

        check = (validator or ConnectionValidator()).validate(
            source_node, source_handle, target_node, target_handle, self.edges
        )
        if not check.valid:
            raise ValidationError(check.reason or "Invalid connection")

        edge = EdgeSpec(
            id=edge_id or f"edge_{source}_{target}_{uuid.uuid4().hex[:8]}",
            source=source,
            source_handle=source_handle,
            target=target,
            target_handle=target_handle,
        )
        self.edges.append(edge)
        return edge

    def validate(self, validator: ConnectionValidator | None = None) -> list[str]:
        """
        Validate the whole graph structure.

        Replays every edge through the Connection Validator against the edges
        that precede it, so a graph loaded from storage is held to the same
        rules as one built edge by edge.
        """
        validator = validator or ConnectionValidator()
        errors: list[str] = []

        seen_nodes: set[str] = set()
        for node in self.nodes:
            if node.id in seen_nodes:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_nodes.add(node.id)

        seen_edges: set[str] = set()
        admitted: list[EdgeSpec] = []
        for edge in self.edges:
            if edge.id in seen_edges:
                errors.append(f"Duplicate edge ID: '{edge.id}'")
            seen_edges.add(edge.id)

            source_node = self.get_node(edge.source)
            target_node = self.get_node(edge.target)
            if source_node is None:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if target_node is None:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")
            if source_node is None or target_node is None:
                continue

            check = validator.validate(
                source_node, edge.source_handle, target_node, edge.target_handle, admitted
            )
            if not check.valid:
                errors.append(f"Edge '{edge.id}': {check.reason}")
                continue
            admitted.append(edge)

        return errors

    def to_editor_dict(self) -> dict[str, Any]:
        """Serialise with the editor's camelCase edge fields."""
        return self.model_dump(by_alias=True)
