"""
Connection Validator - Decides whether a proposed edge may enter the graph.

Rules are checked in order and the first failure wins:
1. No self-loops
2. Both node kinds and both handle ids must exist in the catalog
3. Handle types must be compatible (target ``any`` accepts everything)
4. Per-handle source restrictions declared in the catalog
5. Single input per handle unless the handle is fan-in
6. The edge must not close a cycle

Everything here is a pure function over the state it is given.
"""

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nodeflow.graph.node import NODE_CATALOG, NodeKindSpec, NodeSpec

if TYPE_CHECKING:
    from nodeflow.graph.edge import EdgeSpec


@dataclass(frozen=True)
class ConnectionCheck:
    """Outcome of validating one proposed edge."""

    valid: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid


VALID = ConnectionCheck(valid=True)


def would_create_cycle(source_id: str, target_id: str, edges: Iterable["EdgeSpec"]) -> bool:
    """True if ``source`` is reachable from ``target`` along existing edges.

    Breadth-first search forward from the target; adding source→target would
    then close a loop.
    """
    successors: dict[str, list[str]] = {}
    for edge in edges:
        successors.setdefault(edge.source, []).append(edge.target)

    visited: set[str] = set()
    queue = deque([target_id])
    while queue:
        current = queue.popleft()
        if current == source_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(successors.get(current, ()))
    return False


class ConnectionValidator:
    """Validates edges against a node catalog.

    The default catalog is the built-in one; a custom catalog can be passed
    for tests or for extra node kinds.
    """

    def __init__(self, catalog: Mapping[str, NodeKindSpec] | None = None):
        self.catalog = catalog if catalog is not None else NODE_CATALOG

    def validate(
        self,
        source_node: NodeSpec,
        source_handle: str | None,
        target_node: NodeSpec,
        target_handle: str | None,
        existing_edges: Iterable["EdgeSpec"],
    ) -> ConnectionCheck:
        if source_node.id == target_node.id:
            return ConnectionCheck(False, "Cannot connect node to itself")

        source_spec = self.catalog.get(source_node.type)
        target_spec = self.catalog.get(target_node.type)
        if source_spec is None or target_spec is None:
            return ConnectionCheck(False, "Unknown node type")

        source_output = source_spec.get_output(source_handle)
        if source_output is None:
            return ConnectionCheck(False, "Invalid source handle")

        target_input = target_spec.get_input(target_handle)
        if target_input is None:
            return ConnectionCheck(False, "Invalid target handle")

        if not target_input.accepts(source_output.type):
            return ConnectionCheck(
                False,
                f"Type mismatch: cannot connect {source_output.type} to {target_input.type}",
            )

        allowed = target_input.allowed_source_kinds
        if allowed is not None and source_node.type not in allowed:
            allowed_labels = ", ".join(
                self.catalog[k].label if k in self.catalog else str(k) for k in allowed
            )
            return ConnectionCheck(
                False,
                f"{target_spec.label} node only accepts input from {allowed_labels} node",
            )

        edges = list(existing_edges)
        if not target_input.fan_in:
            for edge in edges:
                if edge.target == target_node.id and edge.target_handle == target_handle:
                    return ConnectionCheck(False, "Input handle already has a connection")

        if would_create_cycle(source_node.id, target_node.id, edges):
            return ConnectionCheck(False, "Connection would create a cycle")

        return VALID


_default_validator = ConnectionValidator()


def validate_connection(
    source_node: NodeSpec,
    source_handle: str | None,
    target_node: NodeSpec,
    target_handle: str | None,
    existing_edges: Iterable["EdgeSpec"],
) -> ConnectionCheck:
    """Validate one proposed edge against the built-in catalog."""
    return _default_validator.validate(
        source_node, source_handle, target_node, target_handle, existing_edges
    )
