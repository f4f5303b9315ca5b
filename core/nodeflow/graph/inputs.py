"""
Input Resolver - Builds a node's input map from its incoming edges.

For each edge into the node the value comes from, in order of preference:

1. the source's result in the current run, if it succeeded
2. nothing, if the source failed in the current run (no stale fallback)
3. the source's persisted ``data["output"]`` if the source did not run

Fan-in handles collect non-empty string values into a list in edge order.
A required handle whose only source failed in this run raises MissingInput.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from nodeflow.errors import MissingInput
from nodeflow.graph.edge import EdgeSpec
from nodeflow.graph.node import NODE_CATALOG, NodeSpec
from nodeflow.schemas.run import NodeOutcome

logger = logging.getLogger(__name__)

_UNSET = object()
_FAILED = object()


def resolve_inputs(
    node_id: str,
    nodes: Sequence[NodeSpec],
    edges: Iterable[EdgeSpec],
    completed_results: Mapping[str, NodeOutcome],
    use_persisted_outputs: bool = True,
) -> dict[str, Any]:
    """
    Resolve the input values for ``node_id``.

    Args:
        node_id: Node whose inputs are wanted
        nodes: All graph nodes (sources outside the run included)
        edges: All graph edges
        completed_results: Outcomes already produced in this run, by node id
        use_persisted_outputs: Fall back to ``data["output"]`` for sources
            that did not run in this run

    Returns:
        Dict of target handle -> value (lists for fan-in handles)

    Raises:
        MissingInput: a required handle is fed only by nodes that failed in this run
    """
    by_id = {n.id: n for n in nodes}
    target = by_id.get(node_id)
    kind_spec = NODE_CATALOG.get(target.type) if target is not None else None

    inputs: dict[str, Any] = {}
    failed_sources: dict[str, list[str]] = {}

    for edge in edges:
        if edge.target != node_id or not edge.target_handle:
            continue
        handle = edge.target_handle
        handle_spec = kind_spec.get_input(handle) if kind_spec else None
        fan_in = bool(handle_spec and handle_spec.fan_in)

        value = _source_value(edge.source, by_id, completed_results, use_persisted_outputs)
        if value is _FAILED:
            failed_sources.setdefault(handle, []).append(edge.source)
            continue
        if value is _UNSET:
            continue

        if fan_in:
            collected = inputs.setdefault(handle, [])
            if isinstance(value, str) and value:
                collected.append(value)
            else:
                logger.debug(
                    f"Skipping non-string value from {edge.source} for fan-in handle {handle}"
                )
        else:
            inputs[handle] = value

    if kind_spec is not None:
        for handle in kind_spec.required_inputs:
            if handle in failed_sources and handle not in inputs:
                upstream = ", ".join(failed_sources[handle])
                raise MissingInput(f"Input '{handle}' unavailable: upstream node {upstream} failed")

    return inputs


def _source_value(
    source_id: str,
    by_id: Mapping[str, NodeSpec],
    completed_results: Mapping[str, NodeOutcome],
    use_persisted_outputs: bool,
) -> Any:
    outcome = completed_results.get(source_id)
    if outcome is not None:
        return outcome.output if outcome.succeeded else _FAILED

    if not use_persisted_outputs:
        return _UNSET
    source = by_id.get(source_id)
    if source is not None and source.has_output:
        return source.output
    return _UNSET
