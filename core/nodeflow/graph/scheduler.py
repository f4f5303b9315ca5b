"""
Scheduler - Turns a node subset into layers that can run concurrently.

Layering is Kahn's algorithm restricted to the chosen nodes: edges whose
endpoints are not both in the subset are ignored. Every node in a layer has
all of its in-subset dependencies in earlier layers, so a layer can be run
with ``asyncio.gather`` once the previous one has finished.

Scope resolution decides which subset is handed to the scheduler:

- FULL:    every node in the graph
- SINGLE:  the named nodes plus all transitive upstream dependencies
- PARTIAL: exactly the named nodes
"""

from collections import deque
from collections.abc import Iterable, Sequence

from nodeflow.errors import InternalSchedulingError, ValidationError
from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.node import NodeSpec
from nodeflow.schemas.run import RunScope


def layer(nodes: Sequence[NodeSpec], edges: Iterable[EdgeSpec]) -> list[list[str]]:
    """
    Compute execution layers with Kahn's algorithm.

    Layer 0 keeps the order of ``nodes``; later layers keep the order in which
    their nodes were released. Order inside a layer carries no meaning for
    execution.

    Raises:
        InternalSchedulingError: if some nodes never reach in-degree zero
    """
    node_ids = [n.id for n in nodes]
    members = set(node_ids)
    relevant = [e for e in edges if e.source in members and e.target in members]

    in_degree = dict.fromkeys(node_ids, 0)
    successors: dict[str, list[str]] = {}
    for edge in relevant:
        in_degree[edge.target] += 1
        successors.setdefault(edge.source, []).append(edge.target)

    layers: list[list[str]] = []
    current = [node_id for node_id in node_ids if in_degree[node_id] == 0]
    while current:
        layers.append(current)
        next_layer: list[str] = []
        for node_id in current:
            for target in successors.get(node_id, ()):
                in_degree[target] -= 1
                if in_degree[target] == 0 and target not in next_layer:
                    next_layer.append(target)
        current = next_layer

    scheduled = sum(len(group) for group in layers)
    if scheduled != len(node_ids):
        placed = {node_id for group in layers for node_id in group}
        unscheduled = [node_id for node_id in node_ids if node_id not in placed]
        raise InternalSchedulingError(
            f"Scheduled {scheduled} of {len(node_ids)} nodes; "
            f"cycle among {unscheduled}",
            unscheduled=unscheduled,
        )
    return layers


def is_valid_dag(nodes: Sequence[NodeSpec], edges: Iterable[EdgeSpec]) -> bool:
    """True if every node can be layered."""
    try:
        layer(nodes, edges)
    except InternalSchedulingError:
        return False
    return True


def upstream_nodes(node_ids: Iterable[str], edges: Iterable[EdgeSpec]) -> list[str]:
    """All transitive sources of ``node_ids``, in BFS discovery order."""
    return _walk(node_ids, edges, backward=True)


def downstream_nodes(node_ids: Iterable[str], edges: Iterable[EdgeSpec]) -> list[str]:
    """All transitive targets of ``node_ids``, in BFS discovery order."""
    return _walk(node_ids, edges, backward=False)


def _walk(start: Iterable[str], edges: Iterable[EdgeSpec], backward: bool) -> list[str]:
    neighbours: dict[str, list[str]] = {}
    for edge in edges:
        src, dst = (edge.target, edge.source) if backward else (edge.source, edge.target)
        neighbours.setdefault(src, []).append(dst)

    start_ids = list(start)
    found: list[str] = []
    visited = set(start_ids)
    queue = deque(start_ids)
    while queue:
        current = queue.popleft()
        for nxt in neighbours.get(current, ()):
            if nxt not in visited:
                visited.add(nxt)
                found.append(nxt)
                queue.append(nxt)
    return found


def resolve_scope(
    graph: GraphSpec,
    scope: RunScope | str,
    node_ids: Sequence[str] | None = None,
) -> list[NodeSpec]:
    """
    Pick the nodes that take part in a run.

    The result keeps graph order so layer 0 is deterministic.

    Raises:
        ValidationError: if node_ids is missing for a non-FULL scope or names
            nodes that are not in the graph
    """
    scope = RunScope(scope)
    if scope == RunScope.FULL:
        return list(graph.nodes)

    if not node_ids:
        raise ValidationError(f"nodeIds are required for {scope} scope")

    known = {n.id for n in graph.nodes}
    unknown = [node_id for node_id in node_ids if node_id not in known]
    if unknown:
        raise ValidationError(f"Unknown node IDs: {unknown}")

    selected = set(node_ids)
    if scope == RunScope.SINGLE:
        selected.update(upstream_nodes(node_ids, graph.edges))

    return [n for n in graph.nodes if n.id in selected]
