"""Graph structures: nodes, edges, validation, scheduling and execution."""

from nodeflow.graph.node import (
    NODE_CATALOG,
    HandleSpec,
    HandleType,
    NodeKind,
    NodeKindSpec,
    NodeSpec,
    NodeStatus,
)
from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.validator import (
    ConnectionCheck,
    ConnectionValidator,
    validate_connection,
    would_create_cycle,
)
from nodeflow.graph.scheduler import layer, resolve_scope, upstream_nodes
from nodeflow.graph.inputs import resolve_inputs
from nodeflow.graph.node_executors import (
    ExecutorRegistry,
    NodeContext,
    NodeExecutor,
    default_registry,
)
from nodeflow.graph.executor import WorkflowExecutor

__all__ = [
    # Node catalog
    "NodeKind",
    "HandleType",
    "NodeStatus",
    "HandleSpec",
    "NodeKindSpec",
    "NODE_CATALOG",
    "NodeSpec",
    # Edges
    "EdgeSpec",
    "GraphSpec",
    # Validation
    "ConnectionCheck",
    "ConnectionValidator",
    "validate_connection",
    "would_create_cycle",
    # Scheduling
    "layer",
    "resolve_scope",
    "upstream_nodes",
    "resolve_inputs",
    # Execution
    "NodeContext",
    "NodeExecutor",
    "ExecutorRegistry",
    "default_registry",
    "WorkflowExecutor",
]
