"""
nodeflow - validate, schedule and run node-based media/LLM workflows.

    from nodeflow import GraphSpec, WorkflowExecutor

    graph = GraphSpec.model_validate(editor_json)
    result = await WorkflowExecutor().execute(graph)
"""

from nodeflow.errors import (
    ExternalJobError,
    InternalSchedulingError,
    JobTimeoutError,
    MissingInput,
    NodeflowError,
    UnknownNodeKind,
    ValidationError,
)
from nodeflow.graph import EdgeSpec, GraphSpec, NodeKind, NodeSpec, WorkflowExecutor
from nodeflow.schemas.run import RunRequest, RunResult, RunScope, RunStatus

__version__ = "0.1.0"

__all__ = [
    "GraphSpec",
    "NodeSpec",
    "EdgeSpec",
    "NodeKind",
    "WorkflowExecutor",
    "RunRequest",
    "RunResult",
    "RunScope",
    "RunStatus",
    "NodeflowError",
    "ValidationError",
    "MissingInput",
    "ExternalJobError",
    "JobTimeoutError",
    "InternalSchedulingError",
    "UnknownNodeKind",
]
