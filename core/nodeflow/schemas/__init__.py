"""Run and node result records."""

from nodeflow.schemas.run import (
    NodeOutcome,
    NodeResult,
    NodeResultStatus,
    Run,
    RunRequest,
    RunResult,
    RunScope,
    RunStatus,
)

__all__ = [
    "Run",
    "RunScope",
    "RunStatus",
    "NodeResult",
    "NodeResultStatus",
    "NodeOutcome",
    "RunRequest",
    "RunResult",
]
