"""
Run Schema - A complete execution of a workflow graph.

A Run owns one NodeResult per executed node. Both are created in the RUNNING
state and sealed exactly once; a sealed record is never changed again.

NodeOutcome is what a node task hands back to the orchestrator, and also the
per-node entry of the run response.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from nodeflow.graph.edge import GraphSpec


class RunScope(StrEnum):
    """Which nodes take part in a run."""

    FULL = "FULL"
    PARTIAL = "PARTIAL"
    SINGLE = "SINGLE"


class RunStatus(StrEnum):
    """Status of a run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"  # at least one node succeeded and at least one failed


class NodeResultStatus(StrEnum):
    """Status of one node within a run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def _now() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class RecordSealedError(RuntimeError):
    """A sealed Run or NodeResult was asked to change."""

    pass


class Run(BaseModel):
    """
    A single execution of a workflow.

    Created RUNNING at run start and sealed with a terminal status at run end.
    """

    id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex}")
    workflow_id: str
    scope: RunScope
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error: str | None = None

    model_config = {"extra": "allow"}

    @property
    def is_sealed(self) -> bool:
        return self.status != RunStatus.RUNNING

    def seal(self, status: RunStatus, error: str | None = None) -> None:
        """Finalize status and timing. Allowed exactly once."""
        if self.is_sealed:
            raise RecordSealedError(f"Run {self.id} already sealed as {self.status}")
        if status == RunStatus.RUNNING:
            raise ValueError("A run cannot be sealed as RUNNING")
        self.completed_at = _now()
        self.duration_ms = _elapsed_ms(self.started_at, self.completed_at)
        self.status = status
        self.error = error


class NodeResult(BaseModel):
    """The durable record of one node's execution within a run."""

    id: str = Field(default_factory=lambda: f"nr_{uuid.uuid4().hex}")
    run_id: str
    node_id: str
    node_type: str
    status: NodeResultStatus = NodeResultStatus.RUNNING
    input: dict[str, Any] | None = None
    output: Any = None
    error: str | None = None
    started_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    duration_ms: int | None = None

    model_config = {"extra": "allow"}

    @property
    def is_final(self) -> bool:
        return self.status != NodeResultStatus.RUNNING

    def finalize(
        self,
        status: NodeResultStatus,
        input: dict[str, Any] | None = None,
        output: Any = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Record the terminal state. Allowed exactly once."""
        if self.is_final:
            raise RecordSealedError(
                f"NodeResult for {self.node_id} in {self.run_id} already {self.status}"
            )
        if status == NodeResultStatus.RUNNING:
            raise ValueError("A node result cannot be finalized as RUNNING")
        self.completed_at = _now()
        self.duration_ms = (
            duration_ms
            if duration_ms is not None
            else _elapsed_ms(self.started_at, self.completed_at)
        )
        self.status = status
        self.input = input
        self.output = output
        self.error = error


class NodeOutcome(BaseModel):
    """What a node task returns to the orchestrator, and the per-node response entry."""

    node_id: str = Field(alias="nodeId")
    node_type: str = Field(default="", alias="nodeType")
    status: NodeResultStatus
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: str | None = None
    duration_ms: int = Field(default=0, alias="duration")

    model_config = {"populate_by_name": True}

    @property
    def succeeded(self) -> bool:
        return self.status == NodeResultStatus.SUCCESS


class RunRequest(BaseModel):
    """A request to run (part of) a workflow graph."""

    scope: RunScope = RunScope.FULL
    node_ids: list[str] | None = Field(default=None, alias="nodeIds")

    model_config = {"populate_by_name": True}


class RunResult(BaseModel):
    """Run response: aggregate status plus every attempted node."""

    run_id: str = Field(alias="runId")
    status: RunStatus
    duration_ms: int = Field(default=0, alias="duration")
    results: list[NodeOutcome] = Field(default_factory=list)
    layers: list[list[str]] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def get(self, node_id: str) -> NodeOutcome | None:
        for outcome in self.results:
            if outcome.node_id == node_id:
                return outcome
        return None

    def to_response(self) -> dict[str, Any]:
        """Serialise in the wire shape (camelCase, no input snapshots)."""
        return {
            "runId": self.run_id,
            "status": self.status.value,
            "duration": self.duration_ms,
            "results": [
                outcome.model_dump(
                    by_alias=True,
                    exclude={"input", "node_type"},
                    exclude_none=True,
                    mode="json",
                )
                for outcome in self.results
            ],
        }

    def apply_to(self, graph: GraphSpec) -> GraphSpec:
        """
        Return a copy of ``graph`` with each executed node's status/output/error
        written into its data. The original graph is left untouched.
        """
        updated = graph.model_copy(deep=True)
        for node in updated.nodes:
            outcome = self.get(node.id)
            if outcome is None:
                continue
            if outcome.succeeded:
                node.data["status"] = "success"
                node.data["output"] = outcome.output
                node.data.pop("error", None)
            else:
                node.data["status"] = "error"
                node.data["error"] = outcome.error
        return updated


def aggregate_status(outcomes: list[NodeOutcome]) -> RunStatus:
    """SUCCESS if every node succeeded, PARTIAL if mixed, FAILED otherwise."""
    succeeded = sum(1 for o in outcomes if o.succeeded)
    if outcomes and succeeded == len(outcomes):
        return RunStatus.SUCCESS
    if succeeded:
        return RunStatus.PARTIAL
    return RunStatus.FAILED
