"""RunRecorder: turns run progress into durable Run/NodeResult records.

Owned by the run orchestrator, which is its only caller. Node tasks never see
the recorder; they hand their NodeOutcome back and the orchestrator records it
here, so every write for a run comes from one place.

Usage::

    recorder = RunRecorder(store)
    run = await recorder.start_run(workflow_id="wf_1", scope=RunScope.FULL)
    await recorder.start_nodes(layer_nodes)
    await recorder.finish_node(outcome)
    await recorder.finish_run(RunStatus.SUCCESS)

Store errors propagate; the orchestrator decides what they mean for the run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from nodeflow.schemas.run import (
    NodeOutcome,
    NodeResult,
    Run,
    RunScope,
    RunStatus,
)
from nodeflow.storage.run_store import RunStore

if TYPE_CHECKING:
    from nodeflow.graph.node import NodeSpec

logger = logging.getLogger(__name__)


class RunRecorder:
    """Records one run at a time against a RunStore."""

    def __init__(self, store: RunStore) -> None:
        self._store = store
        self._run: Run | None = None
        self._node_results: dict[str, NodeResult] = {}

    @property
    def run(self) -> Run:
        if self._run is None:
            raise RuntimeError("No run started")
        return self._run

    @property
    def node_results(self) -> dict[str, NodeResult]:
        return dict(self._node_results)

    async def start_run(self, workflow_id: str, scope: RunScope) -> Run:
        """Create the RUNNING run record. Failure here means no run exists."""
        run = Run(workflow_id=workflow_id, scope=scope)
        await self._store.create_run(run)
        self._run = run
        self._node_results = {}
        logger.debug(f"Run {run.id} created for workflow {workflow_id}")
        return run

    async def start_nodes(self, nodes: Iterable[NodeSpec]) -> list[NodeResult]:
        """Create RUNNING node results for a layer before any of its nodes run."""
        created = []
        for node in nodes:
            result = NodeResult(run_id=self.run.id, node_id=node.id, node_type=node.type)
            await self._store.create_node_result(result)
            self._node_results[node.id] = result
            created.append(result)
        return created

    async def finish_node(self, outcome: NodeOutcome) -> NodeResult:
        """Seal a node's result from the outcome its task returned."""
        result = self._node_results.get(outcome.node_id)
        if result is None:
            raise KeyError(f"Node {outcome.node_id} was not started in run {self.run.id}")
        result.finalize(
            status=outcome.status,
            input=outcome.input,
            output=outcome.output if outcome.succeeded else None,
            error=outcome.error,
            duration_ms=outcome.duration_ms,
        )
        await self._store.update_node_result(result)
        return result

    async def finish_run(self, status: RunStatus, error: str | None = None) -> Run:
        """Seal the run with its terminal status."""
        run = self.run
        run.seal(status, error=error)
        await self._store.update_run(run)
        logger.debug(f"Run {run.id} sealed as {status}")
        return run
