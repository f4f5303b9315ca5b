"""
Workflow Executor - Runs a workflow graph, layer by layer.

The executor:
1. Validates the graph and resolves the run scope to a node subset
2. Creates the Run record (RUNNING)
3. Layers the subset topologically
4. Runs each layer's nodes concurrently; every node resolves its inputs from
   the outcomes of earlier layers
5. Records each node's outcome, then seals the Run with an aggregate status

Node tasks only return NodeOutcome values. Every store write happens here,
after the layer's ``asyncio.gather`` returns. A node failure is recorded and
does not stop the run; its dependents see the missing input and fail in turn.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from nodeflow.config import DEFAULT_MODEL, EngineConfig
from nodeflow.errors import InternalSchedulingError, NodeflowError, ValidationError
from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.inputs import resolve_inputs
from nodeflow.graph.node import NodeSpec
from nodeflow.graph.node_executors import ExecutorRegistry, NodeContext, default_registry
from nodeflow.graph.scheduler import layer, resolve_scope
from nodeflow.graph.validator import ConnectionValidator
from nodeflow.jobs.client import JobClient, LocalJobStrategy
from nodeflow.observability import clear_trace_context, get_trace_context, set_trace_context
from nodeflow.runtime.event_bus import EventBus
from nodeflow.runtime.run_recorder import RunRecorder
from nodeflow.schemas.run import (
    NodeOutcome,
    NodeResultStatus,
    RunRequest,
    RunResult,
    RunScope,
    RunStatus,
    aggregate_status,
)
from nodeflow.storage.run_store import InMemoryRunStore, RunStore

logger = logging.getLogger(__name__)

NodeStartCallback = Callable[[str], Awaitable[None] | None]
NodeCompleteCallback = Callable[[str, NodeOutcome], Awaitable[None] | None]


class WorkflowExecutor:
    """
    Executes workflow graphs.

    Example:
        executor = WorkflowExecutor(job_client=JobClient.from_config(config))
        result = await executor.execute(graph, scope=RunScope.FULL)
        graph = result.apply_to(graph)
    """

    def __init__(
        self,
        job_client: JobClient | None = None,
        store: RunStore | None = None,
        registry: ExecutorRegistry | None = None,
        event_bus: EventBus | None = None,
        default_model: str = DEFAULT_MODEL,
        validator: ConnectionValidator | None = None,
        use_persisted_outputs: bool = True,
    ):
        """
        Args:
            job_client: Runs compute jobs; defaults to a client with no handlers
            store: Where Run/NodeResult records go; defaults to in-memory
            registry: Node kind -> executor; defaults to the built-in kinds
            event_bus: Optional progress events
            default_model: Model for LLM nodes that do not pick one
            validator: Connection rules used to validate the graph
            use_persisted_outputs: Feed nodes from upstream ``data["output"]``
                when the upstream node is not part of the run
        """
        self.job_client = job_client or JobClient(local=LocalJobStrategy({}))
        self.store = store or InMemoryRunStore()
        self.registry = registry or default_registry()
        self.event_bus = event_bus
        self.default_model = default_model
        self.validator = validator or ConnectionValidator()
        self.use_persisted_outputs = use_persisted_outputs

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        store: RunStore | None = None,
        event_bus: EventBus | None = None,
        **job_client_kwargs: Any,
    ) -> "WorkflowExecutor":
        """Build an executor with a JobClient and defaults taken from ``config``."""
        return cls(
            job_client=JobClient.from_config(config, **job_client_kwargs),
            store=store,
            event_bus=event_bus,
            default_model=config.default_model,
        )

    async def run(self, graph: GraphSpec, request: RunRequest, **kwargs: Any) -> RunResult:
        """Execute according to a RunRequest."""
        return await self.execute(graph, scope=request.scope, node_ids=request.node_ids, **kwargs)

    async def execute(
        self,
        graph: GraphSpec,
        scope: RunScope | str = RunScope.FULL,
        node_ids: Sequence[str] | None = None,
        workflow_id: str | None = None,
        on_node_start: NodeStartCallback | None = None,
        on_node_complete: NodeCompleteCallback | None = None,
    ) -> RunResult:
        """
        Execute (part of) a workflow graph.

        Args:
            graph: The workflow; it is not modified
            scope: FULL, SINGLE (targets plus upstream) or PARTIAL (exactly node_ids)
            node_ids: Target nodes for SINGLE/PARTIAL
            workflow_id: Id recorded on the Run; defaults to ``graph.id``
            on_node_start: Called with the node id before it runs
            on_node_complete: Called with the node id and its outcome

        Returns:
            RunResult with one outcome per executed node

        Raises:
            ValidationError: the graph is invalid or the selection is empty;
                raised before any run is recorded
            InternalSchedulingError: layering did not place every node; the
                run is sealed FAILED first
        """
        scope = RunScope(scope)
        errors = graph.validate(self.validator)
        if errors:
            raise ValidationError(f"Invalid workflow graph: {'; '.join(errors)}", reasons=errors)

        selected = resolve_scope(graph, scope, node_ids)
        if not selected:
            raise ValidationError("No nodes to execute")

        workflow_id = workflow_id or graph.id
        recorder = RunRecorder(self.store)
        run = await recorder.start_run(workflow_id=workflow_id, scope=scope)

        saved_context = get_trace_context()
        set_trace_context(workflow_id=workflow_id, run_id=run.id)
        try:
            return await self._execute_run(
                graph, scope, selected, recorder, on_node_start, on_node_complete
            )
        finally:
            clear_trace_context()
            if saved_context:
                set_trace_context(**saved_context)

    async def _execute_run(
        self,
        graph: GraphSpec,
        scope: RunScope,
        selected: list[NodeSpec],
        recorder: RunRecorder,
        on_node_start: NodeStartCallback | None,
        on_node_complete: NodeCompleteCallback | None,
    ) -> RunResult:
        run = recorder.run
        logger.info(
            f"Starting {scope} run {run.id} of {run.workflow_id} with {len(selected)} node(s)",
            extra={"event": "run_started"},
        )
        if self.event_bus:
            await self.event_bus.emit_run_started(
                run.workflow_id, run.id, scope.value, [n.id for n in selected]
            )

        try:
            layers = layer(selected, graph.edges)
        except InternalSchedulingError as e:
            logger.error(f"Scheduling failed for run {run.id}: {e}")
            await self._fail_run(recorder, str(e))
            raise

        by_id = {n.id: n for n in selected}
        completed: dict[str, NodeOutcome] = {}
        try:
            for index, layer_ids in enumerate(layers):
                layer_nodes = [by_id[node_id] for node_id in layer_ids]
                logger.debug(f"Layer {index}: {layer_ids}")
                if self.event_bus:
                    await self.event_bus.emit_layer_started(
                        run.workflow_id, run.id, index, layer_ids
                    )

                await recorder.start_nodes(layer_nodes)
                snapshot = dict(completed)
                outcomes = await asyncio.gather(
                    *(
                        self._run_node(node, graph, snapshot, run.id, run.workflow_id,
                                       on_node_start, on_node_complete)
                        for node in layer_nodes
                    )
                )
                for outcome in outcomes:
                    completed[outcome.node_id] = outcome
                    await recorder.finish_node(outcome)
        except Exception as e:
            logger.exception(f"Run {run.id} aborted")
            await self._fail_run(recorder, str(e) or type(e).__name__)
            raise

        ordered = [completed[node_id] for group in layers for node_id in group]
        status = aggregate_status(ordered)
        run = await recorder.finish_run(status)
        failed = sum(1 for o in ordered if not o.succeeded)
        logger.info(
            f"Run {run.id} finished {status}: {len(ordered) - failed} succeeded, "
            f"{failed} failed in {run.duration_ms}ms",
            extra={"event": "run_completed", "duration_ms": run.duration_ms},
        )
        if self.event_bus:
            await self.event_bus.emit_run_completed(
                run.workflow_id, run.id, status.value, run.duration_ms or 0
            )

        return RunResult(
            run_id=run.id,
            status=status,
            duration_ms=run.duration_ms or 0,
            results=ordered,
            layers=layers,
        )

    async def _run_node(
        self,
        node: NodeSpec,
        graph: GraphSpec,
        completed: Mapping[str, NodeOutcome],
        run_id: str,
        workflow_id: str,
        on_node_start: NodeStartCallback | None,
        on_node_complete: NodeCompleteCallback | None,
    ) -> NodeOutcome:
        """Run one node and turn whatever happens into a NodeOutcome. Never raises."""
        set_trace_context(node_id=node.id)
        await _notify(on_node_start, node.id)
        if self.event_bus:
            await self.event_bus.emit_node_started(workflow_id, run_id, node.id, node.type)

        start = time.perf_counter()
        inputs: dict[str, Any] = {}
        try:
            inputs = resolve_inputs(
                node.id, graph.nodes, graph.edges, completed, self.use_persisted_outputs
            )
            executor = self.registry.get(node.type)
            ctx = NodeContext(
                node=node,
                inputs=inputs,
                run_id=run_id,
                job_client=self.job_client,
                default_model=self.default_model,
            )
            output = await executor.execute(ctx)
            outcome = NodeOutcome(
                node_id=node.id,
                node_type=node.type,
                status=NodeResultStatus.SUCCESS,
                input=inputs,
                output=output,
                duration_ms=_ms_since(start),
            )
            logger.info(
                f"✓ {node.id} ({node.type}) succeeded",
                extra={"event": "node_completed", "node_type": node.type,
                       "duration_ms": outcome.duration_ms},
            )
        except NodeflowError as e:
            outcome = self._failed(node, inputs, str(e), start)
            logger.warning(
                f"✗ {node.id} ({node.type}) failed: {e}",
                extra={"event": "node_failed", "node_type": node.type},
            )
        except Exception as e:
            outcome = self._failed(node, inputs, str(e) or type(e).__name__, start)
            logger.exception(
                f"✗ {node.id} ({node.type}) raised unexpectedly",
                extra={"event": "node_failed", "node_type": node.type},
            )

        await _notify(on_node_complete, node.id, outcome)
        if self.event_bus:
            await self.event_bus.emit_node_finished(
                workflow_id,
                run_id,
                node.id,
                outcome.succeeded,
                output=outcome.output,
                error=outcome.error,
                duration_ms=outcome.duration_ms,
            )
        return outcome

    @staticmethod
    def _failed(node: NodeSpec, inputs: dict[str, Any], error: str, start: float) -> NodeOutcome:
        return NodeOutcome(
            node_id=node.id,
            node_type=node.type,
            status=NodeResultStatus.FAILED,
            input=inputs,
            error=error,
            duration_ms=_ms_since(start),
        )

    async def _fail_run(self, recorder: RunRecorder, error: str) -> None:
        run = recorder.run
        if not run.is_sealed:
            await recorder.finish_run(RunStatus.FAILED, error=error)
        if self.event_bus:
            await self.event_bus.emit_run_failed(run.workflow_id, run.id, error)


async def _notify(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Progress callback failed")


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
