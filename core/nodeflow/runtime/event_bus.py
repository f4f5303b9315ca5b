"""
Event Bus - Pub/sub for workflow run progress.

The run orchestrator publishes lifecycle events; anything that wants to follow
a run (the HTTP server, a CLI progress printer, tests) subscribes:

- run started / completed / failed
- layer started
- node started / completed / failed

Handlers are async and run concurrently. A failing handler is logged and
never affects the run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"

    # Scheduling
    LAYER_STARTED = "layer_started"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"


@dataclass
class WorkflowEvent:
    """An event emitted while a workflow runs."""

    type: EventType
    workflow_id: str
    run_id: str | None = None
    node_id: str | None = None  # Which node emitted this event
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_workflow: str | None = None
    filter_run: str | None = None
    filter_node: str | None = None


class EventBus:
    """
    Pub/sub event bus for run progress.

    Example:
        bus = EventBus()

        async def on_node_done(event: WorkflowEvent):
            print(f"{event.node_id} finished in run {event.run_id}")

        bus.subscribe(
            event_types=[EventType.NODE_COMPLETED, EventType.NODE_FAILED],
            handler=on_node_done,
        )
        executor = WorkflowExecutor(job_client, event_bus=bus)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[WorkflowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_workflow: str | None = None,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_workflow=filter_workflow,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. True if it existed."""
        if self._subscriptions.pop(subscription_id, None) is not None:
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        handlers = [s.handler for s in self._subscriptions.values() if self._matches(s, event)]
        if handlers:
            await self._execute_handlers(event, handlers)

    def _matches(self, subscription: Subscription, event: WorkflowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_workflow and subscription.filter_workflow != event.workflow_id:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: WorkflowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(
        self, workflow_id: str, run_id: str, scope: str, node_ids: list[str]
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_STARTED,
                workflow_id=workflow_id,
                run_id=run_id,
                data={"scope": scope, "node_ids": node_ids},
            )
        )

    async def emit_run_completed(
        self, workflow_id: str, run_id: str, status: str, duration_ms: int
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_COMPLETED,
                workflow_id=workflow_id,
                run_id=run_id,
                data={"status": status, "duration_ms": duration_ms},
            )
        )

    async def emit_run_failed(self, workflow_id: str, run_id: str, error: str) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_FAILED,
                workflow_id=workflow_id,
                run_id=run_id,
                data={"error": error},
            )
        )

    async def emit_layer_started(
        self, workflow_id: str, run_id: str, index: int, node_ids: list[str]
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.LAYER_STARTED,
                workflow_id=workflow_id,
                run_id=run_id,
                data={"index": index, "node_ids": node_ids},
            )
        )

    async def emit_node_started(
        self, workflow_id: str, run_id: str, node_id: str, node_type: str
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_STARTED,
                workflow_id=workflow_id,
                run_id=run_id,
                node_id=node_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_finished(
        self,
        workflow_id: str,
        run_id: str,
        node_id: str,
        succeeded: bool,
        output: Any = None,
        error: str | None = None,
        duration_ms: int = 0,
    ) -> None:
        """Emit NODE_COMPLETED or NODE_FAILED."""
        data: dict[str, Any] = {"duration_ms": duration_ms}
        if succeeded:
            data["output"] = output
        else:
            data["error"] = error
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_COMPLETED if succeeded else EventType.NODE_FAILED,
                workflow_id=workflow_id,
                run_id=run_id,
                node_id=node_id,
                data=data,
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]
        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: WorkflowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: WorkflowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type], handler=handler, filter_run=run_id, filter_node=node_id
        )
        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)
