"""Run-time services: recording, events and the HTTP server."""

from nodeflow.runtime.event_bus import EventBus, EventType, WorkflowEvent
from nodeflow.runtime.run_recorder import RunRecorder
from nodeflow.runtime.run_server import RunServer, RunServerConfig

__all__ = [
    "EventBus",
    "EventType",
    "WorkflowEvent",
    "RunRecorder",
    "RunServer",
    "RunServerConfig",
]
