"""External job execution: remote backend with in-process fallback."""

from nodeflow.jobs.backend import JobBackend, JobHandle, JobState, JobStatus
from nodeflow.jobs.client import JobClient, LocalJobStrategy, RemoteJobStrategy
from nodeflow.jobs.tasks import (
    CROP_IMAGE_JOB,
    EXTRACT_FRAME_JOB,
    LLM_JOB,
    build_local_handlers,
)
from nodeflow.jobs.trigger import TriggerJobBackend

__all__ = [
    "JobBackend",
    "JobHandle",
    "JobState",
    "JobStatus",
    "JobClient",
    "LocalJobStrategy",
    "RemoteJobStrategy",
    "TriggerJobBackend",
    "build_local_handlers",
    "LLM_JOB",
    "CROP_IMAGE_JOB",
    "EXTRACT_FRAME_JOB",
]
