"""Job backend abstraction - submit a job, then poll it until it finishes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    """Backend-neutral job status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


@dataclass
class JobHandle:
    """Reference to a submitted job."""

    id: str
    kind: str


@dataclass
class JobState:
    """Snapshot of a job as reported by the backend."""

    status: JobStatus
    output: dict[str, Any] | None = None
    error: str | None = None
    raw_status: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class JobBackend(ABC):
    """
    Asynchronous job service that runs long work out of process.

    Implementations translate their own status vocabulary into JobStatus and
    raise ExternalJobError for anything the service rejects.
    """

    @abstractmethod
    async def submit(self, kind: str, payload: dict[str, Any]) -> JobHandle:
        """Start a job of ``kind`` and return its handle."""
        pass

    @abstractmethod
    async def poll(self, handle: JobHandle) -> JobState:
        """Fetch the current state of a job."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None
