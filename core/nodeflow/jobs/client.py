"""
External Job Client - Runs compute jobs remotely, or in-process as a fallback.

Two strategies share one contract, ``run(kind, payload) -> dict``:

- RemoteJobStrategy submits to a JobBackend and polls until a terminal state,
  bounded by a total timeout.
- LocalJobStrategy calls an in-process handler for the same job kind and
  returns the same output shape.

JobClient prefers the remote strategy when one is configured and falls back
to the local one on any backend failure, including timeouts, unreachable
hosts and malformed responses.
Timed-out remote jobs are not cancelled.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import httpx

from nodeflow.errors import ExternalJobError, JobTimeoutError, NodeflowError
from nodeflow.jobs.backend import JobBackend, JobStatus

if TYPE_CHECKING:
    from nodeflow.config import EngineConfig
    from nodeflow.llm.provider import LLMProvider
    from nodeflow.media.transloadit import MediaProcessor

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], Any]


class RemoteJobStrategy:
    """Submit-and-poll against a JobBackend."""

    def __init__(
        self,
        backend: JobBackend,
        poll_interval: float = 1.0,
        timeout: float = 10.0,
    ):
        self.backend = backend
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def run(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(self._submit_and_poll(kind, payload), self.timeout)
        except TimeoutError as e:
            raise JobTimeoutError(f"{kind} job timed out after {self.timeout:g}s") from e

    async def _submit_and_poll(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        handle = await self.backend.submit(kind, payload)
        while True:
            state = await self.backend.poll(handle)
            if state.status == JobStatus.COMPLETED:
                return state.output or {}
            if state.status.is_terminal:
                raise ExternalJobError(
                    state.error
                    or f"{kind} job failed with status: {state.raw_status or state.status}"
                )
            await asyncio.sleep(self.poll_interval)


class LocalJobStrategy:
    """Run jobs in-process; sync handlers run on a worker thread."""

    def __init__(self, handlers: Mapping[str, JobHandler]):
        self.handlers = dict(handlers)

    async def run(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        handler = self.handlers.get(kind)
        if handler is None:
            raise ExternalJobError(f"No local handler for job kind '{kind}'")

        try:
            if inspect.iscoroutinefunction(handler):
                return await handler(payload)
            return await asyncio.to_thread(handler, payload)
        except NodeflowError:
            raise
        except Exception as e:
            # Provider exceptions (litellm, httpx...) surface with their message intact
            raise ExternalJobError(str(e) or type(e).__name__) from e


class JobClient:
    """
    Runs a job of a given kind and returns its output dict.

    Example:
        client = JobClient(local=LocalJobStrategy(handlers), remote=RemoteJobStrategy(backend))
        output = await client.run_job("llm-execution", payload)
    """

    def __init__(self, local: LocalJobStrategy, remote: RemoteJobStrategy | None = None):
        self.local = local
        self.remote = remote

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None

    async def run_job(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        if self.remote is not None:
            try:
                output = await self.remote.run(kind, payload)
                logger.info(
                    f"Job {kind} completed on backend",
                    extra={"event": "job_completed", "job_kind": kind,
                           "duration_ms": _ms_since(start)},
                )
                return output
            except JobTimeoutError as e:
                logger.warning(
                    f"{e}; running in-process (remote job left running)",
                    extra={"event": "job_fallback", "job_kind": kind},
                )
            except (ExternalJobError, httpx.HTTPError, OSError) as e:
                logger.warning(
                    f"Job backend failed for {kind}, running in-process: {e}",
                    extra={"event": "job_fallback", "job_kind": kind},
                )
            except Exception as e:
                # CancelledError is a BaseException and still propagates
                logger.warning(
                    f"Job backend raised {type(e).__name__} for {kind}, running in-process: {e}",
                    exc_info=True,
                    extra={"event": "job_fallback", "job_kind": kind},
                )

        output = await self.local.run(kind, payload)
        logger.info(
            f"Job {kind} completed in-process",
            extra={"event": "job_completed", "job_kind": kind, "duration_ms": _ms_since(start)},
        )
        return output

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.backend.aclose()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        llm: LLMProvider | None = None,
        media: MediaProcessor | None = None,
        backend: JobBackend | None = None,
    ) -> JobClient:
        """
        Build a client from EngineConfig.

        The remote strategy is used only when a backend key is configured and
        ``skip_job_backend`` is off; an explicit ``backend`` overrides the key check.
        """
        from nodeflow.jobs.tasks import build_local_handlers

        local = LocalJobStrategy(build_local_handlers(llm=llm, media=media, config=config))

        if backend is None and config.job_backend_enabled:
            from nodeflow.jobs.trigger import TriggerJobBackend

            backend = TriggerJobBackend(
                secret_key=config.job_backend_key or "", api_url=config.job_backend_url
            )
        if backend is None or config.skip_job_backend:
            return cls(local=local)

        remote = RemoteJobStrategy(
            backend,
            poll_interval=config.poll_interval_seconds,
            timeout=config.job_timeout_seconds,
        )
        return cls(local=local, remote=remote)


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
