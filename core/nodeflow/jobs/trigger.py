"""
Trigger.dev job backend.

Uses the v3 REST API:
- ``POST {api_url}/api/v1/tasks/{task_id}/trigger`` with ``{"payload": ...}``
- ``GET  {api_url}/api/v3/runs/{run_id}`` for status and output

Authenticated with the project's secret key (TRIGGER_SECRET_KEY).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from nodeflow.config import DEFAULT_JOB_BACKEND_URL
from nodeflow.errors import ExternalJobError
from nodeflow.jobs.backend import JobBackend, JobHandle, JobState, JobStatus

logger = logging.getLogger(__name__)

STATUS_MAP: dict[str, JobStatus] = {
    "PENDING_VERSION": JobStatus.PENDING,
    "WAITING_FOR_DEPLOY": JobStatus.PENDING,
    "DELAYED": JobStatus.PENDING,
    "QUEUED": JobStatus.PENDING,
    "DEQUEUED": JobStatus.RUNNING,
    "EXECUTING": JobStatus.RUNNING,
    "REATTEMPTING": JobStatus.RUNNING,
    "FROZEN": JobStatus.RUNNING,
    "WAITING": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETED,
    "CANCELED": JobStatus.CANCELED,
    "EXPIRED": JobStatus.CANCELED,
    "FAILED": JobStatus.FAILED,
    "CRASHED": JobStatus.FAILED,
    "INTERRUPTED": JobStatus.FAILED,
    "SYSTEM_FAILURE": JobStatus.FAILED,
    "TIMED_OUT": JobStatus.TIMED_OUT,
}


class TriggerJobBackend(JobBackend):
    """
    JobBackend over the Trigger.dev REST API.

    Example:
        backend = TriggerJobBackend(secret_key=os.environ["TRIGGER_SECRET_KEY"])
        handle = await backend.submit("llm-execution", payload)
        state = await backend.poll(handle)
    """

    def __init__(
        self,
        secret_key: str,
        api_url: str = DEFAULT_JOB_BACKEND_URL,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 10.0,
    ):
        if not secret_key:
            raise ValueError("Trigger.dev secret key required. Set TRIGGER_SECRET_KEY.")
        self.api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._headers = {
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        }

    async def submit(self, kind: str, payload: dict[str, Any]) -> JobHandle:
        response = await self._client.post(
            f"{self.api_url}/api/v1/tasks/{kind}/trigger",
            json={"payload": payload},
            headers=self._headers,
        )
        body = self._handle_response(response, f"trigger {kind}")
        run_id = body.get("id")
        if not run_id:
            raise ExternalJobError(f"Job backend returned no run id for {kind}")
        logger.debug(f"Triggered {kind} as {run_id}")
        return JobHandle(id=run_id, kind=kind)

    async def poll(self, handle: JobHandle) -> JobState:
        response = await self._client.get(
            f"{self.api_url}/api/v3/runs/{handle.id}", headers=self._headers
        )
        body = self._handle_response(response, f"poll {handle.id}")
        raw_status = str(body.get("status", ""))
        status = STATUS_MAP.get(raw_status)
        if status is None:
            logger.debug(
                f"Unrecognised run status {raw_status!r} for {handle.id}, treating as running"
            )
            status = JobStatus.RUNNING

        output = body.get("output")
        return JobState(
            status=status,
            output=output if isinstance(output, dict) else None,
            error=_error_message(body.get("error")),
            raw_status=raw_status,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _handle_response(response: httpx.Response, action: str) -> dict[str, Any]:
        if response.status_code == 401:
            raise ExternalJobError("Invalid job backend secret key")
        if response.status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = None
            detail = (
                error_body.get("error", response.text)
                if isinstance(error_body, dict)
                else response.text
            )
            raise ExternalJobError(
                f"Job backend error on {action} (HTTP {response.status_code}): {detail}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalJobError(
                f"Job backend returned a non-JSON response on {action}: {response.text[:200]}"
            ) from e
        if not isinstance(body, dict):
            raise ExternalJobError(
                f"Job backend returned an unexpected {type(body).__name__} on {action}"
            )
        return body


def _error_message(error: Any) -> str | None:
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("message") or error.get("name") or str(error)
    return str(error)
