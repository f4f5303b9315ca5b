"""
Run HTTP Server - Exposes workflow runs over HTTP.

Uses aiohttp for a lightweight embedded server that runs within the existing
asyncio loop. Routes:

- ``POST /workflows/{workflow_id}/runs``  body ``{"graph": {...}, "scope": ..., "nodeIds": [...]}``
- ``GET  /runs/{run_id}``                 the Run record and its node results
- ``POST /connections/validate``          body ``{"graph": {...}, "source": ..., "sourceHandle": ...,
                                          "target": ..., "targetHandle": ...}``
- ``GET  /health``
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pydantic
from aiohttp import web

from nodeflow.errors import InternalSchedulingError, ValidationError
from nodeflow.graph.edge import GraphSpec
from nodeflow.schemas.run import RunRequest

if TYPE_CHECKING:
    from nodeflow.graph.executor import WorkflowExecutor

logger = logging.getLogger(__name__)


@dataclass
class RunServerConfig:
    """Configuration for the run HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080


class RunServer:
    """
    Embedded HTTP server in front of a WorkflowExecutor.

    Lifecycle:
        server = RunServer(executor, RunServerConfig(port=8080))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        config: RunServerConfig | None = None,
    ):
        self._executor = executor
        self._config = config or RunServerConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes registered."""
        app = web.Application()
        app.router.add_post("/workflows/{workflow_id}/runs", self._handle_run)
        app.router.add_get("/runs/{run_id}", self._handle_get_run)
        app.router.add_post("/connections/validate", self._handle_validate_connection)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        logger.info(f"Run server started on {self._config.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Run server stopped")

    @property
    def is_running(self) -> bool:
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    async def _handle_run(self, request: web.Request) -> web.Response:
        workflow_id = request.match_info["workflow_id"]
        body = await _read_json(request)
        if isinstance(body, web.Response):
            return body

        try:
            graph = GraphSpec.model_validate(body.get("graph") or {})
            run_request = RunRequest.model_validate(body)
        except pydantic.ValidationError as e:
            return _error(
                f"Invalid request: {e.error_count()} error(s)", 400, details=_details(e)
            )

        try:
            result = await self._executor.run(graph, run_request, workflow_id=workflow_id)
        except ValidationError as e:
            return _error(str(e), 400, reasons=e.reasons)
        except InternalSchedulingError as e:
            logger.error(f"Scheduling failed for workflow {workflow_id}: {e}")
            return _error(str(e), 500)

        return web.json_response(result.to_response())

    async def _handle_get_run(self, request: web.Request) -> web.Response:
        run_id = request.match_info["run_id"]
        try:
            run = await self._executor.store.get_run(run_id)
        except ValueError:
            return _error("Invalid run id", 400)
        if run is None:
            return _error(f"Run {run_id} not found", 404)

        node_results = await self._executor.store.list_node_results(run_id)
        return web.json_response(
            {
                "run": run.model_dump(mode="json"),
                "nodeResults": [r.model_dump(mode="json") for r in node_results],
            }
        )

    async def _handle_validate_connection(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        if isinstance(body, web.Response):
            return body

        try:
            graph = GraphSpec.model_validate(body.get("graph") or {})
        except pydantic.ValidationError as e:
            return _error("Invalid graph", 400, details=_details(e))

        source = graph.get_node(str(body.get("source", "")))
        target = graph.get_node(str(body.get("target", "")))
        if source is None or target is None:
            return web.json_response({"valid": False, "reason": "Unknown node"})

        check = self._executor.validator.validate(
            source,
            body.get("sourceHandle"),
            target,
            body.get("targetHandle"),
            graph.edges,
        )
        return web.json_response({"valid": check.valid, "reason": check.reason})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})


async def _read_json(request: web.Request) -> dict[str, Any] | web.Response:
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError):
        return _error("Request body must be JSON", 400)
    if not isinstance(body, dict):
        return _error("Request body must be a JSON object", 400)
    return body


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


def _details(error: pydantic.ValidationError) -> list[dict[str, Any]]:
    return json.loads(error.json(include_url=False))
