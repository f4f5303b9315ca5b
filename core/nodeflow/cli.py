"""
Command-line interface for nodeflow.

Usage:
    nodeflow validate workflow.json
    nodeflow layers workflow.json --scope SINGLE --nodes llm1
    nodeflow run workflow.json --scope PARTIAL --nodes crop1 llm1 --write
    nodeflow serve --port 8080
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import pydantic

from nodeflow.config import EngineConfig
from nodeflow.errors import NodeflowError, ValidationError
from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.scheduler import layer, resolve_scope
from nodeflow.observability import configure_logging
from nodeflow.schemas.run import RunScope


def _load_graph(path: str) -> GraphSpec:
    with open(path, encoding="utf-8") as f:
        return GraphSpec.model_validate(json.load(f))


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_validate(args: argparse.Namespace) -> int:
    graph = _load_graph(args.graph)
    errors = graph.validate()
    if errors:
        print(f"✗ {args.graph}: {len(errors)} problem(s)")
        for err in errors:
            print(f"   • {err}")
        return 1
    print(f"✓ {args.graph}: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    return 0


def cmd_layers(args: argparse.Namespace) -> int:
    graph = _load_graph(args.graph)
    nodes = resolve_scope(graph, args.scope, args.nodes)
    _print_json(layer(nodes, graph.edges))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    from nodeflow.graph.executor import WorkflowExecutor
    from nodeflow.storage.run_store import FileRunStore, InMemoryRunStore

    config = EngineConfig()
    if args.skip_job_backend:
        config.skip_job_backend = True

    llm = None
    if args.mock_llm:
        from nodeflow.llm.mock import MockLLMProvider

        llm = MockLLMProvider()

    store = FileRunStore(config.storage_path) if args.store == "file" else InMemoryRunStore()
    executor = WorkflowExecutor.from_config(config, store=store, llm=llm)
    graph = _load_graph(args.graph)

    async def _run():
        try:
            return await executor.execute(
                graph, scope=args.scope, node_ids=args.nodes, workflow_id=args.workflow_id
            )
        finally:
            await executor.job_client.aclose()

    result = asyncio.run(_run())
    _print_json(result.to_response())

    if args.write:
        updated = result.apply_to(graph)
        Path(args.graph).write_text(
            json.dumps(updated.to_editor_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
    return 0 if result.status == "SUCCESS" else 1


def cmd_serve(args: argparse.Namespace) -> int:
    from nodeflow.graph.executor import WorkflowExecutor
    from nodeflow.runtime.event_bus import EventBus
    from nodeflow.runtime.run_server import RunServer, RunServerConfig
    from nodeflow.storage.run_store import FileRunStore

    config = EngineConfig()

    async def _serve():
        executor = WorkflowExecutor.from_config(
            config, store=FileRunStore(config.storage_path), event_bus=EventBus()
        )
        server = RunServer(executor, RunServerConfig(host=args.host, port=args.port))
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()
            await executor.job_client.aclose()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    """Register the nodeflow commands."""
    scope_choices = [s.value for s in RunScope]

    validate = subparsers.add_parser("validate", help="Check a workflow graph")
    validate.add_argument("graph", help="Path to workflow JSON")
    validate.set_defaults(func=cmd_validate)

    layers = subparsers.add_parser("layers", help="Print the execution layers")
    layers.add_argument("graph", help="Path to workflow JSON")
    layers.add_argument("--scope", choices=scope_choices, default=RunScope.FULL.value)
    layers.add_argument("--nodes", nargs="+", help="Target node ids for SINGLE/PARTIAL")
    layers.set_defaults(func=cmd_layers)

    run = subparsers.add_parser("run", help="Execute a workflow graph")
    run.add_argument("graph", help="Path to workflow JSON")
    run.add_argument("--scope", choices=scope_choices, default=RunScope.FULL.value)
    run.add_argument("--nodes", nargs="+", help="Target node ids for SINGLE/PARTIAL")
    run.add_argument("--workflow-id", help="Workflow id to record (default: graph id)")
    run.add_argument(
        "--store", choices=["memory", "file"], default="memory", help="Where to record the run"
    )
    run.add_argument(
        "--write", action="store_true", help="Write node outputs back into the graph file"
    )
    run.add_argument(
        "--skip-job-backend", action="store_true", help="Run every job in-process"
    )
    run.add_argument("--mock-llm", action="store_true", help="Use the offline echo LLM")
    run.set_defaults(func=cmd_run)

    serve = subparsers.add_parser("serve", help="Start the run HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    serve.set_defaults(func=cmd_serve)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="nodeflow - validate and run node-based media/LLM workflows",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument(
        "--log-format", choices=["auto", "json", "human"], default="auto", help="Log format"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    try:
        code = args.func(args)
    except (OSError, json.JSONDecodeError, pydantic.ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        for reason in e.reasons:
            print(f"   • {reason}", file=sys.stderr)
        code = 1
    except NodeflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
