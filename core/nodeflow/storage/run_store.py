"""
Run storage - Durable Run and NodeResult records.

Only the run orchestrator writes here. Records are handed over whole, so a
store never merges partial updates.

Two implementations:

- InMemoryRunStore: dict-backed, for tests and one-shot CLI runs
- FileRunStore: one directory per run, JSONL for node results

File layout::

    {base_path}/
      runs/
        {run_id}/
          run.json             # rewritten atomically on create/seal
          node_results.jsonl   # one line per create/finalize, last line per id wins
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from nodeflow.schemas.run import NodeResult, Run

logger = logging.getLogger(__name__)


class RunStore(ABC):
    """Persistence for runs and their node results."""

    @abstractmethod
    async def create_run(self, run: Run) -> None:
        pass

    @abstractmethod
    async def update_run(self, run: Run) -> None:
        pass

    @abstractmethod
    async def create_node_result(self, result: NodeResult) -> None:
        pass

    @abstractmethod
    async def update_node_result(self, result: NodeResult) -> None:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Run | None:
        pass

    @abstractmethod
    async def list_node_results(self, run_id: str) -> list[NodeResult]:
        """Node results of a run in creation order."""
        pass

    @abstractmethod
    async def list_runs(self, workflow_id: str | None = None, limit: int = 20) -> list[Run]:
        """Most recent runs first."""
        pass


class InMemoryRunStore(RunStore):
    """Keeps copies of every record so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self._node_results: dict[str, dict[str, NodeResult]] = {}

    async def create_run(self, run: Run) -> None:
        if run.id in self._runs:
            raise ValueError(f"Run {run.id} already exists")
        self._runs[run.id] = run.model_copy(deep=True)
        self._node_results[run.id] = {}

    async def update_run(self, run: Run) -> None:
        if run.id not in self._runs:
            raise KeyError(f"Run {run.id} not found")
        self._runs[run.id] = run.model_copy(deep=True)

    async def create_node_result(self, result: NodeResult) -> None:
        results = self._node_results.get(result.run_id)
        if results is None:
            raise KeyError(f"Run {result.run_id} not found")
        if result.id in results:
            raise ValueError(f"NodeResult {result.id} already exists")
        results[result.id] = result.model_copy(deep=True)

    async def update_node_result(self, result: NodeResult) -> None:
        results = self._node_results.get(result.run_id, {})
        if result.id not in results:
            raise KeyError(f"NodeResult {result.id} not found")
        results[result.id] = result.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_node_results(self, run_id: str) -> list[NodeResult]:
        return [r.model_copy(deep=True) for r in self._node_results.get(run_id, {}).values()]

    async def list_runs(self, workflow_id: str | None = None, limit: int = 20) -> list[Run]:
        runs = [r for r in self._runs.values() if workflow_id is None or r.workflow_id == workflow_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[:limit]]


class FileRunStore(RunStore):
    """File-backed store. Each run has its own directory, so concurrent runs never share a file."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)

    def _run_dir(self, run_id: str) -> Path:
        _validate_key(run_id)
        return self.base_path / "runs" / run_id

    async def create_run(self, run: Run) -> None:
        run_dir = self._run_dir(run.id)
        if (run_dir / "run.json").exists():
            raise ValueError(f"Run {run.id} already exists")
        await asyncio.to_thread(run_dir.mkdir, parents=True, exist_ok=True)
        await self._write_json(run_dir / "run.json", run.model_dump(mode="json"))

    async def update_run(self, run: Run) -> None:
        path = self._run_dir(run.id) / "run.json"
        if not path.exists():
            raise KeyError(f"Run {run.id} not found")
        await self._write_json(path, run.model_dump(mode="json"))

    async def create_node_result(self, result: NodeResult) -> None:
        if not (self._run_dir(result.run_id) / "run.json").exists():
            raise KeyError(f"Run {result.run_id} not found")
        await self._append(result)

    async def update_node_result(self, result: NodeResult) -> None:
        await self._append(result)

    async def get_run(self, run_id: str) -> Run | None:
        data = await self._read_json(self._run_dir(run_id) / "run.json")
        return Run.model_validate(data) if data is not None else None

    async def list_node_results(self, run_id: str) -> list[NodeResult]:
        path = self._run_dir(run_id) / "node_results.jsonl"
        return await asyncio.to_thread(_read_node_results, path)

    async def list_runs(self, workflow_id: str | None = None, limit: int = 20) -> list[Run]:
        runs_dir = self.base_path / "runs"

        def _scan() -> list[str]:
            if not runs_dir.exists():
                return []
            return [d.name for d in runs_dir.iterdir() if d.is_dir()]

        runs: list[Run] = []
        for run_id in await asyncio.to_thread(_scan):
            run = await self.get_run(run_id)
            if run is None:
                continue
            if workflow_id is not None and run.workflow_id != workflow_id:
                continue
            runs.append(run)
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    async def _append(self, result: NodeResult) -> None:
        path = self._run_dir(result.run_id) / "node_results.jsonl"
        line = json.dumps(result.model_dump(mode="json"), ensure_ascii=False) + "\n"

        def _write() -> None:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_write)

    @staticmethod
    async def _write_json(path: Path, data: dict) -> None:
        """Write JSON atomically: write to .tmp then rename."""
        tmp = path.with_suffix(".tmp")
        content = json.dumps(data, indent=2, ensure_ascii=False)

        def _write() -> None:
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(path)

        await asyncio.to_thread(_write)

    @staticmethod
    async def _read_json(path: Path) -> dict | None:
        """Read and parse a JSON file. Returns None if missing or corrupt."""

        def _read() -> dict | None:
            if not path.exists():
                return None
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to read {path}: {e}")
                return None

        return await asyncio.to_thread(_read)


# -------------------------------------------------------------------
# Module-level helpers
# -------------------------------------------------------------------


def _validate_key(key: str) -> None:
    """Reject ids that could escape the storage directory."""
    if not key or not key.strip():
        raise ValueError("Key cannot be empty")
    if "/" in key or "\\" in key:
        raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")
    if ".." in key or key.startswith("."):
        raise ValueError(f"Invalid key format: path traversal detected in '{key}'")
    if "\x00" in key:
        raise ValueError(f"Invalid key format: null bytes not allowed in '{key}'")


def _read_node_results(path: Path) -> list[NodeResult]:
    """Fold node_results.jsonl into the latest record per id, in first-seen order.

    Skips blank lines and corrupt JSON lines (partial writes from crashes).
    """
    latest: dict[str, NodeResult] = {}
    if not path.exists():
        return []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                result = NodeResult.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Skipping corrupt line in {path}: {e}")
                continue
            latest[result.id] = result
    return list(latest.values())
