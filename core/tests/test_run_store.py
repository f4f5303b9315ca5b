"""
Tests for run storage: both store implementations share one behaviour suite,
plus file-layout specifics for FileRunStore.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest

from nodeflow.schemas.run import NodeResult, NodeResultStatus, Run, RunScope, RunStatus
from nodeflow.storage.run_store import FileRunStore, InMemoryRunStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRunStore()
    return FileRunStore(tmp_path / "storage")


class TestRunStoreContract:
    @pytest.mark.asyncio
    async def test_create_and_get_run(self, store):
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)

        loaded = await store.get_run(run.id)
        assert loaded is not None
        assert loaded.id == run.id
        assert loaded.status == RunStatus.RUNNING
        assert loaded.scope == RunScope.FULL

    @pytest.mark.asyncio
    async def test_missing_run(self, store):
        assert await store.get_run("run_missing") is None
        assert await store.list_node_results("run_missing") == []

    @pytest.mark.asyncio
    async def test_duplicate_run_rejected(self, store):
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)
        with pytest.raises(ValueError):
            await store.create_run(run)

    @pytest.mark.asyncio
    async def test_sealed_run_round_trips(self, store):
        run = Run(workflow_id="wf_1", scope=RunScope.PARTIAL)
        await store.create_run(run)
        run.seal(RunStatus.PARTIAL)
        await store.update_run(run)

        loaded = await store.get_run(run.id)
        assert loaded.status == RunStatus.PARTIAL
        assert loaded.completed_at is not None
        assert loaded.duration_ms is not None

    @pytest.mark.asyncio
    async def test_update_unknown_run(self, store):
        with pytest.raises(KeyError):
            await store.update_run(Run(workflow_id="wf_1", scope=RunScope.FULL))

    @pytest.mark.asyncio
    async def test_node_results_latest_version_in_creation_order(self, store):
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)
        first = NodeResult(run_id=run.id, node_id="t1", node_type="text")
        second = NodeResult(run_id=run.id, node_id="llm1", node_type="llm")
        await store.create_node_result(first)
        await store.create_node_result(second)

        second.finalize(NodeResultStatus.FAILED, input={}, error="boom")
        first.finalize(NodeResultStatus.SUCCESS, input={}, output="hello")
        await store.update_node_result(second)
        await store.update_node_result(first)

        results = await store.list_node_results(run.id)
        assert [r.node_id for r in results] == ["t1", "llm1"]
        assert results[0].status == NodeResultStatus.SUCCESS
        assert results[0].output == "hello"
        assert results[1].error == "boom"

    @pytest.mark.asyncio
    async def test_node_result_needs_run(self, store):
        with pytest.raises(KeyError):
            await store.create_node_result(
                NodeResult(run_id="run_missing", node_id="t1", node_type="text")
            )

    @pytest.mark.asyncio
    async def test_list_runs_newest_first_and_filtered(self, store):
        now = datetime.now(UTC)
        old = Run(workflow_id="wf_1", scope=RunScope.FULL, started_at=now - timedelta(minutes=5))
        new = Run(workflow_id="wf_1", scope=RunScope.FULL, started_at=now)
        other = Run(workflow_id="wf_2", scope=RunScope.FULL, started_at=now)
        for run in (old, new, other):
            await store.create_run(run)

        runs = await store.list_runs(workflow_id="wf_1")
        assert [r.id for r in runs] == [new.id, old.id]
        assert len(await store.list_runs(limit=1)) == 1


class TestInMemoryRunStore:
    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self):
        store = InMemoryRunStore()
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)

        run.error = "mutated after create"
        assert (await store.get_run(run.id)).error is None


class TestFileRunStore:
    @pytest.mark.asyncio
    async def test_layout(self, tmp_path):
        store = FileRunStore(tmp_path)
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)
        await store.create_node_result(NodeResult(run_id=run.id, node_id="t1", node_type="text"))

        run_dir = tmp_path / "runs" / run.id
        assert json.loads((run_dir / "run.json").read_text())["workflow_id"] == "wf_1"
        assert len((run_dir / "node_results.jsonl").read_text().splitlines()) == 1
        assert not (run_dir / "run.tmp").exists()

    @pytest.mark.asyncio
    async def test_corrupt_line_skipped(self, tmp_path):
        store = FileRunStore(tmp_path)
        run = Run(workflow_id="wf_1", scope=RunScope.FULL)
        await store.create_run(run)
        await store.create_node_result(NodeResult(run_id=run.id, node_id="t1", node_type="text"))
        with open(tmp_path / "runs" / run.id / "node_results.jsonl", "a") as f:
            f.write('{"id": "nr_partial", "run_')

        results = await store.list_node_results(run.id)
        assert [r.node_id for r in results] == ["t1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["../escape", "a/b", ".hidden", ""])
    async def test_path_traversal_rejected(self, tmp_path, bad_id):
        store = FileRunStore(tmp_path)
        with pytest.raises(ValueError):
            await store.get_run(bad_id)
