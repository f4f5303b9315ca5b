"""Tests for the nodeflow command line."""

import json
import logging
from pathlib import Path

import pytest

from nodeflow.cli import main

GRAPH = {
    "id": "wf_cli",
    "nodes": [
        {"id": "t1", "type": "text", "data": {"text": "hello"}},
        {"id": "llm1", "type": "llm", "data": {}},
    ],
    "edges": [
        {"id": "e1", "source": "t1", "sourceHandle": "output",
         "target": "llm1", "targetHandle": "user_message"}
    ],
}


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def graph_file(tmp_path):
    path = tmp_path / "workflow.json"
    path.write_text(json.dumps(GRAPH))
    return path


def _exit_code(argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


def test_validate_ok(graph_file, capsys):
    assert _exit_code(["validate", str(graph_file)]) == 0
    assert "2 nodes, 1 edges" in capsys.readouterr().out


def test_validate_reports_problems(tmp_path, capsys):
    bad = dict(GRAPH, edges=[dict(GRAPH["edges"][0], targetHandle="images")])
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(bad))

    assert _exit_code(["validate", str(path)]) == 1
    assert "Type mismatch" in capsys.readouterr().out


def test_layers(graph_file, capsys):
    assert _exit_code(["layers", str(graph_file)]) == 0
    assert json.loads(capsys.readouterr().out) == [["t1"], ["llm1"]]


def test_run_offline_and_write_back(graph_file, capsys, monkeypatch):
    monkeypatch.delenv("TRIGGER_SECRET_KEY", raising=False)
    code = _exit_code(
        ["--log-level", "WARNING", "run", str(graph_file), "--mock-llm", "--skip-job-backend",
         "--write"]
    )
    assert code == 0

    response = json.loads(capsys.readouterr().out)
    assert response["status"] == "SUCCESS"
    saved = json.loads(graph_file.read_text())
    llm = next(n for n in saved["nodes"] if n["id"] == "llm1")
    assert llm["data"]["output"] == "echo: hello"
    assert llm["data"]["status"] == "success"
    assert saved["edges"][0]["targetHandle"] == "user_message"


def test_missing_file(tmp_path, capsys):
    assert _exit_code(["validate", str(tmp_path / "nope.json")]) == 2
    assert "Error" in capsys.readouterr().err


def test_unknown_target_node(graph_file, capsys):
    assert _exit_code(["layers", str(graph_file), "--scope", "SINGLE", "--nodes", "ghost"]) == 1
    assert "Unknown node IDs" in capsys.readouterr().err


def test_sample_workflow_layers(capsys):
    sample = Path(__file__).parents[2] / "examples" / "workflows" / "product_listing.json"
    assert _exit_code(["layers", str(sample)]) == 0
    assert json.loads(capsys.readouterr().out) == [
        ["vid1", "img1", "sys1", "msg1"],
        ["frame1", "crop1"],
        ["llm1"],
    ]
