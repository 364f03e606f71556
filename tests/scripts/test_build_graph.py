"""Tests for the graph builder CLI."""
from __future__ import annotations

import io
import json
from typing import Iterator

from backend.cognify.extraction import RequestTimeoutError
from backend.cognify.orchestration import GraphBuildOrchestrator
from scripts.build_graph import main, parse_args, read_text, run

DOCUMENT = '{"triples": [{"subject": "Plato", "predicate": "taught", "object": "Aristotle"}]}'


class _Source:
    incremental = False

    def __init__(self, fail: bool = False) -> None:
        self._fail = fail

    def chunks(self) -> Iterator[str]:
        if self._fail:
            raise RequestTimeoutError()
        yield DOCUMENT

    def close(self) -> None:
        return None


def test_parse_args_defaults() -> None:
    args = parse_args(["notes.txt"])

    assert args.path == "notes.txt"
    assert args.batch is False
    assert args.config is None


def test_read_text_supports_stdin_and_files(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("Plato taught Aristotle.", encoding="utf-8")

    assert read_text(str(path)) == "Plato taught Aristotle."
    assert read_text("-", stdin=io.StringIO("from stdin")) == "from stdin"


def test_run_prints_json_lines_and_succeeds() -> None:
    out = io.StringIO()
    orchestrator = GraphBuildOrchestrator(source_factory=lambda text: _Source())

    status = run(orchestrator, "Plato taught Aristotle.", out=out)

    records = [json.loads(line) for line in out.getvalue().splitlines()]
    assert status == 0
    assert [record["event"] for record in records][-4:] == ["node", "node", "edge", "complete"]
    assert records[-1]["data"] == {"summary": {"nodes": 2, "edges": 1}}


def test_run_returns_failure_on_error_event() -> None:
    out = io.StringIO()
    orchestrator = GraphBuildOrchestrator(source_factory=lambda text: _Source(fail=True))

    status = run(orchestrator, "text", out=out)

    last = json.loads(out.getvalue().splitlines()[-1])
    assert status == 1
    assert last == {"event": "error", "data": {"message": "OpenAI request timed out. Please try again."}}


def test_main_requires_api_key(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    path = tmp_path / "notes.txt"
    path.write_text("Plato taught Aristotle.", encoding="utf-8")

    assert main([str(path)]) == 2


def test_main_rejects_missing_input(tmp_path, capsys) -> None:
    assert main([str(tmp_path / "missing.txt")]) == 2
    assert "Unable to read" in capsys.readouterr().err
