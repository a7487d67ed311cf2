"""Test the command-line entry point."""

import json

import pytest

from campaigngraph.cli import build_parser, main


def test_templates_and_plan():
    assert main(["templates"]) == 0
    assert main(["plan", "Launch v2", "--template", "thought_leadership"]) == 0


def test_unknown_template_is_reported():
    assert main(["plan", "Launch v2", "--template", "nope"]) == 2


def test_dry_run_executes_every_task(tmp_path):
    assert main(["run", "Announce v2", "--dry-run", "--data-dir", str(tmp_path), "-p", "2"]) == 0

    (graph_dir,) = list(tmp_path.iterdir())
    graph = json.loads((graph_dir / "graph.json").read_text())
    assert {n["status"] for n in graph["nodes"]} == {"COMPLETED"}
    assert len((graph_dir / "executions.jsonl").read_text().splitlines()) == 5
    assert (graph_dir / "events.jsonl").exists()


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
