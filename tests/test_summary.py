"""Test the execution summary projection."""

from campaigngraph.models import ExecutionGraph, Outcome, TaskNode, TaskStatus
from campaigngraph.summary import summarize


def _graph(*statuses):
    graph = ExecutionGraph(organization_id="org", campaign_id="camp")
    for i, status in enumerate(statuses):
        graph.add(TaskNode(id=f"n{i}", type="t", status=status))
    return graph


def test_all_completed_is_succeeded():
    graph = _graph(TaskStatus.COMPLETED, TaskStatus.COMPLETED)
    graph.nodes["n0"].output = {"a": 1}
    summary = summarize(graph)
    assert summary.outcome == Outcome.SUCCEEDED
    assert summary.progress == 100.0
    assert summary.outputs["n0"] == {"a": 1}
    assert summary.is_complete
    assert not summary.has_failures


def test_failed_node_makes_failed_outcome():
    summary = summarize(_graph(TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.BLOCKED))
    assert summary.outcome == Outcome.FAILED
    assert summary.count(TaskStatus.BLOCKED) == 1
    assert summary.has_failures


def test_skipped_without_failures_is_partial():
    summary = summarize(_graph(TaskStatus.COMPLETED, TaskStatus.SKIPPED))
    assert summary.outcome == Outcome.PARTIAL


def test_active_nodes_mean_running():
    summary = summarize(_graph(TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.RETRYING))
    assert summary.outcome == Outcome.RUNNING
    assert not summary.is_complete
    assert summary.progress == round(2 / 3 * 100, 2)


def test_blocked_nodes_report_root_cause():
    graph = _graph(TaskStatus.FAILED, TaskStatus.BLOCKED)
    graph.nodes["n1"].blocked_by = "n0"
    assert summarize(graph).blocked == {"n1": "n0"}


def test_elapsed_comes_from_node_timestamps():
    graph = _graph(TaskStatus.COMPLETED, TaskStatus.COMPLETED)
    graph.nodes["n0"].started_at, graph.nodes["n0"].finished_at = 100.0, 101.0
    graph.nodes["n1"].started_at, graph.nodes["n1"].finished_at = 101.0, 103.5
    assert summarize(graph).elapsed_ms == 3500.0
    assert summarize(_graph(TaskStatus.PENDING)).elapsed_ms == 0.0


def test_summary_is_idempotent():
    graph = _graph(TaskStatus.COMPLETED, TaskStatus.RUNNING, TaskStatus.PENDING)
    graph.nodes["n0"].started_at, graph.nodes["n0"].finished_at = 1.0, 2.0
    assert summarize(graph) == summarize(graph)
    assert summarize(graph).to_dict() == summarize(graph).to_dict()


def test_empty_graph():
    summary = summarize(ExecutionGraph(organization_id="org"))
    assert summary.total == 0
    assert summary.outcome == Outcome.SUCCEEDED
    assert summary.progress == 100.0
