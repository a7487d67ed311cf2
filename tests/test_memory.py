"""Test outcome memory."""

import asyncio
import json

from campaigngraph.memory import InMemoryMemoryStore, JsonlMemoryStore, error_entry, success_entry
from campaigngraph.models import ExecutionGraph, TaskExecutionResult, TaskNode


def _graph_and_node():
    graph = ExecutionGraph(organization_id="org", campaign_id="camp")
    node = TaskNode(id="draft", type="draft", agent="content-agent", attempt=2)
    graph.add(node)
    return graph, node


def test_success_entry():
    graph, node = _graph_and_node()
    entry = success_entry(graph, node, TaskExecutionResult.ok({"pitch": "hi"}, duration_ms=12))
    assert entry.memory_type == "SUCCESS"
    assert entry.agent_type == "content-agent"
    assert entry.organization_id == "org"
    assert "Task Success: draft (draft)" in entry.content
    assert '"pitch": "hi"' in entry.content


def test_error_entry_for_manual_node():
    graph, node = _graph_and_node()
    node.agent = None
    entry = error_entry(graph, node, TaskExecutionResult.failure("boom", error_type="ValueError"))
    assert entry.memory_type == "ERROR"
    assert entry.agent_type == "graph-executor"
    assert "Agent: Manual" in entry.content
    assert entry.metadata["attempts"] == 2
    assert entry.metadata["error_type"] == "ValueError"


def test_stores():
    graph, node = _graph_and_node()
    store = InMemoryMemoryStore()
    asyncio.run(store.store_success_memory(graph, node, TaskExecutionResult.ok({})))
    asyncio.run(store.store_error_memory(graph, node, TaskExecutionResult.failure("x")))
    assert [e.memory_type for e in store.entries] == ["SUCCESS", "ERROR"]


def test_jsonl_store(tmp_path):
    graph, node = _graph_and_node()
    path = tmp_path / "mem" / "memory.jsonl"
    asyncio.run(JsonlMemoryStore(path).store_success_memory(graph, node, TaskExecutionResult.ok({"a": 1})))
    data = json.loads(path.read_text().strip())
    assert data["memory_type"] == "SUCCESS"
    assert data["metadata"]["node_id"] == "draft"
